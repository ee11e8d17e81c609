import os
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_fulfillment.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from fulfillment.database import Base
from fulfillment.licenses.client import LicenseGrant
from fulfillment.models import Category, Order, OrderItem, Product, User

SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def notifier(mocker):
    return mocker.Mock()


@pytest.fixture
def license_client(mocker):
    client = mocker.Mock()
    client.issue.return_value = LicenseGrant(license_key="KEY-1")
    client.renew.side_effect = lambda payload: LicenseGrant(license_key=payload["license_key"])
    return client


def make_user(db, **fields):
    values = dict(name="Ada", surname="Lovelace", phone="+33600000000")
    values.update(fields)
    values.setdefault("email", f"user-{uuid.uuid4().hex[:8]}@example.com")
    user = User(**values)
    db.add(user)
    db.commit()
    return user


def make_category(db, key, commission_pct=None, parent=None):
    category = Category(key=key, label=key.title(), commission_pct=commission_pct,
                        parent_id=parent.id if parent else None)
    db.add(category)
    db.commit()
    return category


def make_product(db, owner, title="Product", **fields):
    values = dict(owner_id=owner.id, title=title, pricing_amount=10.0, status="published")
    values.update(fields)
    product = Product(**values)
    db.add(product)
    db.commit()
    return product


def make_order(db, buyer, products, provider="stripe", qty=1, **fields):
    order = Order(user_id=buyer.id, provider=provider, currency="usd", **fields)
    total = 0.0
    for position, product in enumerate(products):
        order.items.append(OrderItem(
            position=position,
            product_id=product.id,
            title=product.title,
            unit_amount=product.pricing_amount,
            qty=qty,
            seller_id=product.owner_id,
            shop_id=product.shop_id,
        ))
        total += product.pricing_amount * qty
    order.total_amount = total
    order.total_amount_cents = int(round(total * 100))
    db.add(order)
    db.commit()
    return order
