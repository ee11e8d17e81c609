import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from fulfillment.dates import utcnow
from fulfillment.database import Base


def new_id():
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    name = Column(String, default="")               # first name
    surname = Column(String, default="")
    phone = Column(String, default="")
    roles = Column(JSON, default=list)              # ["admin", "agent", ...]
    seller_balance = Column(Float, default=0.0, nullable=False)
    referred_by = Column(String, ForeignKey("users.id"), nullable=True)

    @property
    def full_name(self):
        return " ".join(p for p in (self.name, self.surname) if p).strip()


class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=new_id)
    key = Column(String, unique=True, index=True)
    label = Column(String, default="")
    commission_pct = Column(Float, nullable=True)   # None => inherit
    parent_id = Column(String, ForeignKey("categories.id"), nullable=True)


class Shop(Base):
    __tablename__ = "shops"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, default="")


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    shop_id = Column(String, ForeignKey("shops.id"), nullable=True)
    category = Column(String, nullable=True)        # category key or id
    title = Column(String, nullable=False)
    type = Column(String, default="other")          # robot_trading | indicator | mt4_mt5 | ...
    pricing_mode = Column(String, default="one_time")   # one_time | subscription
    pricing_amount = Column(Float, default=0.0)
    pricing_interval = Column(String, default="month")  # month | year
    has_license = Column(Boolean, default=False)
    status = Column(String, default="published")    # draft | published
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(String, primary_key=True, default=new_id)
    code = Column(String, unique=True, index=True)
    scope = Column(String, default="global")        # global | category | product | shop
    type = Column(String, default="percent")        # percent | amount
    value = Column(Float, nullable=False)
    category_key = Column(String, nullable=True)
    product_id = Column(String, nullable=True)
    shop_id = Column(String, nullable=True)
    active = Column(Boolean, default=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)
    max_use = Column(Integer, nullable=True)
    used = Column(Integer, default=0, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    currency = Column(String, default="usd")
    total_amount = Column(Float, nullable=False, default=0.0)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    status = Column(String, default="requires_payment", index=True)  # requires_payment | succeeded | canceled | failed
    fulfillment_locked = Column(Boolean, default=False, nullable=False)
    provider = Column(String, default="stripe", index=True)     # stripe | manual_crypto | free
    payment_reference = Column(String, default="", index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Card gateway correlation
    stripe_session_id = Column(String, default="", index=True)
    stripe_payment_intent_id = Column(String, default="", index=True)
    stripe_charge_id = Column(String, default="")
    stripe_receipt_url = Column(String, default="")
    stripe_customer_email = Column(String, default="")
    stripe_amounts = Column(JSON, default=dict)     # amount/fee/net in units and cents

    # Manual crypto verification
    crypto_reference = Column(String, default="")
    crypto_network = Column(String, default="")
    crypto_status = Column(String, default="")      # pending_verification | approved | rejected
    crypto_tx_hash = Column(String, default="")
    crypto_note = Column(String, default="")
    crypto_validated_at = Column(DateTime(timezone=True), nullable=True)
    crypto_validated_by = Column(String, nullable=True)
    crypto_rejected_at = Column(DateTime(timezone=True), nullable=True)
    crypto_rejection_reason = Column(String, default="")

    user = relationship("User", lazy="joined")
    items = relationship(
        "OrderItem",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    unit_amount = Column(Float, nullable=False)     # after promo
    qty = Column(Integer, nullable=False, default=1)
    seller_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    shop_id = Column(String, ForeignKey("shops.id"), nullable=True)

    promo_code = Column(String, nullable=True, index=True)
    promo_scope = Column(String, nullable=True)
    promo_type = Column(String, nullable=True)
    promo_value = Column(Float, nullable=True)
    promo_discount_unit = Column(Float, nullable=True)


class License(Base):
    __tablename__ = "licenses"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    seller_id = Column(String, nullable=True)
    shop_id = Column(String, nullable=True)
    provider = Column(String, default="")
    key_type = Column(String, default="robot")
    robot_name = Column(String, default="")
    license_key = Column(String, default="")
    expires_at = Column(DateTime(timezone=True), nullable=True)     # None => lifetime
    status = Column(String, nullable=False)         # issued | renewed | failed
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (UniqueConstraint("order_id", "product_id", name="uq_license_order_product"),)


class SellerPayout(Base):
    __tablename__ = "seller_payouts"

    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    seller_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    shop_id = Column(String, nullable=True)
    buyer_id = Column(String, nullable=True)
    qty = Column(Integer, nullable=False)
    currency = Column(String, default="usd")
    commission_rate = Column(Float, nullable=False)
    unit_amount_cents = Column(Integer, nullable=False)
    gross_amount_cents = Column(Integer, nullable=False)
    commission_amount_cents = Column(Integer, nullable=False)
    net_amount_cents = Column(Integer, nullable=False)
    unit_amount = Column(Float, nullable=False)
    gross_amount = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    net_amount = Column(Float, nullable=False)
    status = Column(String, default="available")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "seller_id", name="uq_payout_order_product_seller"),
    )


class AdminCommission(Base):
    __tablename__ = "admin_commissions"

    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    seller_id = Column(String, nullable=False)
    shop_id = Column(String, nullable=True)
    buyer_id = Column(String, nullable=True)
    qty = Column(Integer, nullable=False)
    currency = Column(String, default="usd")
    commission_rate = Column(Float, nullable=False)
    gross_amount_cents = Column(Integer, nullable=False)
    commission_amount_cents = Column(Integer, nullable=False)
    gross_amount = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", "seller_id", name="uq_commission_order_product_seller"),
    )


class PlanAccess(Base):
    __tablename__ = "plan_access"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)


class SubscriptionPeriod(Base):
    __tablename__ = "subscription_periods"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    reference = Column(String, nullable=False)
    dedupe_key = Column(String, nullable=False, unique=True)
    status = Column(String, default="active")
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Float, default=0.0)
    currency = Column(String, default="usd")
    raw = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class AffiliateCommission(Base):
    __tablename__ = "affiliate_commissions"

    id = Column(String, primary_key=True, default=new_id)
    referrer_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    dedupe_key = Column(String, nullable=False, unique=True)
    source = Column(String, default="subscription")
    rate = Column(Float, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, default="usd")
    created_at = Column(DateTime(timezone=True), default=utcnow)


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    course_id = Column(String, nullable=False)
    dedupe_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),)
