import stripe
import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request

from fulfillment import admin, routes
from fulfillment.database import Base, engine, SessionLocal
from fulfillment.dispatcher import Dispatcher, get_dispatcher
from fulfillment.log import setup_logging
from fulfillment.providers.stripe_provider import StripeAdapter
from fulfillment.stripe_service import as_plain_dict, construct_event

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Marketplace Fulfillment Service")

app.include_router(routes.router)
app.include_router(admin.router)

Base.metadata.create_all(bind=engine)


@app.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    payload = await request.body()

    try:
        event = construct_event(payload, stripe_signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    payment = StripeAdapter().normalize(as_plain_dict(event))
    logger.info(
        "stripe_webhook_received",
        event_type=payment.raw.get("type"),
        status=payment.status.value,
        reference=payment.reference,
    )

    db = SessionLocal()
    try:
        dispatcher.dispatch(payment, db)
    finally:
        db.close()

    return {"ok": True}
