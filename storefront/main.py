import stripe
import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront import notifications
from storefront.config import settings
from storefront.database import Base, engine, get_db
from storefront.errors import PaymentError, StorefrontError
from storefront.logs import configure_logging
from storefront.models import CheckoutDetails
from storefront.order_routes import router as order_router
from storefront.orders import order_from_checkout, send_best_effort
from storefront.routes import router as payment_router
from storefront.stripe_service import construct_event

configure_logging(settings.LOG_LEVEL, json=settings.LOG_JSON)
log = structlog.get_logger().bind(component="webhook")

app = FastAPI(title="Storefront Checkout Service")

app.include_router(payment_router)
app.include_router(order_router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    body = {"error": exc.message}
    if exc.code:
        body["code"] = exc.code
    if isinstance(exc, PaymentError):
        body["success"] = False
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    payload = await request.body()

    try:
        event = construct_event(payload, stripe_signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    if event["type"] == "payment_intent.succeeded":
        intent = event["data"]["object"]
        details = db.get(CheckoutDetails, intent["id"])
        if details is None:
            log.error("checkout_details_missing", payment_intent_id=intent["id"])
        elif details.status == "paid":
            log.info("webhook_replayed", payment_intent_id=intent["id"])
        else:
            order = order_from_checkout(db, details, intent["id"], amount_cents=intent.get("amount"))
            send_best_effort(order, notifications.order_confirmation)
    elif event["type"] == "payment_intent.payment_failed":
        intent = event["data"]["object"]
        log.warning("payment_failed", payment_intent_id=intent["id"])

    return {"ok": True}
