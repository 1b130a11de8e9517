import json
import stripe
from storefront.config import settings

stripe.api_key = settings.STRIPE_SECRET_KEY


def create_payment(amount: int, currency: str, metadata: dict, idempotency_key: str = None):
    return stripe.PaymentIntent.create(
        amount=amount,
        currency=currency,
        automatic_payment_methods={"enabled": True},
        metadata={key: value if isinstance(value, str) else json.dumps(value)
                  for key, value in metadata.items()},
        idempotency_key=idempotency_key
    )


def retrieve_payment(payment_intent_id: str):
    return stripe.PaymentIntent.retrieve(payment_intent_id)


def refund_payment(payment_intent_id: str):
    return stripe.Refund.create(payment_intent=payment_intent_id)


def construct_event(payload: bytes, signature: str):
    return stripe.Webhook.construct_event(
        payload,
        signature,
        settings.STRIPE_WEBHOOK_SECRET
    )
