from uuid import uuid4
import stripe
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from storefront.auth import is_admin, verify_token
from storefront.config import settings
from storefront.database import get_db
from storefront.errors import (
    CaptureFailed,
    CreateOrderFailed,
    OrderAlreadyCaptured,
    OrderForbidden,
    PaymentError,
    PaymentNotCompleted,
    ProviderUnavailable,
    UnknownCheckout,
)
from storefront.models import CheckoutDetails
from storefront.orders import order_from_checkout
from storefront.paypal_service import (
    ALREADY_CAPTURED,
    PayPalError,
    capture_id,
    capture_order as capture_paypal_order,
    create_order as create_paypal_order,
    is_configured as paypal_is_configured,
)
from storefront.pricing import compute_totals
from storefront.schemas import (
    CaptureRequest,
    CaptureResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    IntentRequest,
    IntentResponse,
    PaymentProvider,
    ProvidersResponse,
)
from storefront.stripe_service import create_payment, retrieve_payment

router = APIRouter(prefix="/payment", tags=["payments"])
log = structlog.get_logger().bind(component="payment_routes")


def _snapshot(request, identity: dict, reference: str, provider: PaymentProvider, totals,
              checkout_id: str = None) -> CheckoutDetails:
    coupon = request.coupon.model_dump(mode="json", by_alias=True) if request.coupon else None
    if coupon is not None:
        coupon["discountAmount"] = float(totals.discount)
    return CheckoutDetails(
        id=reference,
        provider=provider.value,
        checkout_id=checkout_id,
        user_id=identity.get("sub"),
        customer_email=identity.get("email"),
        items=[item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in request.items],
        address_id=request.address_id,
        shipping_address=(request.shipping_address.model_dump(mode="json", by_alias=True)
                          if request.shipping_address else None),
        coupon=coupon,
        amount_cents=totals.total_cents,
        currency=settings.CURRENCY,
        status="created",
    )


@router.get("/providers", response_model=ProvidersResponse)
def payment_providers():
    return ProvidersResponse(
        card=settings.card_enabled,
        redirect=paypal_is_configured(),
        redirect_client_id=settings.PAYPAL_CLIENT_ID,
    )


@router.post("/intent", response_model=IntentResponse, response_model_exclude_none=True)
def create_payment_intent(
    request: IntentRequest,
    identity: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    if not settings.card_enabled:
        raise ProviderUnavailable("Card payments are not available")

    if request.checkout_id:
        existing = db.query(CheckoutDetails).filter_by(checkout_id=request.checkout_id).first()
        if existing and existing.status != "created":
            return IntentResponse(payment_intent_id=existing.id, status=existing.status)
        if existing:
            # Reload of an open checkout reuses its intent
            try:
                intent = retrieve_payment(existing.id)
            except stripe.StripeError as e:
                log.error("payment_intent_retrieve_failed", payment_intent_id=existing.id, error=str(e))
                raise PaymentError("Failed to create payment intent")
            return IntentResponse(client_secret=intent.client_secret, payment_intent_id=existing.id,
                                  status=existing.status)

    totals = compute_totals(request.items, request.coupon)
    metadata = {
        "userId": identity.get("sub", ""),
        "addressId": request.address_id,
        "cartItems": [{"productId": item.product_id, "quantity": item.quantity}
                      for item in request.items],
    }
    try:
        intent = create_payment(totals.total_cents, settings.CURRENCY, metadata,
                                idempotency_key=request.checkout_id)
    except stripe.StripeError as e:
        log.error("payment_intent_failed", error=str(e), amount_cents=totals.total_cents)
        raise PaymentError("Failed to create payment intent")

    db.add(_snapshot(request, identity, intent.id, PaymentProvider.CARD, totals,
                     checkout_id=request.checkout_id))
    db.commit()
    log.info("payment_intent_created", payment_intent_id=intent.id, amount_cents=totals.total_cents)

    return IntentResponse(client_secret=intent.client_secret, payment_intent_id=intent.id)


@router.post("/create-order", response_model=CreateOrderResponse)
def create_redirect_order(
    request: CreateOrderRequest,
    identity: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    if not paypal_is_configured():
        raise ProviderUnavailable("PayPal is not configured")

    # The client never supplies the charged amount
    totals = compute_totals(request.items, request.coupon)
    reference = f"order_{uuid4().hex[:16]}"
    custom = {"userId": identity.get("sub"), "addressId": request.address_id}
    try:
        result = create_paypal_order(totals, request.items, reference, custom)
    except PayPalError as e:
        log.error("paypal_create_order_failed", name=e.name, error=e.message)
        raise CreateOrderFailed()

    db.add(_snapshot(request, identity, result["id"], PaymentProvider.REDIRECT, totals))
    db.commit()

    return CreateOrderResponse(order_id=result["id"], approval_url=result["approval_url"])


@router.post("/capture-order", response_model=CaptureResponse, response_model_exclude_none=True)
def capture_redirect_order(
    request: CaptureRequest,
    identity: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    details = db.get(CheckoutDetails, request.order_id)
    if details is None or details.provider != PaymentProvider.REDIRECT.value:
        raise UnknownCheckout()
    if details.user_id != identity.get("sub") and not is_admin(identity):
        raise OrderForbidden()
    if details.status == "paid":
        raise OrderAlreadyCaptured()

    try:
        result = capture_paypal_order(request.order_id)
    except PayPalError as e:
        if e.name == ALREADY_CAPTURED:
            raise OrderAlreadyCaptured()
        log.error("paypal_capture_failed", paypal_order_id=request.order_id, name=e.name,
                  error=e.message)
        raise CaptureFailed()

    if result.get("status") != "COMPLETED":
        log.warning("paypal_capture_incomplete", paypal_order_id=request.order_id,
                    status=result.get("status"))
        raise PaymentNotCompleted()

    transaction_id = capture_id(result)
    order = order_from_checkout(db, details, transaction_id or request.order_id)
    return CaptureResponse(
        success=True,
        status=result["status"],
        transaction_id=transaction_id,
        store_order_id=order.id,
    )
