"""Order status machine.

The machine is the only writer of order state after creation. Status may move
freely between pending, processing, shipped and delivered; cancelled is
terminal. ``refunded`` is a separate flag and never changes the status or the
charged amount.
"""
import smtplib
from typing import Optional
import stripe
import structlog
from sqlalchemy.orm import Session
from storefront import notifications
from storefront.errors import (
    AlreadyRefunded,
    CustomerEmailMissing,
    MissingPaymentInformation,
    NotificationFailed,
    OrderError,
    OrderForbidden,
    OrderNotCancellable,
    OrderNotFound,
    OrderTerminal,
    PaymentIntentMismatch,
    RefundFailed,
    ShippingNotReady,
)
from storefront.models import CheckoutDetails, Order, utcnow
from storefront.paypal_service import PayPalError, refund_capture
from storefront.pricing import Totals
from storefront.schemas import OrderStatus, PaymentProvider
from storefront.stripe_service import refund_payment

log = structlog.get_logger().bind(component="orders")

CUSTOMER_CANCELLABLE = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)


class OrderStatusMachine:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFound()
        return order

    def _save(self, order: Order) -> Order:
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def transition(self, order_id: str, new_status, actor: Optional[str] = None,
                   reason: Optional[str] = None) -> Order:
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise OrderError(f"Invalid order status: {new_status}")

        order = self.get(order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise OrderTerminal()

        previous = order.status
        order.status = target.value
        if target is OrderStatus.CANCELLED:
            order.cancelled_at = utcnow()
            order.cancelled_by = actor
            order.cancellation_reason = reason
        self._save(order)
        log.info("order_status_changed", order_id=order.id, previous=previous,
                 status=order.status, actor=actor)
        return order

    def cancel(self, order_id: str, actor: str, reason: Optional[str] = None,
               admin: bool = False) -> Order:
        order = self.get(order_id)
        if order.user_id != actor and not admin:
            raise OrderForbidden("You don't have permission to cancel this order")
        if order.status not in CUSTOMER_CANCELLABLE:
            raise OrderNotCancellable()
        return self.transition(order_id, OrderStatus.CANCELLED, actor=actor, reason=reason)

    def refund(self, order_id: str, payment_intent_id: Optional[str] = None) -> Order:
        order = self.get(order_id)
        if not order.payment_intent_id:
            raise MissingPaymentInformation()
        if order.refunded:
            raise AlreadyRefunded()
        if payment_intent_id and payment_intent_id != order.payment_intent_id:
            raise PaymentIntentMismatch()

        try:
            if order.payment_provider == PaymentProvider.REDIRECT.value:
                reference = refund_capture(order.payment_intent_id).get("id")
            else:
                reference = refund_payment(order.payment_intent_id).id
        except stripe.StripeError as e:
            log.error("refund_failed", order_id=order.id, provider="card",
                      payment_intent_id=order.payment_intent_id, error=str(e))
            raise RefundFailed(f"Failed to process refund with payment provider: {e.user_message or e}")
        except PayPalError as e:
            log.error("refund_failed", order_id=order.id, provider="redirect",
                      payment_intent_id=order.payment_intent_id, error=e.details or e.message)
            raise RefundFailed(f"Failed to process refund with payment provider: {e.message}")

        order.refunded = True
        order.refunded_at = utcnow()
        order.refund_reference = reference
        self._save(order)
        log.info("order_refunded", order_id=order.id, refund_reference=reference)
        return order

    def set_tracking_code(self, order_id: str, code: Optional[str]) -> Order:
        order = self.get(order_id)
        order.tracking_code = (code or "").strip() or None
        self._save(order)
        log.info("tracking_code_set", order_id=order.id, tracking_code=order.tracking_code)
        return order

    def notify_shipping(self, order_id: str) -> str:
        order = self.get(order_id)
        if order.status != OrderStatus.SHIPPED.value or not order.tracking_code:
            raise ShippingNotReady()
        if not order.customer_email:
            raise CustomerEmailMissing()

        subject, body = notifications.shipping_notification(order)
        try:
            notifications.send_email(order.customer_email, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            log.error("shipping_notification_failed", order_id=order.id, error=str(e))
            raise NotificationFailed()
        log.info("shipping_notification_sent", order_id=order.id, to=order.customer_email)
        return order.customer_email

    def send_invoice(self, order_id: str) -> tuple:
        """Email the invoice; returns the invoice number and the address it went to."""
        order = self.get(order_id)
        if not order.customer_email:
            raise CustomerEmailMissing()

        subject, body = notifications.invoice(order)
        number = notifications.invoice_number(order)
        try:
            notifications.send_email(order.customer_email, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            log.error("invoice_failed", order_id=order.id, error=str(e))
            raise NotificationFailed("Failed to send invoice")
        log.info("invoice_sent", order_id=order.id, invoice_number=number, to=order.customer_email)
        return number, order.customer_email

    def send_status_update(self, order: Order):
        send_best_effort(order, notifications.status_update)


def send_best_effort(order: Order, template):
    """Customer email that must not undo the operation it reports; failures are logged only."""
    if not order.customer_email:
        return
    subject, body = template(order)
    try:
        notifications.send_email(order.customer_email, subject, body)
    except (smtplib.SMTPException, OSError) as e:
        log.warning("customer_email_failed", order_id=order.id, subject=subject, error=str(e))


def _dump_items(items) -> list:
    return [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]


def _dump(model) -> Optional[dict]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True) if model else None


def create_order(db: Session, identity: dict, payload, totals: Totals) -> Order:
    coupon = _dump(payload.coupon)
    if coupon is not None:
        coupon["discountAmount"] = float(totals.discount)
    order = Order(
        user_id=identity.get("sub"),
        customer_email=identity.get("email"),
        items=_dump_items(payload.items),
        amount_cents=totals.total_cents,
        status=OrderStatus.PENDING.value,
        payment_provider=payload.payment_provider.value if payload.payment_provider else None,
        payment_intent_id=payload.payment_intent_id,
        address_id=payload.address_id,
        shipping_address=_dump(payload.shipping_address),
        coupon=coupon,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    log.info("order_created", order_id=order.id, amount_cents=order.amount_cents)
    return order


def order_from_checkout(db: Session, details: CheckoutDetails, payment_reference: str,
                        amount_cents: Optional[int] = None) -> Order:
    """Create the order for a confirmed charge, once per payment reference."""
    existing = db.query(Order).filter_by(payment_intent_id=payment_reference).first()
    if existing:
        return existing

    order = Order(
        user_id=details.user_id,
        customer_email=details.customer_email,
        items=details.items,
        amount_cents=amount_cents if amount_cents is not None else details.amount_cents,
        currency=details.currency,
        status=OrderStatus.PENDING.value,
        payment_provider=details.provider,
        payment_intent_id=payment_reference,
        address_id=details.address_id,
        shipping_address=details.shipping_address,
        coupon=details.coupon,
    )
    details.status = "paid"
    db.add(order)
    db.add(details)
    db.commit()
    db.refresh(order)
    log.info("order_created", order_id=order.id, provider=details.provider,
             payment_reference=payment_reference, amount_cents=order.amount_cents)
    return order
