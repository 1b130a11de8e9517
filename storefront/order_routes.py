import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from storefront import notifications
from storefront.auth import is_admin, require_admin, verify_token
from storefront.database import get_db
from storefront.errors import OrderError, OrderForbidden
from storefront.models import Order
from storefront.orders import OrderStatusMachine, create_order, send_best_effort
from storefront.pricing import compute_totals
from storefront.schemas import (
    CancelRequest,
    InvoiceResponse,
    NotifyResponse,
    OrderCreate,
    OrderEnvelope,
    OrderList,
    OrderOut,
    OrderStatus,
    OrderUpdate,
    RefundRequest,
)

router = APIRouter(prefix="/orders", tags=["orders"])
log = structlog.get_logger().bind(component="order_routes")


def get_machine(db: Session = Depends(get_db)) -> OrderStatusMachine:
    return OrderStatusMachine(db)


@router.get("", response_model=OrderList)
def list_orders(admin: dict = Depends(require_admin), db: Session = Depends(get_db)):
    orders = db.query(Order).order_by(Order.created_at.desc()).all()
    return OrderList(orders=[OrderOut.model_validate(o) for o in orders])


@router.get("/mine", response_model=OrderList)
def list_my_orders(identity: dict = Depends(verify_token), db: Session = Depends(get_db)):
    orders = (
        db.query(Order)
        .filter_by(user_id=identity["sub"])
        .order_by(Order.created_at.desc())
        .all()
    )
    return OrderList(orders=[OrderOut.model_validate(o) for o in orders])


@router.post("", response_model=OrderEnvelope, status_code=201)
def create_order_api(
    payload: OrderCreate,
    identity: dict = Depends(verify_token),
    db: Session = Depends(get_db),
):
    if payload.payment_intent_id:
        existing = db.query(Order).filter_by(payment_intent_id=payload.payment_intent_id).first()
        if existing:
            return OrderEnvelope(message="Order already exists", order=OrderOut.model_validate(existing))

    order = create_order(db, identity, payload, compute_totals(payload.items, payload.coupon))
    send_best_effort(order, notifications.order_confirmation)
    return OrderEnvelope(message="Order created successfully", order=OrderOut.model_validate(order))


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    identity: dict = Depends(verify_token),
    machine: OrderStatusMachine = Depends(get_machine),
):
    order = machine.get(order_id)
    if order.user_id != identity["sub"] and not is_admin(identity):
        raise OrderForbidden()
    return order


@router.patch("/{order_id}", response_model=OrderEnvelope)
def update_order(
    order_id: str,
    payload: OrderUpdate,
    admin: dict = Depends(require_admin),
    machine: OrderStatusMachine = Depends(get_machine),
):
    fields = payload.model_fields_set
    wants_status = "status" in fields and payload.status is not None
    if not wants_status and "tracking_code" not in fields:
        raise OrderError("No valid update fields provided")

    order = machine.get(order_id)
    previous = order.status
    if wants_status:
        order = machine.transition(order_id, payload.status, actor=admin.get("sub"))
    if "tracking_code" in fields:
        order = machine.set_tracking_code(order_id, payload.tracking_code)

    if wants_status and order.status != previous:
        machine.send_status_update(order)
        if order.status == OrderStatus.SHIPPED.value and order.tracking_code:
            try:
                machine.notify_shipping(order.id)
            except OrderError as e:
                log.warning("automatic_shipping_notification_failed", order_id=order.id,
                            error=e.message)

    return OrderEnvelope(message="Order updated successfully", order=OrderOut.model_validate(order))


@router.post("/{order_id}/refund", response_model=OrderEnvelope)
def refund_order(
    order_id: str,
    payload: RefundRequest = None,
    admin: dict = Depends(require_admin),
    machine: OrderStatusMachine = Depends(get_machine),
):
    order = machine.refund(order_id, payload.payment_intent_id if payload else None)
    return OrderEnvelope(message="Refund processed successfully", order=OrderOut.model_validate(order))


@router.post("/{order_id}/notify-shipping", response_model=NotifyResponse)
def notify_shipping(
    order_id: str,
    admin: dict = Depends(require_admin),
    machine: OrderStatusMachine = Depends(get_machine),
):
    sent_to = machine.notify_shipping(order_id)
    return NotifyResponse(message="Shipping notification sent successfully", sent_to=sent_to)


@router.post("/{order_id}/send-invoice", response_model=InvoiceResponse)
def send_invoice(
    order_id: str,
    admin: dict = Depends(require_admin),
    machine: OrderStatusMachine = Depends(get_machine),
):
    number, sent_to = machine.send_invoice(order_id)
    return InvoiceResponse(message="Invoice sent successfully", invoice_number=number, sent_to=sent_to)


@router.post("/{order_id}/cancel", response_model=OrderEnvelope)
def cancel_order(
    order_id: str,
    payload: CancelRequest = None,
    identity: dict = Depends(verify_token),
    machine: OrderStatusMachine = Depends(get_machine),
):
    order = machine.cancel(
        order_id,
        actor=identity["sub"],
        reason=payload.reason if payload else None,
        admin=is_admin(identity),
    )
    return OrderEnvelope(message="Order cancelled successfully", order=OrderOut.model_validate(order))
