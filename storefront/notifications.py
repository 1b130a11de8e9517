import smtplib
from datetime import datetime, timezone
from email.mime.text import MIMEText
import structlog
from storefront.config import settings

log = structlog.get_logger().bind(component="notifications")

STATUS_LINES = {
    "pending": "has been received and is awaiting processing",
    "processing": "is being prepared",
    "shipped": "has been shipped",
    "delivered": "has been delivered",
    "cancelled": "has been cancelled",
}


def send_email(to: str, subject: str, body: str):
    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as s:
        if settings.SMTP_USER:
            s.starttls()
            s.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
        s.sendmail(settings.FROM_EMAIL, [to], msg.as_string())
    log.info("email_sent", to=to, subject=subject)


def _item_lines(order) -> str:
    lines = []
    for item in order.items or []:
        line = f"- {item.get('name')} x{item.get('quantity')}"
        custom = item.get("customization") or {}
        extras = [str(custom[key]) for key in ("name", "number", "size") if custom.get(key)]
        if extras:
            line += f" ({' / '.join(extras)})"
        lines.append(line)
    return "\n".join(lines)


def order_confirmation(order) -> tuple:
    subject = f"Order confirmation #{order.id}"
    body = (
        f"Thank you for your order #{order.id}.\n\n"
        f"{_item_lines(order)}\n\n"
        f"Total: {order.amount} {(order.currency or settings.CURRENCY).upper()}\n"
    )
    return subject, body


def status_update(order) -> tuple:
    subject = f"Order #{order.id} update"
    body = f"Your order #{order.id} {STATUS_LINES.get(order.status, 'was updated')}.\n\n{_item_lines(order)}\n"
    return subject, body


def shipping_notification(order) -> tuple:
    subject = "Your order has been shipped!"
    body = (
        f"Your order #{order.id} has been shipped!\n"
        f"Track your package with tracking number: {order.tracking_code}\n\n"
        f"{_item_lines(order)}\n"
    )
    return subject, body


PAYMENT_METHOD_NAMES = {"card": "Credit Card", "redirect": "PayPal"}


def invoice_number(order) -> str:
    return f"INV-{order.id[-8:].upper()}"


def invoice(order, issued_on=None) -> tuple:
    number = invoice_number(order)
    issued_on = issued_on or datetime.now(timezone.utc).date()
    subject = f"Invoice {number} for order #{order.id}"
    body = (
        f"Invoice: {number}\n"
        f"Date: {issued_on.strftime('%d/%m/%Y')}\n"
        f"Order: #{order.id}\n"
        f"Payment method: {PAYMENT_METHOD_NAMES.get(order.payment_provider, 'Credit Card')}\n\n"
        f"{_item_lines(order)}\n\n"
        f"Total: {order.amount} {(order.currency or settings.CURRENCY).upper()}\n"
    )
    return subject, body
