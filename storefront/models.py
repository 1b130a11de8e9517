import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON
from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_order_id():
    return uuid.uuid4().hex


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=new_order_id)
    user_id = Column(String, index=True)
    customer_email = Column(String)
    items = Column(JSON, nullable=False, default=list)
    amount_cents = Column(Integer, nullable=False)          # set once at creation
    currency = Column(String, default="eur")
    status = Column(String, nullable=False, default="pending")
    payment_provider = Column(String)                      # card | redirect
    payment_intent_id = Column(String, unique=True, index=True)
    tracking_code = Column(String)
    address_id = Column(String)
    shipping_address = Column(JSON)
    coupon = Column(JSON)
    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    cancellation_reason = Column(String)
    refunded = Column(Boolean, nullable=False, default=False)
    refunded_at = Column(DateTime)
    refund_reference = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))


class CheckoutDetails(Base):
    __tablename__ = "checkout_details"

    id = Column(String, primary_key=True)                  # PaymentIntent id or PayPal order id
    provider = Column(String, nullable=False)              # card | redirect
    checkout_id = Column(String, unique=True, index=True)
    user_id = Column(String, index=True)
    customer_email = Column(String)
    items = Column(JSON, nullable=False)
    address_id = Column(String)
    shipping_address = Column(JSON)
    coupon = Column(JSON)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String)
    status = Column(String, default="created")             # created | paid
    created_at = Column(DateTime, default=utcnow)
