from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentProvider(str, Enum):
    CARD = "card"
    REDIRECT = "redirect"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Patch(CamelModel):
    id: str
    name: str
    image: Optional[str] = None
    price: Optional[float] = None


class Customization(CamelModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    number: Optional[str] = None
    size: Optional[str] = None
    selected_patches: List[Patch] = []
    include_shorts: bool = False
    include_socks: bool = False
    is_player_edition: bool = False
    is_kid_size: bool = False
    has_customization: bool = False
    excluded_shirts: Optional[List[str]] = None

    @field_validator("selected_patches", mode="before")
    @classmethod
    def normalize_patches(cls, value):
        # Older carts store patches as bare ids
        if value is None:
            return []
        return [
            {"id": patch, "name": patch, "image": f"/patches/{patch}.png"}
            if isinstance(patch, str) else patch
            for patch in value
        ]


class CartItem(CamelModel):
    product_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("productId", "product_id", "id")
    )
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(gt=0)
    customization: Optional[Customization] = None


class Coupon(CamelModel):
    code: str
    discount_percentage: float = Field(ge=0, le=100)
    discount_amount: Optional[float] = None


class ShippingAddress(CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


# --- requests ---

class IntentRequest(CamelModel):
    items: List[CartItem] = Field(min_length=1)
    address_id: str
    shipping_address: Optional[ShippingAddress] = None
    coupon: Optional[Coupon] = None
    checkout_id: Optional[str] = None


class CreateOrderRequest(CamelModel):
    items: List[CartItem] = Field(min_length=1)
    address_id: str
    shipping_address: Optional[ShippingAddress] = None
    coupon: Optional[Coupon] = None


class CaptureRequest(CamelModel):
    order_id: str = Field(validation_alias=AliasChoices("orderID", "orderId", "order_id"))


class OrderCreate(CamelModel):
    items: List[CartItem] = Field(min_length=1)
    address_id: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    coupon: Optional[Coupon] = None
    payment_intent_id: Optional[str] = None
    payment_provider: Optional[PaymentProvider] = None


class OrderUpdate(CamelModel):
    status: Optional[OrderStatus] = None
    tracking_code: Optional[str] = None


class RefundRequest(CamelModel):
    payment_intent_id: Optional[str] = None


class CancelRequest(CamelModel):
    reason: Optional[str] = None


# --- responses ---

class OrderOut(CamelModel):
    id: str
    user_id: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[CartItem] = []
    amount: Decimal
    currency: Optional[str] = None
    status: OrderStatus
    payment_provider: Optional[PaymentProvider] = None
    payment_intent_id: Optional[str] = None
    tracking_code: Optional[str] = None
    address_id: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    coupon: Optional[Coupon] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    refunded: bool = False
    refunded_at: Optional[datetime] = None
    refund_reference: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal):
        return float(amount)


class OrderEnvelope(CamelModel):
    message: str
    order: OrderOut


class OrderList(CamelModel):
    orders: List[OrderOut]


class IntentResponse(CamelModel):
    client_secret: Optional[str] = None
    payment_intent_id: str
    status: Optional[str] = None


class CreateOrderResponse(CamelModel):
    order_id: str = Field(alias="orderID")
    approval_url: Optional[str] = None


class CaptureResponse(CamelModel):
    success: bool
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    store_order_id: Optional[str] = None


class NotifyResponse(CamelModel):
    message: str
    sent_to: str


class InvoiceResponse(CamelModel):
    success: bool = True
    message: str
    invoice_number: str
    sent_to: str


class ProvidersResponse(CamelModel):
    card: bool
    redirect: bool
    redirect_client_id: Optional[str] = None
