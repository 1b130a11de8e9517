"""Checkout state handed explicitly to the payment handlers.

``CartSession`` is the buyer's cart for the page lifetime, ``PaymentSession``
lives for one checkout attempt, and ``CheckoutCompletion`` is the single
success callback both payment handlers share.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional
import structlog
from storefront.checkout.outcome import PaymentMethod
from storefront.pricing import compute_totals
from storefront.schemas import CartItem, Coupon

log = structlog.get_logger().bind(component="checkout")

CONFIRMATION_PATH = "/account/orders?success=true"


class CartSession:
    def __init__(self, items: Optional[List[CartItem]] = None):
        self._items: List[CartItem] = list(items or [])

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def add(self, item: CartItem):
        for index, existing in enumerate(self._items):
            if existing.product_id == item.product_id and existing.customization == item.customization:
                self._items[index] = existing.model_copy(
                    update={"quantity": existing.quantity + item.quantity}
                )
                return
        self._items.append(item)

    def clear(self):
        self._items = []

    def is_empty(self) -> bool:
        return not self._items

    def total(self, coupon: Optional[Coupon] = None) -> Decimal:
        return compute_totals(self._items, coupon).total


@dataclass
class PaymentSession:
    total: Decimal
    currency: str
    items: List[CartItem]
    shipping_address_id: str
    coupon_applied: Optional[Coupon] = None
    provider_in_flight: Optional[PaymentMethod] = None
    last_error: Optional[str] = None
    payer_notices: List[str] = field(default_factory=list)

    @classmethod
    def start(cls, cart: CartSession, shipping_address_id: str, currency: str = "eur",
              coupon: Optional[Coupon] = None) -> "PaymentSession":
        if cart.is_empty():
            raise ValueError("Cart is empty")
        return cls(
            total=cart.total(coupon),
            currency=currency,
            items=cart.items,
            shipping_address_id=shipping_address_id,
            coupon_applied=coupon,
        )

    def items_payload(self) -> list:
        return [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in self.items]

    def coupon_payload(self) -> Optional[dict]:
        if self.coupon_applied is None:
            return None
        return self.coupon_applied.model_dump(mode="json", by_alias=True, exclude_none=True)


class CheckoutCompletion:
    """The page's ``on_success``: clear the cart and go to the confirmation view, once."""

    def __init__(self, cart: CartSession, navigate: Callable[[str], None],
                 confirmation_path: str = CONFIRMATION_PATH):
        self.cart = cart
        self.navigate = navigate
        self.confirmation_path = confirmation_path
        self.completed = False

    def __call__(self):
        if self.completed:
            log.warning("checkout_already_completed")
            return
        self.completed = True
        self.cart.clear()
        self.navigate(self.confirmation_path)


class OnceCallback:
    """Fires the wrapped callback at most once; ``revoke`` disarms it."""

    def __init__(self, callback: Callable[[], None], label: str = "on_success"):
        self._callback = callback
        self.label = label
        self.fired = False
        self.revoked = False

    def __call__(self) -> bool:
        if self.revoked:
            log.warning("callback_revoked", callback=self.label)
            return False
        if self.fired:
            log.warning("callback_already_fired", callback=self.label)
            return False
        self.fired = True
        self._callback()
        return True

    def revoke(self):
        self.revoked = True
