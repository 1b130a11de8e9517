from typing import Callable, Dict, List, Optional
import structlog
from storefront.checkout.outcome import FailureKind, PaymentHandler, PaymentMethod, PaymentOutcome
from storefront.checkout.session import OnceCallback

log = structlog.get_logger().bind(component="payment_selector")

HandlerFactory = Callable[[OnceCallback], PaymentHandler]


class PaymentMethodSelector:
    """Keeps exactly one payment handler mounted.

    Card is only offered when the checkout has a client secret. Every mount
    gets a fresh success gate; unmounting revokes it, so a handler that was
    switched away from can never complete the checkout.
    """

    def __init__(self, client_secret: Optional[str], factories: Dict[PaymentMethod, HandlerFactory],
                 on_success: Callable[[], None]):
        self.client_secret = client_secret
        self.factories = factories
        self.on_success = on_success
        self.selected: Optional[PaymentMethod] = None
        self.active: Optional[PaymentHandler] = None
        self._gate: Optional[OnceCallback] = None
        self._succeeded = False
        self.select(PaymentMethod.CARD if client_secret else PaymentMethod.REDIRECT)

    @property
    def available_methods(self) -> List[PaymentMethod]:
        methods = [PaymentMethod.CARD] if self.client_secret else []
        return methods + [PaymentMethod.REDIRECT]

    def select(self, method: PaymentMethod) -> PaymentHandler:
        method = PaymentMethod(method)
        if method not in self.available_methods:
            raise ValueError(f"Payment method {method.value} is not available")
        if method is self.selected and self.active is not None:
            return self.active

        self._unmount()
        self._gate = OnceCallback(self._complete, label=f"{method.value}_success")
        self.active = self.factories[method](self._gate)
        self.selected = method
        log.info("payment_method_selected", method=method.value)
        return self.active

    async def pay(self) -> PaymentOutcome:
        if self._succeeded:
            return PaymentOutcome.failure(FailureKind.CONFLICT, "This order has already been processed.")
        return await self.active.create_payment()

    def close(self):
        self._unmount()
        self.selected = None

    def _unmount(self):
        if self.active is not None:
            self.active.unmount()
        if self._gate is not None:
            self._gate.revoke()
        self.active = None
        self._gate = None

    def _complete(self):
        if self._succeeded:
            log.warning("checkout_success_repeated")
            return
        self._succeeded = True
        self.on_success()
