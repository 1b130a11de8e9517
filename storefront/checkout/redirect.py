"""Redirect-button payments: create order, buyer approval, server-side capture.

The provider's button widget drives the flow by calling back into the
handler: ``create_order`` when the buyer clicks, ``on_approve`` after approval
on the provider side, ``on_error`` / ``on_cancel`` otherwise. Only
``on_approve`` moves money, and only for the order id ``create_order`` returned.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol
import structlog
from storefront.checkout.api import ApiError, BackendClient
from storefront.checkout.outcome import FailureKind, PaymentMethod, PaymentOutcome
from storefront.checkout.session import PaymentSession

log = structlog.get_logger().bind(component="redirect_payment")

SCRIPT_TIMEOUT = 1.0
SCRIPT_POLL_INTERVAL = 0.05

CONFIGURATION_MESSAGE = (
    "PayPal is not properly configured. Please contact support or try using card payment instead."
)
SCRIPT_MESSAGE = "PayPal script failed to load. Please refresh the page."
CREATE_ORDER_MESSAGE = "Failed to create order"
ALREADY_CAPTURED_MESSAGE = "This order has already been processed."
CANCELLED_MESSAGE = "Payment cancelled"
INACTIVE_MESSAGE = "Payment method is no longer active"

# name -> (kind, message) for errors raised by the button widget
WIDGET_ERRORS = {
    "INVALID_CLIENT": (FailureKind.CONFIGURATION, "PayPal configuration error. Please contact support."),
    "ORDER_ALREADY_CAPTURED": (FailureKind.CONFLICT, ALREADY_CAPTURED_MESSAGE),
    "INVALID_REQUEST": (FailureKind.INVALID_REQUEST, "Invalid payment request. Please try again."),
    "AUTHENTICATION_FAILED": (
        FailureKind.AUTHENTICATION, "PayPal authentication failed. Please refresh and try again."
    ),
    "NETWORK_ERROR": (
        FailureKind.NETWORK, "Network error. Please check your connection and try again."
    ),
}


class WidgetStatus(str, Enum):
    IDLE = "idle"
    MISCONFIGURED = "misconfigured"
    SCRIPT_FAILED = "script_failed"
    READY = "ready"


class ScriptLoader(Protocol):
    def is_loaded(self) -> bool: ...

    def is_rejected(self) -> bool: ...


class ButtonWidget(Protocol):
    async def render(
        self,
        create_order: Callable[[], Awaitable[str]],
        on_approve: Callable[[Any], Awaitable[PaymentOutcome]],
        on_error: Callable[[Any], PaymentOutcome],
        on_cancel: Callable[[], PaymentOutcome],
    ) -> None: ...


class CreateOrderError(Exception):
    def __init__(self, message: str, kind: FailureKind = FailureKind.UNKNOWN):
        super().__init__(message)
        self.message = message
        self.kind = kind


def _error_name(err) -> Optional[str]:
    if isinstance(err, dict):
        return err.get("name")
    return getattr(err, "name", None)


def _error_text(err) -> str:
    if isinstance(err, dict):
        return str(err.get("message") or "")
    return str(getattr(err, "message", None) or err or "")


class RedirectPaymentHandler:
    method = PaymentMethod.REDIRECT

    def __init__(self, api: BackendClient, session: PaymentSession, client_id: Optional[str],
                 script: ScriptLoader, widget: ButtonWidget, on_success: Callable[[], None],
                 script_timeout: float = SCRIPT_TIMEOUT, poll_interval: float = SCRIPT_POLL_INTERVAL):
        self.api = api
        self.session = session
        self.client_id = client_id
        self.script = script
        self.widget = widget
        self.on_success = on_success
        self.script_timeout = script_timeout
        self.poll_interval = poll_interval
        self.status = WidgetStatus.IDLE
        self.order_id: Optional[str] = None
        self.outcome: Optional[PaymentOutcome] = None
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.is_loading = False
        self.mounted = True

    def unmount(self):
        self.mounted = False
        revoke = getattr(self.on_success, "revoke", None)
        if revoke is not None:
            revoke()

    async def prepare(self) -> Optional[PaymentOutcome]:
        """Check configuration and wait for the provider script.

        Returns a failure outcome when the widget must not be rendered.
        """
        if not self.client_id:
            self.status = WidgetStatus.MISCONFIGURED
            log.error("redirect_client_id_missing")
            return self._fail(FailureKind.CONFIGURATION, CONFIGURATION_MESSAGE)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.script_timeout
        while not self.script.is_loaded():
            if self.script.is_rejected() or loop.time() >= deadline:
                self.status = WidgetStatus.SCRIPT_FAILED
                log.error("redirect_script_unavailable", rejected=self.script.is_rejected())
                return self._fail(FailureKind.SCRIPT_LOAD, SCRIPT_MESSAGE)
            await asyncio.sleep(self.poll_interval)

        self.status = WidgetStatus.READY
        return None

    async def create_payment(self) -> PaymentOutcome:
        if self.status is not WidgetStatus.READY:
            failure = await self.prepare()
            if failure is not None:
                return failure
        self.outcome = None
        try:
            await self.widget.render(
                create_order=self.create_order,
                on_approve=self.on_approve,
                on_error=self.on_error,
                on_cancel=self.on_cancel,
            )
        except Exception as e:
            return self.on_error(e)
        if self.outcome is None:
            return PaymentOutcome.failure(FailureKind.UNKNOWN, "Payment not completed")
        return self.outcome

    async def create_order(self) -> str:
        if not self.mounted:
            raise CreateOrderError(INACTIVE_MESSAGE, FailureKind.PRECONDITION)
        if self.status is not WidgetStatus.READY:
            raise CreateOrderError(CONFIGURATION_MESSAGE, FailureKind.CONFIGURATION)
        self.is_loading = True
        self.error = None
        self.notice = None
        self.session.provider_in_flight = self.method
        try:
            result = await self.api.post(
                "/payment/create-order",
                json={
                    "items": self.session.items_payload(),
                    "addressId": self.session.shipping_address_id,
                    "coupon": self.session.coupon_payload(),
                },
                fallback=CREATE_ORDER_MESSAGE,
            )
        except ApiError as e:
            kind = FailureKind.NETWORK if e.status_code is None else FailureKind.UNKNOWN
            self._fail(kind, e.message or CREATE_ORDER_MESSAGE)
            raise CreateOrderError(self.error, kind) from e
        finally:
            self.is_loading = False

        order_id = result.get("orderID")
        if not order_id:
            log.error("redirect_order_id_missing", response=result)
            self._fail(FailureKind.UNKNOWN, CREATE_ORDER_MESSAGE)
            raise CreateOrderError(CREATE_ORDER_MESSAGE)
        self.order_id = order_id
        log.info("redirect_order_created", provider_order_id=order_id)
        return order_id

    async def on_approve(self, data) -> PaymentOutcome:
        approved_id = data.get("orderID") if isinstance(data, dict) else getattr(data, "order_id", None)

        if not self.mounted:
            log.warning("redirect_approval_after_unmount", approved=approved_id)
            return PaymentOutcome.failure(FailureKind.PRECONDITION, INACTIVE_MESSAGE)
        if self.outcome is not None and self.outcome.succeeded:
            return self._fail(FailureKind.CONFLICT, ALREADY_CAPTURED_MESSAGE, keep_outcome=True)
        if self.is_loading:
            return self._fail(FailureKind.CONFLICT, "A payment is already being processed",
                              keep_outcome=True)
        if self.order_id is None or approved_id != self.order_id:
            log.error("redirect_approval_mismatch", approved=approved_id, created=self.order_id)
            return self._fail(FailureKind.INVALID_REQUEST, "Invalid payment request. Please try again.")

        self.is_loading = True
        self.error = None
        try:
            result = await self.api.post(
                "/payment/capture-order",
                json={"orderID": self.order_id},
                fallback="Failed to capture payment",
            )
        except ApiError as e:
            if e.status_code == 409 or e.code == "ORDER_ALREADY_CAPTURED":
                return self._fail(FailureKind.CONFLICT, ALREADY_CAPTURED_MESSAGE)
            kind = FailureKind.NETWORK if e.status_code is None else FailureKind.DECLINE
            return self._fail(kind, e.message)
        finally:
            self.is_loading = False

        if not result.get("success"):
            log.warning("redirect_capture_not_completed", provider_order_id=self.order_id,
                        status=result.get("status"))
            return self._fail(FailureKind.DECLINE, "Payment not completed")

        self.outcome = PaymentOutcome.success()
        self.notice = self.outcome.message
        self.session.provider_in_flight = None
        log.info("redirect_payment_captured", provider_order_id=self.order_id,
                 transaction_id=result.get("transactionId"))
        if self.mounted:
            self.on_success()
        return self.outcome

    def on_error(self, err) -> PaymentOutcome:
        if isinstance(err, CreateOrderError):
            # create_order already reported the specific message
            return self.outcome or self._fail(err.kind, err.message)

        name = _error_name(err)
        text = _error_text(err)
        log.error("redirect_widget_error", name=name, error=text,
                  script_loaded=self.script.is_loaded())
        if name in WIDGET_ERRORS:
            kind, message = WIDGET_ERRORS[name]
        elif "Failed to authenticate" in text:
            kind, message = FailureKind.AUTHENTICATION, (
                "PayPal authentication failed. Please refresh the page and try again."
            )
        elif "script" in text.lower():
            kind, message = FailureKind.SCRIPT_LOAD, (
                "PayPal script loading error. Please refresh the page and try again."
            )
        else:
            kind, message = FailureKind.UNKNOWN, "PayPal payment failed. Please try again."
        return self._fail(kind, message)

    def on_cancel(self) -> PaymentOutcome:
        log.info("redirect_payment_cancelled", provider_order_id=self.order_id)
        self.error = None
        self.notice = CANCELLED_MESSAGE
        self.session.provider_in_flight = None
        self.outcome = PaymentOutcome.failure(FailureKind.CANCELLED, CANCELLED_MESSAGE)
        return self.outcome

    def _fail(self, kind: FailureKind, message: str, keep_outcome: bool = False) -> PaymentOutcome:
        outcome = PaymentOutcome.failure(kind, message)
        self.error = message
        self.session.last_error = message
        self.session.provider_in_flight = None
        if not keep_outcome:
            self.outcome = outcome
        return outcome
