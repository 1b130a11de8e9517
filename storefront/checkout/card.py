"""Card payments against a previously created intent.

The hosted card element and the device wallet sheet live in the provider SDK;
``CardProvider`` is the slice of that SDK the handler needs. Results follow the
SDK shape: either an ``error`` or a ``payment_intent`` with a status.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol
import structlog
from storefront.checkout.outcome import FailureKind, PaymentMethod, PaymentOutcome
from storefront.pricing import to_minor

log = structlog.get_logger().bind(component="card_payment")

SETTLED_STATUSES = ("succeeded", "processing")
REQUIRES_ACTION = "requires_action"
AUTHENTICATION_CODES = ("authentication_required", "payment_intent_authentication_failure")


@dataclass(frozen=True)
class ProviderError:
    type: str
    message: Optional[str] = None
    code: Optional[str] = None
    decline_code: Optional[str] = None


@dataclass(frozen=True)
class IntentSnapshot:
    id: str
    status: str


@dataclass(frozen=True)
class ConfirmResult:
    error: Optional[ProviderError] = None
    payment_intent: Optional[IntentSnapshot] = None


@dataclass(frozen=True)
class PaymentRequest:
    country: str
    currency: str
    amount: int
    label: str
    request_payer_name: bool = True
    request_payer_email: bool = True


class CardProvider(Protocol):
    async def confirm_payment(self) -> ConfirmResult: ...

    async def confirm_card_payment(self, client_secret: str, payment_method: Optional[str] = None,
                                   handle_actions: bool = True) -> ConfirmResult: ...

    async def can_make_payment(self, request: PaymentRequest) -> bool: ...


class WalletCompletionError(RuntimeError):
    pass


class WalletEvent:
    """A wallet payment method plus the sheet's completion callback.

    The sheet must be told ``success`` or ``fail`` exactly once.
    """

    OUTCOMES = ("success", "fail")

    def __init__(self, payment_method_id: str, complete: Callable[[str], None],
                 payer_email: Optional[str] = None, payer_name: Optional[str] = None):
        self.payment_method_id = payment_method_id
        self.payer_email = payer_email
        self.payer_name = payer_name
        self._complete = complete
        self.status: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is not None

    def complete(self, status: str):
        if status not in self.OUTCOMES:
            raise ValueError(f"Unknown wallet completion status: {status}")
        if self.completed:
            raise WalletCompletionError(f"Wallet event already completed with {self.status!r}")
        self.status = status
        self._complete(status)


def classify(error: ProviderError) -> PaymentOutcome:
    message = error.message or "Payment failed"
    if error.type == "validation_error":
        kind = FailureKind.VALIDATION
    elif error.type == "card_error":
        kind = FailureKind.AUTHENTICATION if error.code in AUTHENTICATION_CODES else FailureKind.DECLINE
    elif error.type == "api_connection_error":
        kind = FailureKind.NETWORK
    elif error.type == "invalid_request_error":
        kind = FailureKind.INVALID_REQUEST
    else:
        kind = FailureKind.UNKNOWN
    return PaymentOutcome.failure(kind, message)


class CardPaymentHandler:
    method = PaymentMethod.CARD

    def __init__(self, provider: CardProvider, client_secret: str, total: Decimal,
                 on_success: Callable[[], None], currency: str = "eur", country: str = "IT",
                 label: str = "Order"):
        if not client_secret:
            raise ValueError("Card payments need a client secret")
        self.provider = provider
        self.client_secret = client_secret
        self.total = total
        self.currency = currency
        self.country = country
        self.label = label
        self.on_success = on_success
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.is_loading = False
        self.wallet_available = False
        self.mounted = True

    def unmount(self):
        self.mounted = False
        revoke = getattr(self.on_success, "revoke", None)
        if revoke is not None:
            revoke()

    async def create_payment(self) -> PaymentOutcome:
        return await self.submit_card_payment()

    async def setup_wallet(self) -> bool:
        request = PaymentRequest(
            country=self.country,
            currency=self.currency,
            amount=to_minor(Decimal(self.total)),
            label=self.label,
        )
        try:
            self.wallet_available = bool(await self.provider.can_make_payment(request))
        except Exception as e:
            log.warning("wallet_check_failed", error=str(e))
            self.wallet_available = False
        return self.wallet_available

    async def submit_card_payment(self) -> PaymentOutcome:
        busy = self._begin()
        if busy is not None:
            return busy
        try:
            result = await self.provider.confirm_payment()
            outcome = await self._settle(result)
        except Exception as e:
            log.error("card_confirm_failed", error=repr(e))
            outcome = PaymentOutcome.failure(FailureKind.UNKNOWN, "Payment failed")
        finally:
            self.is_loading = False
        return self._finish(outcome)

    async def submit_wallet_payment(self, event: WalletEvent) -> PaymentOutcome:
        busy = self._begin()
        if busy is not None:
            event.complete("fail")
            return busy
        outcome = None
        try:
            result = await self.provider.confirm_card_payment(
                self.client_secret, payment_method=event.payment_method_id, handle_actions=False
            )
            outcome = await self._settle(result)
        except Exception as e:
            log.error("wallet_confirm_failed", error=repr(e))
            outcome = PaymentOutcome.failure(FailureKind.UNKNOWN, "Payment failed")
        finally:
            self.is_loading = False
            # The sheet hears the final outcome before anyone else does
            if not event.completed:
                event.complete("success" if outcome is not None and outcome.succeeded else "fail")
        return self._finish(outcome)

    def _begin(self) -> Optional[PaymentOutcome]:
        if not self.mounted:
            return PaymentOutcome.failure(FailureKind.PRECONDITION, "Payment method is no longer active")
        if self.is_loading:
            return PaymentOutcome.failure(FailureKind.CONFLICT, "A payment is already being processed")
        self.is_loading = True
        self.error = None
        self.notice = None
        return None

    async def _settle(self, result: ConfirmResult) -> PaymentOutcome:
        if result.error is not None:
            log.warning("card_payment_error", type=result.error.type, code=result.error.code,
                        decline_code=result.error.decline_code)
            return classify(result.error)

        intent = result.payment_intent
        if intent is not None and intent.status == REQUIRES_ACTION:
            log.info("card_payment_requires_action", payment_intent_id=intent.id)
            second = await self.provider.confirm_card_payment(self.client_secret)
            if second.error is not None:
                log.warning("card_action_failed", type=second.error.type, code=second.error.code)
                return classify(second.error)
            intent = second.payment_intent

        if intent is not None and intent.status in SETTLED_STATUSES:
            if intent.status == "processing":
                return PaymentOutcome.success("Your payment is processing!")
            return PaymentOutcome.success()
        return PaymentOutcome.failure(FailureKind.UNKNOWN, "Something went wrong with the payment")

    def _finish(self, outcome: PaymentOutcome) -> PaymentOutcome:
        if outcome.succeeded:
            self.notice = outcome.message
            if self.mounted:
                self.on_success()
        elif outcome.kind not in (FailureKind.CONFLICT, FailureKind.PRECONDITION):
            self.error = outcome.message
        return outcome
