from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol


class PaymentMethod(str, Enum):
    CARD = "card"
    REDIRECT = "redirect"


class FailureKind(str, Enum):
    CONFIGURATION = "configuration"
    SCRIPT_LOAD = "script_load"
    VALIDATION = "validation"
    DECLINE = "decline"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    INVALID_REQUEST = "invalid_request"
    CONFLICT = "conflict"
    PRECONDITION = "precondition"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


# Kinds the buyer can fix by retrying the same method without reloading
RETRYABLE = {
    FailureKind.VALIDATION,
    FailureKind.DECLINE,
    FailureKind.AUTHENTICATION,
    FailureKind.NETWORK,
    FailureKind.INVALID_REQUEST,
    FailureKind.CANCELLED,
    FailureKind.UNKNOWN,
}


@dataclass(frozen=True)
class PaymentOutcome:
    succeeded: bool
    kind: Optional[FailureKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, message: str = "Payment successful!") -> "PaymentOutcome":
        return cls(True, None, message)

    @classmethod
    def failure(cls, kind: FailureKind, message: str) -> "PaymentOutcome":
        return cls(False, kind, message)

    @property
    def retryable(self) -> bool:
        return not self.succeeded and self.kind in RETRYABLE

    @property
    def needs_reload(self) -> bool:
        return self.kind is FailureKind.SCRIPT_LOAD


class PaymentHandler(Protocol):
    """Contract shared by the card and redirect handlers."""

    method: PaymentMethod

    async def create_payment(self) -> PaymentOutcome: ...

    def unmount(self) -> None: ...
