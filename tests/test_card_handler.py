import asyncio
from decimal import Decimal
import pytest
from storefront.checkout.card import (
    CardPaymentHandler,
    ConfirmResult,
    IntentSnapshot,
    ProviderError,
    WalletCompletionError,
    WalletEvent,
    classify,
)
from storefront.checkout.outcome import FailureKind


def intent(status, id="pi_123"):
    return ConfirmResult(payment_intent=IntentSnapshot(id=id, status=status))


def declined(type="card_error", code="card_declined", message="Your card was declined."):
    return ConfirmResult(error=ProviderError(type=type, code=code, message=message))


class FakeCardProvider:
    """Replays queued confirm results and records every call."""

    def __init__(self, *results, wallet=True):
        self.results = list(results)
        self.calls = []
        self.wallet = wallet
        self.requests = []
        self.gate = None

    async def _next(self):
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def confirm_payment(self):
        self.calls.append(("confirm_payment",))
        return await self._next()

    async def confirm_card_payment(self, client_secret, payment_method=None, handle_actions=True):
        self.calls.append(("confirm_card_payment", client_secret, payment_method, handle_actions))
        return await self._next()

    async def can_make_payment(self, request):
        self.requests.append(request)
        if isinstance(self.wallet, Exception):
            raise self.wallet
        return self.wallet


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self):
        self.events.append("on_success")


def handler_for(provider, on_success=None):
    return CardPaymentHandler(provider, "pi_123_secret_abc", Decimal("49.50"), on_success or Recorder())


def test_requires_client_secret():
    with pytest.raises(ValueError):
        CardPaymentHandler(FakeCardProvider(), "", Decimal("10"), Recorder())


@pytest.mark.asyncio
async def test_card_success_fires_on_success_once():
    on_success = Recorder()
    handler = handler_for(FakeCardProvider(intent("succeeded")), on_success)

    outcome = await handler.create_payment()

    assert outcome.succeeded
    assert outcome.message == "Payment successful!"
    assert handler.notice == "Payment successful!"
    assert on_success.events == ["on_success"]


@pytest.mark.asyncio
async def test_processing_counts_as_success():
    handler = handler_for(FakeCardProvider(intent("processing")))

    outcome = await handler.submit_card_payment()

    assert outcome.succeeded
    assert outcome.message == "Your payment is processing!"


@pytest.mark.asyncio
async def test_unexpected_status():
    on_success = Recorder()
    handler = handler_for(FakeCardProvider(intent("requires_payment_method")), on_success)

    outcome = await handler.submit_card_payment()

    assert not outcome.succeeded
    assert outcome.kind is FailureKind.UNKNOWN
    assert handler.error == "Something went wrong with the payment"
    assert on_success.events == []


@pytest.mark.asyncio
async def test_requires_action_runs_second_confirmation():
    provider = FakeCardProvider(intent("requires_action"), intent("succeeded"))
    on_success = Recorder()
    handler = handler_for(provider, on_success)

    outcome = await handler.submit_card_payment()

    assert outcome.succeeded
    assert provider.calls[1] == ("confirm_card_payment", "pi_123_secret_abc", None, True)
    assert on_success.events == ["on_success"]


@pytest.mark.asyncio
async def test_requires_action_authentication_failure():
    provider = FakeCardProvider(
        intent("requires_action"),
        declined(code="payment_intent_authentication_failure", message="Authentication failed."),
    )
    on_success = Recorder()
    handler = handler_for(provider, on_success)

    outcome = await handler.submit_card_payment()

    assert outcome.kind is FailureKind.AUTHENTICATION
    assert outcome.retryable
    assert on_success.events == []


@pytest.mark.parametrize("error,kind", [
    (ProviderError(type="validation_error", message="Your card number is incomplete."), FailureKind.VALIDATION),
    (ProviderError(type="card_error", code="card_declined"), FailureKind.DECLINE),
    (ProviderError(type="card_error", code="authentication_required"), FailureKind.AUTHENTICATION),
    (ProviderError(type="api_connection_error"), FailureKind.NETWORK),
    (ProviderError(type="invalid_request_error"), FailureKind.INVALID_REQUEST),
    (ProviderError(type="rate_limit_error"), FailureKind.UNKNOWN),
])
def test_classify(error, kind):
    assert classify(error).kind is kind


@pytest.mark.asyncio
async def test_decline_keeps_form_usable():
    provider = FakeCardProvider(declined(), intent("succeeded"))
    on_success = Recorder()
    handler = handler_for(provider, on_success)

    first = await handler.submit_card_payment()
    second = await handler.submit_card_payment()

    assert first.kind is FailureKind.DECLINE
    assert first.message == "Your card was declined."
    assert second.succeeded
    assert handler.error is None
    assert on_success.events == ["on_success"]


@pytest.mark.asyncio
async def test_provider_exception_is_converted():
    handler = handler_for(FakeCardProvider(RuntimeError("sdk exploded")))

    outcome = await handler.submit_card_payment()

    assert outcome.kind is FailureKind.UNKNOWN
    assert outcome.message == "Payment failed"
    assert handler.is_loading is False


@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_rejected():
    provider = FakeCardProvider(intent("succeeded"), intent("succeeded"))
    provider.gate = asyncio.Event()
    on_success = Recorder()
    handler = handler_for(provider, on_success)

    first = asyncio.create_task(handler.submit_card_payment())
    await asyncio.sleep(0)
    second = await handler.submit_card_payment()
    provider.gate.set()
    first = await first

    assert second.kind is FailureKind.CONFLICT
    assert first.succeeded
    assert len(provider.calls) == 1
    assert on_success.events == ["on_success"]


@pytest.mark.asyncio
async def test_unmounted_handler_does_nothing():
    provider = FakeCardProvider(intent("succeeded"))
    on_success = Recorder()
    handler = handler_for(provider, on_success)
    handler.unmount()

    outcome = await handler.submit_card_payment()

    assert outcome.kind is FailureKind.PRECONDITION
    assert provider.calls == []
    assert on_success.events == []


@pytest.mark.asyncio
async def test_unmount_during_confirmation_suppresses_on_success():
    provider = FakeCardProvider(intent("succeeded"))
    provider.gate = asyncio.Event()
    on_success = Recorder()
    handler = handler_for(provider, on_success)

    pending = asyncio.create_task(handler.submit_card_payment())
    await asyncio.sleep(0)
    handler.unmount()
    provider.gate.set()
    outcome = await pending

    assert outcome.succeeded
    assert on_success.events == []


@pytest.mark.asyncio
async def test_setup_wallet_uses_minor_units():
    provider = FakeCardProvider()
    handler = handler_for(provider)

    assert await handler.setup_wallet() is True
    request = provider.requests[0]
    assert request.amount == 4950
    assert request.currency == "eur"
    assert request.country == "IT"


@pytest.mark.asyncio
async def test_setup_wallet_unavailable_on_error():
    handler = handler_for(FakeCardProvider(wallet=RuntimeError("no wallet")))
    assert await handler.setup_wallet() is False


class Sheet:
    def __init__(self, log):
        self.log = log

    def __call__(self, status):
        self.log.append(f"complete:{status}")


@pytest.mark.asyncio
async def test_wallet_completes_success_before_on_success():
    log = []
    provider = FakeCardProvider(intent("succeeded"))
    handler = CardPaymentHandler(provider, "secret", Decimal("10"), lambda: log.append("on_success"))
    event = WalletEvent("pm_wallet", Sheet(log))

    outcome = await handler.submit_wallet_payment(event)

    assert outcome.succeeded
    assert log == ["complete:success", "on_success"]
    assert provider.calls[0] == ("confirm_card_payment", "secret", "pm_wallet", False)


@pytest.mark.asyncio
async def test_wallet_failure_completes_fail_once():
    log = []
    handler = CardPaymentHandler(FakeCardProvider(declined()), "secret", Decimal("10"),
                                 lambda: log.append("on_success"))
    event = WalletEvent("pm_wallet", Sheet(log))

    outcome = await handler.submit_wallet_payment(event)

    assert outcome.kind is FailureKind.DECLINE
    assert log == ["complete:fail"]


@pytest.mark.asyncio
async def test_wallet_completion_waits_for_authentication():
    log = []
    provider = FakeCardProvider(intent("requires_action"), intent("succeeded"))
    handler = CardPaymentHandler(provider, "secret", Decimal("10"), lambda: log.append("on_success"))
    event = WalletEvent("pm_wallet", Sheet(log))

    outcome = await handler.submit_wallet_payment(event)

    assert outcome.succeeded
    assert len(provider.calls) == 2
    assert log == ["complete:success", "on_success"]


@pytest.mark.asyncio
async def test_wallet_exception_completes_fail():
    log = []
    handler = CardPaymentHandler(FakeCardProvider(RuntimeError("boom")), "secret", Decimal("10"),
                                 lambda: log.append("on_success"))
    event = WalletEvent("pm_wallet", Sheet(log))

    outcome = await handler.submit_wallet_payment(event)

    assert not outcome.succeeded
    assert log == ["complete:fail"]


@pytest.mark.asyncio
async def test_wallet_on_busy_handler_fails_the_sheet():
    log = []
    provider = FakeCardProvider(intent("succeeded"))
    provider.gate = asyncio.Event()
    handler = CardPaymentHandler(provider, "secret", Decimal("10"), lambda: log.append("on_success"))

    card = asyncio.create_task(handler.submit_card_payment())
    await asyncio.sleep(0)
    outcome = await handler.submit_wallet_payment(WalletEvent("pm_wallet", Sheet(log)))
    provider.gate.set()
    await card

    assert outcome.kind is FailureKind.CONFLICT
    assert log == ["complete:fail", "on_success"]


def test_wallet_event_completes_exactly_once():
    log = []
    event = WalletEvent("pm_wallet", Sheet(log))
    event.complete("success")

    with pytest.raises(WalletCompletionError):
        event.complete("fail")
    with pytest.raises(ValueError):
        WalletEvent("pm", Sheet(log)).complete("maybe")
    assert log == ["complete:success"]
