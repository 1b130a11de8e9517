class StorefrontError(Exception):
    """Base for errors rendered as ``{"error": message}`` by the API."""

    status_code = 400
    code = None
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class OrderError(StorefrontError):
    default_message = "Failed to update order"


class OrderNotFound(OrderError):
    status_code = 404
    default_message = "Order not found"


class OrderForbidden(OrderError):
    status_code = 403
    default_message = "You don't have permission to access this order"


class OrderTerminal(OrderError):
    status_code = 409
    default_message = "Cancelled orders cannot change status"


class OrderNotCancellable(OrderError):
    default_message = "This order cannot be cancelled"


class MissingPaymentInformation(OrderError):
    default_message = "Cannot process refund: Missing payment information"


class PaymentIntentMismatch(OrderError):
    default_message = "Payment intent does not match this order"


class AlreadyRefunded(OrderError):
    status_code = 409
    default_message = "Order has already been refunded"


class RefundFailed(OrderError):
    status_code = 502
    default_message = "Failed to process refund with payment provider"


class ShippingNotReady(OrderError):
    default_message = "Order must be shipped and have a tracking code"


class CustomerEmailMissing(OrderError):
    status_code = 404
    default_message = "Customer email not found"


class NotificationFailed(OrderError):
    status_code = 502
    default_message = "Failed to send shipping notification"


class PaymentError(StorefrontError):
    status_code = 502
    default_message = "Payment failed"


class ProviderUnavailable(PaymentError):
    status_code = 503
    default_message = "Payment provider is not configured"


class CreateOrderFailed(PaymentError):
    default_message = "Failed to create order"


class CaptureFailed(PaymentError):
    default_message = "Failed to capture payment"


class OrderAlreadyCaptured(PaymentError):
    status_code = 409
    code = "ORDER_ALREADY_CAPTURED"
    default_message = "Order already captured"


class PaymentNotCompleted(PaymentError):
    status_code = 400
    default_message = "Payment not completed"


class UnknownCheckout(PaymentError):
    status_code = 404
    default_message = "Checkout not found"
