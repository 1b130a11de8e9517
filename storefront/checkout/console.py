"""Admin order console.

Holds the rendered order list and calls the order endpoints. Preconditions
are checked locally before any request. Status and tracking edits are applied
to the local copy straight away, then overwritten by the server's order or
rolled back when the request fails.
"""
from contextlib import asynccontextmanager
from typing import List, Optional
import structlog
from storefront.checkout.api import ApiError, BackendClient
from storefront.schemas import OrderOut, OrderStatus

log = structlog.get_logger().bind(component="order_console")


class ConsoleError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PreconditionError(ConsoleError):
    pass


class ConflictError(ConsoleError):
    pass


class OrderBusyError(ConflictError):
    pass


def _from_api(e: ApiError) -> ConsoleError:
    if e.status_code == 409:
        return ConflictError(e.message)
    return ConsoleError(e.message)


class OrderConsole:
    def __init__(self, api: BackendClient):
        self.api = api
        self.orders: List[OrderOut] = []
        self._busy = set()

    async def load(self) -> List[OrderOut]:
        try:
            data = await self.api.get("/orders", fallback="Failed to fetch orders")
        except ApiError as e:
            raise _from_api(e) from e
        self.orders = [OrderOut.model_validate(order) for order in data.get("orders", [])]
        return self.orders

    def find(self, order_id: str) -> OrderOut:
        for order in self.orders:
            if order.id == order_id:
                return order
        raise ConsoleError("Order not found")

    def is_busy(self, order_id: str) -> bool:
        return order_id in self._busy

    async def change_status(self, order_id: str, new_status) -> OrderOut:
        order = self.find(order_id)
        status = OrderStatus(new_status)
        if order.status is OrderStatus.CANCELLED:
            raise PreconditionError("Cancelled orders cannot change status")
        return await self._patch(
            order,
            {"status": status.value},
            optimistic={"status": status},
            fallback="Failed to update order status",
        )

    async def update_tracking_code(self, order_id: str, tracking_code: str) -> OrderOut:
        order = self.find(order_id)
        code = (tracking_code or "").strip() or None
        return await self._patch(
            order,
            {"trackingCode": code or ""},
            optimistic={"tracking_code": code},
            fallback="Failed to update tracking code",
        )

    async def refund(self, order_id: str) -> OrderOut:
        order = self.find(order_id)
        if not order.payment_intent_id:
            raise PreconditionError("Cannot process refund: Missing payment information")
        if order.refunded:
            raise ConflictError("Order has already been refunded")

        async with self._mutating(order_id):
            try:
                data = await self.api.post(
                    f"/orders/{order_id}/refund",
                    json={"paymentIntentId": order.payment_intent_id},
                    fallback="Failed to process refund",
                )
            except ApiError as e:
                log.error("refund_failed", order_id=order_id, error=e.message)
                raise _from_api(e) from e
        updated = self._replace(OrderOut.model_validate(data["order"]))
        log.info("refund_processed", order_id=order_id)
        return updated

    async def send_shipping_notification(self, order_id: str) -> str:
        order = self.find(order_id)
        if order.status is not OrderStatus.SHIPPED or not order.tracking_code:
            raise PreconditionError(
                "Order must be shipped and have a tracking code to send notification"
            )

        async with self._mutating(order_id):
            try:
                data = await self.api.post(
                    f"/orders/{order_id}/notify-shipping",
                    fallback="Failed to send shipping notification",
                )
            except ApiError as e:
                raise _from_api(e) from e
        log.info("shipping_notification_sent", order_id=order_id, sent_to=data.get("sentTo"))
        return data["sentTo"]

    async def send_invoice(self, order_id: str) -> str:
        order = self.find(order_id)
        if not order.customer_email:
            raise PreconditionError("Customer email not found")

        async with self._mutating(order_id):
            try:
                data = await self.api.post(
                    f"/orders/{order_id}/send-invoice",
                    fallback="Failed to send invoice",
                )
            except ApiError as e:
                raise _from_api(e) from e
        log.info("invoice_sent", order_id=order_id, invoice_number=data.get("invoiceNumber"))
        return data["invoiceNumber"]

    async def _patch(self, order: OrderOut, body: dict, optimistic: dict, fallback: str) -> OrderOut:
        async with self._mutating(order.id):
            self._replace(order.model_copy(update=optimistic))
            try:
                data = await self.api.patch(f"/orders/{order.id}", json=body, fallback=fallback)
            except ApiError as e:
                self._replace(order)
                log.warning("order_update_rolled_back", order_id=order.id, error=e.message)
                raise _from_api(e) from e
        return self._replace(OrderOut.model_validate(data["order"]))

    @asynccontextmanager
    async def _mutating(self, order_id: str):
        if order_id in self._busy:
            raise OrderBusyError("Another update for this order is still in progress")
        self._busy.add(order_id)
        try:
            yield
        finally:
            self._busy.discard(order_id)

    def _replace(self, order: OrderOut) -> Optional[OrderOut]:
        self.orders = [order if existing.id == order.id else existing for existing in self.orders]
        return order
