import json
from typing import Optional
import httpx
import structlog
from storefront.config import settings

log = structlog.get_logger().bind(component="paypal")

ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"


class PayPalError(Exception):
    def __init__(self, message: str, name: Optional[str] = None,
                 status_code: Optional[int] = None, details=None):
        super().__init__(message)
        self.message = message
        self.name = name
        self.status_code = status_code
        self.details = details


def is_configured() -> bool:
    return settings.redirect_enabled


def _client() -> httpx.Client:
    return httpx.Client(base_url=settings.paypal_base_url, timeout=settings.PAYPAL_TIMEOUT)


def _error_name(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    for detail in body.get("details") or []:
        if detail.get("issue"):
            return detail["issue"]
    return body.get("name")


def _raise_for(resp: httpx.Response, message: str):
    name = _error_name(resp)
    log.error("paypal_request_failed", status=resp.status_code, name=name, body=resp.text)
    raise PayPalError(message, name=name, status_code=resp.status_code, details=resp.text)


def _access_token(client: httpx.Client) -> str:
    if not is_configured():
        raise PayPalError("PayPal is not configured", name="INVALID_CLIENT")
    resp = client.post(
        "/v1/oauth2/token",
        data={"grant_type": "client_credentials"},
        auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
    )
    if resp.status_code != 200:
        _raise_for(resp, "Failed to authenticate with PayPal")
    return resp.json()["access_token"]


def _money(value) -> dict:
    return {"currency_code": settings.CURRENCY.upper(), "value": f"{value:.2f}"}


def create_order(totals, items, reference: str, custom: dict) -> dict:
    """Create a CAPTURE-intent order for the server-computed total.

    Returns ``{"id": ..., "approval_url": ...}``.
    """
    payload = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "reference_id": reference,
                "description": f"{settings.STORE_NAME} Order - {len(items)} item(s)",
                "custom_id": json.dumps(custom)[:127],
                "amount": {
                    **_money(totals.total),
                    "breakdown": {
                        "item_total": _money(totals.subtotal),
                        "discount": _money(totals.discount),
                    },
                },
                "items": [
                    {
                        "name": item.name[:127],
                        "unit_amount": _money(item.price),
                        "quantity": str(item.quantity),
                        "category": "PHYSICAL_GOODS",
                    }
                    for item in items
                ],
            }
        ],
        "application_context": {
            "return_url": f"{settings.APP_URL}/checkout/success?payment_method=paypal",
            "cancel_url": f"{settings.APP_URL}/checkout?canceled=true",
            "brand_name": settings.STORE_NAME,
            "landing_page": "BILLING",
            "user_action": "PAY_NOW",
            "shipping_preference": "NO_SHIPPING",
        },
    }
    with _client() as client:
        token = _access_token(client)
        resp = client.post(
            "/v2/checkout/orders",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code not in (200, 201):
            _raise_for(resp, "Failed to create PayPal order")
    result = resp.json()
    approval_url = next(
        (link["href"] for link in result.get("links", []) if link.get("rel") == "approve"),
        None,
    )
    log.info("paypal_order_created", paypal_order_id=result["id"], total=str(totals.total))
    return {"id": result["id"], "approval_url": approval_url}


def capture_order(order_id: str) -> dict:
    with _client() as client:
        token = _access_token(client)
        resp = client.post(
            f"/v2/checkout/orders/{order_id}/capture",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
        if resp.status_code not in (200, 201):
            _raise_for(resp, "Failed to capture PayPal payment")
    result = resp.json()
    log.info("paypal_order_captured", paypal_order_id=order_id, status=result.get("status"))
    return result


def capture_id(result: dict) -> Optional[str]:
    for unit in result.get("purchase_units") or []:
        for capture in (unit.get("payments") or {}).get("captures") or []:
            if capture.get("id"):
                return capture["id"]
    return None


def refund_capture(capture_id: str) -> dict:
    with _client() as client:
        token = _access_token(client)
        resp = client.post(
            f"/v2/payments/captures/{capture_id}/refund",
            json={},
            headers={"Authorization": f"Bearer {token}"},
        )
        if resp.status_code not in (200, 201):
            _raise_for(resp, "Failed to refund PayPal capture")
    return resp.json()
