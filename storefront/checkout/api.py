from typing import Optional
import httpx
import structlog

log = structlog.get_logger().bind(component="backend_client")


class ApiError(Exception):
    """Non-2xx or transport failure talking to the storefront backend.

    ``status_code`` is None when the request never got a response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def code(self) -> Optional[str]:
        return self.payload.get("code") or self.payload.get("name")


def error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return fallback


class BackendClient:
    def __init__(self, base_url: str = "", token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, transport=transport, timeout=timeout
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def request(self, method: str, path: str, json: Optional[dict] = None,
                      fallback: str = "Request failed") -> dict:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.RequestError as e:
            log.error("backend_unreachable", method=method, path=path, error=str(e))
            raise ApiError("Network error. Please check your connection and try again.")

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error:
            message = error_message(response, fallback)
            log.warning("backend_error", method=method, path=path,
                        status=response.status_code, message=message)
            raise ApiError(message, response.status_code, payload if isinstance(payload, dict) else {})
        return payload

    async def get(self, path: str, **kwargs) -> dict:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json: Optional[dict] = None, **kwargs) -> dict:
        return await self.request("POST", path, json=json, **kwargs)

    async def patch(self, path: str, json: Optional[dict] = None, **kwargs) -> dict:
        return await self.request("PATCH", path, json=json, **kwargs)
