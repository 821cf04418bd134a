from __future__ import annotations

import logging
from typing import Any

import httpx

from factory_console.models import ApiResponse

logger = logging.getLogger(__name__)

_STATUS_MESSAGES: dict[int, str] = {
    401: "Session expired. Please log in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    422: "Invalid data.",
    429: "Too many requests. Please try again later.",
}
_SERVER_ERROR_MESSAGE = "Internal server error. Please try again later."


class ApiClient:
    """Thin async wrapper over the factory tracking REST backend.

    Every call returns an ``ApiResponse``; HTTP and transport failures are
    folded into ``success=False`` instead of raising, so services decide how
    to surface them.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )
        self._token: str | None = None

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if params is not None:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(
                method, path, json=json, params=params or None, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            return ApiResponse(success=False, error=str(exc) or "Network error occurred")

        body = _decode_body(response)
        if response.is_error:
            message = _error_message(response.status_code, body)
            logger.info("%s %s -> %d %s", method, path, response.status_code, message)
            return ApiResponse(
                success=False,
                error=message,
                status=response.status_code,
                data=body.get("errors") if isinstance(body, dict) else None,
            )

        if isinstance(body, dict) and "success" in body:
            return ApiResponse(
                success=bool(body["success"]),
                data=body.get("data"),
                error=_as_message(body.get("error"))
                or (None if body["success"] else _as_message(body.get("message"))),
                status=response.status_code,
                meta=body.get("meta") if isinstance(body.get("meta"), dict) else None,
            )
        return ApiResponse(success=True, data=body, status=response.status_code)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> ApiResponse:
        return await self.request("POST", path, json=json)

    async def patch(self, path: str, json: Any = None) -> ApiResponse:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str, json: Any = None) -> ApiResponse:
        return await self.request("DELETE", path, json=json)


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"message": response.text}


def _as_message(value: Any) -> str | None:
    """Flatten a backend message, which may be a string, a list of strings or an object."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "; ".join(map(str, value))
    if isinstance(value, dict) and value.get("message"):
        return _as_message(value["message"])
    return str(value)


def _error_message(status: int, body: Any) -> str:
    if isinstance(body, dict):
        message = _as_message(body.get("message"))
        if message:
            return message
    if status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if status >= 500:
        return _SERVER_ERROR_MESSAGE
    return f"HTTP {status}"
