from __future__ import annotations

import logging
from typing import Any

import httpx

from src.flowbatch.domain.exceptions import (
    FlowApiError,
    FlowNotFoundError,
    ForbiddenError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    RequestValidationError,
    ServerError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

_SERVER_STATUSES = {500, 502, 503, 504}


class FlowApiClient:
    """Async JSON client for the flow API, translating failures to domain errors."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("No API token configured; requests are sent unauthenticated")
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        return await self._request("POST", path, params=params, json=json)

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        logger.debug("API request", extra={"method": method, "path": path})
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Request timeout", extra={"method": method, "path": path})
            raise RequestTimeoutError("Request timeout") from exc
        except httpx.TransportError as exc:
            logger.error("Network connection error: %s", exc, extra={"path": path})
            raise NetworkError("Network error") from exc

        if response.is_error:
            raise self._to_error(response)
        logger.debug(
            "API response",
            extra={"method": method, "path": path, "status_code": response.status_code},
        )
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> tuple[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = response.text
        message = "An error occurred"
        if isinstance(data, dict):
            detail = data.get("detail")
            if isinstance(detail, list) and detail:
                message = ", ".join(
                    "{}: {}".format(
                        ".".join(str(part) for part in item.get("loc") or []),
                        item.get("msg"),
                    )
                    if isinstance(item, dict)
                    else str(item)
                    for item in detail
                )
            elif isinstance(detail, str):
                message = detail
            elif "detail" not in data:
                message = data.get("message") or data.get("error") or message
        elif isinstance(data, str) and data:
            message = data
        return message, data

    @classmethod
    def _to_error(cls, response: httpx.Response) -> FlowApiError:
        message, data = cls._error_message(response)
        status_code = response.status_code
        logger.error(
            "API error [%s]: %s",
            status_code,
            message,
            extra={"method": response.request.method, "url": str(response.request.url)},
        )
        if status_code == 401:
            return UnauthorizedError(message)
        if status_code == 403:
            return ForbiddenError(message)
        if status_code == 404:
            return FlowNotFoundError(message)
        if status_code == 422:
            return RequestValidationError(message, data)
        if status_code == 429:
            return RateLimitError(message)
        if status_code in _SERVER_STATUSES:
            return ServerError(message, status_code=status_code)
        return FlowApiError(message, status_code=status_code)
