"""HTTP transport with bounded retry and linear backoff."""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from ..exceptions import AuthenticationError, NotFoundError, RegistryError
from .session import create_session, parse_response_body
from .types import Response, TransportConfig

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    401: "Authentication failed",
    403: "Access forbidden",
    404: "Resource not found",
    429: "Rate limit exceeded",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
}


def error_message(status: int, data: Any) -> str:
    """Pick the most useful message from an error response."""
    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        if data.get("error"):
            return str(data["error"])
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            if errors[0].get("message"):
                return str(errors[0]["message"])
    return _STATUS_MESSAGES.get(status, f"HTTP {status}: Request failed")


def error_for_status(status: int, data: Any) -> RegistryError:
    """Map an HTTP error status to the matching exception."""
    message = error_message(status, data)
    if status == 401:
        return AuthenticationError(message)
    if status == 404:
        return NotFoundError(message)
    return RegistryError(message, status)


class RetryingTransport:
    """Async HTTP transport shared by all HTTP-based providers.

    Attempt 0 is sent immediately; attempt k waits ``throttle * k``
    milliseconds first. Responses with a 4xx status are terminal, network
    failures, timeouts and 5xx responses are retried until ``retry``
    retries are used up.
    """

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RetryingTransport":
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def open(self) -> None:
        if self.session is None:
            self.session = await create_session(
                timeout=self.config.timeout,
                verify_ssl=self.config.verify_ssl,
                headers=self.config.headers,
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _backoff(self, attempt: int) -> None:
        delay = self.config.throttle * attempt
        logger.debug(
            f"Retrying request after {delay}ms "
            f"(attempt {attempt + 1}/{self.config.retry + 1})"
        )
        await asyncio.sleep(delay / 1000)

    async def _send(
        self,
        url: str,
        method: str,
        headers: Optional[dict[str, str]],
        body: Optional[bytes],
    ) -> Response:
        if self.session is None:
            await self.open()

        async with self.session.request(
            method, url, headers=headers or {}, data=body
        ) as resp:
            raw = await resp.read()
            response = Response(
                status=resp.status,
                headers={key.lower(): value for key, value in resp.headers.items()},
                data=parse_response_body(resp.status, resp.content_type, raw),
                body=raw,
            )

        if response.status >= 400:
            raise error_for_status(response.status, response.data)
        return response

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Response:
        """Send a request, retrying retryable failures.

        Args:
            url: Absolute request URL
            method: HTTP method
            headers: Extra request headers
            body: Raw request body

        Returns:
            Response with parsed data

        Raises:
            AuthenticationError: On 401
            NotFoundError: On 404
            RegistryError: On any other terminal or exhausted failure
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.config.retry + 1):
            if attempt > 0:
                await self._backoff(attempt)

            try:
                return await self._send(url, method, headers, body)
            except RegistryError as e:
                if not e.is_retryable:
                    raise
                last_error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e

            logger.debug(f"{method} {url} failed: {last_error!r}")

        if isinstance(last_error, RegistryError):
            raise last_error

        attempts = self.config.retry + 1
        detail = str(last_error) or type(last_error).__name__
        raise RegistryError(
            f"Request failed after {attempts} attempts: {detail}"
        ) from last_error

    async def get(self, url: str, headers: Optional[dict[str, str]] = None) -> Response:
        return await self.request(url, "GET", headers)

    async def head(self, url: str, headers: Optional[dict[str, str]] = None) -> Response:
        return await self.request(url, "HEAD", headers)

    async def delete(
        self, url: str, headers: Optional[dict[str, str]] = None
    ) -> Response:
        return await self.request(url, "DELETE", headers)

    async def post(
        self,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        return await self.request(url, "POST", *_json_body(payload, headers))

    async def put(
        self,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        return await self.request(url, "PUT", *_json_body(payload, headers))


def _json_body(
    payload: Any, headers: Optional[dict[str, str]]
) -> tuple[dict[str, str], Optional[bytes]]:
    request_headers = {"Content-Type": "application/json", **(headers or {})}
    if payload is None:
        return request_headers, None
    return request_headers, json.dumps(payload).encode("utf-8")
