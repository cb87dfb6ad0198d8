"""
Async HTTP client used for token endpoints and upstream provider calls.

Wraps a single pooled httpx.AsyncClient so every provider shares the same
connection pool, and maps transport/status failures onto HttpError.
"""

from __future__ import annotations

import logging
import typing
from dataclasses import dataclass, field

import httpx

from .constants import HttpDefaults
from .exceptions import OAuthError, TokenError

_logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class HttpClientConfig:
    """Configuration for HTTP client behavior.

    Attributes:
        timeout: Request timeout in seconds for non-streaming calls
        stream_connect_timeout: Connect timeout for streaming calls
        stream_read_timeout: Read timeout for streaming calls (None = unlimited)
        connect_retries: Retries on connection failure (never on HTTP status,
            since replaying a refresh grant would burn a rotating token)
        enable_logging: Enable debug logging of requests/responses
    """

    timeout: float = HttpDefaults.HTTP_REQUEST_TIMEOUT
    stream_connect_timeout: float = 30.0
    stream_read_timeout: float | None = None
    connect_retries: int = 2
    enable_logging: bool = True


# =============================================================================
# Response
# =============================================================================


@dataclass
class HttpResponse:
    """HTTP response wrapper adapting httpx.Response to our interface."""

    _raw: httpx.Response
    _text: str | None = field(init=False, default=None)

    @property
    def status_code(self) -> int:
        return self._raw.status_code

    @property
    def ok(self) -> bool:
        return self._raw.is_success

    @property
    def text(self) -> str:
        if self._text is None:
            self._text = self._raw.text
        return self._text

    def json(self) -> dict[str, typing.Any]:
        """Decode a JSON object body.

        Raises:
            TokenError: The body is not a JSON object
        """
        try:
            data = self._raw.json()
        except ValueError as e:
            raise TokenError(f"Expected a JSON body, got: {self.text[:200]!r}") from e
        if not isinstance(data, dict):
            raise TokenError(f"Expected a JSON object, got {type(data).__name__}")
        return data


# =============================================================================
# Exceptions
# =============================================================================


class HttpError(OAuthError):
    """HTTP request failed.

    Attributes:
        status_code: HTTP status code (0 for network errors)
        reason: Human-readable reason
        body: Response body
        url: Request URL
    """

    def __init__(
        self,
        status_code: int,
        reason: str,
        body: str,
        url: str,
    ) -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.url = url

        body_preview = body[:200] if body else "(empty)"
        if len(body) > 200:
            body_preview += "..."

        super().__init__(f"HTTP {status_code} - {reason} for {url}\nResponse: {body_preview}")


# =============================================================================
# httpx Implementation
# =============================================================================


class AsyncHttpClient:
    """Shared async HTTP client.

    Example:
        >>> http = AsyncHttpClient()
        >>> response = await http.post_form(
        ...     "https://example.com/token",
        ...     {"grant_type": "refresh_token", "refresh_token": "rt"},
        ... )
        >>> await http.aclose()
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or HttpClientConfig()
        self._client = client or httpx.AsyncClient(
            transport=httpx.AsyncHTTPTransport(retries=self.config.connect_retries),
            timeout=httpx.Timeout(self.config.timeout),
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def stream_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.config.timeout,
            connect=self.config.stream_connect_timeout,
            read=self.config.stream_read_timeout,
        )

    async def post_form(
        self,
        url: str,
        data: dict[str, str],
        headers: dict[str, str] | None = None,
        *,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        """POST a form-encoded body.

        Raises:
            HttpError: On network failure, or on 4xx/5xx when raise_for_status
        """
        merged = {"Accept": "application/json", **(headers or {})}
        return await self._send("POST", url, raise_for_status, data=data, headers=merged)

    async def get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, typing.Any]:
        merged = {"Accept": "application/json", **(headers or {})}
        response = await self._send("GET", url, True, params=params, headers=merged)
        return response.json()

    async def _send(
        self, method: str, url: str, raise_for_status: bool, **kwargs: typing.Any
    ) -> HttpResponse:
        if self.config.enable_logging:
            _logger.debug("HTTP %s %s", method, url)

        try:
            response = await self._client.request(method, url, **kwargs)
        except (httpx.NetworkError, httpx.TimeoutException) as e:
            raise HttpError(status_code=0, reason=str(e), body="", url=url) from e

        if self.config.enable_logging:
            _logger.debug(
                "HTTP %s from %s (body=%d bytes)", response.status_code, url, len(response.content)
            )

        if raise_for_status and not response.is_success:
            raise HttpError(
                status_code=response.status_code,
                reason=str(response.reason_phrase),
                body=response.text,
                url=url,
            )
        return HttpResponse(response)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "AsyncHttpClient",
    "HttpClientConfig",
    "HttpResponse",
    "HttpError",
]
