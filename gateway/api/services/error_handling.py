"""Error handling services for API endpoints.

Every error body is produced here, in the wire shape of the endpoint that
was called:

OpenAI (chat completions, responses, account routes):
    {"error": {"message": "...", "type": "...", "code": "...", "param": null}}

Anthropic (messages):
    {"type": "error", "error": {"type": "...", "message": "..."}}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi.responses import JSONResponse

from gateway.conversion.canonical import WireProtocol
from gateway.conversion.renderers import RENDERERS
from gateway.core.error_types import ErrorType
from gateway.core.errors import GatewayError, InvalidRequest, UpstreamError
from gateway.core.oauth.exceptions import (
    ConfigurationError,
    OAuthError,
    OAuthFlowError,
    ValidationError,
)
from gateway.core.oauth.http_client import HttpError

logger = logging.getLogger(__name__)

_PATH_PROTOCOLS = (
    ("/v1/messages", WireProtocol.ANTHROPIC_MESSAGES),
    ("/v1/responses", WireProtocol.OPENAI_RESPONSES),
)


def protocol_for_path(path: str) -> WireProtocol:
    for prefix, protocol in _PATH_PROTOCOLS:
        if path.startswith(prefix):
            return protocol
    return WireProtocol.OPENAI_CHAT


def gateway_error_from_oauth(exc: OAuthError) -> GatewayError:
    """Map a credential/linking failure onto the gateway taxonomy."""
    if isinstance(exc, ValidationError):
        return InvalidRequest(str(exc), param=exc.field)
    if isinstance(exc, OAuthFlowError):
        return InvalidRequest(str(exc), code="oauth_flow_error")
    if isinstance(exc, HttpError):
        return UpstreamError(f"Provider token endpoint failed: {exc.reason}", status_code=502)
    if isinstance(exc, ConfigurationError):
        return GatewayError(str(exc), status_code=500, error_type=ErrorType.CONFIGURATION)
    return GatewayError(str(exc), status_code=502, error_type=ErrorType.API_ERROR)


@dataclass(frozen=True, slots=True)
class ErrorResponseBuilder:
    """Centralized builder for consistent error responses across all endpoints."""

    @staticmethod
    def for_protocol(exc: GatewayError, protocol: WireProtocol) -> JSONResponse:
        renderer = RENDERERS[protocol]
        return JSONResponse(
            status_code=renderer.error_status(exc), content=renderer.error_body(exc)
        )

    @staticmethod
    def for_path(exc: GatewayError, path: str) -> JSONResponse:
        return ErrorResponseBuilder.for_protocol(exc, protocol_for_path(path))

    @staticmethod
    def invalid_parameter(name: str, reason: str, path: str = "") -> JSONResponse:
        """Build a 400 response for a request body that failed validation."""
        message = f"Invalid parameter '{name}': {reason}"
        return ErrorResponseBuilder.for_path(InvalidRequest(message, param=name), path)

    @staticmethod
    def internal_error(path: str = "") -> JSONResponse:
        exc = GatewayError("Internal server error", status_code=500)
        return ErrorResponseBuilder.for_path(exc, path)
