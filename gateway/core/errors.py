"""Gateway error taxonomy.

Every error that should reach the caller as a structured body derives from
GatewayError. The HTTP layer renders it in the OpenAI or Anthropic shape of
the endpoint that was called.

Example:
    >>> try:
    ...     await orchestrator.handle(request)
    ... except GatewayError as e:
    ...     print(e.status_code, e.error_type, e.message)
"""

from __future__ import annotations

from gateway.core.error_types import ErrorType, error_type_for_status


class GatewayError(Exception):
    """Base exception for errors surfaced to gateway callers.

    Attributes:
        message: Human-readable message placed in the error body
        status_code: HTTP status for the response
        error_type: Error category (``type`` in the body)
        code: Optional machine-readable code (OpenAI ``code`` field)
        param: Optional request parameter the error refers to
    """

    status_code: int = 500
    error_type: ErrorType = ErrorType.API_ERROR
    code: str | None = None

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_type: ErrorType | None = None,
        code: str | None = None,
        param: str | None = None,
    ) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        if code is not None:
            self.code = code
        self.param = param
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(status_code={self.status_code}, "
            f"error_type={self.error_type.value!r}, message={self.message!r})"
        )


class InvalidRequest(GatewayError):
    """The request is malformed or references something that does not exist."""

    status_code = 400
    error_type = ErrorType.INVALID_REQUEST


class InvalidModel(InvalidRequest):
    """Unknown model, or a model the explicit provider does not serve."""

    code = "invalid_model"


class ModelNotAllowed(GatewayError):
    """Model disabled by its owner or blocked by the calling key's access list."""

    status_code = 403
    error_type = ErrorType.PERMISSION
    code = "model_not_allowed"


class NoEligibleAccount(GatewayError):
    """No active account of the caller can serve the model."""

    status_code = 503
    error_type = ErrorType.CONFIGURATION
    code = "no_eligible_account"


class AuthExpired(GatewayError):
    """Credential refresh failed and the stored token has expired.

    The orchestrator treats this as "skip this account" and moves on to the
    next candidate when one exists.
    """

    status_code = 401
    error_type = ErrorType.AUTHENTICATION
    code = "auth_expired"

    def __init__(self, message: str, *, account_id: str | None = None) -> None:
        super().__init__(message)
        self.account_id = account_id


class UpstreamError(GatewayError):
    """Provider returned an error; its status and message are passed through."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 502,
        provider: str | None = None,
        error_type: ErrorType | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            error_type=error_type or error_type_for_status(status_code),
        )
        self.provider = provider


class GatewayAuthError(GatewayError):
    """The gateway API key is missing, unknown, revoked or expired."""

    status_code = 401
    error_type = ErrorType.AUTHENTICATION


class StreamAborted(GatewayError):
    """The caller cancelled the request. Not an error from the caller's view."""

    status_code = 499
    error_type = ErrorType.CANCELLED


__all__ = [
    "GatewayError",
    "InvalidRequest",
    "InvalidModel",
    "ModelNotAllowed",
    "NoEligibleAccount",
    "AuthExpired",
    "UpstreamError",
    "GatewayAuthError",
    "StreamAborted",
]
