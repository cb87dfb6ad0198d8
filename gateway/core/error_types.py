"""Error type enumeration for the provider gateway.

Values double as the ``type`` field of OpenAI and Anthropic error bodies.
"""

from enum import Enum


class ErrorType(str, Enum):
    """Error type categories for error responses and usage records."""

    # Caller errors
    INVALID_REQUEST = "invalid_request_error"
    AUTHENTICATION = "authentication_error"
    PERMISSION = "permission_error"
    NOT_FOUND = "not_found_error"

    # Capacity and upstream errors
    RATE_LIMIT = "rate_limit_error"
    API_ERROR = "api_error"
    OVERLOADED = "overloaded_error"  # Anthropic shape for "no capacity"
    CONFIGURATION = "configuration_error"

    # Request lifecycle
    CANCELLED = "cancelled"  # Request cancelled by client


def error_type_for_status(status_code: int) -> ErrorType:
    """Classify an upstream HTTP status into an error type."""
    if status_code in (400, 404, 422):
        return ErrorType.INVALID_REQUEST
    if status_code in (401, 403):
        return ErrorType.AUTHENTICATION
    if status_code == 429:
        return ErrorType.RATE_LIMIT
    return ErrorType.API_ERROR


def should_rotate_to_next_account(status_code: int) -> bool:
    """Whether an upstream status means "try another account" rather than fail."""
    return status_code >= 500 or status_code in (401, 402, 403, 408, 429)
