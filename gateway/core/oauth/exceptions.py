"""
Exception hierarchy for credential acquisition and lifecycle.

All exceptions inherit from OAuthError, allowing callers to catch every
credential-related failure with a single except clause.

Example:
    >>> try:
    ...     await linker.complete_authorization(user_id, callback_url)
    ... except OAuthError as e:
    ...     print(f"Linking failed: {e}")
"""

from __future__ import annotations


class OAuthError(Exception):
    """Base exception for all credential errors."""

    pass


class ValidationError(OAuthError):
    """Raised when input validation fails.

    Attributes:
        field: Name of the field that failed validation
        value: The invalid value that was provided
        message: Human-readable explanation of the validation error

    Example:
        >>> linker.begin_authorization("u1", "nvidia_nim")
        >>> ValidationError: Invalid 'provider': does not support redirect login (got 'nvidia_nim')
    """

    def __init__(self, field: str, value: object, message: str) -> None:
        self.field = field
        self.value = value
        self.message = message
        super().__init__(f"Invalid {field!r}: {message} (got {value!r})")

    def __repr__(self) -> str:
        return (
            f"ValidationError(field={self.field!r}, value={self.value!r}, message={self.message!r})"
        )


class ConfigurationError(OAuthError):
    """Raised when configuration is invalid or incomplete.

    Example:
        >>> FernetTokenCipher("")
        >>> ConfigurationError: GATEWAY_SECRET is required to encrypt provider tokens
    """

    pass


class TokenError(OAuthError):
    """Raised when token operations fail.

    This covers refresh failures, missing tokens and refreshed tokens that
    could not be persisted.

    Example:
        >>> await lifecycle.get_valid_token(account)
        >>> TokenError: Token refresh succeeded but storage failed: disk full
    """

    pass


class StorageError(OAuthError):
    """Raised when credential store operations fail.

    Example:
        >>> store = JsonFileCredentialStore("/read-only/accounts.json")
        >>> await store.update_account("acct_1", {"name": "x"})
        >>> StorageError: Cannot write accounts file: Permission denied
    """

    pass


class OAuthFlowError(OAuthError):
    """Raised when an authorization flow fails.

    This covers unknown or expired state, denied device codes and token
    exchange failures.

    Example:
        >>> await linker.poll_device_authorization("u1", "dev-123")
        >>> OAuthFlowError: Device code expired. Please start again.
    """

    pass


__all__ = [
    "OAuthError",
    "ValidationError",
    "ConfigurationError",
    "TokenError",
    "StorageError",
    "OAuthFlowError",
]
