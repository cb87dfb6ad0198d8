"""Credential acquisition and lifecycle for provider accounts."""

from .exceptions import (
    ConfigurationError,
    OAuthError,
    OAuthFlowError,
    StorageError,
    TokenError,
    ValidationError,
)
from .http_client import AsyncHttpClient, HttpClientConfig, HttpError, HttpResponse
from .pkce import PkceCodes, generate_pkce

__all__ = [
    "AsyncHttpClient",
    "ConfigurationError",
    "HttpClientConfig",
    "HttpError",
    "HttpResponse",
    "OAuthError",
    "OAuthFlowError",
    "PkceCodes",
    "StorageError",
    "TokenError",
    "ValidationError",
    "generate_pkce",
]
