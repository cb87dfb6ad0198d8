"""
Centralized constants for provider authentication.

Constants are grouped by:
- Provider endpoints and client identifiers
- Refresh defaults
- Protocol constants fixed by OAuth 2.0 / PKCE / device grant
- Storage defaults
"""

from __future__ import annotations

# =============================================================================
# PROVIDER ENDPOINTS
# =============================================================================


class IflowEndpoints:
    """iFlow OAuth (redirect) and API endpoints."""

    AUTHORIZE_URL = "https://iflow.cn/oauth"
    TOKEN_URL = "https://iflow.cn/oauth/token"
    USER_INFO_URL = "https://iflow.cn/api/oauth/getUserInfo"
    API_BASE_URL = "https://apis.iflow.cn/v1"
    SCOPE = "user:info"
    USER_AGENT = "iFlow-Cli"


class QwenEndpoints:
    """Qwen Code device-code endpoints."""

    CLIENT_ID = "f0304373b74a44d2b584a3fb70ca9e56"
    DEVICE_CODE_URL = "https://chat.qwen.ai/api/v1/oauth2/device/code"
    TOKEN_URL = "https://chat.qwen.ai/api/v1/oauth2/token"
    API_BASE_URL = "https://portal.qwen.ai/v1"
    SCOPE = "openid profile email model.completion"

    # Used when the device endpoint omits them
    DEFAULT_POLL_INTERVAL = 5  # seconds
    DEFAULT_DEVICE_EXPIRY = 600  # seconds


class NvidiaNimEndpoints:
    API_BASE_URL = "https://integrate.api.nvidia.com/v1"


# =============================================================================
# REFRESH DEFAULTS
# =============================================================================


class TokenRefreshDefaults:
    """Per-provider refresh buffers.

    A token is refreshed once ``now > expires_at - buffer``. Rotating-token
    providers get a wide buffer so refresh happens well before any request
    could observe an expired token.
    """

    IFLOW_BUFFER_SECONDS = 24 * 60 * 60
    QWEN_BUFFER_SECONDS = 3 * 60 * 60
    DEFAULT_BUFFER_SECONDS = 5 * 60

    # Used when a token response carries no expires_in
    DEFAULT_TOKEN_LIFETIME_SECONDS = 60 * 60

    # API-key accounts never expire
    API_KEY_EXPIRY = None

    # Proactive refresh window for the background job
    PROACTIVE_THRESHOLD_SECONDS = 2 * 60 * 60

    # Pending redirect/device authorizations are dropped after this
    PENDING_AUTH_TTL_SECONDS = 15 * 60


# =============================================================================
# PROTOCOL CONSTANTS (Fixed by Standards)
# =============================================================================


class OAuthProtocol:
    """Constants defined by OAuth 2.0 and related RFCs."""

    HTTP_OK = 200
    HTTP_BAD_REQUEST = 400

    GRANT_TYPE_AUTH_CODE = "authorization_code"
    GRANT_TYPE_REFRESH_TOKEN = "refresh_token"
    GRANT_TYPE_DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"

    # RFC 8628 device grant error codes
    ERROR_AUTHORIZATION_PENDING = "authorization_pending"
    ERROR_SLOW_DOWN = "slow_down"
    ERROR_EXPIRED_TOKEN = "expired_token"
    ERROR_ACCESS_DENIED = "access_denied"


class PkceProtocol:
    """Constants defined by PKCE (RFC 7636).

    Code verifier must be 43-128 characters of URL-safe text.
    """

    # 64 bytes hex = 128 chars
    CODE_VERIFIER_BYTES = 64
    CODE_CHALLENGE_METHOD = "S256"


# =============================================================================
# STORAGE DEFAULTS
# =============================================================================


class StorageDefaults:
    # Read/write for owner only
    FILE_PERMISSIONS = 0o600
    ACCOUNTS_FILENAME = "accounts.json"


class HttpDefaults:
    HTTP_REQUEST_TIMEOUT = 30  # seconds
