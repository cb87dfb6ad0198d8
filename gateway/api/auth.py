"""Gateway API key authentication."""

from __future__ import annotations

from fastapi import Depends, Header

from gateway.api.dependencies import get_container
from gateway.core.accounts.access import GatewayKey, extract_key
from gateway.core.container import Container


async def require_gateway_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None),
    container: Container = Depends(get_container),
) -> GatewayKey:
    """Resolve the caller from ``Authorization: Bearer`` or ``x-api-key``.

    Raises:
        GatewayAuthError: Missing, unknown, revoked or expired key
    """
    raw_key = extract_key(authorization, x_api_key)
    return container.keyring.authenticate(raw_key)
