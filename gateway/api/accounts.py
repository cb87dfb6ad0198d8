"""Account linking and management routes.

All routes act on the user that owns the calling gateway key.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from gateway.api.auth import require_gateway_key
from gateway.api.dependencies import get_container
from gateway.api.models import (
    AccountPatchRequest,
    ApiKeyRequest,
    CallbackRequest,
    DevicePollRequest,
)
from gateway.api.services.error_handling import gateway_error_from_oauth
from gateway.core.accounts.access import GatewayKey
from gateway.core.accounts.account import ProviderAccount
from gateway.core.container import Container
from gateway.core.error_types import ErrorType
from gateway.core.errors import GatewayError, InvalidRequest
from gateway.core.oauth.exceptions import OAuthError
from gateway.core.provider.base import DevicePollStatus

logger = logging.getLogger(__name__)

router = APIRouter()


async def _owned_account(container: Container, user_id: str, account_id: str) -> ProviderAccount:
    account = await container.store.get_account(account_id)
    if account is None or account.user_id != user_id:
        raise GatewayError(
            f"Provider account '{account_id}' not found",
            status_code=404,
            error_type=ErrorType.NOT_FOUND,
            code="provider_account_not_found",
        )
    return account


# ======================================================================
# OAuth linking
# ======================================================================


@router.get("/oauth/{provider}/authorize")
async def authorize(
    provider: str,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        url, state = container.linker.begin_authorization(key.user_id, provider)
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    return {"authorize_url": url, "state": state}


@router.post("/oauth/callback")
async def oauth_callback(
    request: CallbackRequest,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        result = await container.linker.complete_authorization(key.user_id, request.callback_url)
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    return {
        "account_id": result.account.id,
        "identity": result.account.identity,
        "is_new_account": result.is_new_account,
    }


@router.post("/oauth/{provider}/device")
async def start_device_flow(
    provider: str,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        device = await container.linker.begin_device_authorization(key.user_id, provider)
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    # The PKCE verifier stays server side
    return {
        "device_code": device.device_code,
        "user_code": device.user_code,
        "verification_url": device.verification_url,
        "verification_url_complete": device.verification_url_complete,
        "expires_in": device.expires_in,
        "interval": device.interval,
    }


@router.post("/oauth/device/poll")
async def poll_device_flow(
    request: DevicePollRequest,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        result = await container.linker.poll_device_authorization(
            key.user_id, request.device_code, request.identity
        )
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e

    body: dict[str, Any] = {"status": result.status.value}
    if result.status is DevicePollStatus.PENDING:
        body["slow_down"] = result.slow_down
    elif result.status is DevicePollStatus.ERROR:
        body["error"] = result.error
    elif result.link is not None:
        body.update(
            account_id=result.link.account.id,
            identity=result.link.account.identity,
            is_new_account=result.link.is_new_account,
        )
    return body


# ======================================================================
# Account management
# ======================================================================


@router.post("/accounts/api-key")
async def register_api_key(
    request: ApiKeyRequest,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    try:
        result = await container.linker.register_api_key(
            key.user_id, request.provider, request.api_key, request.name
        )
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    return {"account_id": result.account.id, "is_new_account": result.is_new_account}


@router.get("/accounts")
async def list_accounts(
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    accounts = await container.store.find_accounts(key.user_id, active_only=False)
    return {"data": [account.to_public_dict() for account in accounts]}


@router.get("/accounts/stats")
async def account_stats(
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    return await container.balancer.get_account_stats(key.user_id)


@router.patch("/accounts/{account_id}")
async def update_account(
    account_id: str,
    request: AccountPatchRequest,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    await _owned_account(container, key.user_id, account_id)
    patch = request.model_dump(exclude_none=True)
    if not patch:
        raise InvalidRequest("Nothing to update; send is_active and/or name")
    try:
        account = await container.store.update_account(account_id, patch)
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    logger.info("Account %s updated: %s", account_id, ", ".join(sorted(patch)))
    return account.to_public_dict()


@router.delete("/accounts/{account_id}")
async def delete_account(
    account_id: str,
    key: GatewayKey = Depends(require_gateway_key),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    await _owned_account(container, key.user_id, account_id)
    try:
        deleted = await container.store.delete_account(account_id)
    except OAuthError as e:
        raise gateway_error_from_oauth(e) from e
    return {"deleted": deleted, "account_id": account_id}
