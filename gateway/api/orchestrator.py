"""Gateway orchestrator: one inbound call from parse to rendered output.

The orchestrator owns the per-request sequence (parse, resolve the model,
check access, pick an account, obtain a credential, call the provider,
render) and the retry across accounts. It holds no request state between
calls; everything request-scoped travels on RequestContext.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from gateway.api.context import RequestContext
from gateway.conversion.canonical import CanonicalEvent, Usage, WireProtocol
from gateway.conversion.inbound import parse_inbound
from gateway.conversion.normalizer import normalize_openai_response, normalize_openai_stream
from gateway.conversion.renderers import StreamRenderer, renderer_for
from gateway.conversion.sse import aclose_stream
from gateway.core.accounts.access import GatewayKey
from gateway.core.accounts.account import ProviderAccount
from gateway.core.accounts.usage import UsageRecord
from gateway.core.container import Container
from gateway.core.error_types import should_rotate_to_next_account
from gateway.core.errors import (
    AuthExpired,
    GatewayError,
    InvalidModel,
    InvalidRequest,
    NoEligibleAccount,
    StreamAborted,
    UpstreamError,
)
from gateway.core.logging import conversation_logger
from gateway.core.provider.base import ProviderClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    """Either a complete JSON body or an SSE frame stream."""

    body: dict[str, Any] | None = None
    stream: AsyncIterator[str] | None = None


class GatewayOrchestrator:
    """Runs one gateway request end to end.

    Responsibilities:
    1. Parse the inbound body into the native chat payload
    2. Resolve the model (and optional provider prefix)
    3. Enforce model access rules
    4. Pick an account (pinned, or round robin with retry)
    5. Obtain a valid credential
    6. Call the provider and render the result in the caller's protocol
    7. Record usage for every terminal outcome
    """

    def __init__(self, container: Container) -> None:
        self.container = container
        self.models = container.models
        self.providers = container.providers
        self.balancer = container.balancer
        self.lifecycle = container.lifecycle
        self.store = container.store
        self.max_account_retries = max(1, container.config.max_account_retries)
        self.log_request_metrics = container.config.log_request_metrics

    async def handle(
        self,
        protocol: WireProtocol,
        body: dict[str, Any],
        gateway_key: GatewayKey,
        request_id: str | None = None,
    ) -> GatewayResult:
        # Step 1: Parse the inbound body
        inbound = parse_inbound(protocol, body)
        ctx = RequestContext(
            request_id=request_id or str(uuid.uuid4()),
            user_id=gateway_key.user_id,
            gateway_key=gateway_key,
            inbound=inbound,
        )

        # Step 2: Resolve provider and model
        provider, model = self.resolve_model(inbound.model)
        ctx = ctx.with_updates(model=model, provider=provider)

        if self.log_request_metrics:
            conversation_logger.info(
                "START | Model: %s | Provider: %s | Stream: %s | Protocol: %s",
                model,
                provider or "auto",
                inbound.stream,
                protocol.value,
            )

        # Step 3: Access rules, before any account or provider is touched
        self.container.access_policy.check(ctx.user_id, model, gateway_key)

        # Step 4: Pinned account gets exactly one attempt
        if ctx.is_pinned:
            account = await self._pinned_account(ctx)
            self.container.background.spawn(
                self.balancer.record_use(account.id), name=f"touch-{account.id}"
            )
            return await self._attempt(ctx, account)

        # Step 5: Rotate across the caller's accounts
        tried: set[str] = set()
        last_error: GatewayError | None = None
        for _ in range(self.max_account_retries):
            account = await self.balancer.next_account(ctx.user_id, model, provider, exclude=tried)
            if account is None:
                break
            tried.add(account.id)
            try:
                return await self._attempt(ctx, account)
            except AuthExpired as e:
                last_error = e
                logger.warning("Account %s has expired credentials, trying next", account.id)
            except UpstreamError as e:
                if not should_rotate_to_next_account(e.status_code):
                    raise
                last_error = e
                logger.warning(
                    "Account %s failed with HTTP %d, trying next", account.id, e.status_code
                )

        if last_error is not None:
            raise last_error
        raise NoEligibleAccount(
            f"No active account available for model '{model}'"
            + (f" on provider '{provider}'" if provider else "")
            + ". Link a provider account that serves this model."
        )

    # ------------------------------------------------------------------
    # Model resolution
    # ------------------------------------------------------------------

    def resolve_model(self, requested: str) -> tuple[str | None, str]:
        """Split an optional ``provider/`` prefix and resolve aliases.

        The prefix only counts when it names a registered provider, so an
        alias that itself contains a slash still resolves as a model.

        Raises:
            InvalidModel: Unknown model, or the provider does not serve it
        """
        provider: str | None = None
        name = requested
        prefix, sep, rest = requested.partition("/")
        if sep and rest and prefix in self.providers:
            provider, name = prefix, rest

        model = self.models.resolve_alias(name)
        if not self.models.is_supported(model):
            raise InvalidModel(f"Model '{requested}' is not supported", param="model")
        if provider and not self.models.is_supported_by(model, provider):
            supported = ", ".join(self.models.providers_for(model))
            raise InvalidModel(
                f"Model '{model}' is not available on provider '{provider}'. "
                f"Supported providers: {supported}",
                code="invalid_provider_model",
                param="model",
            )
        return provider, model

    async def _pinned_account(self, ctx: RequestContext) -> ProviderAccount:
        account_id = ctx.inbound.provider_account_id or ""
        account = await self.store.get_account(account_id)
        if account is None or account.user_id != ctx.user_id:
            raise InvalidRequest(
                f"Provider account '{account_id}' not found",
                code="provider_account_not_found",
                param="provider_account_id",
            )
        if not account.is_active:
            raise InvalidRequest(
                f"Provider account '{account_id}' is inactive",
                code="provider_account_inactive",
                param="provider_account_id",
            )
        if ctx.provider and account.provider != ctx.provider:
            raise InvalidRequest(
                f"Provider account '{account_id}' belongs to '{account.provider}', "
                f"not '{ctx.provider}'",
                code="provider_account_provider_mismatch",
                param="provider_account_id",
            )
        if not self.models.is_supported_by(ctx.model, account.provider):
            raise InvalidRequest(
                f"Provider account '{account_id}' ({account.provider}) "
                f"cannot serve model '{ctx.model}'",
                code="provider_account_model_mismatch",
                param="provider_account_id",
            )
        return account

    # ------------------------------------------------------------------
    # One attempt against one account
    # ------------------------------------------------------------------

    async def _attempt(self, ctx: RequestContext, account: ProviderAccount) -> GatewayResult:
        client = self.providers.get(account.provider)
        try:
            credential = await self.lifecycle.get_valid_token(account)
        except AuthExpired as e:
            self._mark_failed(account.id, e.status_code, e.message)
            self._record_usage(ctx, account, Usage(), e.status_code)
            raise

        payload = dict(ctx.inbound.payload)
        payload["model"] = ctx.model
        inbound = ctx.inbound
        renderer = renderer_for(inbound.protocol, inbound.model, inbound.include_reasoning)
        logger.debug("Routing %s to %s account %s", ctx.model, account.provider, account.id)

        try:
            if not ctx.is_streaming:
                raw = await client.call(credential, payload, stream=False)
                response = normalize_openai_response(raw, account.provider)
                body = renderer.render_response(response)
            else:
                lines = await client.call(credential, payload, stream=True)
                events = normalize_openai_stream(lines, account.provider)
                # Prime the first event so failures before the first byte can still
                # rotate to another account.
                first = await self._first_event(events)
        except UpstreamError as e:
            self._mark_failed(account.id, e.status_code, e.message)
            self._record_usage(ctx, account, Usage(), e.status_code)
            raise

        if not ctx.is_streaming:
            self._mark_succeeded(account.id)
            self._record_usage(ctx, account, response.usage, 200)
            return GatewayResult(body=body)

        stream = self._stream(ctx, account, client, renderer, _prepend(first, events))
        return GatewayResult(stream=stream)

    @staticmethod
    async def _first_event(events: AsyncIterator[CanonicalEvent]) -> CanonicalEvent | None:
        try:
            return await events.__anext__()
        except StopAsyncIteration:
            return None
        except BaseException:
            await aclose_stream(events)
            raise

    async def _stream(
        self,
        ctx: RequestContext,
        account: ProviderAccount,
        client: ProviderClient,
        renderer: StreamRenderer,
        events: AsyncIterator[CanonicalEvent],
    ) -> AsyncIterator[str]:
        frames = renderer.render_stream(events)
        status = StreamAborted.status_code
        try:
            async for frame in frames:
                yield frame
            if renderer.failure is not None:
                status = renderer.failure.status_code
                self._mark_failed(account.id, status, renderer.failure.message)
            else:
                status = 200
                self._mark_succeeded(account.id)
        except asyncio.CancelledError:
            logger.info("Client cancelled %s stream from %s", ctx.model, client.display_name)
            raise
        finally:
            await aclose_stream(frames)
            self._record_usage(ctx, account, renderer.accumulator.usage, status)

    # ------------------------------------------------------------------
    # Account bookkeeping, off the response path
    # ------------------------------------------------------------------

    def _mark_failed(self, account_id: str, status_code: int, message: str) -> None:
        self.container.background.spawn(
            self.balancer.mark_failed(account_id, status_code, message), name=f"fail-{account_id}"
        )

    def _mark_succeeded(self, account_id: str) -> None:
        self.container.background.spawn(
            self.balancer.mark_succeeded(account_id), name=f"ok-{account_id}"
        )

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def _record_usage(
        self, ctx: RequestContext, account: ProviderAccount | None, usage: Usage, status: int
    ) -> None:
        record = UsageRecord(
            user_id=ctx.user_id,
            account_id=account.id if account else None,
            model=ctx.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            status_code=status,
            duration_ms=ctx.elapsed_ms(),
            api_key_id=ctx.api_key_id,
            provider=account.provider if account else ctx.provider,
        )
        if self.log_request_metrics:
            conversation_logger.info(
                "END | Model: %s | Status: %d | In: %d | Out: %d | %dms",
                record.model,
                status,
                record.input_tokens,
                record.output_tokens,
                record.duration_ms,
            )
        self.container.background.spawn(
            self.container.usage_sink.record(record), name=f"usage-{ctx.request_id[:8]}"
        )


async def _prepend(
    first: CanonicalEvent | None, rest: AsyncIterator[CanonicalEvent]
) -> AsyncIterator[CanonicalEvent]:
    try:
        if first is not None:
            yield first
        async for event in rest:
            yield event
    finally:
        await aclose_stream(rest)
