"""Request context dataclass for encapsulating request processing data."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any

from gateway.conversion.inbound import InboundRequest
from gateway.core.accounts.access import GatewayKey


@dataclass(frozen=True)
class RequestContext:
    """Immutable per-request state shared by the orchestrator steps."""

    # === Identity & Tracking ===
    request_id: str
    user_id: str
    gateway_key: GatewayKey | None

    # === Request ===
    inbound: InboundRequest

    # === Routing (filled in once the model is resolved) ===
    model: str = ""
    provider: str | None = None

    start_time: float = field(default_factory=time.monotonic)

    @property
    def is_streaming(self) -> bool:
        return self.inbound.stream

    @property
    def is_pinned(self) -> bool:
        return self.inbound.provider_account_id is not None

    @property
    def api_key_id(self) -> str | None:
        return self.gateway_key.id if self.gateway_key else None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)

    def with_updates(self, **kwargs: Any) -> RequestContext:
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)
