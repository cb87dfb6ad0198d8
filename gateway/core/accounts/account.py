"""Provider account record.

One row per (user, provider, external identity). Token fields always hold
ciphertext produced by the configured TokenCipher.
"""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class HealthStatus(str, Enum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    FAILED = "failed"


# Fields callers may not rewrite through update_account
_IMMUTABLE_FIELDS = frozenset({"id", "user_id", "provider", "created_at"})


def new_account_id() -> str:
    return f"acct_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ProviderAccount:
    """A user's attached credential for one provider.

    Attributes:
        id: Stable account id
        user_id: Owning user
        provider: Provider name (e.g. "iflow")
        name: Display name shown to the owner
        identity: External account identity used for de-duplication
        access_token: Encrypted access token (the API key for key-only providers)
        refresh_token: Encrypted refresh token, if the provider issues one
        api_key: Encrypted provider API key obtained during OAuth (iFlow)
        expires_at: Access token expiry as epoch seconds (None = never)
        extras: Provider-specific metadata (project id, tier, account id)
    """

    id: str
    user_id: str
    provider: str
    name: str
    identity: str
    access_token: str
    refresh_token: str | None = None
    api_key: str | None = None
    email: str | None = None
    expires_at: float | None = None
    is_active: bool = True
    health: HealthStatus = HealthStatus.ACTIVE
    consecutive_errors: int = 0
    last_error: str | None = None
    last_error_at: float | None = None
    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    last_used_at: float | None = None
    created_at: float = field(default_factory=time.time)
    extras: dict[str, Any] = field(default_factory=dict)

    def with_patch(self, patch: dict[str, Any]) -> ProviderAccount:
        """Return a copy with ``patch`` applied.

        Raises:
            KeyError: If the patch names an unknown or immutable field
        """
        known = {f.name for f in dataclasses.fields(self)}
        for key in patch:
            if key not in known or key in _IMMUTABLE_FIELDS:
                raise KeyError(key)
        values = dict(patch)
        if "health" in values:
            values["health"] = HealthStatus(values["health"])
        return dataclasses.replace(self, **values)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["health"] = self.health.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderAccount:
        known = {f.name for f in dataclasses.fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["health"] = HealthStatus(values.get("health", HealthStatus.ACTIVE.value))
        values["extras"] = dict(values.get("extras") or {})
        return cls(**values)

    def to_public_dict(self) -> dict[str, Any]:
        """Owner-facing view without any token material."""
        data = self.to_dict()
        for secret in ("access_token", "refresh_token", "api_key"):
            data.pop(secret, None)
        return data
