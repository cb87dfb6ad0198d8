"""Gateway API keys and per-user model access rules."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from enum import Enum

from gateway.core.errors import GatewayAuthError, ModelNotAllowed
from gateway.core.models.registry import ModelRegistry

logger = logging.getLogger(__name__)


class ModelAccessMode(str, Enum):
    ALL = "all"
    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"


@dataclass(frozen=True)
class GatewayKey:
    """A gateway API key. Only the SHA-256 hash of the raw key is kept."""

    id: str
    user_id: str
    key_hash: str
    name: str = ""
    is_active: bool = True
    expires_at: float | None = None
    model_access_mode: ModelAccessMode = ModelAccessMode.ALL
    model_access_list: frozenset[str] = frozenset()


def hash_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def extract_key(authorization: str | None, x_api_key: str | None) -> str | None:
    """Pull the raw key from ``Authorization: Bearer`` or ``x-api-key``."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :].strip() or None
    if x_api_key:
        return x_api_key.strip() or None
    return None


class GatewayKeyring:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._keys: dict[str, GatewayKey] = {}
        self._clock = clock

    def add_key(
        self,
        raw_key: str,
        user_id: str,
        *,
        name: str = "",
        expires_at: float | None = None,
        mode: ModelAccessMode = ModelAccessMode.ALL,
        models: Iterable[str] = (),
    ) -> GatewayKey:
        key_hash = hash_key(raw_key)
        key = GatewayKey(
            id=f"key_{key_hash[:12]}",
            user_id=user_id,
            key_hash=key_hash,
            name=name,
            expires_at=expires_at,
            model_access_mode=mode,
            model_access_list=frozenset(models),
        )
        self._keys[key_hash] = key
        return key

    def revoke(self, key_id: str) -> bool:
        for key_hash, key in self._keys.items():
            if key.id == key_id:
                self._keys[key_hash] = replace(key, is_active=False)
                return True
        return False

    def authenticate(self, raw_key: str | None) -> GatewayKey:
        """Resolve a raw key to its record.

        Raises:
            GatewayAuthError: Missing, unknown, revoked or expired key
        """
        if not raw_key:
            raise GatewayAuthError("Missing Authorization header")
        key = self._keys.get(hash_key(raw_key))
        if key is None:
            logger.warning("Rejected request with unknown gateway key")
            raise GatewayAuthError("Invalid API key")
        if not key.is_active:
            raise GatewayAuthError("API key has been revoked")
        if key.expires_at is not None and key.expires_at < self._clock():
            raise GatewayAuthError("API key has expired")
        return key

    @classmethod
    def from_mapping(cls, keys: Mapping[str, str]) -> GatewayKeyring:
        """Build a keyring from ``{raw_key: user_id}`` pairs."""
        keyring = cls()
        for raw_key, user_id in keys.items():
            keyring.add_key(raw_key, user_id, name="bootstrap")
        return keyring


class ModelAccessPolicy:
    """Disabled-model lists per user plus the calling key's allow/deny list.

    Checks compare every lookup key (canonical name and aliases), so a model
    disabled under one name is disabled under all of them.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        disabled: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self._registry = registry
        self._disabled: dict[str, set[str]] = {}
        for user_id, models in (disabled or {}).items():
            for model in models:
                self.disable(user_id, model)

    def disable(self, user_id: str, model: str) -> None:
        self._disabled.setdefault(user_id, set()).add(self._registry.resolve_alias(model))

    def enable(self, user_id: str, model: str) -> None:
        self._disabled.get(user_id, set()).discard(self._registry.resolve_alias(model))

    def disabled_for(self, user_id: str) -> set[str]:
        return set(self._disabled.get(user_id, set()))

    def check(self, user_id: str, model: str, key: GatewayKey | None = None) -> None:
        """Raise ModelNotAllowed when the model may not be used.

        Raises:
            ModelNotAllowed: Disabled by the owner or blocked by the key
        """
        lookup_keys = set(self._registry.lookup_keys(model))
        if lookup_keys & self._disabled.get(user_id, set()):
            raise ModelNotAllowed(f"Model '{model}' is disabled for this account.", param="model")

        if key is None or key.model_access_mode is ModelAccessMode.ALL:
            return
        listed = bool(lookup_keys & key.model_access_list)
        if key.model_access_mode is ModelAccessMode.ALLOWLIST and not listed:
            raise ModelNotAllowed(
                f"Model '{model}' is not in this API key's allowlist.", param="model"
            )
        if key.model_access_mode is ModelAccessMode.DENYLIST and listed:
            raise ModelNotAllowed(f"Model '{model}' is blocked for this API key.", param="model")
