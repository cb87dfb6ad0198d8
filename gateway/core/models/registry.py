"""Model registry: alias resolution and provider lookup.

The registry never raises for malformed input. Unknown names resolve to
themselves and have no providers, which callers treat as "unsupported".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from gateway.core.models.catalog import DYNAMIC_CATALOGS, MODEL_CATALOG, ModelEntry

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Process-wide, read-mostly view over the model catalog.

    Dynamic-catalog providers (bulk lists fetched from an upstream /models
    endpoint) are only reported for a model when the canonical name is in
    that provider's allow-set, so upstream churn never exposes an unmapped
    model.
    """

    def __init__(
        self,
        catalog: Iterable[ModelEntry] = MODEL_CATALOG,
        dynamic_catalogs: Mapping[str, Mapping[str, str]] = DYNAMIC_CATALOGS,
    ) -> None:
        self._entries: dict[str, ModelEntry] = {entry.name: entry for entry in catalog}
        self._dynamic_maps: dict[str, dict[str, str]] = {
            provider: dict(model_map) for provider, model_map in dynamic_catalogs.items()
        }
        self._dynamic_allow: dict[str, frozenset[str]] = {
            provider: frozenset(model_map) for provider, model_map in self._dynamic_maps.items()
        }

        static_aliases = {alias for entry in self._entries.values() for alias in entry.aliases}
        for provider, model_map in self._dynamic_maps.items():
            for canonical, upstream_id in model_map.items():
                if canonical in self._entries or canonical in static_aliases:
                    continue
                self._entries[canonical] = ModelEntry(
                    name=canonical, providers=(provider,), aliases=(upstream_id,)
                )

        self._alias_to_canonical: dict[str, str] = {}
        for canonical, entry in self._entries.items():
            for alias in entry.aliases:
                self._add_alias(alias, canonical)
        for model_map in self._dynamic_maps.values():
            for canonical, upstream_id in model_map.items():
                if canonical in self._entries:
                    self._add_alias(upstream_id, canonical)

        self._canonical_to_aliases: dict[str, list[str]] = {}
        for alias, canonical in self._alias_to_canonical.items():
            self._canonical_to_aliases.setdefault(canonical, []).append(alias)
        for aliases in self._canonical_to_aliases.values():
            aliases.sort()

    def _add_alias(self, alias: str, canonical: str) -> None:
        # A canonical name is never also an alias, which keeps resolution idempotent.
        if alias == canonical or alias in self._entries:
            return
        self._alias_to_canonical.setdefault(alias, canonical)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve_alias(self, name: str) -> str:
        return self._alias_to_canonical.get(name, name)

    def lookup_keys(self, name: str) -> list[str]:
        """Canonical name followed by every known alias."""
        canonical = self.resolve_alias(name)
        return [canonical, *self._canonical_to_aliases.get(canonical, [])]

    def get(self, name: str) -> ModelEntry | None:
        return self._entries.get(self.resolve_alias(name))

    def providers_for(self, name: str) -> list[str]:
        canonical = self.resolve_alias(name)
        entry = self._entries.get(canonical)
        if entry is None:
            return []
        return [
            provider
            for provider in entry.providers
            if provider not in self._dynamic_allow or canonical in self._dynamic_allow[provider]
        ]

    def is_supported(self, name: str) -> bool:
        return bool(self.providers_for(name))

    def is_supported_by(self, name: str, provider: str) -> bool:
        return provider in self.providers_for(name)

    def upstream_id(self, provider: str, name: str) -> str | None:
        """Upstream model id for a dynamic-catalog provider, if mapped."""
        return self._dynamic_maps.get(provider, {}).get(self.resolve_alias(name))

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def all_models(self) -> list[str]:
        return [name for name in self._entries if self.providers_for(name)]

    def all_models_with_aliases(self) -> list[str]:
        models: list[str] = []
        for name in self.all_models():
            models.append(name)
            models.extend(self._canonical_to_aliases.get(name, []))
        return models

    def models_for_provider(self, provider: str) -> list[str]:
        models: list[str] = []
        for name in self._entries:
            if provider in self.providers_for(name):
                models.append(name)
                models.extend(self._canonical_to_aliases.get(name, []))
        return models

    def format_for_openai(self, created: int | None = None) -> dict[str, Any]:
        """Build the ``GET /v1/models`` listing, aliases included."""
        created = int(time.time()) if created is None else created
        data: list[dict[str, Any]] = []
        for name in self.all_models():
            owned_by = ",".join(self.providers_for(name))
            for model_id in (name, *self._canonical_to_aliases.get(name, [])):
                data.append(
                    {"id": model_id, "object": "model", "created": created, "owned_by": owned_by}
                )
        return {"object": "list", "data": data}

    # ------------------------------------------------------------------
    # Dynamic catalogs
    # ------------------------------------------------------------------

    def dynamic_providers(self) -> list[str]:
        """Providers whose catalog comes from an allow-map and can be narrowed."""
        return sorted(self._dynamic_maps)

    def sync_dynamic_catalog(self, provider: str, upstream_ids: Iterable[str]) -> list[str]:
        """Narrow a dynamic provider to the models its upstream actually offers.

        Only canonical names present in the provider's allow-map are ever
        considered, so an unmapped upstream id is ignored.

        Returns:
            Sorted canonical names now served by the provider.
        """
        model_map = self._dynamic_maps.get(provider)
        if model_map is None:
            logger.warning("Ignoring catalog sync for non-dynamic provider %s", provider)
            return []

        offered = set(upstream_ids)
        allowed = frozenset(
            canonical
            for canonical, upstream_id in model_map.items()
            if upstream_id in offered or canonical in offered
        )
        dropped = self._dynamic_allow[provider] - allowed
        self._dynamic_allow = {**self._dynamic_allow, provider: allowed}
        if dropped:
            logger.info(
                "Provider %s no longer offers %d mapped model(s): %s",
                provider,
                len(dropped),
                ", ".join(sorted(dropped)),
            )
        return sorted(allowed)
