"""Pluggable reaction to account failures and recoveries.

The default policy does nothing, so a failing account stays in rotation.
HealthTrackingFailurePolicy records counters and health status, which is
where cooldown or exclusion logic would hook in. Neither policy removes an
account from rotation.
"""

from __future__ import annotations

import abc
import logging
import time
from collections.abc import Callable
from typing import Any

from gateway.core.accounts.account import HealthStatus, ProviderAccount
from gateway.core.accounts.store import CredentialStore
from gateway.core.oauth.exceptions import StorageError

logger = logging.getLogger(__name__)


class FailurePolicy(abc.ABC):
    @abc.abstractmethod
    async def on_failure(self, account_id: str, status_code: int, message: str) -> None:
        pass

    @abc.abstractmethod
    async def on_success(self, account_id: str) -> None:
        pass


class NoopFailurePolicy(FailurePolicy):
    async def on_failure(self, account_id: str, status_code: int, message: str) -> None:
        logger.debug("Account %s failed with %d (no failure policy)", account_id, status_code)

    async def on_success(self, account_id: str) -> None:
        return None


class HealthTrackingFailurePolicy(FailurePolicy):
    """Track consecutive errors and derive a health status.

    active -> degraded after ``degraded_after`` consecutive errors,
    degraded -> failed after ``failed_after``. Any success resets to active.
    Store errors are logged and swallowed.
    """

    def __init__(
        self,
        store: CredentialStore,
        degraded_after: int = 1,
        failed_after: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.degraded_after = degraded_after
        self.failed_after = failed_after
        self.clock = clock

    def health_for(self, consecutive_errors: int) -> HealthStatus:
        if consecutive_errors >= self.failed_after:
            return HealthStatus.FAILED
        if consecutive_errors >= self.degraded_after:
            return HealthStatus.DEGRADED
        return HealthStatus.ACTIVE

    async def on_failure(self, account_id: str, status_code: int, message: str) -> None:
        now = self.clock()
        before: list[ProviderAccount] = []

        def patch(account: ProviderAccount) -> dict[str, Any]:
            before.append(account)
            consecutive = account.consecutive_errors + 1
            return {
                "consecutive_errors": consecutive,
                "error_count": account.error_count + 1,
                "health": self.health_for(consecutive),
                "last_error": f"HTTP {status_code}: {message[:500]}",
                "last_error_at": now,
            }

        try:
            updated = await self.store.update_account(account_id, patch)
        except StorageError as e:
            logger.warning("Failed to record failure for account %s: %s", account_id, e)
            return
        previous = before[-1].health
        if updated.health is not previous:
            logger.warning(
                "Account %s health %s -> %s after %d consecutive error(s)",
                account_id,
                previous.value,
                updated.health.value,
                updated.consecutive_errors,
            )

    async def on_success(self, account_id: str) -> None:
        try:
            await self.store.update_account(
                account_id,
                lambda account: {
                    "consecutive_errors": 0,
                    "success_count": account.success_count + 1,
                    "health": HealthStatus.ACTIVE,
                },
            )
        except StorageError as e:
            logger.warning("Failed to record success for account %s: %s", account_id, e)
