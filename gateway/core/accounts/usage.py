"""Usage sink: one record per terminal request outcome."""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    account_id: str | None
    model: str
    input_tokens: int
    output_tokens: int
    status_code: int
    duration_ms: int
    api_key_id: str | None = None
    provider: str | None = None
    recorded_at: float = field(default_factory=time.time)


class UsageSink(abc.ABC):
    """Fire-and-forget destination for usage records.

    Callers never await a sink on the response path, and a failing sink must
    never fail the request that produced the record.
    """

    @abc.abstractmethod
    async def record(self, usage: UsageRecord) -> None:
        pass


class LoggingUsageSink(UsageSink):
    async def record(self, usage: UsageRecord) -> None:
        logger.info(
            "USAGE | user=%s account=%s model=%s in=%d out=%d status=%d %dms",
            usage.user_id,
            usage.account_id,
            usage.model,
            usage.input_tokens,
            usage.output_tokens,
            usage.status_code,
            usage.duration_ms,
        )


class InMemoryUsageSink(UsageSink):
    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    async def record(self, usage: UsageRecord) -> None:
        self.records.append(usage)
