"""Round-robin rotation state.

The counter lives behind an injectable interface so tests, or a deployment
with several gateway processes, can swap in another implementation. The
in-memory default is not persisted: after a restart rotation starts again
from the first candidate, which gives best-effort fairness only.
"""

import abc
import asyncio


class RotationState(abc.ABC):
    """Per-routing-key round-robin counter."""

    @abc.abstractmethod
    async def next_index(self, routing_key: str, candidate_count: int) -> int:
        """Atomically advance the key's index and return it.

        Args:
            routing_key: Opaque key, e.g. ``"user-1:iflow:glm-4.7"``
            candidate_count: Number of candidates currently eligible

        Returns:
            ``(last_index + 1) % candidate_count``

        Raises:
            ValueError: If candidate_count is not positive
        """

    @abc.abstractmethod
    def reset(self, routing_key: str | None = None) -> None:
        pass


class InMemoryRotationState(RotationState):
    """Map of last-used indices guarded by one asyncio.Lock per key.

    Two concurrent requests for the same key can never compute the same
    index, because the read-advance-store happens under that key's lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._indices: dict[str, int] = {}

    async def next_index(self, routing_key: str, candidate_count: int) -> int:
        if candidate_count <= 0:
            raise ValueError(f"No candidates available for routing key '{routing_key}'")

        lock = self._locks.setdefault(routing_key, asyncio.Lock())
        async with lock:
            last = self._indices.get(routing_key, -1)
            idx = (last + 1) % candidate_count
            self._indices[routing_key] = idx
            return idx

    def reset(self, routing_key: str | None = None) -> None:
        """Reset rotation state for one key, or for all keys."""
        if routing_key is None:
            self._indices.clear()
        else:
            self._indices.pop(routing_key, None)
