"""TTL-bounded persistence for JobState.

One key per job (``clone:<job_id>``), written only by that job's
orchestrator and read by any number of stream observers. Entries expire a
fixed time after their last write regardless of outcome.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis

from ..errors import InfrastructureError
from ..pipeline.state import JobState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400
DEFAULT_KEY_PREFIX = "clone:"


class JobStateStore(ABC):
    """Key-value store for JobState with a fixed expiry."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, key_prefix: str = DEFAULT_KEY_PREFIX):
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    @abstractmethod
    async def save(self, state: JobState) -> None:
        """Persist ``state`` and reset its expiry."""

    @abstractmethod
    async def load(self, job_id: str) -> Optional[JobState]:
        """Return the stored state, or None if unknown or expired."""

    async def close(self) -> None:
        pass


class InMemoryJobStateStore(JobStateStore):
    """Process-local store. Entries are serialized so readers never share objects with the writer."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, key_prefix: str = DEFAULT_KEY_PREFIX, clock=time.monotonic):
        super().__init__(ttl_seconds, key_prefix)
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}

    async def save(self, state: JobState) -> None:
        self.purge_expired()
        self._entries[self.key(state.job_id)] = (self._clock() + self.ttl_seconds, state.model_dump_json())

    async def load(self, job_id: str) -> Optional[JobState]:
        key = self.key(job_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return JobState.model_validate_json(payload)

    def purge_expired(self) -> int:
        """Drop every expired entry. Runs on each save so finished jobs are reclaimed."""
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)


class RedisJobStateStore(JobStateStore):
    """Redis-backed store using SETEX, shared by every API worker."""

    def __init__(self, redis_url: str, ttl_seconds: int = DEFAULT_TTL_SECONDS, key_prefix: str = DEFAULT_KEY_PREFIX, client=None):
        super().__init__(ttl_seconds, key_prefix)
        if client is None:
            client = aioredis.from_url(redis_url, decode_responses=True)
        self._client = client

    async def save(self, state: JobState) -> None:
        try:
            await self._client.setex(self.key(state.job_id), self.ttl_seconds, state.model_dump_json())
        except Exception as e:
            raise InfrastructureError(f"Failed to persist job {state.job_id}: {e}") from e

    async def load(self, job_id: str) -> Optional[JobState]:
        try:
            payload = await self._client.get(self.key(job_id))
        except Exception as e:
            raise InfrastructureError(f"Failed to read job {job_id}: {e}") from e
        if payload is None:
            return None
        return JobState.model_validate_json(payload)

    async def close(self) -> None:
        await self._client.aclose()


def create_store(settings) -> JobStateStore:
    """Redis when ``redis_url`` is configured, otherwise in-memory."""
    if settings.redis_url:
        logger.info("[STORE] Using Redis job store")
        return RedisJobStateStore(settings.redis_url, settings.job_ttl_seconds, settings.job_key_prefix)
    logger.info("[STORE] Using in-memory job store")
    return InMemoryJobStateStore(settings.job_ttl_seconds, settings.job_key_prefix)
