"""Job state persistence."""

from .job_store import (
    InMemoryJobStateStore,
    JobStateStore,
    RedisJobStateStore,
    create_store,
)

__all__ = ["InMemoryJobStateStore", "JobStateStore", "RedisJobStateStore", "create_store"]
