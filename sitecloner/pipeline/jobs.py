"""Job submission: validate, persist as pending, run in the background."""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from ..errors import InvalidUrlError
from ..store.job_store import JobStateStore
from .orchestrator import PipelineOrchestrator
from .state import JobState, new_job_id

logger = logging.getLogger(__name__)


def validate_url(url: str) -> str:
    """Return the stripped URL, or raise InvalidUrlError unless it is absolute http(s)."""
    url = (url or "").strip()
    if not url:
        raise InvalidUrlError("URL required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise InvalidUrlError(f"Invalid URL: {url}")
    return url


class JobRunner:
    """
    Starts pipeline runs without waiting for them.

    Holds a reference to every running task so it is not garbage collected
    mid-run; observers follow progress through the store.
    """

    def __init__(
        self,
        store: JobStateStore,
        orchestrator: PipelineOrchestrator,
        max_retries: int = 3,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.max_retries = max_retries
        self._tasks: dict[str, asyncio.Task] = {}

    async def submit(self, url: str, instructions: Optional[str] = None) -> str:
        """Create a pending job and schedule its pipeline. Returns the job id immediately.

        Raises:
            InvalidUrlError: Before any state is written, if ``url`` is malformed.
        """
        url = validate_url(url)
        state = JobState.new(new_job_id(), url, instructions, self.max_retries)
        await self.store.save(state)

        logger.info("[API] Cloning %s as %s", url, state.job_id)
        task = asyncio.create_task(self.orchestrator.execute(state), name=state.job_id)
        self._tasks[state.job_id] = task
        task.add_done_callback(self._forget)
        return state.job_id

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.pop(task.get_name(), None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[API] Job %s crashed: %s", task.get_name(), task.exception())

    @property
    def running(self) -> list[str]:
        return list(self._tasks)

    async def wait(self, job_id: str) -> Optional[JobState]:
        """Await a running job's final state (None if it is not running here)."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        """Cancel every running job and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
