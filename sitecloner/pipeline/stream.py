"""Progress streaming: typed events derived from polled JobState deltas.

``EventTracker`` holds the dedupe state (how many log entries were already
sent, which validation results were already reported) independently of how
states arrive, so a push transport can reuse it unchanged.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..store.job_store import JobStateStore
from .state import STAGE_PROGRESS, STATUS_MESSAGES, JobState, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class JobEvent:
    type: str  # status | decision | error | qa_issue | qa_metrics | progress | complete
    data: dict = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"data: {json.dumps({'type': self.type, 'data': self.data}, default=str)}\n\n"


class EventTracker:
    """Turns successive JobStates of one job into an ordered, deduplicated event sequence."""

    def __init__(self):
        self.last_status: Optional[str] = None
        self.decisions_sent = 0
        self.errors_sent = 0
        self.issues_sent: set[str] = set()
        self.metrics_sent: set[str] = set()
        self.last_progress: Optional[int] = None
        self.finished = False

    def start(self) -> list[JobEvent]:
        self.last_status = JobStatus.PENDING.value
        return [
            JobEvent("status", {"status": JobStatus.PENDING.value, "message": STATUS_MESSAGES[JobStatus.PENDING]})
        ]

    def diff(self, state: JobState) -> list[JobEvent]:
        if self.finished:
            return []
        events: list[JobEvent] = []

        if state.status.value != self.last_status:
            events.append(
                JobEvent("status", {"status": state.status.value, "message": STATUS_MESSAGES[state.status]})
            )
            self.last_status = state.status.value

        for entry in state.decision_log[self.decisions_sent:]:
            events.append(
                JobEvent(
                    "decision",
                    {"stage": entry.stage, "decision": entry.decision, "reasoning": entry.reasoning},
                )
            )
        self.decisions_sent = max(self.decisions_sent, len(state.decision_log))

        for entry in state.error_log[self.errors_sent:]:
            events.append(
                JobEvent(
                    "error",
                    {"message": entry.message, "stage": entry.stage, "timestamp": entry.timestamp.isoformat()},
                )
            )
        self.errors_sent = max(self.errors_sent, len(state.error_log))

        result = state.qa_result
        if result is not None:
            if result.issues and result.result_id not in self.issues_sent:
                events.append(
                    JobEvent(
                        "qa_issue",
                        {
                            "resultId": result.result_id,
                            "issues": [issue.model_dump(by_alias=True) for issue in result.issues],
                        },
                    )
                )
                self.issues_sent.add(result.result_id)
            if result.result_id not in self.metrics_sent:
                events.append(
                    JobEvent(
                        "qa_metrics",
                        {
                            "resultId": result.result_id,
                            "score": result.score,
                            "metrics": result.metrics.model_dump(by_alias=True),
                            "passed": result.passed,
                        },
                    )
                )
                self.metrics_sent.add(result.result_id)

        if state.current_stage is not None:
            percent = STAGE_PROGRESS[state.current_stage]
            if percent != self.last_progress:
                events.append(JobEvent("progress", {"stage": state.current_stage.value, "percent": percent}))
                self.last_progress = percent

        if state.status.terminal:
            output = state.generated_output
            events.append(
                JobEvent(
                    "complete",
                    {
                        "status": state.status.value,
                        "code": output.model_dump(by_alias=True) if output else None,
                        "qaScore": result.score if result else 0,
                        "passed": result.passed if result else False,
                    },
                )
            )
            self.finished = True

        return events


async def stream_job_events(
    store: JobStateStore,
    job_id: str,
    poll_interval: float = 2.0,
    timeout: float = 600.0,
    clock=time.monotonic,
) -> AsyncIterator[JobEvent]:
    """Poll ``job_id`` until it is terminal or ``timeout`` elapses, yielding events.

    Stopping iteration (client disconnect) has no effect on the job itself.
    """
    tracker = EventTracker()
    for event in tracker.start():
        yield event

    deadline = clock() + timeout
    while True:
        if clock() >= deadline:
            yield JobEvent("error", {"message": "Stream timeout", "stage": "stream"})
            return

        try:
            state = await store.load(job_id)
        except Exception as e:
            logger.warning("[STREAM] Failed to read %s: %s", job_id, e)
            yield JobEvent("error", {"message": str(e), "stage": "stream"})
            state = None

        if state is not None:
            for event in tracker.diff(state):
                yield event
            if tracker.finished:
                return

        await asyncio.sleep(poll_interval)
