import json

import pytest

from sitecloner.agents.models import Issue
from sitecloner.pipeline.state import CodeSucceeded, JobState, QAScored, StageFailed, apply, begin
from sitecloner.pipeline.stream import EventTracker, JobEvent, stream_job_events
from tests.conftest import make_output, make_result
from tests.test_state import coding_state


class ScriptedStore:
    """Returns the scripted states in order, repeating the last one."""

    def __init__(self, states):
        self.states = list(states)
        self.loads = 0

    async def load(self, job_id):
        self.loads += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


def test_sse_format():
    event = JobEvent("progress", {"stage": "scout", "percent": 25})
    line = event.to_sse()
    assert line.startswith("data: ")
    assert line.endswith("\n\n")
    assert json.loads(line[len("data: "):]) == {"type": "progress", "data": {"stage": "scout", "percent": 25}}


def test_tracker_deduplicates_repeated_states():
    tracker = EventTracker()
    tracker.start()
    state = coding_state()

    first = tracker.diff(state)
    assert [e.type for e in first] == ["status", "decision", "decision", "progress"]
    assert tracker.diff(state) == []


def test_tracker_reports_each_validation_once():
    tracker = EventTracker()
    tracker.start()
    state = apply(coding_state(), CodeSucceeded(make_output()))
    tracker.diff(state)

    failed = make_result(72, issues=[Issue(description="Header too tall", suggestion="Use h-16")])
    retry = apply(state, QAScored(failed))
    types = [e.type for e in tracker.diff(retry)]
    assert types.count("qa_issue") == 1
    assert types.count("qa_metrics") == 1

    assert [e.type for e in tracker.diff(retry)] == []

    after = apply(retry, CodeSucceeded(make_output()))
    types = [e.type for e in tracker.diff(after)]
    assert "qa_issue" not in types
    assert "qa_metrics" not in types


def test_tracker_complete_event():
    tracker = EventTracker()
    tracker.start()
    state = apply(apply(coding_state(), CodeSucceeded(make_output())), QAScored(make_result(95)))

    events = tracker.diff(state)

    assert events[-1].type == "complete"
    assert events[-1].data["qaScore"] == 95
    assert events[-1].data["passed"] is True
    assert "App.tsx" in events[-1].data["code"]["files"]
    assert tracker.finished
    assert tracker.diff(state) == []


@pytest.mark.asyncio
async def test_stream_until_complete():
    pending = JobState.new("job-1", "https://example.com")
    scouting = begin(pending)
    failed = apply(scouting, StageFailed("scout", "Navigation timeout"))
    store = ScriptedStore([pending, scouting, failed])

    events = [e async for e in stream_job_events(store, "job-1", poll_interval=0)]

    types = [e.type for e in events]
    assert types[0] == "status"
    assert types[-1] == "complete"
    assert "error" in types
    error = next(e for e in events if e.type == "error")
    assert error.data["stage"] == "scout"
    assert events[-1].data["status"] == "failed"
    assert [e.data["percent"] for e in events if e.type == "progress"] == [25]


@pytest.mark.asyncio
async def test_stream_timeout():
    state = begin(JobState.new("job-1", "https://example.com"))
    ticks = iter(range(100))

    events = [
        e
        async for e in stream_job_events(
            ScriptedStore([state]), "job-1", poll_interval=0, timeout=3, clock=lambda: next(ticks)
        )
    ]

    assert events[-1].type == "error"
    assert events[-1].data == {"message": "Stream timeout", "stage": "stream"}
    assert [e.type for e in events].count("progress") == 1


@pytest.mark.asyncio
async def test_stream_survives_load_errors():
    class FlakyStore(ScriptedStore):
        async def load(self, job_id):
            self.loads += 1
            if self.loads == 1:
                raise ConnectionError("redis unavailable")
            return self.states[0]

    done = apply(begin(JobState.new("job-1", "https://example.com")), StageFailed("scout", "x"))
    events = [e async for e in stream_job_events(FlakyStore([done]), "job-1", poll_interval=0)]

    assert events[1].type == "error"
    assert events[1].data["stage"] == "stream"
    assert events[-1].type == "complete"
