"""FastAPI web application for sitecloner."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from fastapi.staticfiles import StaticFiles

from ..config.settings import settings
from ..errors import InvalidUrlError
from ..pipeline.jobs import JobRunner
from ..pipeline.orchestrator import build_orchestrator
from ..pipeline.state import JobState
from ..pipeline.stream import stream_job_events
from ..store.job_store import JobStateStore, create_store
from ..utils.logging import configure_logging
from .models import CloneRequest, CloneResponse, DecisionData, ErrorData, JobSummary

configure_logging()

logger = logging.getLogger(__name__)

_store = create_store(settings)
_runner = JobRunner(_store, build_orchestrator(_store, settings), max_retries=settings.max_retries)


def get_store() -> JobStateStore:
    return _store


def get_runner() -> JobRunner:
    return _runner


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await _runner.shutdown()
    await _store.close()


app = FastAPI(title="sitecloner", lifespan=lifespan)


@app.get("/health")
async def health_check(runner: JobRunner = Depends(get_runner)):
    """Health check endpoint, with the number of jobs running in this process."""
    return {"status": "healthy", "runningJobs": len(runner.running)}


@app.post("/api/clone", response_model=CloneResponse)
async def clone(request: CloneRequest, runner: JobRunner = Depends(get_runner)):
    """Start a clone job and return its id immediately."""
    try:
        job_id = await runner.submit(request.url, request.instructions)
    except InvalidUrlError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("[API] Failed to start job for %s", request.url)
        raise HTTPException(status_code=500, detail=f"Internal error: {e}")

    return CloneResponse(
        job_id=job_id,
        message=f"Cloning started. Use /api/stream?job_id={job_id} for live updates.",
    )


def _summarize(state: JobState) -> JobSummary:
    result = state.qa_result
    return JobSummary(
        job_id=state.job_id,
        url=state.url,
        status=state.status.value,
        current_stage=state.current_stage.value if state.current_stage else None,
        progress=state.progress,
        retry_count=state.retry_count,
        max_retries=state.max_retries,
        score=result.score if result else None,
        passed=result.passed if result else None,
        files=sorted(state.generated_output.files) if state.generated_output else [],
        decisions=[
            DecisionData(
                timestamp=d.timestamp.isoformat(), stage=d.stage, decision=d.decision, reasoning=d.reasoning
            )
            for d in state.decision_log
        ],
        errors=[
            ErrorData(timestamp=e.timestamp.isoformat(), stage=e.stage, message=e.message)
            for e in state.error_log
        ],
        started_at=state.started_at.isoformat(),
        completed_at=state.completed_at.isoformat() if state.completed_at else None,
        total_cost_usd=round(state.total_cost_usd, 6),
    )


@app.get("/api/jobs/{job_id}", response_model=JobSummary)
async def get_job(job_id: str, store: JobStateStore = Depends(get_store)):
    """Current state of a job."""
    state = await store.load(job_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _summarize(state)


@app.get("/api/jobs/{job_id}/code")
async def get_job_code(job_id: str, store: JobStateStore = Depends(get_store)):
    """Generated files of the latest coder attempt."""
    state = await store.load(job_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if state.generated_output is None:
        raise HTTPException(status_code=404, detail="No code generated yet")
    return state.generated_output.model_dump(by_alias=True)


@app.get("/api/stream")
async def stream(
    job_id: Optional[str] = Query(default=None),
    jobId: Optional[str] = Query(default=None),
    store: JobStateStore = Depends(get_store),
):
    """Server-sent events for a job until it finishes or the stream times out."""
    job_id = job_id or jobId
    if not job_id:
        raise HTTPException(status_code=400, detail="Job ID required")
    if await store.load(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_source():
        async for event in stream_job_events(
            store,
            job_id,
            poll_interval=settings.stream_poll_interval,
            timeout=settings.stream_timeout_seconds,
        ):
            yield event.to_sse()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# Cached page assets referenced by generated code (mount last so routes take priority)
settings.assets_dir.mkdir(parents=True, exist_ok=True)
app.mount(settings.public_assets_prefix, StaticFiles(directory=settings.assets_dir), name="assets")


if __name__ == "__main__":
    import os

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "sitecloner.app.main:app",
        host="0.0.0.0",
        port=port,
    )
