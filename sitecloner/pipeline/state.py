"""Job state and the typed transitions that evolve it.

Each stage produces a ``StageResult``; ``apply`` is the only way a JobState
moves forward. Every transition returns a new JobState, appends to the logs
and never rewrites existing entries. Terminal states reject all transitions.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import Field

from ..agents.models import ENTRY_FILE, ComponentPlan, GeneratedOutput, Issue, ValidationResult
from ..errors import IllegalTransitionError
from ..scout.models import ExtractionSnapshot, SnapshotModel


class JobStatus(str, Enum):
    PENDING = "pending"
    SCOUTING = "scouting"
    PLANNING = "planning"
    CODING = "coding"
    QA = "qa"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


class Stage(str, Enum):
    SCOUT = "scout"
    ARCHITECT = "architect"
    CODER = "coder"
    QA = "qa"


STAGE_PROGRESS = {
    Stage.SCOUT: 25,
    Stage.ARCHITECT: 50,
    Stage.CODER: 75,
    Stage.QA: 90,
}

STATUS_MESSAGES = {
    JobStatus.PENDING: "Starting...",
    JobStatus.SCOUTING: "Analyzing website structure...",
    JobStatus.PLANNING: "Planning component architecture...",
    JobStatus.CODING: "Generating React code...",
    JobStatus.QA: "Validating visual similarity...",
    JobStatus.COMPLETE: "Clone complete!",
    JobStatus.FAILED: "Clone failed",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecisionEntry(SnapshotModel):
    timestamp: datetime = Field(default_factory=utcnow)
    stage: str
    decision: str
    reasoning: str = ""


class ErrorEntry(SnapshotModel):
    stage: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class AttemptRecord(SnapshotModel):
    attempt: int
    score: int
    issues: list[str] = []
    timestamp: datetime = Field(default_factory=utcnow)


class JobState(SnapshotModel):
    """Single source of truth for one clone job."""

    job_id: str
    url: str
    instructions: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    current_stage: Optional[Stage] = None
    snapshot: Optional[ExtractionSnapshot] = None
    plan: Optional[ComponentPlan] = None
    generated_output: Optional[GeneratedOutput] = None
    qa_result: Optional[ValidationResult] = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    attempt_history: list[AttemptRecord] = []
    decision_log: list[DecisionEntry] = []
    error_log: list[ErrorEntry] = []
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    total_cost_usd: float = 0.0

    @classmethod
    def new(cls, job_id: str, url: str, instructions: Optional[str] = None, max_retries: int = 3) -> "JobState":
        return cls(job_id=job_id, url=url, instructions=instructions or None, max_retries=max_retries)

    @property
    def progress(self) -> Optional[int]:
        if self.status == JobStatus.COMPLETE:
            return 100
        return STAGE_PROGRESS.get(self.current_stage) if self.current_stage else None


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoutSucceeded:
    snapshot: ExtractionSnapshot


@dataclass(frozen=True)
class PlanSucceeded:
    plan: ComponentPlan
    chunks_processed: int = 0
    chunks_total: int = 0
    chunks_skipped: int = 0


@dataclass(frozen=True)
class CodeSucceeded:
    output: GeneratedOutput


@dataclass(frozen=True)
class CodeUnparseable:
    """The coder's response could not be parsed; scored as a failed attempt."""

    message: str


@dataclass(frozen=True)
class QAScored:
    result: ValidationResult


@dataclass(frozen=True)
class StageFailed:
    stage: str
    message: str


StageResult = Union[ScoutSucceeded, PlanSucceeded, CodeSucceeded, CodeUnparseable, QAScored, StageFailed]


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _decision(stage: Stage, decision: str, reasoning: str) -> DecisionEntry:
    return DecisionEntry(stage=stage.value, decision=decision, reasoning=reasoning)


def _require(state: JobState, *statuses: JobStatus) -> None:
    if state.status not in statuses:
        allowed = ", ".join(s.value for s in statuses)
        raise IllegalTransitionError(f"Job {state.job_id} is {state.status.value}, expected {allowed}")


def begin(state: JobState) -> JobState:
    """pending -> scouting."""
    _require(state, JobStatus.PENDING)
    return state.model_copy(update={"status": JobStatus.SCOUTING, "current_stage": Stage.SCOUT})


def unparseable_result(message: str) -> ValidationResult:
    """Zero-score validation result recorded when the coder's output cannot be parsed."""
    return ValidationResult(
        score=0,
        passed=False,
        issues=[
            Issue(
                severity="critical",
                category="component",
                description=f"Generated code could not be parsed: {message}",
                suggestion="Return only a JSON object with files, dependencies and packages, including App.tsx",
            )
        ],
        overall_assessment="Code generation output was not valid structured JSON",
    )


def _after_validation(
    state: JobState,
    result: ValidationResult,
    decisions: list[DecisionEntry],
    fail_on_low_score: bool,
) -> JobState:
    if result.passed:
        decisions.append(_decision(Stage.QA, "Validation passed", f"Score: {result.score}/100"))
        return state.model_copy(
            update={
                "status": JobStatus.COMPLETE,
                "current_stage": None,
                "qa_result": result,
                "completed_at": utcnow(),
                "decision_log": decisions,
            }
        )

    if state.retry_count < state.max_retries:
        attempt = state.retry_count + 1
        record = AttemptRecord(
            attempt=attempt,
            score=result.score,
            issues=[issue.description for issue in result.issues],
        )
        decisions.append(
            _decision(
                Stage.QA,
                "Retrying with fixes",
                f"Score {result.score}/100 below threshold, retry {attempt}/{state.max_retries}",
            )
        )
        return state.model_copy(
            update={
                "status": JobStatus.CODING,
                "current_stage": Stage.CODER,
                "qa_result": result,
                "retry_count": attempt,
                "attempt_history": [*state.attempt_history, record],
                "decision_log": decisions,
            }
        )

    decisions.append(
        _decision(Stage.QA, "Max retries exhausted", f"Final score: {result.score}/100")
    )
    update = {
        "qa_result": result,
        "completed_at": utcnow(),
        "decision_log": decisions,
    }
    if fail_on_low_score:
        update["status"] = JobStatus.FAILED
        update["current_stage"] = Stage.QA
        update["error_log"] = [
            *state.error_log,
            ErrorEntry(
                stage=Stage.QA.value,
                message=f"Validation did not pass after {state.max_retries} retries (final score {result.score}/100)",
            ),
        ]
    else:
        update["status"] = JobStatus.COMPLETE
        update["current_stage"] = None
    return state.model_copy(update=update)


def apply(
    state: JobState,
    result: StageResult,
    fail_on_low_score: bool = False,
    total_cost_usd: Optional[float] = None,
) -> JobState:
    """Merge one stage result into ``state`` and return the next state.

    Raises:
        IllegalTransitionError: The job is terminal, or the result does not fit the current status.
    """
    if state.status.terminal:
        raise IllegalTransitionError(f"Job {state.job_id} is already {state.status.value}")

    decisions = list(state.decision_log)

    if isinstance(result, StageFailed):
        try:
            stage = Stage(result.stage)
        except ValueError:
            stage = state.current_stage
        nxt = state.model_copy(
            update={
                "status": JobStatus.FAILED,
                "current_stage": stage,
                "completed_at": utcnow(),
                "error_log": [*state.error_log, ErrorEntry(stage=result.stage, message=result.message)],
            }
        )

    elif isinstance(result, ScoutSucceeded):
        _require(state, JobStatus.SCOUTING)
        snap = result.snapshot
        decisions.append(
            _decision(
                Stage.SCOUT,
                "Completed website analysis",
                f"Extracted {len(snap.computed_styles)} elements, {len(snap.assets)} assets, "
                f"{len(snap.animations)} animations",
            )
        )
        nxt = state.model_copy(
            update={
                "status": JobStatus.PLANNING,
                "current_stage": Stage.ARCHITECT,
                "snapshot": snap,
                "decision_log": decisions,
            }
        )

    elif isinstance(result, PlanSucceeded):
        _require(state, JobStatus.PLANNING)
        reasoning = f"Designed {len(result.plan.components)} components"
        if result.chunks_total:
            reasoning += f" from {result.chunks_processed} of {result.chunks_total} data chunks"
            if result.chunks_skipped:
                reasoning += f" ({result.chunks_skipped} skipped as too large)"
        decisions.append(_decision(Stage.ARCHITECT, "Created component plan", reasoning))
        nxt = state.model_copy(
            update={
                "status": JobStatus.CODING,
                "current_stage": Stage.CODER,
                "plan": result.plan,
                "decision_log": decisions,
            }
        )

    elif isinstance(result, CodeSucceeded):
        _require(state, JobStatus.CODING)
        decisions.append(
            _decision(
                Stage.CODER,
                "Regenerated code with fixes" if state.retry_count else "Generated initial code",
                f"Created {len(result.output.files)} files",
            )
        )
        nxt = state.model_copy(
            update={
                "status": JobStatus.QA,
                "current_stage": Stage.QA,
                "generated_output": result.output,
                "decision_log": decisions,
            }
        )

    elif isinstance(result, CodeUnparseable):
        _require(state, JobStatus.CODING)
        decisions.append(_decision(Stage.CODER, "Code output unparseable", result.message))
        nxt = _after_validation(state, unparseable_result(result.message), decisions, fail_on_low_score)

    elif isinstance(result, QAScored):
        _require(state, JobStatus.QA)
        nxt = _after_validation(state, result.result, decisions, fail_on_low_score)

    else:
        raise IllegalTransitionError(f"Unknown stage result: {type(result).__name__}")

    if total_cost_usd is not None:
        nxt = nxt.model_copy(update={"total_cost_usd": total_cost_usd})
    return nxt


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


def check_invariants(state: JobState) -> None:
    """Raise IllegalTransitionError if ``state`` is not a legal JobState."""
    if not 0 <= state.retry_count <= state.max_retries:
        raise IllegalTransitionError(
            f"retry_count {state.retry_count} outside 0..{state.max_retries}"
        )
    if state.status == JobStatus.QA:
        output = state.generated_output
        if output is None or not output.files or ENTRY_FILE not in output.files:
            raise IllegalTransitionError(f"Status qa requires generated output with {ENTRY_FILE}")
    if state.status == JobStatus.PLANNING and state.snapshot is None:
        raise IllegalTransitionError("Status planning requires an extraction snapshot")
    if state.status == JobStatus.CODING and state.plan is None:
        raise IllegalTransitionError("Status coding requires a component plan")
    if state.status.terminal and state.completed_at is None:
        raise IllegalTransitionError("Terminal status requires completed_at")


def check_append_only(prev: JobState, nxt: JobState) -> None:
    """Raise IllegalTransitionError if a log entry was removed, reordered or changed."""
    for name in ("decision_log", "error_log", "attempt_history"):
        before = getattr(prev, name)
        after = getattr(nxt, name)
        if len(after) < len(before) or after[: len(before)] != before:
            raise IllegalTransitionError(f"{name} is append-only")


def new_job_id() -> str:
    """``job-<epoch ms>-<random>``, sortable by submission time."""
    return f"job-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
