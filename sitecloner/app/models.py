"""Pydantic request/response models for the web API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CloneRequest(BaseModel):
    """Request body for /api/clone."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    instructions: Optional[str] = Field(default=None, alias="userInstructions")

    @field_validator("instructions")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class CloneResponse(BaseModel):
    success: bool = True
    job_id: str
    status: str = "pending"
    message: str


class DecisionData(BaseModel):
    timestamp: str
    stage: str
    decision: str
    reasoning: str


class ErrorData(BaseModel):
    timestamp: str
    stage: str
    message: str


class JobSummary(BaseModel):
    """Snapshot of a job for polling clients."""

    job_id: str
    url: str
    status: str
    current_stage: Optional[str] = None
    progress: Optional[int] = None
    retry_count: int
    max_retries: int
    score: Optional[int] = None
    passed: Optional[bool] = None
    files: list[str] = []
    decisions: list[DecisionData] = []
    errors: list[ErrorData] = []
    started_at: str
    completed_at: Optional[str] = None
    total_cost_usd: float = 0.0
