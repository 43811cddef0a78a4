"""
Grant job API schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class JobSummaryModel(BaseModel):
    """Counters of one invocation."""

    success: int = Field(default=0, description="Rows marked terminal")
    skipped: int = Field(default=0, description="Rows skipped (terminal or incomplete)")
    errors: int = Field(default=0, description="Per-row errors")
    quota_pauses: int = Field(default=0, description="Quota pauses entered")
    deferred: int = Field(default=0, description="Rows deferred to a later invocation")
    already_had_access: int = Field(default=0, description="Rows needing no grant")
    grants_issued: int = Field(default=0, description="Remote grant calls that succeeded")
    error_preview: List[str] = Field(default_factory=list, description="First errors, bounded")


class StepResultResponse(BaseModel):
    """Outcome of a run or start request."""

    job_name: str
    state: str = Field(..., description="IDLE/RUNNING/QUOTA_PAUSED/COMPLETED/ERROR_ABORT")
    summary: JobSummaryModel
    cursor_row: Optional[int] = Field(default=None, description="Persisted resume row")
    next_delay_seconds: Optional[int] = Field(default=None, description="Scheduled re-invocation delay")
    terminal_rows: Optional[int] = Field(default=None, description="Terminal rows after completion")
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    """Checkpoint and scheduling state of a job."""

    job_name: str
    cursor_row: Optional[int] = None
    continuous: bool = False
    next_run_at: Optional[float] = Field(default=None, description="Epoch seconds of next re-invocation")
    pending_triggers: int = 0


class JobStopResponse(BaseModel):
    """Response from stopping a job."""

    job_name: str
    success: bool
    cancelled_triggers: int = 0
    message: Optional[str] = None
