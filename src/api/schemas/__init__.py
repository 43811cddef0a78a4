"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .jobs import (
    JobSummaryModel,
    StepResultResponse,
    JobStatusResponse,
    JobStopResponse,
)

__all__ = [
    "JobSummaryModel",
    "StepResultResponse",
    "JobStatusResponse",
    "JobStopResponse",
]
