"""
Shared Pydantic models, enums and trip vocabularies for the batch import API.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

CHARACTERISTIC_OPTIONS = (
    "Strade sterrate",
    "Curve strette",
    "Presenza pedaggi",
    "Presenza traghetti",
    "Autostrada",
    "Bel paesaggio",
    "Visita prolungata",
    "Interesse gastronomico",
    "Interesse storico-culturale",
)

RECOMMENDED_SEASONS = (
    "Primavera",
    "Estate",
    "Autunno",
    "Inverno",
)

ErrorCategory = Literal["structure", "content", "media", "processing"]


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class BatchJobError(BaseModel):
    message: str
    trip_index: Optional[int] = None
    stage_index: Optional[int] = None
    field: Optional[str] = None
    category: Optional[ErrorCategory] = None


class BatchJobSnapshot(BaseModel):
    """Read-only projection of a batch job record."""
    job_id: str
    owner_id: str
    status: JobStatus
    total_trips: int = 0
    processed_trips: int = 0
    created_trip_ids: list[str] = Field(default_factory=list)
    errors: list[BatchJobError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    started_at: str
    completed_at: Optional[str] = None


class BatchStartResponse(BaseModel):
    job_id: str
    message: str
    status_url: str


class BatchProgress(BaseModel):
    percentage: int
    completed: int
    total: int
    remaining: int


class ErrorDetail(BatchJobError):
    suggestion: Optional[str] = None
    example: Optional[str] = None


class ErrorGroupResponse(BaseModel):
    category: ErrorCategory
    title: str
    errors: list[ErrorDetail]


class BatchStatusResponse(BatchJobSnapshot):
    progress: BatchProgress
    has_errors: bool
    is_complete: bool
    duration_ms: int = 0
    error_groups: list[ErrorGroupResponse] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    deleted: int
    max_age_hours: int
