"""Pydantic models for matching jobs and queue admission."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Matching job states.

    State Transitions:
        - queued → processing (admitted by the queue manager)
        - queued → cancelled (cancellation requested before admission)
        - processing → completed | failed | cancelled
    """
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: TERMINAL_STATUSES,
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class CancellationType(str, Enum):
    """GRACEFUL finishes the current batch; IMMEDIATE stops at the next item."""
    GRACEFUL = "graceful"
    IMMEDIATE = "immediate"


class StageName(str, Enum):
    """Stages a job may run, in waterfall order."""
    INTERCHANGE = "interchange"
    EXACT = "exact"
    RULES = "rules"
    FUZZY = "fuzzy"
    AI = "ai"
    WEB_SEARCH = "web_search"


DETERMINISTIC_STAGES: List[StageName] = [
    StageName.INTERCHANGE,
    StageName.EXACT,
    StageName.RULES,
    StageName.FUZZY,
]
EXTERNAL_STAGES: FrozenSet[StageName] = frozenset({StageName.AI, StageName.WEB_SEARCH})


class JobConfig(BaseModel):
    """Per-job overrides of the matching configuration."""

    stages: List[StageName] = Field(default_factory=lambda: list(DETERMINISTIC_STAGES))
    batch_size: Optional[int] = Field(default=None, ge=1, le=5000)
    fuzzy_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    max_candidates_per_item: Optional[int] = Field(default=None, ge=1, le=5000)

    @property
    def uses_external_stages(self) -> bool:
        return any(stage in EXTERNAL_STAGES for stage in self.stages)


class MatchingJob(BaseModel):
    """Job record persisted by a JobStore.

    Attributes:
        id: Job identifier
        project_id: Project whose catalogs the job reconciles
        user_id: User that requested the job
        status: Current state
        priority: Higher values are admitted first
        queued_at: Enqueue time, FIFO tie-break within equal priority
        processed_items / total_items: Monotonic progress pair
        current_stage: Stage currently executing
        in_external_stage: True while holding an external-stage slot
        cancellation_requested / cancellation_type: Cooperative cancellation
        error_message: Failure reason for failed jobs
        metrics: Final matching metrics
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    status: JobStatus = JobStatus.QUEUED
    priority: int = 0
    config: JobConfig = Field(default_factory=JobConfig)
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    processed_items: int = Field(default=0, ge=0)
    total_items: int = Field(default=0, ge=0)
    current_stage: Optional[StageName] = None
    in_external_stage: bool = False
    cancellation_requested: bool = False
    cancellation_type: Optional[CancellationType] = None
    cancelled_by: Optional[str] = None
    error_message: Optional[str] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percentage(self) -> int:
        if self.total_items == 0:
            return 100 if self.status == JobStatus.COMPLETED else 0
        return min(100, int(self.processed_items * 100 / self.total_items))

    def to_json(self) -> str:
        """Serialize to JSON string for Redis storage."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "MatchingJob":
        """Deserialize from JSON string."""
        return cls.model_validate_json(data)


class JobCounts(BaseModel):
    """Processing job counts relevant to one admission decision."""

    global_processing: int = 0
    user_processing: int = 0
    project_processing: int = 0
    external_stage_processing: int = 0


class AdmissionResult(BaseModel):
    """Structured admission decision; denial is a value, never an exception."""

    job_id: str
    can_start: bool
    reason: Optional[str] = None
    counts: JobCounts = Field(default_factory=JobCounts)
    limits: Dict[str, int] = Field(default_factory=dict)
