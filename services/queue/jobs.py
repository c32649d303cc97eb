"""Job models, state machine, retry policy and cancellation tokens.

State machine per job::

    queued -> active -> completed
                     -> failed
                     -> delayed -> queued      (automatic retry after backoff)
    failed -> queued                           (manual retry)
    queued | delayed -> failed                 (cancelled before running)
"""

import time
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from services.records.models import utcnow
from services.shared.config import Settings
from services.shared.errors import InvalidTransition, JobCancelled


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.QUEUED: {JobState.ACTIVE, JobState.FAILED},
    JobState.ACTIVE: {JobState.COMPLETED, JobState.FAILED, JobState.DELAYED},
    JobState.DELAYED: {JobState.QUEUED, JobState.FAILED},
    JobState.FAILED: {JobState.QUEUED},
    JobState.COMPLETED: set(),
}

TERMINAL_STATES = {JobState.COMPLETED, JobState.FAILED}

HIGH_PRIORITY = 1
DEFAULT_PRIORITY = 5


class FileReference(BaseModel):
    """A submitted document in the blob store.

    Attributes:
        key: Blob-store key of the document
        file_name: Original file name
        mime_type: Declared media type
        size: Size in bytes
    """

    key: str
    file_name: str
    mime_type: str
    size: int = Field(ge=0)


class JobOptions(BaseModel):
    priority: int = Field(DEFAULT_PRIORITY, ge=1, le=10, description="Lower runs first")
    auto_fix: bool = False
    skip_validation: bool = False
    preferred_provider: str | None = None
    min_confidence: float | None = Field(None, ge=0, le=1)
    enable_template_matching: bool = True


class JobRecord(BaseModel):
    """Mutable state of one invoice processing job."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    invoice_id: str
    owner_id: str
    file: FileReference
    options: JobOptions = Field(default_factory=JobOptions)
    state: JobState = JobState.QUEUED
    progress: int = 0
    checkpoint: str | None = None
    attempts_made: int = 0
    max_attempts: int = 3
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None


class JobStatus(BaseModel):
    job_id: str
    invoice_id: str
    state: JobState
    progress: int
    attempts_made: int
    error: str | None = None

    @classmethod
    def from_job(cls, job: JobRecord) -> "JobStatus":
        return cls(
            job_id=job.id,
            invoice_id=job.invoice_id,
            state=job.state,
            progress=job.progress,
            attempts_made=job.attempts_made,
            error=job.error,
        )


class QueueStats(BaseModel):
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class QueueHealth(BaseModel):
    healthy: bool
    issues: list[str] = Field(default_factory=list)
    stats: QueueStats


def transition(job: JobRecord, target: JobState) -> None:
    """Move a job to ``target``.

    Raises:
        InvalidTransition: If the state machine does not allow the change
    """
    if target not in ALLOWED_TRANSITIONS[job.state]:
        raise InvalidTransition(f"Job {job.id} cannot move from {job.state.value} to {target.value}")
    job.state = target


class RetryPolicy(BaseModel):
    """Attempt budget and exponential backoff schedule.

    ``delay_for(n)`` is the wait after the n-th failed attempt:
    base_delay * factor ** (n - 1), i.e. 2s, 4s, 8s with the defaults.
    """

    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(2.0, ge=0)
    factor: float = Field(2.0, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.queue_max_attempts,
            base_delay=settings.queue_backoff_base_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * self.factor ** max(attempt - 1, 0)

    def should_retry(self, attempts_made: int, error: BaseException) -> bool:
        return getattr(error, "retryable", True) and attempts_made < self.max_attempts


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Checkpoints call ``check()``, which raises ``JobCancelled`` once the
    token is cancelled or the deadline has passed.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._deadline = time.monotonic() + timeout if timeout else None
        self._reason: str | None = None

    def cancel(self, reason: str = "Job cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        if self._reason is None and self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "Job exceeded its processing deadline"
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason if self.cancelled else None

    def check(self) -> None:
        if self.cancelled:
            raise JobCancelled(self._reason)
