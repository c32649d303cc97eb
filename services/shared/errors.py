"""Error taxonomy for the invoice pipeline.

Each error carries a ``retryable`` flag consulted by the job retry policy.
Provider-level failures are collected by the orchestrator and only surface
when every source fails.
"""


class PipelineError(Exception):
    """Base class for pipeline errors."""

    retryable: bool = True


class ProviderUnavailable(PipelineError):
    """A configured extraction source could not be reached or returned no data."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class ExtractionFailed(PipelineError):
    """No usable extraction result could be produced for a document."""


class AllProvidersFailed(ExtractionFailed):
    """Every attempted extraction source failed."""

    def __init__(self, causes: list[ProviderUnavailable]) -> None:
        detail = "; ".join(str(c) for c in causes) or "no provider attempted"
        super().__init__(f"All OCR providers failed: {detail}")
        self.causes = causes


class ValidationCritical(PipelineError):
    """Validation reported critical findings."""

    retryable = False

    def __init__(self, codes: list[str]) -> None:
        super().__init__(f"Critical validation errors: {', '.join(codes)}")
        self.codes = codes


class QuotaExceeded(PipelineError):
    """Owner has reached the monthly invoice limit of their plan."""

    retryable = False

    def __init__(self, used: int, limit: int) -> None:
        super().__init__(f"Monthly invoice limit reached ({used}/{limit})")
        self.used = used
        self.limit = limit


class InvalidSubmission(PipelineError):
    """Submitted file was rejected before a job was created."""

    retryable = False


class UploadFailed(PipelineError):
    """Writing an object to the blob store failed."""


class DownloadFailed(PipelineError):
    """Reading an object from the blob store failed."""


class DocumentGenerationFailed(PipelineError):
    """The interchange document could not be generated."""


class RetryExhausted(PipelineError):
    """A job failed on its final allowed attempt."""

    retryable = False

    def __init__(self, job_id: str, attempts: int, last_error: str) -> None:
        super().__init__(f"Job {job_id} failed after {attempts} attempts: {last_error}")
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error


class JobCancelled(PipelineError):
    """A job was cancelled or ran past its deadline."""

    retryable = False


class JobNotFound(PipelineError):
    retryable = False


class InvalidTransition(PipelineError):
    """A job state change not allowed by the state machine."""

    retryable = False
