"""Exception hierarchy for SmoothLoop Studio."""


class SmoothLoopError(Exception):
    """Base class for all application errors."""


class WorkflowError(SmoothLoopError):
    """Workflow template could not be loaded or patched."""


class JobClientError(SmoothLoopError):
    """Request to the job API failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidJobIdError(JobClientError):
    """Job id is empty or the literal string ``undefined``."""


class JobSubmissionError(JobClientError):
    """Job API did not accept the submission."""


class JobStatusError(JobClientError):
    """Job status could not be retrieved."""


class JobCancelError(JobClientError):
    """Job API rejected a cancellation."""


class PollingError(SmoothLoopError):
    """Polling gave up before the job reached a terminal state."""


class PollTimeoutError(PollingError):
    """Job did not finish within the polling time limit."""


class JobFailedError(SmoothLoopError):
    """Job API reported the job as failed."""


class JobCancelledError(SmoothLoopError):
    """Job was cancelled remotely or locally."""
