"""Polling loop that waits for a submitted job to reach a terminal state."""

import threading
import time
from collections.abc import Callable

from smoothloop.client import JobClient, validate_job_id
from smoothloop.config.logging import get_logger
from smoothloop.config.models import JobState, JobStatus, ProgressDetails
from smoothloop.errors import (
    JobCancelledError,
    JobClientError,
    JobFailedError,
    PollingError,
    PollTimeoutError,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, ProgressDetails], None]


def _raise_if_cancelled(cancel_event: threading.Event | None, job_id: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError(f"Polling cancelled for job {job_id}")


def poll_job_completion(
    client: JobClient,
    job_id: str,
    on_progress: ProgressCallback | None = None,
    *,
    interval: float = 3.0,
    max_retries: int = 3,
    backoff: float = 2.0,
    timeout: float = 0.0,
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> JobStatus:
    """
    Poll a job until it completes, fails, or polling gives up.

    Parameters
    ----------
    client : JobClient
        Client used for status checks.
    job_id : str
        Job to poll.
    on_progress : callable, optional
        Called with ``(progress, details)`` after every successful check.
    interval : float
        Seconds to wait before each check.
    max_retries : int
        Consecutive failed checks tolerated before raising.
    backoff : float
        The wait after ``n`` consecutive failures is ``interval * backoff**n``.
    timeout : float
        Overall limit in seconds; 0 disables it.
    cancel_event : threading.Event, optional
        When set, polling stops with ``JobCancelledError``.
    sleep : callable, optional
        Delay function. Defaults to waiting on ``cancel_event`` when one is
        given, otherwise ``time.sleep``. An injected function is always used
        and ``cancel_event`` is checked before and after each delay.
    clock : callable
        Injected for tests.

    Returns
    -------
    JobStatus
        Final status of a completed job.

    Raises
    ------
    InvalidJobIdError
        If ``job_id`` is empty or ``"undefined"``.
    JobFailedError
        If the service reports the job as failed.
    JobCancelledError
        If the job was cancelled remotely or ``cancel_event`` was set.
    PollingError
        After ``max_retries`` consecutive failed checks.
    PollTimeoutError
        If ``timeout`` elapses first.
    """
    validate_job_id(job_id)

    started = clock()
    failures = 0

    while True:
        delay = interval * (backoff**failures) if failures else interval
        if sleep is not None:
            _raise_if_cancelled(cancel_event, job_id)
            sleep(delay)
            _raise_if_cancelled(cancel_event, job_id)
        elif cancel_event is not None:
            if cancel_event.wait(delay):
                raise JobCancelledError(f"Polling cancelled for job {job_id}")
        else:
            time.sleep(delay)

        if timeout and clock() - started > timeout:
            raise PollTimeoutError(f"Job {job_id} did not finish within {timeout:.0f}s")

        try:
            status = client.check_job(job_id)
        except JobClientError as e:
            failures += 1
            logger.warning(f"Polling attempt {failures} failed for job {job_id}: {e}")
            if failures >= max_retries:
                raise PollingError(
                    f"Failed to check job status after {max_retries} retries"
                ) from e
            continue

        failures = 0

        if on_progress is not None:
            on_progress(status.progress, status.details())

        if status.status == JobState.COMPLETED:
            logger.info(f"Job {job_id} completed")
            return status
        if status.status == JobState.FAILED:
            raise JobFailedError(status.error or "Job failed")
        if status.status == JobState.CANCELLED:
            raise JobCancelledError(status.error or f"Job {job_id} was cancelled")

        logger.debug(f"Job {job_id} {status.status.value} at {status.progress}%")
