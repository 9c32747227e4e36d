"""
Job lifecycle manager.

Submits batches of generation jobs, polls each one on a worker thread,
reconciles progress into the history log, and handles cancellation and
cleanup of finished entries.
"""

import base64
import queue
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path

from smoothloop.client import JobClient
from smoothloop.config.logging import get_logger
from smoothloop.config.models import (
    GenerationRequest,
    HistoryEntry,
    HistoryStatus,
    JobStatus,
    ProgressDetails,
)
from smoothloop.config.settings import Settings, get_settings
from smoothloop.errors import JobCancelledError, JobClientError, SmoothLoopError
from smoothloop.history import HistoryStore, create_thumbnail
from smoothloop.poller import poll_job_completion

logger = get_logger(__name__)

#: Seeds are drawn uniformly from this inclusive range.
SEED_RANGE: tuple[int, int] = (1, 999999)


def _thumbnail(image_bytes: bytes) -> str:
    try:
        return create_thumbnail(image_bytes)
    except (OSError, ValueError) as e:
        raise SmoothLoopError(f"Could not read image: {e}") from e


@dataclass
class _Batch:
    image_bytes: bytes
    request: GenerationRequest


class GenerationManager:
    """
    Coordinates batches of generation jobs against the job API.

    Parameters
    ----------
    client : JobClient
        API client.
    store : HistoryStore
        History log updated as jobs progress.
    settings : Settings, optional
        Polling and submission settings.
    sleep : callable, optional
        Delay function used between submissions; injected for tests.
    """

    def __init__(
        self,
        client: JobClient,
        store: HistoryStore,
        settings: Settings | None = None,
        sleep=time.sleep,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self._sleep = sleep

        self._lock = threading.Lock()
        self._cancel_events: dict[str, threading.Event] = {}
        self._generating = 0
        self._queued_jobs = 0
        self._current_progress = 0
        self._current_details: ProgressDetails | None = None

        self._queue: queue.Queue[_Batch | None] = queue.Queue()
        self._dispatcher: threading.Thread | None = None
        self._closed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_generating(self) -> bool:
        return self._generating > 0

    @property
    def queued_jobs(self) -> int:
        return self._queued_jobs

    @property
    def current_progress(self) -> int:
        return self._current_progress

    @property
    def current_details(self) -> ProgressDetails | None:
        return self._current_details

    # -------------------------------------------------------------------------
    # Batch execution
    # -------------------------------------------------------------------------

    def generate(self, image_bytes: bytes | None, request: GenerationRequest) -> list[str]:
        """
        Run one batch and block until every job has settled.

        Parameters
        ----------
        image_bytes : bytes
            Source image shared by every job in the batch.
        request : GenerationRequest
            Generation settings; ``batch_size`` jobs are submitted.

        Returns
        -------
        list[str]
            History entry ids created for the batch.

        Raises
        ------
        SmoothLoopError
            If the manager is shut down, no readable image was given, or
            the batch is larger than allowed.
        """
        if self._closed:
            raise SmoothLoopError("Generation manager is shut down")
        if not image_bytes:
            raise SmoothLoopError("Please select an image and enter a prompt")
        if request.batch_size > self.settings.max_batch_size:
            raise SmoothLoopError(
                f"Batch size {request.batch_size} exceeds maximum ({self.settings.max_batch_size})"
            )

        with self._lock:
            self._generating += 1
            self._current_progress = 0
            self._current_details = None

        try:
            thumbnail = _thumbnail(image_bytes)
            planned = self._create_entries(request, thumbnail)

            with ThreadPoolExecutor(
                max_workers=len(planned),
                thread_name_prefix="smoothloop-job",
            ) as pool:
                futures = []
                for i, (entry_id, seed) in enumerate(planned):
                    # Stagger submissions so the service does not contend on its job files.
                    if i > 0 and self.settings.submit_stagger and not self._closed:
                        self._sleep(self.settings.submit_stagger)

                    job_id = self._submit(entry_id, image_bytes, request, seed)
                    if job_id is not None:
                        futures.append(pool.submit(self._track, entry_id, job_id))

                wait(futures)

            logger.info(f"Batch of {len(planned)} settled")
            return [entry_id for entry_id, _ in planned]
        finally:
            with self._lock:
                self._generating -= 1
                if not self._generating:
                    self._current_progress = 0
                    self._current_details = None

    def _create_entries(
        self,
        request: GenerationRequest,
        thumbnail: str,
    ) -> list[tuple[str, int]]:
        """Add a pending history entry per job up front so the UI sees the whole batch."""
        planned = []
        for i in range(request.batch_size):
            seed = random.randint(*SEED_RANGE)
            now_ms = int(time.time() * 1000)
            entry_id = f"{now_ms}-{i}"
            self.store.add(
                HistoryEntry(
                    id=entry_id,
                    prompt=request.prompt,
                    negative_prompt=request.negative_prompt,
                    image_preview=thumbnail,
                    status=HistoryStatus.PENDING,
                    timestamp=now_ms,
                    resolution=request.resolution,
                    frames=request.frames,
                    seed=seed,
                )
            )
            planned.append((entry_id, seed))
        return planned

    def _submit(
        self,
        entry_id: str,
        image_bytes: bytes,
        request: GenerationRequest,
        seed: int,
    ) -> str | None:
        if self._is_cancelled(entry_id):
            self._drop_cancelled(entry_id)
            return None
        try:
            job_id = self.client.submit_generation(image_bytes, request, seed)
        except SmoothLoopError as e:
            logger.error(f"Failed to submit job for {entry_id}: {e}")
            self.store.update(entry_id, status=HistoryStatus.FAILED, error=str(e))
            return None

        self.store.update(entry_id, job_id=job_id)
        if self._is_cancelled(entry_id):
            # Cancelled while the submission was in flight.
            try:
                self.client.cancel_job(job_id)
            except JobClientError as e:
                logger.warning(f"Remote cancel failed for job {job_id}: {e}")
            self._drop_cancelled(entry_id)
            return None
        return job_id

    def _drop_cancelled(self, entry_id: str) -> None:
        with self._lock:
            self._cancel_events.pop(entry_id, None)
        if self._closed:
            self.store.update(
                entry_id,
                status=HistoryStatus.CANCELLED,
                error="Generation manager is shut down",
            )

    def _track(self, entry_id: str, job_id: str) -> None:
        """Poll one job and reconcile its outcome into the history log."""
        cancel_event = self._cancel_event(entry_id)

        def on_progress(progress: int, details: ProgressDetails) -> None:
            self._current_progress = progress
            self._current_details = details
            self.store.update(entry_id, progress=progress, progress_details=details)

        try:
            status = poll_job_completion(
                self.client,
                job_id,
                on_progress,
                interval=self.settings.poll_interval,
                max_retries=self.settings.poll_max_retries,
                backoff=self.settings.poll_backoff,
                timeout=self.settings.poll_timeout,
                cancel_event=cancel_event,
            )
            video_path = self._save_output(entry_id, status)
        except JobCancelledError as e:
            logger.info(f"Job {job_id} cancelled: {e}")
            self.store.update(entry_id, status=HistoryStatus.CANCELLED, error=str(e))
        except SmoothLoopError as e:
            logger.error(f"Generation failed for job {job_id}: {e}")
            self.store.update(entry_id, status=HistoryStatus.FAILED, error=str(e))
        except OSError as e:
            logger.error(f"Could not store output of job {job_id}: {e}")
            self.store.update(entry_id, status=HistoryStatus.FAILED, error=str(e))
        else:
            self.store.update(
                entry_id,
                status=HistoryStatus.COMPLETED,
                progress=100,
                video_path=str(video_path),
            )
        finally:
            with self._lock:
                self._cancel_events.pop(entry_id, None)

    def _save_output(self, entry_id: str, status: JobStatus) -> Path:
        """Write the first output of a completed job into the outputs directory."""
        if not status.outputs:
            raise SmoothLoopError(f"Job {status.job_id} completed without outputs")

        output = status.outputs[0]
        if output.data:
            video = base64.b64decode(output.data)
        elif output.url:
            video = self.client.download(output.url)
        else:
            raise JobClientError(f"Output {output.filename} has neither data nor url")

        outputs_dir = Path(self.settings.outputs_dir).expanduser()
        outputs_dir.mkdir(parents=True, exist_ok=True)
        path = outputs_dir / f"video-{entry_id}.mp4"
        path.write_bytes(video)
        logger.info(f"Saved {len(video) / 1e6:.2f} MB video to {path}")
        return path

    # -------------------------------------------------------------------------
    # Queueing
    # -------------------------------------------------------------------------

    def enqueue(self, image_bytes: bytes | None, request: GenerationRequest) -> None:
        """
        Queue a batch behind any batch already running.

        Batches run one at a time, in order, on a single dispatcher thread.
        """
        if not image_bytes:
            raise SmoothLoopError("Please select an image and enter a prompt")
        _thumbnail(image_bytes)

        with self._lock:
            if self._closed:
                raise SmoothLoopError("Generation manager is shut down")
            self._queued_jobs += request.batch_size
            if self._dispatcher is None or not self._dispatcher.is_alive():
                self._dispatcher = threading.Thread(
                    target=self._dispatch,
                    name="smoothloop-dispatcher",
                    daemon=True,
                )
                self._dispatcher.start()
            self._queue.put(_Batch(image_bytes, request))

        logger.info(f"Queued {request.batch_size} job(s), {self._queued_jobs} waiting")

    def _dispatch(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is None:
                    return
                with self._lock:
                    self._queued_jobs -= batch.request.batch_size
                if self._closed:
                    continue
                try:
                    self.generate(batch.image_bytes, batch.request)
                except Exception:
                    logger.exception("Queued batch failed")
            finally:
                self._queue.task_done()

    def join(self) -> None:
        """Block until every queued batch has run or been dropped by shutdown."""
        self._queue.join()

    # -------------------------------------------------------------------------
    # Cancellation and cleanup
    # -------------------------------------------------------------------------

    def _cancel_event(self, entry_id: str) -> threading.Event:
        with self._lock:
            event = self._cancel_events.setdefault(entry_id, threading.Event())
            if self._closed:
                event.set()
            return event

    def _is_cancelled(self, entry_id: str) -> bool:
        with self._lock:
            if self._closed:
                return True
            event = self._cancel_events.get(entry_id)
        return event is not None and event.is_set()

    def cancel(self, entry_id: str) -> bool:
        """
        Cancel a pending generation and drop it from history.

        The remote job is cancelled when its id is known; a failed remote
        cancel is logged and the local entry is still removed.

        Returns
        -------
        bool
            True if an entry was found.
        """
        entry = self.store.get(entry_id)
        if entry is None:
            return False

        if entry.status == HistoryStatus.PENDING:
            self._cancel_event(entry_id).set()
            if entry.job_id:
                try:
                    self.client.cancel_job(entry.job_id)
                except JobClientError as e:
                    logger.warning(f"Remote cancel failed for job {entry.job_id}: {e}")
            self.store.update(entry_id, status=HistoryStatus.CANCELLED)

        self.delete(entry_id)
        return True

    def delete(self, entry_id: str) -> bool:
        """Remove an entry and its stored video."""
        entry = self.store.remove(entry_id)
        if entry is None:
            return False
        if entry.video_path:
            Path(entry.video_path).unlink(missing_ok=True)
        return True

    def shutdown(self) -> None:
        """
        Stop the dispatcher and interrupt every in-flight poll.

        Batches still waiting in the queue are dropped, and jobs of the
        running batch that were not yet submitted are marked cancelled.
        """
        with self._lock:
            self._closed = True
            for event in self._cancel_events.values():
                event.set()
            dispatcher = self._dispatcher
            dropped = 0
            while True:
                try:
                    batch = self._queue.get_nowait()
                except queue.Empty:
                    break
                if batch is not None:
                    self._queued_jobs -= batch.request.batch_size
                    dropped += 1
                self._queue.task_done()
        if dropped:
            logger.info(f"Dropped {dropped} queued batch(es) on shutdown")
        if dispatcher is not None and dispatcher.is_alive():
            self._queue.put(None)
