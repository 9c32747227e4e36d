import io
import json
import threading
from pathlib import Path

import httpx
import pytest
from PIL import Image

from smoothloop.config.settings import Settings
from smoothloop.history import HistoryStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at temporary storage with near-instant polling."""
    return Settings(
        _env_file=None,
        api_url="https://jobs.test",
        poll_interval=0.01,
        poll_max_retries=3,
        poll_backoff=1.0,
        poll_timeout=0,
        submit_stagger=0,
        history_path=tmp_path / "history.json",
        outputs_dir=tmp_path / "outputs",
    )


@pytest.fixture
def store(settings: Settings) -> HistoryStore:
    return HistoryStore(settings.history_path, limit=settings.history_limit)


@pytest.fixture
def image_bytes() -> bytes:
    """A small landscape PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (640, 320), color=(200, 40, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeJobApi:
    """In-memory stand-in for the remote /v1/jobs API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.submissions: list[dict] = []
        self.statuses: dict[str, list[dict]] = {}
        self.cancelled: list[str] = []
        self.submit_reply: dict | None = None
        self.files: dict[str, bytes] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def script(self, job_id: str, *statuses: dict) -> None:
        """Queue status payloads; the last one repeats once exhausted."""
        self.statuses[job_id] = [{"job_id": job_id, **s} for s in statuses]

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            return self._handle(request)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.files:
            return httpx.Response(200, content=self.files[path])

        if request.method == "POST" and path == "/v1/jobs":
            body = json.loads(request.content)
            self.submissions.append(body)
            if self.submit_reply is not None:
                return httpx.Response(200, json=self.submit_reply)
            self._counter += 1
            job_id = f"job-{self._counter}"
            self.statuses.setdefault(job_id, [{"job_id": job_id, "status": "queued"}])
            return httpx.Response(200, json={"job_id": job_id, "status": "queued"})

        if request.method == "GET" and path == "/v1/jobs":
            jobs = [{"job_id": k, "status": v[-1]["status"]} for k, v in self.statuses.items()]
            return httpx.Response(200, json={"jobs": jobs})

        if path.startswith("/v1/jobs/"):
            job_id = path.rsplit("/", 1)[-1]
            if job_id not in self.statuses:
                return httpx.Response(404, json={"detail": "Job not found"})
            if request.method == "DELETE":
                self.cancelled.append(job_id)
                self.statuses[job_id] = [{"job_id": job_id, "status": "cancelled"}]
                return httpx.Response(200, json={"job_id": job_id, "status": "cancelled"})
            queue = self.statuses[job_id]
            payload = queue.pop(0) if len(queue) > 1 else queue[0]
            return httpx.Response(200, json=payload)

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_api() -> FakeJobApi:
    return FakeJobApi()
