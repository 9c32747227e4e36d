import base64
import json

import httpx
import pytest

from smoothloop.client import JobClient
from smoothloop.config.models import GenerationRequest, JobState, JobSubmission
from smoothloop.errors import (
    InvalidJobIdError,
    JobCancelError,
    JobStatusError,
    JobSubmissionError,
)


def make_client(settings, handler) -> JobClient:
    return JobClient(settings, transport=httpx.MockTransport(handler))


def test_submit_generation_builds_envelope(settings, fake_api, image_bytes) -> None:
    client = JobClient(settings, transport=fake_api.transport)
    request = GenerationRequest(prompt="ocean", negative_prompt="noise", frames=21)

    job_id = client.submit_generation(image_bytes, request, seed=99)

    assert job_id == "job-1"
    body = fake_api.submissions[0]
    assert body["priority"] == 1
    assert body["workflow"]["27"]["inputs"]["seed"] == 99
    assert body["workflow"]["63"]["inputs"]["num_frames"] == 21
    assert body["inputs"] == [
        {"node": "16", "field": "positive_prompt", "value": "ocean", "type": "raw"},
        {"node": "16", "field": "negative_prompt", "value": "noise", "type": "raw"},
    ]
    assert body["media"][0]["name"] == "image.jpg"
    assert base64.b64decode(body["media"][0]["data"]) == image_bytes


def test_submit_job_without_job_id_raises_server_error(settings, fake_api) -> None:
    fake_api.submit_reply = {"error": "GPU quota exceeded"}
    client = JobClient(settings, transport=fake_api.transport)

    with pytest.raises(JobSubmissionError, match="GPU quota exceeded"):
        client.submit_job(JobSubmission(workflow={}))


def test_submit_job_without_job_id_or_error(settings) -> None:
    client = make_client(settings, lambda request: httpx.Response(200, json={}))

    with pytest.raises(JobSubmissionError, match="no job ID returned"):
        client.submit_job(JobSubmission(workflow={}))


def test_credentials_are_sent(settings) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"job_id": "abc"})

    configured = settings.model_copy(update={"api_key": "secret", "user_id": "tenant-1"})
    make_client(configured, handler).submit_job(JobSubmission(workflow={}))

    assert seen["authorization"] == "Bearer secret"
    assert seen["x-user-id"] == "tenant-1"
    assert seen["body"]["user_id"] == "tenant-1"


@pytest.mark.parametrize("job_id", ["", "undefined", None])
def test_check_job_rejects_invalid_ids_without_request(settings, fake_api, job_id) -> None:
    client = JobClient(settings, transport=fake_api.transport)

    with pytest.raises(InvalidJobIdError):
        client.check_job(job_id)
    assert fake_api.requests == []


def test_check_job_parses_status(settings, fake_api) -> None:
    fake_api.script("j1", {"status": "running", "progress": 40, "nodes_done": 2, "nodes_total": 5})
    client = JobClient(settings, transport=fake_api.transport)

    status = client.check_job("j1")

    assert status.status == JobState.RUNNING
    assert status.progress == 40
    assert status.details().nodes_completed == 2


def test_check_job_http_error(settings, fake_api) -> None:
    client = JobClient(settings, transport=fake_api.transport)

    with pytest.raises(JobStatusError) as exc_info:
        client.check_job("missing")
    assert exc_info.value.status_code == 404


def test_transport_failure_becomes_client_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(JobStatusError, match="Connection error"):
        make_client(settings, handler).check_job("j1")


def test_cancel_job(settings, fake_api) -> None:
    fake_api.script("j1", {"status": "running"})
    client = JobClient(settings, transport=fake_api.transport)

    result = client.cancel_job("j1")

    assert result["status"] == "cancelled"
    assert fake_api.cancelled == ["j1"]


def test_cancel_job_failure(settings) -> None:
    client = make_client(settings, lambda request: httpx.Response(409, json={"detail": "already done"}))

    with pytest.raises(JobCancelError, match="already done"):
        client.cancel_job("j1")


def test_list_jobs_passes_filters(settings) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"jobs": [{"job_id": "a", "status": "queued"}]})

    jobs = make_client(settings, handler).list_jobs(status="queued", limit=5)

    assert jobs == [{"job_id": "a", "status": "queued"}]
    assert seen["params"] == {"status": "queued", "limit": "5"}
