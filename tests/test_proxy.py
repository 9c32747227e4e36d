import httpx
import pytest
from fastapi.testclient import TestClient

from smoothloop.proxy import create_app


@pytest.fixture
def proxy(settings, fake_api) -> TestClient:
    return TestClient(create_app(settings, transport=fake_api.transport))


def test_health_reports_upstream(proxy) -> None:
    response = proxy.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "upstream": "https://jobs.test"}


def test_submit_job_forwards_body(proxy, fake_api) -> None:
    body = {"workflow": {"1": {"inputs": {}}}, "inputs": [], "media": [], "priority": 1}

    response = proxy.post("/api/submit-job", json=body)

    assert response.status_code == 200
    assert response.json()["job_id"] == "job-1"
    assert fake_api.submissions == [body]


def test_submit_job_passes_upstream_error_payload(proxy, fake_api) -> None:
    fake_api.submit_reply = {"error": "quota exceeded"}

    response = proxy.post("/api/submit-job", json={"workflow": {}})

    assert response.json() == {"error": "quota exceeded"}


def test_check_job_forwards(proxy, fake_api) -> None:
    fake_api.script("j1", {"status": "running", "progress": 30})

    response = proxy.get("/api/check-job/j1")

    assert response.status_code == 200
    assert response.json() == {"job_id": "j1", "status": "running", "progress": 30}


def test_cancel_job_forwards(proxy, fake_api) -> None:
    fake_api.script("j1", {"status": "running"})

    response = proxy.delete("/api/cancel-job/j1")

    assert response.status_code == 200
    assert fake_api.cancelled == ["j1"]


def test_cancel_job_upstream_error_becomes_500(proxy) -> None:
    response = proxy.delete("/api/cancel-job/unknown")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to cancel job"}


def test_unreachable_upstream_becomes_500(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = TestClient(create_app(settings, transport=httpx.MockTransport(handler)))

    assert client.get("/api/check-job/j1").json() == {"error": "Failed to check job status"}
    assert client.post("/api/submit-job", json={}).json() == {"error": "Failed to submit job"}
