"""
HTTP client for the Modal-hosted ComfyUI job API.

The API exposes a small job resource::

    POST   /v1/jobs            submit a workflow, returns {"job_id": ...}
    GET    /v1/jobs            list recent jobs
    GET    /v1/jobs/{job_id}   job status, progress and outputs
    DELETE /v1/jobs/{job_id}   cancel a queued or running job
"""

import base64
from pathlib import Path
from typing import Any

import httpx

from smoothloop.config.logging import get_logger
from smoothloop.config.models import (
    GenerationRequest,
    JobStatus,
    JobSubmission,
    MediaInput,
)
from smoothloop.config.settings import Settings, get_settings
from smoothloop.errors import (
    InvalidJobIdError,
    JobCancelError,
    JobClientError,
    JobStatusError,
    JobSubmissionError,
)
from smoothloop.workflow import build_workflow, prompt_inputs

logger = get_logger(__name__)

#: File name the workflow's LoadImage node expects.
MEDIA_NAME: str = "image.jpg"


def validate_job_id(job_id: str | None) -> str:
    """Reject empty ids and the ``"undefined"`` placeholder."""
    if not job_id or job_id == "undefined":
        raise InvalidJobIdError("Invalid job ID")
    return job_id


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return str(data.get("error") or data.get("detail") or data)
    return str(data)


class JobClient:
    """
    Synchronous client for submitting and tracking generation jobs.

    Parameters
    ----------
    settings : Settings, optional
        Connection settings. Defaults to the cached application settings.
    transport : httpx.BaseTransport, optional
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()

        headers = {"Accept": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        if self.settings.user_id:
            headers["X-User-ID"] = self.settings.user_id

        self._http = httpx.Client(
            base_url=self.settings.api_url.rstrip("/"),
            headers=headers,
            timeout=self.settings.request_timeout,
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "JobClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Low-level request helper
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        error_cls: type[JobClientError],
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise error_cls(f"Request timed out: {method} {url}") from e
        except httpx.RequestError as e:
            raise error_cls(f"Connection error: {e}") from e

    # -------------------------------------------------------------------------
    # Job API
    # -------------------------------------------------------------------------

    def submit_job(self, submission: JobSubmission) -> str:
        """
        Submit a job envelope.

        Returns
        -------
        str
            Job id assigned by the service.

        Raises
        ------
        JobSubmissionError
            If the service did not return a job id.
        """
        body = submission.model_dump(mode="json", exclude_none=True)
        if "user_id" not in body and self.settings.user_id:
            body["user_id"] = self.settings.user_id

        response = self._request("POST", "/v1/jobs", JobSubmissionError, json=body)

        try:
            data = response.json()
        except ValueError:
            data = {}

        job_id = data.get("job_id") if isinstance(data, dict) else None
        if not job_id:
            error = data.get("error") if isinstance(data, dict) else None
            raise JobSubmissionError(
                error or "Failed to submit job - no job ID returned",
                status_code=response.status_code,
            )

        logger.info(f"Submitted job {job_id}")
        return str(job_id)

    def check_job(self, job_id: str) -> JobStatus:
        """Fetch the current status of a job."""
        validate_job_id(job_id)
        response = self._request("GET", f"/v1/jobs/{job_id}", JobStatusError)

        if not response.is_success:
            raise JobStatusError(
                f"Failed to check job status: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            return JobStatus.model_validate(response.json())
        except ValueError as e:
            raise JobStatusError(f"Malformed job status for {job_id}: {e}") from e

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Ask the service to cancel a queued or running job."""
        validate_job_id(job_id)
        response = self._request("DELETE", f"/v1/jobs/{job_id}", JobCancelError)

        if not response.is_success:
            raise JobCancelError(
                f"Failed to cancel job: {response.status_code} {_error_text(response)}",
                status_code=response.status_code,
            )

        logger.info(f"Cancelled job {job_id}")
        try:
            return response.json()
        except ValueError:
            return {"job_id": job_id}

    def list_jobs(self, status: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """List recent jobs for the configured tenant."""
        params: dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status

        response = self._request("GET", "/v1/jobs", JobStatusError, params=params)
        if not response.is_success:
            raise JobStatusError(
                f"Failed to list jobs: {response.status_code} {_error_text(response)}",
                status_code=response.status_code,
            )
        return list(response.json().get("jobs", []))

    def download(self, url: str) -> bytes:
        """Download an output file published by URL."""
        response = self._request("GET", url, JobClientError)
        if not response.is_success:
            raise JobClientError(
                f"Failed to download output: {response.status_code}",
                status_code=response.status_code,
            )
        return response.content

    # -------------------------------------------------------------------------
    # High-level submission
    # -------------------------------------------------------------------------

    def submit_generation(
        self,
        image_bytes: bytes,
        request: GenerationRequest,
        seed: int,
        workflow: str | Path | None = None,
    ) -> str:
        """
        Patch the workflow for one seed and submit it with the source image.

        Parameters
        ----------
        image_bytes : bytes
            Source image.
        request : GenerationRequest
            Generation settings.
        seed : int
            Noise seed for this job.
        workflow : str or Path, optional
            Template override; falls back to ``settings.workflow_path``.

        Returns
        -------
        str
            Job id.
        """
        graph = build_workflow(request, seed, workflow or self.settings.workflow_path)
        submission = JobSubmission(
            workflow=graph,
            inputs=prompt_inputs(request.prompt, request.negative_prompt),
            media=[
                MediaInput(
                    name=MEDIA_NAME,
                    data=base64.b64encode(image_bytes).decode("ascii"),
                )
            ],
            priority=1,
        )
        return self.submit_job(submission)
