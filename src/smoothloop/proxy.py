"""
FastAPI proxy in front of the job API.

Browser front ends call these routes on the same origin; the proxy forwards
them to the Modal deployment with the configured credentials.

Endpoints
---------
POST /api/submit-job
    Forward a job envelope to ``POST /v1/jobs``.
GET /api/check-job/{job_id}
    Forward to ``GET /v1/jobs/{job_id}``.
DELETE /api/cancel-job/{job_id}
    Forward to ``DELETE /v1/jobs/{job_id}``.
GET /health
    Proxy liveness and upstream URL.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from smoothloop import __version__
from smoothloop.config.logging import get_logger
from smoothloop.config.settings import Settings, get_settings

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    transport: httpx.BaseTransport | None = None,
) -> FastAPI:
    """
    Create the proxy application.

    Parameters
    ----------
    settings : Settings, optional
        Upstream URL and credentials.
    transport : httpx.BaseTransport, optional
        Transport for upstream calls, used in tests.

    Returns
    -------
    fastapi.FastAPI
        Configured ASGI application instance.
    """
    settings = settings or get_settings()
    api_url = settings.api_url.rstrip("/")

    headers = {}
    if settings.api_key:
        headers["Authorization"] = f"Bearer {settings.api_key}"
    if settings.user_id:
        headers["X-User-ID"] = settings.user_id

    upstream = httpx.Client(
        base_url=api_url,
        headers=headers,
        timeout=settings.request_timeout,
        follow_redirects=True,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        upstream.close()

    app = FastAPI(
        lifespan=lifespan,
        title="SmoothLoop Proxy",
        description="Same-origin proxy for the ComfyUI job API.",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def failure(message: str) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": message})

    @app.get("/health", tags=["Info"])
    def health() -> dict[str, Any]:
        return {"status": "ok", "upstream": api_url}

    @app.post("/api/submit-job", tags=["Jobs"])
    def submit_job(body: dict[str, Any] = Body(...)) -> Any:
        try:
            response = upstream.post("/v1/jobs", json=body)
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error submitting job: {e}")
            return failure("Failed to submit job")

    @app.get("/api/check-job/{job_id}", tags=["Jobs"])
    def check_job(job_id: str) -> Any:
        try:
            response = upstream.get(f"/v1/jobs/{job_id}")
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error checking job {job_id}: {e}")
            return failure("Failed to check job status")

    @app.delete("/api/cancel-job/{job_id}", tags=["Jobs"])
    def cancel_job(job_id: str) -> Any:
        try:
            response = upstream.delete(f"/v1/jobs/{job_id}")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error cancelling job {job_id}: {e}")
            return failure("Failed to cancel job")

    return app


def main() -> None:
    """Serve the proxy with uvicorn."""
    import uvicorn

    from smoothloop.config.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.proxy_host, port=settings.proxy_port)


if __name__ == "__main__":
    main()
