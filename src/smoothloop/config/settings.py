"""Application settings using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _home_path(*parts: str) -> Path:
    return Path.home().joinpath(".smoothloop", *parts)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes
    ----------
    api_url : str
        Base URL of the remote ComfyUI job API.
    api_key : str, optional
        Bearer token for the job API.
    user_id : str, optional
        Tenant identifier sent with every request.
    request_timeout : float
        Per-request HTTP timeout in seconds.
    poll_interval : float
        Seconds between job status checks.
    poll_max_retries : int
        Consecutive failed status checks tolerated before giving up.
    poll_backoff : float
        Delay multiplier applied after each failed status check.
    poll_timeout : float
        Overall polling limit per job in seconds (0 disables it).
    submit_stagger : float
        Delay between submissions inside one batch.
    workflow_path : Path, optional
        Workflow template file. The bundled template is used when unset.
    history_path : Path
        JSON file holding the generation history.
    history_limit : int
        Maximum number of history entries kept.
    outputs_dir : Path
        Directory where finished videos are written.
    max_batch_size : int
        Largest batch a single request may ask for.
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR).
    proxy_host : str
        Bind address for the proxy app.
    proxy_port : int
        Bind port for the proxy app.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMOOTHLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API Configuration
    api_url: str = Field(
        default="https://your-workspace--comfyui-saas-api-api.modal.run",
        description="Base URL of the remote job API",
    )
    api_key: str | None = Field(
        default=None,
        description="Bearer token for the job API",
    )
    user_id: str | None = Field(
        default=None,
        max_length=128,
        description="Tenant identifier sent as X-User-ID",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="HTTP request timeout in seconds",
    )

    # Polling
    poll_interval: float = Field(
        default=3.0,
        gt=0,
        le=60,
        description="Seconds between status checks",
    )
    poll_max_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Consecutive failed checks before giving up",
    )
    poll_backoff: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Delay multiplier after a failed check",
    )
    poll_timeout: float = Field(
        default=3600.0,  # 60 minutes
        ge=0,
        description="Overall polling limit per job (0 disables)",
    )

    # Submission
    submit_stagger: float = Field(
        default=0.5,
        ge=0,
        le=30,
        description="Delay between submissions inside one batch",
    )
    max_batch_size: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Largest accepted batch",
    )
    workflow_path: Path | None = Field(
        default=None,
        description="Workflow template (bundled template when unset)",
    )

    # Storage
    history_path: Path = Field(
        default_factory=lambda: _home_path("history.json"),
        description="Generation history file",
    )
    history_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of history entries",
    )
    outputs_dir: Path = Field(
        default_factory=lambda: _home_path("outputs"),
        description="Directory for finished videos",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Proxy
    proxy_host: str = Field(
        default="127.0.0.1",
        description="Proxy bind address",
    )
    proxy_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Proxy bind port",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns
    -------
    Settings
        Application configuration instance.
    """
    return Settings()
