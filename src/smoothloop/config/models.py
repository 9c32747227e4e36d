"""Pydantic data models for job requests, status, and history."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Largest frame count offered by the generator (4n+1 values up to 200).
MAX_FRAMES: int = 197

#: Default negative prompt for the Wan 2.2 workflow.
DEFAULT_NEGATIVE_PROMPT: str = (
    "色调艳丽，过曝，静态，细节模糊不清，字幕，风格，作品，画作，画面，静止，整体发灰，"
    "最差质量，低质量，JPEG压缩残留，丑陋的，残缺的，多余的手指，画得不好的手部，"
    "画得不好的脸部，畸形的，毁容的，形态畸形的肢体，手指融合，静止不动的画面，"
    "杂乱的背景，三条腿，背景人很多，倒着走"
)


def valid_frame_counts(limit: int = MAX_FRAMES) -> list[int]:
    """Return every frame count following the 4n+1 rule up to ``limit``."""
    return list(range(1, limit + 1, 4))


class JobState(str, Enum):
    """Remote job states reported by the job API."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})


class Resolution(str, Enum):
    """Supported square output resolutions."""

    SMALL = "768x768"
    LARGE = "1024x1024"

    @property
    def width(self) -> int:
        return int(self.value.split("x")[0])

    @property
    def height(self) -> int:
        return int(self.value.split("x")[1])


class WorkflowInput(BaseModel):
    """Single field override applied to a workflow node by the service."""

    node: str = Field(..., description="Node id in the workflow graph")
    field: str = Field(..., description="Input field on the node")
    value: Any = Field(..., description="Replacement value")
    type: str = Field(default="raw", description="raw | image_base64 | image_url")


class MediaInput(BaseModel):
    """Base64 encoded media file uploaded alongside the workflow."""

    name: str
    data: str


class JobSubmission(BaseModel):
    """Job envelope posted to the job API."""

    workflow: dict[str, Any]
    inputs: list[WorkflowInput] = Field(default_factory=list)
    media: list[MediaInput] = Field(default_factory=list)
    priority: int = 1
    user_id: str | None = None


class JobOutput(BaseModel):
    """One output file of a finished job."""

    model_config = ConfigDict(extra="ignore")

    filename: str
    data: str | None = None
    url: str | None = None


class ProgressDetails(BaseModel):
    """Node-level progress information for display."""

    current_node: str | None = None
    nodes_completed: int | None = None
    nodes_total: int | None = None
    step: str | None = None

    def describe(self) -> str:
        parts = []
        if self.step:
            parts.append(f"Step: {self.step}")
        if self.nodes_completed is not None and self.nodes_total is not None:
            parts.append(f"Node: {self.nodes_completed}/{self.nodes_total}")
        return " | ".join(parts)


class JobStatus(BaseModel):
    """Status payload returned by ``GET /v1/jobs/{job_id}``."""

    model_config = ConfigDict(extra="ignore")

    job_id: str
    status: JobState
    progress: int = Field(default=0, ge=0, le=100)
    outputs: list[JobOutput] = Field(default_factory=list)
    error: str | None = None
    current_node: str | None = None
    nodes_done: int = 0
    nodes_total: int = 0
    current_step: int = 0
    total_steps: int = 0

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, v: Any) -> int:
        """Clamp progress reported by the server into 0..100."""
        if v is None:
            return 0
        return max(0, min(100, int(v)))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def details(self) -> ProgressDetails:
        step = f"{self.current_step}/{self.total_steps}" if self.total_steps else None
        return ProgressDetails(
            current_node=self.current_node,
            nodes_completed=self.nodes_done if self.nodes_total else None,
            nodes_total=self.nodes_total or None,
            step=step,
        )


class GenerationRequest(BaseModel):
    """Parameters for one batch of video generations."""

    prompt: str = Field(..., min_length=1, max_length=4000, description="Animation prompt")
    negative_prompt: str = Field(default=DEFAULT_NEGATIVE_PROMPT, description="Negative prompt")
    resolution: Resolution = Field(default=Resolution.SMALL, description="Output resolution")
    frames: int = Field(default=17, ge=1, le=MAX_FRAMES, description="Frame count (4n+1)")
    batch_size: int = Field(default=1, ge=1, le=16, description="Number of videos")

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be blank")
        return v

    @field_validator("frames")
    @classmethod
    def validate_frames(cls, v: int) -> int:
        """Validate frame count follows 4n+1 rule."""
        if (v - 1) % 4 != 0:
            msg = f"frames must be 4n+1 (e.g., 17, 33, 81). Got {v}"
            raise ValueError(msg)
        return v


class HistoryStatus(str, Enum):
    """Lifecycle of a local history entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class HistoryEntry(BaseModel):
    """Locally persisted record of one generation attempt."""

    id: str
    job_id: str = ""
    prompt: str
    negative_prompt: str = ""
    image_preview: str = Field(default="", description="Thumbnail as a JPEG data URL")
    video_path: str | None = None
    status: HistoryStatus = HistoryStatus.PENDING
    timestamp: int = Field(..., description="Creation time in epoch milliseconds")
    progress: int = 0
    progress_details: ProgressDetails | None = None
    resolution: Resolution = Resolution.SMALL
    frames: int = 17
    seed: int | None = None
    error: str | None = None
