import pytest
from pydantic import ValidationError

from smoothloop.config.models import (
    GenerationRequest,
    JobState,
    JobStatus,
    Resolution,
    valid_frame_counts,
)


def test_valid_frame_counts_follow_4n_plus_1() -> None:
    counts = valid_frame_counts()

    assert counts[:4] == [1, 5, 9, 13]
    assert counts[-1] == 197
    assert len(counts) == 50


@pytest.mark.parametrize("frames", [0, 16, 18, 201])
def test_generation_request_rejects_bad_frame_counts(frames: int) -> None:
    with pytest.raises(ValidationError):
        GenerationRequest(prompt="x", frames=frames)


def test_generation_request_rejects_blank_prompt() -> None:
    with pytest.raises(ValidationError):
        GenerationRequest(prompt="   ")


def test_resolution_dimensions() -> None:
    assert (Resolution.SMALL.width, Resolution.SMALL.height) == (768, 768)
    assert (Resolution("1024x1024").width, Resolution("1024x1024").height) == (1024, 1024)


def test_job_status_ignores_unknown_fields_and_clamps_progress() -> None:
    status = JobStatus.model_validate(
        {"job_id": "j", "status": "running", "progress": 140, "logs": ["x"], "created_at": "now"}
    )

    assert status.status == JobState.RUNNING
    assert status.progress == 100
    assert not status.is_terminal


def test_job_status_details_projection() -> None:
    status = JobStatus(
        job_id="j",
        status=JobState.RUNNING,
        current_node="27",
        nodes_done=3,
        nodes_total=9,
        current_step=4,
        total_steps=6,
    )

    details = status.details()

    assert details.current_node == "27"
    assert details.nodes_completed == 3
    assert details.nodes_total == 9
    assert details.step == "4/6"
    assert details.describe() == "Step: 4/6 | Node: 3/9"


def test_job_status_details_empty_when_server_reports_nothing() -> None:
    details = JobStatus(job_id="j", status=JobState.QUEUED).details()

    assert details.step is None
    assert details.nodes_total is None
    assert details.describe() == ""
