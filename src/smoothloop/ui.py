"""
Gradio UI for SmoothLoop Studio.

Upload an image, describe the motion, and queue one or more generations.
History for today and yesterday refreshes every second while jobs run.
"""

import base64
import io
from datetime import datetime
from pathlib import Path

import gradio as gr
from PIL import Image
from pydantic import ValidationError

from smoothloop.client import JobClient
from smoothloop.config.logging import setup_logging
from smoothloop.config.models import (
    DEFAULT_NEGATIVE_PROMPT,
    GenerationRequest,
    HistoryEntry,
    HistoryStatus,
    Resolution,
    valid_frame_counts,
)
from smoothloop.config.settings import Settings, get_settings
from smoothloop.errors import SmoothLoopError
from smoothloop.history import HistoryStore
from smoothloop.manager import GenerationManager

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_FRAMES = 17
REFRESH_SECONDS = 1.0

HISTORY_COLUMNS = ["ID", "Time", "Status", "Progress", "Prompt", "Frames", "Resolution"]

STATUS_LABELS = {
    HistoryStatus.PENDING: "Rendering",
    HistoryStatus.COMPLETED: "Ready",
    HistoryStatus.FAILED: "Failed",
    HistoryStatus.CANCELLED: "Cancelled",
}


# =============================================================================
# Formatting helpers
# =============================================================================


def history_rows(entries: list[HistoryEntry]) -> list[list]:
    """Project history entries onto table rows."""
    rows = []
    for entry in entries:
        when = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%H:%M:%S")
        prompt = entry.prompt if len(entry.prompt) <= 60 else entry.prompt[:57] + "..."
        rows.append(
            [
                entry.id,
                when,
                STATUS_LABELS[entry.status],
                f"{entry.progress}%",
                prompt,
                entry.frames,
                entry.resolution.value,
            ]
        )
    return rows


def preview_image(data_url: str) -> Image.Image | None:
    """Decode a stored thumbnail data URL."""
    if not data_url or "," not in data_url:
        return None
    return Image.open(io.BytesIO(base64.b64decode(data_url.split(",", 1)[1])))


def status_message(manager: GenerationManager) -> str:
    """One-line summary of the running batch."""
    if not manager.is_generating:
        if manager.queued_jobs:
            return f"Starting... ({manager.queued_jobs} queued)"
        return "Idle"

    message = f"Generating... {manager.current_progress}%"
    if manager.queued_jobs:
        message += f" ({manager.queued_jobs} queued)"
    details = manager.current_details.describe() if manager.current_details else ""
    if details:
        message += f"\n{details}"
    return message


# =============================================================================
# Gradio Interface
# =============================================================================


def create_ui(manager: GenerationManager) -> gr.Blocks:
    """
    Create the Gradio UI interface.

    Parameters
    ----------
    manager : GenerationManager
        Manager that runs the queued batches.

    Returns
    -------
    gr.Blocks
        The Gradio Blocks application.
    """
    store = manager.store

    def start_generation(image_path, prompt, negative_prompt, resolution, frames, batch_size):
        if not image_path or not prompt or not prompt.strip():
            raise gr.Error("Please select an image and enter a prompt")

        try:
            request = GenerationRequest(
                prompt=prompt,
                negative_prompt=negative_prompt or "",
                resolution=Resolution(resolution),
                frames=int(frames),
                batch_size=int(batch_size),
            )
            manager.enqueue(Path(image_path).read_bytes(), request)
        except ValidationError as e:
            raise gr.Error(f"Invalid settings: {e.errors()[0]['msg']}") from e
        except (SmoothLoopError, OSError) as e:
            raise gr.Error(str(e)) from e

        return status_message(manager)

    def refresh():
        today = store.today()
        yesterday = store.yesterday()
        choices = [entry.id for entry in today + yesterday]
        return (
            status_message(manager),
            history_rows(today),
            history_rows(yesterday),
            gr.update(choices=choices),
        )

    def show_entry(entry_id):
        entry = store.get(entry_id) if entry_id else None
        if entry is None:
            return None, None, ""
        video = entry.video_path if entry.status == HistoryStatus.COMPLETED else None
        info = f"**{STATUS_LABELS[entry.status]}** | seed {entry.seed} | job `{entry.job_id or '-'}`"
        if entry.progress_details:
            info += f"\n\n{entry.progress_details.describe()}"
        if entry.error:
            info += f"\n\n{entry.error}"
        return preview_image(entry.image_preview), video, info

    def cancel_or_delete(entry_id):
        if not entry_id:
            raise gr.Error("Select a history entry first")
        entry = store.get(entry_id)
        if entry is None:
            return gr.update(value=None), None, None, ""
        if entry.status == HistoryStatus.PENDING:
            manager.cancel(entry_id)
        else:
            manager.delete(entry_id)
        return gr.update(value=None), None, None, ""

    with gr.Blocks(title="SmoothLoop Studio", theme=gr.themes.Soft()) as demo:
        gr.Markdown(
            """
            # SmoothLoop Studio
            ### Image-to-Video Generation
            Upload an image, describe the animation, and queue as many videos as you like.
            """
        )

        with gr.Row():
            with gr.Column(scale=1):
                input_image = gr.Image(label="Upload Image", type="filepath", height=320)

            with gr.Column(scale=1):
                prompt = gr.Textbox(
                    label="Animation Prompt",
                    placeholder="Describe the animation you want...",
                    lines=3,
                )
                negative_prompt = gr.Textbox(
                    label="Negative Prompt",
                    value=DEFAULT_NEGATIVE_PROMPT,
                    lines=2,
                )
                with gr.Row():
                    resolution = gr.Dropdown(
                        label="Resolution",
                        choices=[r.value for r in Resolution],
                        value=Resolution.SMALL.value,
                    )
                    frames = gr.Dropdown(
                        label="Frames (N*4+1)",
                        choices=valid_frame_counts(),
                        value=DEFAULT_FRAMES,
                    )
                    batch_size = gr.Dropdown(
                        label="Batch Size",
                        choices=list(range(1, manager.settings.max_batch_size + 1)),
                        value=1,
                    )
                generate_btn = gr.Button("Generate Video", variant="primary", size="lg")
                status_text = gr.Textbox(label="Status", value="Idle", interactive=False, lines=2)

        gr.Markdown("## Generation History")
        with gr.Tab("Today"):
            today_table = gr.Dataframe(headers=HISTORY_COLUMNS, interactive=False)
        with gr.Tab("Yesterday"):
            yesterday_table = gr.Dataframe(headers=HISTORY_COLUMNS, interactive=False)

        with gr.Row():
            with gr.Column(scale=1):
                selected = gr.Dropdown(label="Entry", choices=[], value=None)
                entry_info = gr.Markdown()
                remove_btn = gr.Button("Cancel / Delete", variant="stop")
            with gr.Column(scale=1):
                preview = gr.Image(label="Source", interactive=False, height=200)
            with gr.Column(scale=2):
                video = gr.Video(label="Generated Video", height=320)

        # Event handlers
        generate_btn.click(
            fn=start_generation,
            inputs=[input_image, prompt, negative_prompt, resolution, frames, batch_size],
            outputs=[status_text],
        )

        selected.change(fn=show_entry, inputs=[selected], outputs=[preview, video, entry_info])

        remove_btn.click(
            fn=cancel_or_delete,
            inputs=[selected],
            outputs=[selected, preview, video, entry_info],
        )

        timer = gr.Timer(REFRESH_SECONDS)
        timer.tick(
            fn=refresh,
            outputs=[status_text, today_table, yesterday_table, selected],
        )

        demo.load(
            fn=refresh,
            outputs=[status_text, today_table, yesterday_table, selected],
        )

    return demo


# =============================================================================
# Main Entry Point
# =============================================================================


def build_manager(settings: Settings | None = None) -> GenerationManager:
    """Wire a manager from settings."""
    settings = settings or get_settings()
    store = HistoryStore(settings.history_path, limit=settings.history_limit)
    return GenerationManager(JobClient(settings), store, settings)


def main():
    """Launch the Gradio UI."""
    settings = get_settings()
    setup_logging(settings.log_level)

    manager = build_manager(settings)
    demo = create_ui(manager)
    demo.queue(max_size=10)
    try:
        demo.launch(
            server_name="0.0.0.0",
            server_port=7860,
            share=False,
        )
    finally:
        manager.shutdown()


if __name__ == "__main__":
    main()
