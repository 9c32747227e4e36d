"""
CLI entrypoint for SmoothLoop Studio.

Provides command-line access to job submission, status, cancellation and the
local generation history, and launches the Gradio UI and the proxy.
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from smoothloop.config.logging import setup_logging
from smoothloop.config.models import (
    DEFAULT_NEGATIVE_PROMPT,
    GenerationRequest,
    HistoryEntry,
    HistoryStatus,
    Resolution,
)
from smoothloop.config.settings import get_settings
from smoothloop.errors import SmoothLoopError


def _print_header(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)
    print()


def _print_entry(entry: HistoryEntry) -> None:
    when = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
    print(f"{entry.id:<18} {when}  {entry.status.value:<9} {entry.progress:>3}%  {entry.prompt[:40]}")
    if entry.video_path:
        print(f"{'':<18} -> {entry.video_path}")
    if entry.error:
        print(f"{'':<18} !  {entry.error}")


def _client():
    from smoothloop.client import JobClient

    return JobClient(get_settings())


def _store():
    from smoothloop.history import HistoryStore

    settings = get_settings()
    return HistoryStore(settings.history_path, limit=settings.history_limit)


def cmd_ui(_args: argparse.Namespace) -> int:
    """
    Launch the Gradio UI.

    Parameters
    ----------
    _args : argparse.Namespace
        Parsed command arguments (unused).

    Returns
    -------
    int
        Exit code.
    """
    _print_header("Launching SmoothLoop Studio UI")

    from smoothloop.ui import main as ui_main

    ui_main()
    return 0


def cmd_proxy(_args: argparse.Namespace) -> int:
    """Serve the same-origin proxy for browser front ends."""
    settings = get_settings()
    _print_header(f"Proxy on http://{settings.proxy_host}:{settings.proxy_port} -> {settings.api_url}")

    from smoothloop.proxy import main as proxy_main

    proxy_main()
    return 0


def cmd_generate(args: argparse.Namespace) -> int:
    """
    Generate one or more videos from an image and wait for them.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command arguments.

    Returns
    -------
    int
        Exit code; 1 if any job of the batch did not complete.
    """
    from smoothloop.manager import GenerationManager

    image_path = Path(args.image)
    if not image_path.exists():
        print(f"Error: Image not found at {image_path}")
        return 1

    try:
        request = GenerationRequest(
            prompt=args.prompt,
            negative_prompt=args.negative,
            resolution=Resolution(args.resolution),
            frames=args.frames,
            batch_size=args.batch,
        )
    except ValidationError as e:
        print(f"Invalid arguments: {e}")
        return 1

    settings = get_settings()
    print(f"Generating {request.batch_size} video(s) from: {image_path}")
    print(f"Prompt: {request.prompt}")
    print(f"API: {settings.api_url}")
    print()

    store = _store()
    with _client() as client:
        manager = GenerationManager(client, store, settings)
        try:
            entry_ids = manager.generate(image_path.read_bytes(), request)
        except SmoothLoopError as e:
            print(f"Error: {e}")
            return 1

    failed = 0
    for entry_id in entry_ids:
        entry = store.get(entry_id)
        if entry is None:
            continue
        _print_entry(entry)
        if entry.status != HistoryStatus.COMPLETED:
            failed += 1

    return 1 if failed else 0


def cmd_status(args: argparse.Namespace) -> int:
    """Print the remote status of a job."""
    try:
        with _client() as client:
            status = client.check_job(args.job_id)
    except SmoothLoopError as e:
        print(f"Error: {e}")
        return 1

    print(f"Job:      {status.job_id}")
    print(f"Status:   {status.status.value}")
    print(f"Progress: {status.progress}%")
    details = status.details().describe()
    if details:
        print(f"Details:  {details}")
    if status.error:
        print(f"Error:    {status.error}")
    for output in status.outputs:
        print(f"Output:   {output.filename}")
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a remote job."""
    try:
        with _client() as client:
            client.cancel_job(args.job_id)
    except SmoothLoopError as e:
        print(f"Error: {e}")
        return 1

    print(f"Cancelled job {args.job_id}")
    return 0


def cmd_jobs(args: argparse.Namespace) -> int:
    """List recent remote jobs."""
    try:
        with _client() as client:
            jobs = client.list_jobs(status=args.status, limit=args.limit)
    except SmoothLoopError as e:
        print(f"Error: {e}")
        return 1

    for job in jobs:
        print(f"{job.get('job_id', '?'):<38} {job.get('status', '?'):<10} {job.get('progress', 0):>3}%")
    if not jobs:
        print("No jobs found")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """Print the local generation history."""
    store = _store()
    entries = {
        "today": store.today,
        "yesterday": store.yesterday,
        "all": store.all,
    }[args.day]()

    if not entries:
        print("No videos generated yet")
        return 0

    for entry in entries:
        _print_entry(entry)
    return 0


def cmd_clear_history(_args: argparse.Namespace) -> int:
    """Delete every local history entry."""
    _store().clear()
    print("History cleared")
    return 0


def main() -> int:
    """
    Main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="smoothloop",
        description="SmoothLoop Studio: image-to-video generation on a remote ComfyUI API",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # UI command
    subparsers.add_parser(
        "ui",
        help="Launch the Gradio web interface",
    )

    # Proxy command
    subparsers.add_parser(
        "proxy",
        help="Serve the same-origin proxy for browser clients",
    )

    # Generate command
    gen_parser = subparsers.add_parser(
        "generate",
        help="Generate videos from an image and wait for them",
    )
    gen_parser.add_argument(
        "image",
        type=str,
        help="Path to input image",
    )
    gen_parser.add_argument(
        "prompt",
        type=str,
        help="Animation prompt",
    )
    gen_parser.add_argument(
        "--negative",
        type=str,
        default=DEFAULT_NEGATIVE_PROMPT,
        help="Negative prompt",
    )
    gen_parser.add_argument(
        "--resolution",
        type=str,
        default=Resolution.SMALL.value,
        choices=[r.value for r in Resolution],
        help="Output resolution",
    )
    gen_parser.add_argument(
        "--frames",
        type=int,
        default=17,
        help="Number of frames (4n+1)",
    )
    gen_parser.add_argument(
        "--batch",
        type=int,
        default=1,
        help="Number of videos to generate",
    )

    # Status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show the remote status of a job",
    )
    status_parser.add_argument("job_id", type=str, help="Job ID")

    # Cancel command
    cancel_parser = subparsers.add_parser(
        "cancel",
        help="Cancel a remote job",
    )
    cancel_parser.add_argument("job_id", type=str, help="Job ID")

    # Jobs command
    jobs_parser = subparsers.add_parser(
        "jobs",
        help="List recent remote jobs",
    )
    jobs_parser.add_argument(
        "--status",
        type=str,
        choices=["queued", "running", "completed", "failed", "cancelled"],
        help="Only show jobs in this state",
    )
    jobs_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum number of jobs",
    )

    # History command
    history_parser = subparsers.add_parser(
        "history",
        help="Show the local generation history",
    )
    history_parser.add_argument(
        "--day",
        type=str,
        default="all",
        choices=["today", "yesterday", "all"],
        help="Which entries to show",
    )

    # Clear history command
    subparsers.add_parser(
        "clear-history",
        help="Delete the local generation history",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(get_settings().log_level)

    commands = {
        "ui": cmd_ui,
        "proxy": cmd_proxy,
        "generate": cmd_generate,
        "status": cmd_status,
        "cancel": cmd_cancel,
        "jobs": cmd_jobs,
        "history": cmd_history,
        "clear-history": cmd_clear_history,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
