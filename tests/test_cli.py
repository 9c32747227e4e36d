import sys

import pytest

from smoothloop import cli
from smoothloop.config.models import HistoryEntry, HistoryStatus
from smoothloop.history import HistoryStore


@pytest.fixture(autouse=True)
def cli_settings(settings, monkeypatch):
    """Point the CLI at test settings and keep logging quiet."""
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    return settings


def run(monkeypatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["smoothloop", *argv])
    return cli.main()


def test_no_command_prints_help(monkeypatch, capsys) -> None:
    assert run(monkeypatch) == 0
    assert "usage: smoothloop" in capsys.readouterr().out


def test_history_lists_entries(monkeypatch, capsys, settings) -> None:
    store = HistoryStore(settings.history_path)
    store.add(
        HistoryEntry(
            id="1700000000000-0",
            prompt="drifting clouds",
            timestamp=1_700_000_000_000,
            status=HistoryStatus.COMPLETED,
            progress=100,
            video_path="/tmp/video.mp4",
        )
    )

    assert run(monkeypatch, "history") == 0

    out = capsys.readouterr().out
    assert "drifting clouds" in out
    assert "completed" in out
    assert "/tmp/video.mp4" in out


def test_history_empty(monkeypatch, capsys) -> None:
    assert run(monkeypatch, "history", "--day", "today") == 0
    assert "No videos generated yet" in capsys.readouterr().out


def test_clear_history(monkeypatch, settings) -> None:
    store = HistoryStore(settings.history_path)
    store.add(HistoryEntry(id="a", prompt="x", timestamp=0))

    assert run(monkeypatch, "clear-history") == 0
    assert store.all() == []


def test_generate_missing_image(monkeypatch, capsys, tmp_path) -> None:
    assert run(monkeypatch, "generate", str(tmp_path / "missing.png"), "waves") == 1
    assert "Image not found" in capsys.readouterr().out


def test_generate_rejects_invalid_frames(monkeypatch, capsys, tmp_path, image_bytes) -> None:
    image = tmp_path / "in.png"
    image.write_bytes(image_bytes)

    assert run(monkeypatch, "generate", str(image), "waves", "--frames", "18") == 1
    assert "Invalid arguments" in capsys.readouterr().out


def test_generate_rejects_non_image_file(monkeypatch, capsys, tmp_path, settings) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("remember to buy milk", encoding="utf-8")

    assert run(monkeypatch, "generate", str(notes), "waves") == 1
    assert "Could not read image" in capsys.readouterr().out
    assert HistoryStore(settings.history_path).all() == []


def test_status_reports_client_errors(monkeypatch, capsys) -> None:
    assert run(monkeypatch, "status", "undefined") == 1
    assert "Invalid job ID" in capsys.readouterr().out
