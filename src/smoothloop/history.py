"""
Capped, file-backed generation history.

Entries are stored newest first in a single JSON file. Every mutation
rewrites the file atomically and notifies subscribers with the full list.
"""

import base64
import io
import json
import os
import tempfile
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from PIL import Image
from pydantic import TypeAdapter

from smoothloop.config.logging import get_logger
from smoothloop.config.models import HistoryEntry

logger = get_logger(__name__)

#: Default cap on stored entries.
HISTORY_LIMIT: int = 50

#: Longest side of stored thumbnails in pixels.
THUMBNAIL_SIZE: int = 200

HistoryListener = Callable[[list[HistoryEntry]], None]

_entries_adapter = TypeAdapter(list[HistoryEntry])


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class HistoryStore:
    """
    Append-only history log with a size cap.

    Parameters
    ----------
    path : str or Path
        JSON file holding the log.
    limit : int
        Maximum entries kept; the oldest entry is dropped on overflow.
    """

    def __init__(self, path: str | Path, limit: int = HISTORY_LIMIT) -> None:
        self.path = Path(path).expanduser()
        self.limit = limit
        self._lock = threading.RLock()
        self._listeners: list[HistoryListener] = []

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def all(self) -> list[HistoryEntry]:
        """Return every entry, newest first."""
        with self._lock:
            if not self.path.exists():
                return []
            try:
                raw = self.path.read_bytes()
                return _entries_adapter.validate_json(raw or b"[]")
            except (OSError, ValueError) as e:
                logger.error(f"Ignoring unreadable history file {self.path}: {e}")
                return []

    def save(self, entries: list[HistoryEntry]) -> None:
        """Replace the stored log with ``entries``."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(
                _entries_adapter.dump_python(entries, mode="json"),
                ensure_ascii=False,
            )
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".history-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        self._notify(entries)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add(self, entry: HistoryEntry) -> None:
        """Insert ``entry`` at the front, evicting the oldest past the cap."""
        with self._lock:
            entries = self.all()
            entries.insert(0, entry)
            if len(entries) > self.limit:
                dropped = entries[self.limit :]
                del entries[self.limit :]
                logger.debug(f"History cap reached, dropped {[e.id for e in dropped]}")
            self.save(entries)

    def update(self, entry_id: str, **changes: Any) -> HistoryEntry | None:
        """Merge ``changes`` into the matching entry; unknown ids are ignored."""
        with self._lock:
            entries = self.all()
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    merged = entry.model_dump()
                    merged.update(changes)
                    entries[i] = HistoryEntry.model_validate(merged)
                    self.save(entries)
                    return entries[i]
        return None

    def remove(self, entry_id: str) -> HistoryEntry | None:
        """Delete the matching entry and return it."""
        with self._lock:
            entries = self.all()
            for i, entry in enumerate(entries):
                if entry.id == entry_id:
                    del entries[i]
                    self.save(entries)
                    logger.info(f"Removed history entry {entry_id}")
                    return entry
        return None

    def clear(self) -> None:
        self.save([])

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, entry_id: str) -> HistoryEntry | None:
        for entry in self.all():
            if entry.id == entry_id:
                return entry
        return None

    def today(self, now: datetime | None = None) -> list[HistoryEntry]:
        """Entries created since local midnight."""
        start = _epoch_ms(_start_of_day(now or datetime.now()))
        return [e for e in self.all() if e.timestamp >= start]

    def yesterday(self, now: datetime | None = None) -> list[HistoryEntry]:
        """Entries created during the previous local calendar day."""
        today = _start_of_day(now or datetime.now())
        start = _epoch_ms(today - timedelta(days=1))
        end = _epoch_ms(today)
        return [e for e in self.all() if start <= e.timestamp < end]

    # -------------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------------

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, entries: list[HistoryEntry]) -> None:
        for listener in list(self._listeners):
            try:
                listener(list(entries))
            except Exception:
                logger.exception("History listener failed")


def create_thumbnail(image_bytes: bytes, max_size: int = THUMBNAIL_SIZE) -> str:
    """
    Shrink an image to fit ``max_size`` and return it as a JPEG data URL.

    Parameters
    ----------
    image_bytes : bytes
        Encoded source image in any format Pillow reads.
    max_size : int
        Longest side of the thumbnail. Smaller images keep their size.

    Returns
    -------
    str
        ``data:image/jpeg;base64,...`` string.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = img.convert("RGB")
        width, height = img.size

        if width > height:
            if width > max_size:
                height = round(height * max_size / width)
                width = max_size
        elif height > max_size:
            width = round(width * max_size / height)
            height = max_size

        thumb = img.resize((max(width, 1), max(height, 1)), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    thumb.save(buffer, format="JPEG", quality=80)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"
