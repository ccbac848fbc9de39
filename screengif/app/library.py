"""Recording library — the JSON-backed list of finished recordings.

Entries whose source video no longer exists are filtered out on load.
Writes go to a temp file that replaces ``library.json`` atomically.
"""

import json
import logging
import os
import tempfile
from typing import List, Optional

from .models import Recording
from .paths import library_path

logger = logging.getLogger(__name__)


class RecordingLibrary:
    """Create / read / update / delete recordings in ``library.json``."""

    def __init__(self, path: str = "") -> None:
        self._path = path or library_path()

    @property
    def path(self) -> str:
        return self._path

    def list(self) -> List[Recording]:
        """All recordings whose video still exists, newest first."""
        if not os.path.isfile(self._path):
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            recordings = [Recording.from_dict(d) for d in data]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Failed to load recordings: %s", exc)
            return []
        return [r for r in recordings if os.path.isfile(r.source_video_path)]

    def get(self, recording_id: str) -> Optional[Recording]:
        for r in self.list():
            if r.id == recording_id:
                return r
        return None

    def insert(self, recording: Recording) -> None:
        recordings = self.list()
        recordings.insert(0, recording)
        self._persist(recordings)

    def update(self, recording: Recording) -> None:
        """Replace the entry with the same id; unknown ids are ignored."""
        recordings = self.list()
        for i, existing in enumerate(recordings):
            if existing.id == recording.id:
                recordings[i] = recording
                self._persist(recordings)
                return
        logger.warning("Update for unknown recording %s ignored", recording.id)

    def delete(self, recording: Recording) -> None:
        """Remove the entry and its video / GIF files."""
        recordings = [r for r in self.list() if r.id != recording.id]
        self._persist(recordings)
        for path in (recording.source_video_path, recording.exported_gif_path):
            if path and os.path.isfile(path):
                try:
                    os.remove(path)
                except OSError as exc:
                    logger.warning("Could not delete %s: %s", path, exc)

    def delete_all(self) -> None:
        for recording in self.list():
            self.delete(recording)

    @property
    def total_storage_used(self) -> int:
        return sum(r.file_size or 0 for r in self.list())

    def _persist(self, recordings: List[Recording]) -> None:
        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".library-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in recordings], f, indent=2)
            os.replace(tmp, self._path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
