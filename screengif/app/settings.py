"""Persistent user settings stored via ``QSettings``.

Holds the capture configuration, export settings, output directory and
an optional ffmpeg path override.  ``SCREENGIF_FFMPEG`` in the
environment takes precedence over the stored ffmpeg path.
"""

import json
import logging
import os
from typing import Optional

from PySide6.QtCore import QSettings

from .export_settings import ExportSettings
from .models import CaptureConfiguration

logger = logging.getLogger(__name__)

FFMPEG_ENV = "SCREENGIF_FFMPEG"


class AppSettings:
    """Typed accessors over a ``QSettings`` store."""

    def __init__(self, settings: Optional[QSettings] = None) -> None:
        self._settings = settings or QSettings("ScreenGif", "ScreenGif")

    @staticmethod
    def from_file(path: str) -> "AppSettings":
        """Settings backed by an INI file (used by the CLI and tests)."""
        return AppSettings(QSettings(path, QSettings.Format.IniFormat))

    def _load_json(self, key: str) -> dict:
        raw = self._settings.value(key, "")
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt setting %s: %s", key, exc)
            return {}
        return data if isinstance(data, dict) else {}

    # ── capture ─────────────────────────────────────────────────────

    @property
    def capture_configuration(self) -> CaptureConfiguration:
        try:
            return CaptureConfiguration.from_dict(self._load_json("capture"))
        except ValueError as exc:
            logger.warning("Invalid capture settings, using defaults: %s", exc)
            return CaptureConfiguration()

    @capture_configuration.setter
    def capture_configuration(self, config: CaptureConfiguration) -> None:
        self._settings.setValue("capture", json.dumps(config.to_dict()))

    # ── export ──────────────────────────────────────────────────────

    @property
    def export_settings(self) -> ExportSettings:
        try:
            return ExportSettings.from_dict(self._load_json("export"))
        except ValueError as exc:
            logger.warning("Invalid export settings, using defaults: %s", exc)
            return ExportSettings()

    @export_settings.setter
    def export_settings(self, settings: ExportSettings) -> None:
        self._settings.setValue("export", json.dumps(settings.to_dict()))

    # ── paths ───────────────────────────────────────────────────────

    @property
    def ffmpeg_path(self) -> str:
        env = os.environ.get(FFMPEG_ENV, "")
        if env:
            return env
        return str(self._settings.value("ffmpegPath", "") or "")

    @ffmpeg_path.setter
    def ffmpeg_path(self, path: str) -> None:
        self._settings.setValue("ffmpegPath", path)

    @property
    def output_dir(self) -> str:
        return str(self._settings.value("outputDir", "") or "")

    @output_dir.setter
    def output_dir(self, path: str) -> None:
        self._settings.setValue("outputDir", path)

    def sync(self) -> None:
        self._settings.sync()
