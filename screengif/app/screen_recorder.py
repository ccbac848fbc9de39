"""Screen / window recording front-end.

Wires a frame source to a :class:`~app.capture.CapturePipeline` and
reports lifecycle changes through Qt signals, so UI code can listen
without caring which thread the capture runs on.
"""

import logging
import time
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal

from .capture import CapturePipeline, CaptureSession
from .errors import NoActiveRecording, ScreenGifError
from .frame_source import FrameSource, MssFrameSource
from .models import CaptureConfiguration, CaptureGeometry

logger = logging.getLogger(__name__)

# (geometry, configuration) -> frame source
SourceFactory = Callable[[CaptureGeometry, CaptureConfiguration], FrameSource]


def _default_source_factory(
    geometry: CaptureGeometry, configuration: CaptureConfiguration,
) -> FrameSource:
    return MssFrameSource(
        geometry,
        fps=configuration.fps,
        shows_cursor=configuration.shows_cursor,
        include_shadow=configuration.include_window_shadow,
    )


class ScreenRecorder(QObject):
    """Records one capture target to a video file at a time."""

    recording_started = Signal(str)   # output path
    recording_finished = Signal(str)  # output path
    error = Signal(str)

    def __init__(
        self,
        pipeline: Optional[CapturePipeline] = None,
        source_factory: Optional[SourceFactory] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._pipeline = pipeline or CapturePipeline()
        self._source_factory = source_factory or _default_source_factory
        self._source: Optional[FrameSource] = None
        self._session: Optional[CaptureSession] = None
        self._started_at: float = 0.0
        self._last_duration: float = 0.0

    # ── properties ──────────────────────────────────────────────────

    @property
    def pipeline(self) -> CapturePipeline:
        return self._pipeline

    @property
    def is_recording(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def recording_duration(self) -> float:
        """Seconds since recording started (wall clock), 0 when idle."""
        if self._session is None:
            return 0.0
        return time.monotonic() - self._started_at

    @property
    def last_duration(self) -> float:
        """Duration in seconds of the most recently finalized recording."""
        return self._last_duration

    # ── public API ──────────────────────────────────────────────────

    def start_recording(
        self,
        geometry: CaptureGeometry,
        configuration: CaptureConfiguration,
        output_path: str,
    ) -> CaptureSession:
        """Open the output and start the frame source.

        Errors are emitted on ``error`` and re-raised.
        """
        try:
            session = self._pipeline.start(geometry, configuration, output_path)
        except ScreenGifError as exc:
            self.error.emit(str(exc))
            raise

        self._session = session
        self._started_at = time.monotonic()
        try:
            self._source = self._source_factory(geometry, configuration)
            self._source.start(self._pipeline.on_frame)
        except Exception as exc:
            logger.error("Frame source failed to start: %s", exc)
            self._source = None
            self._finalize_quietly()
            self.error.emit(f"Capture failed to start: {exc}")
            raise
        self.recording_started.emit(output_path)
        return session

    def stop_recording(self) -> str:
        """Stop the source, finalize the container and return its path."""
        if self._session is None:
            raise NoActiveRecording()
        if self._source is not None:
            self._source.stop()
            self._source = None
        session = self._session
        self._session = None
        try:
            path = self._pipeline.stop(session)
        except ScreenGifError as exc:
            self.error.emit(str(exc))
            raise
        self._last_duration = session.duration
        self.recording_finished.emit(path)
        return path

    def _finalize_quietly(self) -> None:
        session = self._session
        self._session = None
        if session is None:
            return
        try:
            self._pipeline.stop(session)
        except ScreenGifError as exc:
            logger.warning("Finalizing aborted recording failed: %s", exc)
