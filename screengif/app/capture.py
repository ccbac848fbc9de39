"""Capture-to-container pipeline.

:class:`CapturePipeline` consumes ``(buffer, source_timestamp)`` pairs
pushed by a frame source, rebases timestamps so the first accepted frame
sits at exactly 0.0, and feeds them to an incremental container writer.

Frame delivery may happen on any thread.  Readiness checks and appends
are serialized by one lock per pipeline (single writer).  When the
writer is not ready the newest frame is dropped: capture never blocks
the producer and never queues without bound.

States: ``IDLE → STARTING → CAPTURING → STOPPING → FINALIZED``.
"""

import enum
import logging
import os
import threading
from typing import Callable, List, Optional

import numpy as np

from .container_writer import ContainerWriter
from .errors import ContainerIOError, NoActiveRecording, RecordingFailed
from .installer import shared_installer
from .models import CaptureConfiguration, CaptureGeometry

logger = logging.getLogger(__name__)


class CaptureState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    CAPTURING = "capturing"
    STOPPING = "stopping"
    FINALIZED = "finalized"


# (output_path, width, height, configuration) -> unopened writer
WriterFactory = Callable[[str, int, int, CaptureConfiguration], ContainerWriter]


class CaptureSession:
    """The recording in progress.  Not reusable after it is finalized."""

    def __init__(
        self,
        geometry: CaptureGeometry,
        configuration: CaptureConfiguration,
        output_path: str,
        width: int,
        height: int,
        writer: ContainerWriter,
    ) -> None:
        self.geometry = geometry
        self.configuration = configuration
        self.output_path = output_path
        self.width = width
        self.height = height
        self.writer = writer
        self.state = CaptureState.CAPTURING
        self.frames_accepted: int = 0
        self.frames_dropped: int = 0
        self._reference: Optional[float] = None
        self._timestamps: List[float] = []

    @property
    def reference_timestamp(self) -> Optional[float]:
        """Source timestamp of the first accepted frame (set once)."""
        return self._reference

    @property
    def frame_timestamps(self) -> List[float]:
        """Relative timestamps (seconds) of every accepted frame."""
        return list(self._timestamps)

    @property
    def duration(self) -> float:
        """Seconds covered by the container (one frame interval past the last frame)."""
        if not self._timestamps:
            return 0.0
        return self._timestamps[-1] + 1.0 / self.configuration.fps

    def _relative(self, source_timestamp: float) -> float:
        if self._reference is None:
            self._reference = source_timestamp
        return source_timestamp - self._reference


def _default_writer_factory(
    output_path: str, width: int, height: int, configuration: CaptureConfiguration,
) -> ContainerWriter:
    return ContainerWriter(
        output_path,
        width,
        height,
        configuration.fps,
        ffmpeg=shared_installer().ensure_available(),
        queue_depth=configuration.queue_depth,
    )


class CapturePipeline:
    """Turns a stream of raw frames into a correctly timed video file."""

    def __init__(self, writer_factory: Optional[WriterFactory] = None) -> None:
        self._writer_factory = writer_factory or _default_writer_factory
        self._lock = threading.Lock()
        self._state = CaptureState.IDLE
        self._session: Optional[CaptureSession] = None

    # ── properties ──────────────────────────────────────────────────

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def active_session(self) -> Optional[CaptureSession]:
        return self._session

    # ── public API ──────────────────────────────────────────────────

    def start(
        self,
        geometry: CaptureGeometry,
        configuration: CaptureConfiguration,
        output_path: str,
    ) -> CaptureSession:
        """Validate *geometry*, open the container and begin accepting frames.

        Raises ``GeometryInvalid`` for an unusable target and
        ``ContainerIOError`` when the output can't be created.
        """
        with self._lock:
            if self._state in (CaptureState.STARTING, CaptureState.CAPTURING, CaptureState.STOPPING):
                raise RecordingFailed("A recording is already in progress")
            previous = self._state
            self._state = CaptureState.STARTING

        try:
            geometry.validate()
            width, height = configuration.dimensions_for(
                *geometry.source_size(configuration.include_window_shadow)
            )

            parent = os.path.dirname(os.path.abspath(output_path))
            try:
                os.makedirs(parent, exist_ok=True)
            except OSError as exc:
                raise ContainerIOError(f"Cannot create output directory {parent}: {exc}") from exc

            writer = self._writer_factory(output_path, width, height, configuration)
            writer.open()
        except Exception:
            with self._lock:
                self._state = previous
            raise

        session = CaptureSession(geometry, configuration, output_path, width, height, writer)
        with self._lock:
            self._session = session
            self._state = CaptureState.CAPTURING
        logger.info(
            "Capture started: %dx%d @ %d fps -> %s",
            width, height, configuration.fps, output_path,
        )
        return session

    def on_frame(self, buffer: np.ndarray, source_timestamp: float) -> None:
        """Ingest one delivered frame.  Never raises, never blocks."""
        try:
            with self._lock:
                session = self._session
                if session is None or self._state is not CaptureState.CAPTURING:
                    return
                writer = session.writer
                if not writer.is_ready_for_more_data:
                    session.frames_dropped += 1
                    return
                relative = session._relative(source_timestamp)
                if session._timestamps and relative < session._timestamps[-1]:
                    # out of order relative to what's already written
                    session.frames_dropped += 1
                    return
                if not writer.append(buffer, relative):
                    session.frames_dropped += 1
                    return
                session._timestamps.append(relative)
                session.frames_accepted += 1
        except Exception:
            logger.exception("Dropping frame after ingestion error")

    def stop(self, session: Optional[CaptureSession] = None) -> str:
        """Finalize the active session and return its output path.

        Raises ``NoActiveRecording`` when nothing is capturing (or
        *session* isn't the active one) and ``RecordingFailed`` when the
        writer fails to finalize.  The session is finalized either way.
        """
        with self._lock:
            active = self._session
            if active is None or self._state is not CaptureState.CAPTURING:
                raise NoActiveRecording()
            if session is not None and session is not active:
                raise NoActiveRecording("That recording is not the active one")
            self._state = CaptureState.STOPPING
            active.state = CaptureState.STOPPING

        try:
            active.writer.finish()
        finally:
            with self._lock:
                active.state = CaptureState.FINALIZED
                self._session = None
                self._state = CaptureState.FINALIZED
            logger.info(
                "Capture stopped: %d frames accepted, %d dropped",
                active.frames_accepted, active.frames_dropped,
            )
        return active.output_path
