"""Shared pytest fixtures for ScreenGif tests."""

import os
import stat
import sys
from typing import List, Optional, Tuple

import numpy as np
import pytest

from PySide6.QtCore import QCoreApplication

from app.errors import RecordingFailed
from app.models import (
    CaptureConfiguration,
    CaptureGeometry,
    CaptureQuality,
    DisplayTarget,
    Rect,
    WindowTarget,
)
from app.transcoder import TranscoderResult


# ── Qt ──────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def qapp():
    """A QCoreApplication for tests that create QObjects."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


# ── Capture targets ─────────────────────────────────────────────────

@pytest.fixture
def display() -> DisplayTarget:
    """A 1920×1080 primary display at origin."""
    return DisplayTarget(index=1, width=1920, height=1080)


@pytest.fixture
def display_geometry(display: DisplayTarget) -> CaptureGeometry:
    return CaptureGeometry.for_display(display)


@pytest.fixture
def crop_geometry(display: DisplayTarget) -> CaptureGeometry:
    return CaptureGeometry.for_display(display, Rect(100, 50, 640, 480))


@pytest.fixture
def window_geometry() -> CaptureGeometry:
    return CaptureGeometry.for_window(
        WindowTarget(handle=42, title="Editor", width=1280, height=720, left=10, top=20)
    )


@pytest.fixture
def config() -> CaptureConfiguration:
    return CaptureConfiguration(fps=30, quality=CaptureQuality.HIGH, queue_depth=5)


def make_frame(w: int = 64, h: int = 48, value: int = 0) -> np.ndarray:
    """Solid BGRA frame."""
    frame = np.zeros((h, w, 4), dtype=np.uint8)
    frame[:, :, :3] = value
    frame[:, :, 3] = 255
    return frame


# ── Fake container writer ──────────────────────────────────────────

class FakeWriter:
    """In-memory stand-in for ContainerWriter."""

    def __init__(self, output_path: str, width: int, height: int,
                 configuration: CaptureConfiguration) -> None:
        self.output_path = output_path
        self.width = width
        self.height = height
        self.configuration = configuration
        self.ready = True
        self.opened = False
        self.finished = False
        self.fail_on_open: Optional[Exception] = None
        self.fail_on_finish: Optional[Exception] = None
        self.appended: List[Tuple[np.ndarray, float]] = []

    @property
    def is_ready_for_more_data(self) -> bool:
        return self.opened and self.ready and not self.finished

    @property
    def pts(self) -> List[float]:
        return [p for _, p in self.appended]

    def open(self) -> None:
        if self.fail_on_open is not None:
            raise self.fail_on_open
        self.opened = True

    def append(self, frame: np.ndarray, pts: float) -> bool:
        if not self.is_ready_for_more_data:
            return False
        self.appended.append((frame, pts))
        return True

    def finish(self) -> None:
        self.finished = True
        if self.fail_on_finish is not None:
            raise self.fail_on_finish
        if not self.appended:
            raise RecordingFailed("No frames were captured")


class WriterFactory:
    """Callable writer factory that remembers what it built."""

    def __init__(self) -> None:
        self.writers: List[FakeWriter] = []
        self.fail_on_open: Optional[Exception] = None

    def __call__(self, output_path, width, height, configuration) -> FakeWriter:
        writer = FakeWriter(output_path, width, height, configuration)
        writer.fail_on_open = self.fail_on_open
        self.writers.append(writer)
        return writer

    @property
    def last(self) -> FakeWriter:
        return self.writers[-1]


@pytest.fixture
def writer_factory() -> WriterFactory:
    return WriterFactory()


# ── Fake transcoder ────────────────────────────────────────────────

class FakeTranscoder:
    """Records invocations and writes a placeholder output file."""

    def __init__(self, progress_seconds: Optional[List[float]] = None,
                 fail_with: Optional[Exception] = None) -> None:
        self.calls: List[dict] = []
        self.progress_seconds = progress_seconds or []
        self.fail_with = fail_with

    def ensure_available(self) -> str:
        return "/fake/ffmpeg"

    def _produce(self, args: List[str]) -> TranscoderResult:
        if self.fail_with is not None:
            raise self.fail_with
        with open(args[-1], "wb") as f:
            f.write(b"GIF89a" + b"\x00" * 32)
        return TranscoderResult(stdout="", stderr="", returncode=0)

    def run(self, args: List[str]) -> TranscoderResult:
        self.calls.append({"args": list(args), "progress": False})
        return self._produce(args)

    def run_with_progress(self, args, duration, on_progress) -> TranscoderResult:
        self.calls.append({"args": list(args), "progress": True, "duration": duration})
        from app.progress import ProgressTracker
        tracker = ProgressTracker(duration)
        for s in self.progress_seconds:
            on_progress(tracker.update(s))
        return self._produce(args)


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder(progress_seconds=[0.5, 1.0, 1.5, 2.5])


# ── Fake ffmpeg executables ────────────────────────────────────────

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts")


def write_script(path, body: str) -> str:
    """Write an executable /bin/sh script and return its path."""
    path = str(path)
    with open(path, "w") as f:
        f.write("#!/bin/sh\n" + body)
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path
