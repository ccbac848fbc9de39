"""Incremental video container writer backed by an ffmpeg subprocess.

Raw BGRA frames are piped to ffmpeg's stdin and encoded to H.264 at a
fixed bitrate.  Appends are non-blocking: frames go into a bounded queue
drained by a single writer thread, and :meth:`ContainerWriter.append`
returns False when the queue is full so the capture source is never
stalled.

The container runs at a constant frame rate.  Each frame lands in slot
``round(pts * fps)``; gaps are filled by repeating the previous frame so
presentation time follows source time, and a frame whose slot is already
written is skipped.
"""

import logging
import os
import queue
import subprocess
import threading
import time
from typing import List, Optional

import cv2
import numpy as np

from .errors import ContainerIOError, RecordingFailed, stderr_tail
from .utils import build_capture_encoder_args, subprocess_kwargs, CAPTURE_BITRATE

logger = logging.getLogger(__name__)

_STOP = None


class ContainerWriter:
    """Writes timestamped frames of a fixed size into one video file."""

    def __init__(
        self,
        output_path: str,
        width: int,
        height: int,
        fps: int,
        ffmpeg: str,
        queue_depth: int = 5,
        bitrate: int = CAPTURE_BITRATE,
    ) -> None:
        self.output_path = output_path
        self.width = width
        self.height = height
        self.fps = fps
        self._ffmpeg = ffmpeg
        self._bitrate = bitrate
        self._queue: "queue.Queue[Optional[tuple]]" = queue.Queue(maxsize=max(1, queue_depth))
        self._proc: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_chunks: List[bytes] = []
        self._accepting = False
        self._error: str = ""
        self._last_slot: int = -1
        self._last_frame: Optional[bytes] = None
        self._frames_written: int = 0
        self._frames_skipped: int = 0

    # ── properties ──────────────────────────────────────────────────

    @property
    def is_ready_for_more_data(self) -> bool:
        return self._accepting and not self._error and not self._queue.full()

    @property
    def frames_written(self) -> int:
        """Frames written to ffmpeg, including gap-filling repeats."""
        return self._frames_written

    @property
    def frames_skipped(self) -> int:
        return self._frames_skipped

    @property
    def duration(self) -> float:
        """Seconds of video written so far."""
        return (self._last_slot + 1) / self.fps if self._last_slot >= 0 else 0.0

    # ── lifecycle ───────────────────────────────────────────────────

    def build_command(self) -> List[str]:
        return [
            self._ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-nostats",
            "-f", "rawvideo",
            "-pix_fmt", "bgra",
            "-s", f"{self.width}x{self.height}",
            "-r", str(self.fps),
            "-i", "pipe:0",
        ] + build_capture_encoder_args(self._bitrate) + [
            self.output_path,
        ]

    def open(self) -> None:
        """Launch ffmpeg and the writer thread.

        Raises :class:`ContainerIOError` if ffmpeg can't start or exits
        straight away (bad path, unwritable directory, bad arguments).
        """
        cmd = self.build_command()
        logger.info("Opening container writer: %s", " ".join(cmd))
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                **subprocess_kwargs(),
            )
        except OSError as exc:
            raise ContainerIOError(f"Could not start ffmpeg: {exc}") from exc

        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()

        # Give ffmpeg a moment to fail on bad args
        time.sleep(0.05)
        if self._proc.poll() is not None:
            self._stderr_thread.join(timeout=2)
            detail = stderr_tail(self._stderr_text(), 300)
            logger.error("ffmpeg exited immediately: %s", detail)
            raise ContainerIOError(f"Could not open {self.output_path}: {detail or 'ffmpeg exited'}")

        self._accepting = True
        self._thread = threading.Thread(target=self._write_loop, daemon=True)
        self._thread.start()

    def append(self, frame: np.ndarray, pts: float) -> bool:
        """Queue *frame* at *pts* seconds.  Never blocks.

        Returns False (frame dropped) when the writer isn't ready.  The
        caller must not mutate *frame* afterwards.
        """
        if not self.is_ready_for_more_data:
            return False
        try:
            self._queue.put_nowait((frame, pts))
        except queue.Full:
            return False
        return True

    def finish(self) -> None:
        """Flush queued frames, close the container and wait for ffmpeg.

        Raises :class:`RecordingFailed` if ffmpeg failed, the pipe broke,
        or no frame was ever written.
        """
        self._accepting = False
        if self._thread is not None:
            if self._thread.is_alive():
                self._queue.put(_STOP)
                self._thread.join()
            else:
                self._error = self._error or "writer thread exited unexpectedly"
            self._thread = None

        proc = self._proc
        self._proc = None
        if proc is None:
            raise RecordingFailed("Container writer was never opened")

        try:
            if proc.stdin and not proc.stdin.closed:
                proc.stdin.close()
        except OSError as exc:
            self._error = self._error or f"closing ffmpeg stdin failed: {exc}"
        try:
            proc.wait(timeout=60)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg did not finish in time; killing it")
            proc.kill()
            proc.wait()
            self._error = self._error or "ffmpeg timed out while finalizing"
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)

        stderr = self._stderr_text()
        if proc.returncode != 0:
            detail = stderr_tail(stderr, 300) or f"exit code {proc.returncode}"
            logger.warning("ffmpeg stderr: %s", detail)
            raise RecordingFailed(f"Finalizing video failed: {detail}")
        if self._error:
            raise RecordingFailed(f"Finalizing video failed: {self._error}")
        if self._frames_written == 0:
            raise RecordingFailed("No frames were captured")
        logger.info(
            "Container finalized: %s (%d frames, %.2fs)",
            self.output_path, self._frames_written, self.duration,
        )

    # ── internal ────────────────────────────────────────────────────

    def _stderr_text(self) -> str:
        return b"".join(self._stderr_chunks).decode(errors="replace")

    def _drain_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        for chunk in iter(lambda: proc.stderr.read(4096), b""):
            self._stderr_chunks.append(chunk)

    def _prepare(self, frame: np.ndarray) -> bytes:
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGRA)
        elif frame.shape[2] == 3:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGR2BGRA)
        fh, fw = frame.shape[:2]
        if fw != self.width or fh != self.height:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)
        if frame.dtype != np.uint8:
            frame = frame.astype(np.uint8)
        if frame.shape != (self.height, self.width, 4):
            raise ValueError(f"unsupported frame shape {frame.shape}")
        return frame.tobytes() if frame.flags["C_CONTIGUOUS"] else np.ascontiguousarray(frame).tobytes()

    def _write(self, data: bytes) -> None:
        assert self._proc is not None and self._proc.stdin is not None
        self._proc.stdin.write(data)
        self._frames_written += 1

    def _write_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if self._error:
                continue  # keep draining so finish() can join
            frame, pts = item
            try:
                slot = int(round(pts * self.fps))
                if slot <= self._last_slot:
                    self._frames_skipped += 1
                    continue
                data = self._prepare(frame)
                filler = self._last_frame if self._last_frame is not None else data
                for _ in range(slot - self._last_slot - 1):
                    self._write(filler)
                self._write(data)
            except (BrokenPipeError, OSError) as exc:
                logger.error("ffmpeg pipe write error: %s", exc)
                self._error = f"pipe write failed: {exc}"
                continue
            except cv2.error as exc:
                logger.warning("Skipping unconvertible frame: %s", exc)
                self._frames_skipped += 1
                continue
            except Exception:
                logger.exception("Skipping frame after writer error")
                self._frames_skipped += 1
                continue
            self._last_frame = data
            self._last_slot = slot
