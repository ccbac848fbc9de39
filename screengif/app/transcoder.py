"""Transcoder capability and its ffmpeg-process implementation.

The GIF exporter only talks to the :class:`Transcoder` protocol, so the
process-based backend can be swapped for an in-process encoder without
touching the filter-graph logic.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from .errors import BinaryUnavailable, TranscodeFailed, stderr_tail
from .installer import TranscoderInstaller, shared_installer
from .progress import ProgressTracker, parse_progress_line
from .utils import subprocess_kwargs

logger = logging.getLogger(__name__)

PROGRESS_ARGS: List[str] = ["-progress", "pipe:1", "-nostats"]


@dataclass(frozen=True)
class TranscoderResult:
    stdout: str
    stderr: str
    returncode: int


class Transcoder(Protocol):
    def ensure_available(self) -> str: ...

    def run(self, args: List[str]) -> TranscoderResult: ...

    def run_with_progress(
        self,
        args: List[str],
        duration: Optional[float],
        on_progress: Callable[[float], None],
    ) -> TranscoderResult: ...


class FFmpegTranscoder:
    """Runs ffmpeg as a subprocess with stdout and stderr fully captured.

    A non-zero exit always raises :class:`TranscodeFailed` with the stderr
    tail; failing to obtain the binary raises :class:`BinaryUnavailable`
    before anything is launched.
    """

    def __init__(
        self,
        installer: Optional[TranscoderInstaller] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._installer = installer
        self._timeout = timeout

    @property
    def installer(self) -> TranscoderInstaller:
        if self._installer is None:
            self._installer = shared_installer()
        return self._installer

    def ensure_available(self) -> str:
        return self.installer.ensure_available()

    def run(self, args: List[str]) -> TranscoderResult:
        exe = self.ensure_available()
        cmd = [exe] + list(args)
        logger.info("Running ffmpeg: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self._timeout,
                **subprocess_kwargs(),
            )
        except FileNotFoundError as exc:
            raise BinaryUnavailable(f"ffmpeg not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise TranscodeFailed(f"timed out after {self._timeout}s") from exc

        result = TranscoderResult(
            stdout=proc.stdout.decode(errors="replace"),
            stderr=proc.stderr.decode(errors="replace"),
            returncode=proc.returncode,
        )
        self._check(result)
        return result

    def run_with_progress(
        self,
        args: List[str],
        duration: Optional[float],
        on_progress: Callable[[float], None],
    ) -> TranscoderResult:
        """Run with ``-progress pipe:1`` and report fractions as they arrive.

        *on_progress* is called from the calling thread with clamped,
        non-decreasing values.  Delivery to a UI thread is the caller's
        concern (see :class:`~app.progress.ProgressChannel`).
        """
        exe = self.ensure_available()
        cmd = [exe] + PROGRESS_ARGS + list(args)
        logger.info("Running ffmpeg with progress: %s", " ".join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **subprocess_kwargs(),
            )
        except FileNotFoundError as exc:
            raise BinaryUnavailable(f"ffmpeg not found: {exc}") from exc

        # stderr is drained on its own thread so a chatty encoder can't
        # fill the pipe and stall while we read progress from stdout
        stderr_chunks: List[bytes] = []

        def _drain_stderr() -> None:
            assert proc.stderr is not None
            for chunk in iter(lambda: proc.stderr.read(4096), b""):
                stderr_chunks.append(chunk)

        err_thread = threading.Thread(target=_drain_stderr, daemon=True)
        err_thread.start()

        tracker = ProgressTracker(duration)
        stdout_lines: List[str] = []
        last_reported = -1.0
        assert proc.stdout is not None
        for raw in proc.stdout:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            stdout_lines.append(line)
            elapsed = parse_progress_line(line)
            if elapsed is None:
                continue
            fraction = tracker.update(elapsed)
            if fraction > last_reported:
                last_reported = fraction
                try:
                    on_progress(fraction)
                except Exception:
                    logger.exception("Progress callback raised")

        returncode = proc.wait()
        err_thread.join(timeout=5)

        result = TranscoderResult(
            stdout="\n".join(stdout_lines),
            stderr=b"".join(stderr_chunks).decode(errors="replace"),
            returncode=returncode,
        )
        self._check(result)
        return result

    @staticmethod
    def _check(result: TranscoderResult) -> None:
        if result.returncode != 0:
            detail = stderr_tail(result.stderr) or f"exit code {result.returncode}"
            logger.error("ffmpeg failed (rc=%s): %s", result.returncode, detail[-300:])
            raise TranscodeFailed(detail, returncode=result.returncode)
