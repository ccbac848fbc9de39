"""Export a finished recording as an animated GIF.

The conversion is a single ffmpeg invocation with a two-pass palette
filter graph: the filtered stream is split, one copy feeds
``palettegen`` (inter-frame ``stats_mode=diff`` to reduce flicker), the
other is re-encoded through ``paletteuse`` with the chosen dithering and
``diff_mode=rectangle`` so only changed regions are rewritten per frame.
"""

import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import cv2
import imageio_ffmpeg

from PySide6.QtCore import QObject, Signal

from .errors import ScreenGifError, TranscodeFailed
from .export_settings import ExportSettings
from .progress import ProgressChannel
from .transcoder import FFmpegTranscoder, Transcoder

logger = logging.getLogger(__name__)


def build_filter_graph(settings: ExportSettings) -> str:
    """Return the ``-vf`` filter graph for *settings*.

    Pure function: equal settings always give a byte-identical string.
    """
    return (
        f"fps={settings.fps},"
        f"scale={settings.max_width}:-1:flags=lanczos,"
        "split[s0][s1];"
        f"[s0]palettegen=max_colors={settings.max_colors}:stats_mode=diff[p];"
        f"[s1][p]paletteuse=dither={settings.dithering.value}:diff_mode=rectangle"
    )


def build_export_args(source_path: str, destination_path: str, settings: ExportSettings) -> list:
    return [
        "-y",
        "-i", source_path,
        "-vf", build_filter_graph(settings),
        "-loop", str(settings.loop_count),
        destination_path,
    ]


def probe_duration(video_path: str) -> float:
    """Duration of *video_path* in seconds, or 0.0 if it can't be read.

    Reads frame count / fps via OpenCV; when the container doesn't report
    them, asks ffmpeg to count frames instead.
    """
    if not os.path.isfile(video_path):
        return 0.0
    cap = cv2.VideoCapture(video_path)
    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
        frames = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
    finally:
        cap.release()
    if fps > 0 and frames > 0:
        return frames / fps
    try:
        _nframes, nsecs = imageio_ffmpeg.count_frames_and_secs(video_path)
        return float(nsecs)
    except (RuntimeError, OSError, ValueError) as exc:
        logger.warning("Could not probe duration of %s: %s", video_path, exc)
        return 0.0


@dataclass
class TranscodeJob:
    """One video → GIF request.  *duration* is probed when not given."""
    source_path: str
    destination_path: str
    settings: ExportSettings
    duration: Optional[float] = None


class GifExporter:
    """Turns finished recordings into GIFs through a :class:`Transcoder`."""

    def __init__(self, transcoder: Optional[Transcoder] = None) -> None:
        self._transcoder: Transcoder = transcoder or FFmpegTranscoder()

    @property
    def transcoder(self) -> Transcoder:
        return self._transcoder

    def export(
        self,
        job: TranscodeJob,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> str:
        """Transcode *job* and return the GIF path.

        *on_progress* receives non-decreasing fractions in [0, 1] and, on
        success, a final 1.0.  With an unknown duration it only sees 0.0
        until that final value.
        """
        if on_progress is None:
            return self.quick_export(job)

        duration = job.duration if job.duration is not None else probe_duration(job.source_path)
        if duration <= 0:
            logger.warning("Unknown duration for %s; progress will not advance", job.source_path)
        self._prepare_destination(job.destination_path)

        args = build_export_args(job.source_path, job.destination_path, job.settings)
        self._transcoder.run_with_progress(args, duration, on_progress)
        self._check_output(job.destination_path)
        on_progress(1.0)
        logger.info("Exported GIF %s", job.destination_path)
        return job.destination_path

    def quick_export(self, job: TranscodeJob) -> str:
        """Same conversion as :meth:`export` without progress telemetry."""
        self._prepare_destination(job.destination_path)
        args = build_export_args(job.source_path, job.destination_path, job.settings)
        self._transcoder.run(args)
        self._check_output(job.destination_path)
        logger.info("Exported GIF %s", job.destination_path)
        return job.destination_path

    def generate_preview_frame(
        self,
        video_path: str,
        at_time: float = 0.0,
        size: Tuple[int, int] = (200, 150),
        output_path: str = "",
    ) -> str:
        """Extract one frame at *at_time* seconds as a PNG thumbnail.

        The thumbnail is *size[0]* wide; height follows the aspect ratio.
        """
        if not output_path:
            output_path = os.path.join(tempfile.gettempdir(), f"{uuid.uuid4()}.png")
        self._prepare_destination(output_path)
        args = [
            "-y",
            "-ss", f"{max(at_time, 0.0):.2f}",
            "-i", video_path,
            "-frames:v", "1",
            "-vf", f"scale={int(size[0])}:-1",
            output_path,
        ]
        self._transcoder.run(args)
        self._check_output(output_path)
        return output_path

    # ── internal ────────────────────────────────────────────────────

    @staticmethod
    def _prepare_destination(path: str) -> None:
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)

    @staticmethod
    def _check_output(path: str) -> None:
        if not os.path.isfile(path) or os.path.getsize(path) == 0:
            raise TranscodeFailed(f"ffmpeg reported success but {path} is empty")


class GifExportWorker(QObject):
    """Runs GIF exports on a background thread and reports via Qt signals.

    Progress travels through a :class:`ProgressChannel` drained on the
    worker thread; re-emitting it as a signal lets Qt queue delivery onto
    the receiver's (UI) thread.
    """

    progress = Signal(float)  # 0.0–1.0
    finished = Signal(str)    # output path
    error = Signal(str)

    def __init__(self, exporter: Optional[GifExporter] = None,
                 parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._exporter = exporter or GifExporter()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def export(self, job: TranscodeJob) -> None:
        """Start exporting *job* in the background."""
        if self.is_running:
            self.error.emit("An export is already running")
            return
        channel = ProgressChannel()
        self._thread = threading.Thread(
            target=self._run, args=(job, channel), daemon=True,
        )
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self, job: TranscodeJob, channel: ProgressChannel) -> None:
        relay = threading.Thread(target=self._relay, args=(channel,), daemon=True)
        relay.start()
        error: Optional[str] = None
        try:
            path = self._exporter.export(job, on_progress=channel.publish)
        except ScreenGifError as exc:
            logger.error("GIF export failed: %s", exc)
            error = str(exc)
        except OSError as exc:
            logger.error("GIF export failed: %s", exc)
            error = f"Export failed: {exc}"
        except Exception as exc:
            logger.exception("Unexpected error during GIF export")
            error = f"Export failed: {exc}"
        finally:
            channel.close()
            relay.join()
        if error is not None:
            self.error.emit(error)
        else:
            self.finished.emit(path)

    def _relay(self, channel: ProgressChannel) -> None:
        for fraction in channel:
            self.progress.emit(fraction)
