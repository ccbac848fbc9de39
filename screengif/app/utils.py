"""Shared utilities used by multiple modules."""

import logging
import subprocess
import sys
import time
from typing import List

logger = logging.getLogger(__name__)


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def fmt_time(ms: float) -> str:
    """Format milliseconds as m:ss."""
    s = int(ms / 1000)
    m = s // 60
    return f"{m}:{s % 60:02d}"


def precise_sleep(seconds: float) -> None:
    """Hybrid sleep: coarse sleep then spin-wait for sub-ms accuracy."""
    if seconds <= 0:
        return
    # Sleep most of the time (leave 2ms for spin-wait)
    coarse = seconds - 0.002
    if coarse > 0:
        time.sleep(coarse)
    target = time.perf_counter() + (seconds - max(coarse, 0))
    while time.perf_counter() < target:
        pass


# ── Capture container encoding ──────────────────────────────────────

# Fixed high bitrate target for the intermediate recording
CAPTURE_BITRATE: int = 10_000_000


def build_capture_encoder_args(bitrate: int = CAPTURE_BITRATE) -> List[str]:
    """Return ffmpeg output arguments for the capture container.

    H.264 (High profile) at a fixed average bitrate, ``yuv420p`` for broad
    player support and ``+faststart`` so the finished file is seekable.
    """
    rate = str(bitrate)
    return [
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-profile:v", "high",
        "-b:v", rate,
        "-maxrate", rate,
        "-bufsize", str(bitrate * 2),
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
    ]
