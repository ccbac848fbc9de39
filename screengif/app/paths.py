"""Per-user storage locations: app data dir, recordings, ffmpeg cache."""

import os
import sys
import time

from PySide6.QtCore import QStandardPaths

APP_NAME = "ScreenGif"


def app_data_dir() -> str:
    """Per-user data directory, created on first use.

    ``<GenericDataLocation>/ScreenGif`` (e.g. ``~/.local/share/ScreenGif``);
    falls back to ``~/.screengif`` when Qt cannot report one.
    """
    base = QStandardPaths.writableLocation(
        QStandardPaths.StandardLocation.GenericDataLocation
    )
    path = os.path.join(base, APP_NAME) if base else os.path.expanduser("~/.screengif")
    os.makedirs(path, exist_ok=True)
    return path


def recordings_dir() -> str:
    path = os.path.join(app_data_dir(), "recordings")
    os.makedirs(path, exist_ok=True)
    return path


def ffmpeg_binary_name() -> str:
    return "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"


def ffmpeg_cache_path() -> str:
    """Where the downloaded ffmpeg executable lives once installed."""
    return os.path.join(app_data_dir(), "bin", ffmpeg_binary_name())


def library_path() -> str:
    return os.path.join(app_data_dir(), "library.json")


def new_recording_path(directory: str = "") -> str:
    """Timestamped ``.mp4`` path for a new recording."""
    directory = directory or recordings_dir()
    return os.path.join(directory, f"recording_{time.strftime('%Y%m%d_%H%M%S')}.mp4")


def gif_path_for(video_path: str) -> str:
    """Sibling ``.gif`` path for a recording."""
    return os.path.splitext(video_path)[0] + ".gif"
