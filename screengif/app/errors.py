"""Exception types raised by the capture and transcode pipelines.

Every error carries a short human-readable message suitable for a status
line.  Per-frame capture problems never surface as exceptions; only
session-level start/stop failures and transcode failures propagate.
"""


class ScreenGifError(Exception):
    """Base class for all ScreenGif errors."""

    default_message = "ScreenGif error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class GeometryInvalid(ScreenGifError):
    """The capture target is missing or self-contradictory."""

    default_message = "No valid display, window or crop region to capture"


class ContainerIOError(ScreenGifError, OSError):
    """The output location could not be created or the container not opened."""

    default_message = "Could not open the output video file"


class RecordingFailed(ScreenGifError):
    """Capture session misuse or a writer failure during finalization."""

    default_message = "Recording failed"


class NoActiveRecording(RecordingFailed):
    default_message = "No active recording"


class BinaryUnavailable(ScreenGifError):
    """ffmpeg could not be found, downloaded or installed."""

    default_message = "ffmpeg is not available"


class TranscodeFailed(ScreenGifError):
    """ffmpeg ran and exited with a non-zero status."""

    default_message = "ffmpeg failed"

    def __init__(self, detail: str = "", returncode: int | None = None) -> None:
        self.detail = detail.strip()
        self.returncode = returncode
        msg = f"ffmpeg error: {self.detail}" if self.detail else ""
        super().__init__(msg)


def stderr_tail(text: str, limit: int = 800) -> str:
    """Last *limit* characters of *text*, stripped."""
    text = (text or "").strip()
    return text[-limit:] if len(text) > limit else text
