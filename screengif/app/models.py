"""Core data models for ScreenGif.

Defines the capture target / capture configuration value types and the
``Recording`` catalog entry.  Models that get persisted support JSON
serialization via ``to_dict()`` / ``from_dict()``.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
import os
import time
import uuid

from .errors import GeometryInvalid


DEFAULT_FPS = 30
DEFAULT_QUEUE_DEPTH = 5

# Used when a window reports a zero-area frame
FALLBACK_SIZE: Tuple[int, int] = (1920, 1080)

# Room left around a window for the drop shadow the compositor draws
WINDOW_SHADOW_MARGIN = 20


class CaptureQuality(str, Enum):
    """Resolution tier applied to the captured source size."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def scale_factor(self) -> float:
        return {"low": 0.5, "medium": 0.75, "high": 1.0}[self.value]

    @property
    def display_name(self) -> str:
        return {
            "low": "Low (smaller file)",
            "medium": "Medium",
            "high": "High (best quality)",
        }[self.value]


def _even(n: int) -> int:
    # H.264 with yuv420p rejects odd dimensions
    return max(2, n - (n % 2))


@dataclass(frozen=True)
class CaptureConfiguration:
    """Immutable capture settings.

    ``dimensions_for()`` is the only behavior: it turns a source size into
    the concrete pixel size frames are recorded at.
    """

    fps: int = DEFAULT_FPS
    shows_cursor: bool = True
    include_window_shadow: bool = True
    quality: CaptureQuality = CaptureQuality.HIGH
    queue_depth: int = DEFAULT_QUEUE_DEPTH

    def dimensions_for(self, width: float, height: float) -> Tuple[int, int]:
        """Scale *width* × *height* by the quality factor.

        A zero-area source falls back to :data:`FALLBACK_SIZE`.
        """
        if width <= 0 or height <= 0:
            return FALLBACK_SIZE
        scale = self.quality.scale_factor
        return _even(int(width * scale)), _even(int(height * scale))

    def with_quality(self, quality: CaptureQuality) -> "CaptureConfiguration":
        return replace(self, quality=quality)

    def to_dict(self) -> dict:
        return {
            "fps": self.fps,
            "showsCursor": self.shows_cursor,
            "includeWindowShadow": self.include_window_shadow,
            "quality": self.quality.value,
            "queueDepth": self.queue_depth,
        }

    @staticmethod
    def from_dict(d: dict) -> "CaptureConfiguration":
        """Reconstruct from a dict, falling back to defaults for missing keys."""
        return CaptureConfiguration(
            fps=int(d.get("fps", DEFAULT_FPS)),
            shows_cursor=bool(d.get("showsCursor", True)),
            include_window_shadow=bool(d.get("includeWindowShadow", True)),
            quality=CaptureQuality(d.get("quality", CaptureQuality.HIGH.value)),
            queue_depth=int(d.get("queueDepth", DEFAULT_QUEUE_DEPTH)),
        )


@dataclass(frozen=True)
class Rect:
    """An axis-aligned rectangle in screen pixels."""
    x: int
    y: int
    width: int
    height: int

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_dict(self) -> dict:
        return {"left": self.x, "top": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DisplayTarget:
    """A physical display as enumerated by mss (index 1 = primary)."""
    index: int
    width: int
    height: int
    left: int = 0
    top: int = 0

    @property
    def name(self) -> str:
        return f"Display {self.index}  ({self.width}×{self.height})"

    @property
    def rect(self) -> Rect:
        return Rect(self.left, self.top, self.width, self.height)


@dataclass(frozen=True)
class WindowTarget:
    """A single application window, identified by an OS handle."""
    handle: int
    title: str
    width: int
    height: int
    left: int = 0
    top: int = 0

    @property
    def rect(self) -> Rect:
        return Rect(self.left, self.top, self.width, self.height)


@dataclass(frozen=True)
class CaptureGeometry:
    """What to capture: a display, a display with a crop, or one window.

    Crop coordinates are relative to the display's top-left corner.
    """

    display: Optional[DisplayTarget] = None
    crop: Optional[Rect] = None
    window: Optional[WindowTarget] = None

    @staticmethod
    def for_display(display: DisplayTarget, crop: Optional[Rect] = None) -> "CaptureGeometry":
        return CaptureGeometry(display=display, crop=crop)

    @staticmethod
    def for_window(window: WindowTarget) -> "CaptureGeometry":
        return CaptureGeometry(window=window)

    def validate(self) -> None:
        """Raise :class:`GeometryInvalid` unless exactly one target resolves."""
        if self.window is not None:
            if self.display is not None or self.crop is not None:
                raise GeometryInvalid("A window capture cannot also name a display or crop region")
            return
        if self.display is None:
            if self.crop is not None:
                raise GeometryInvalid("A crop region needs a display to crop from")
            raise GeometryInvalid()
        if self.crop is not None and self.crop.is_empty:
            raise GeometryInvalid("Crop region has zero area")

    def _window_rect(self, include_shadow: bool) -> Rect:
        assert self.window is not None
        rect = self.window.rect
        if not include_shadow or rect.is_empty:
            return rect
        m = WINDOW_SHADOW_MARGIN
        return Rect(rect.x - m, rect.y - m, rect.width + 2 * m, rect.height + 2 * m)

    def source_size(self, include_shadow: bool = False) -> Tuple[int, int]:
        """Pixel size of what the frame source delivers (before scaling)."""
        if self.window is not None:
            rect = self._window_rect(include_shadow)
            return rect.width, rect.height
        if self.crop is not None:
            return self.crop.width, self.crop.height
        if self.display is not None:
            return self.display.width, self.display.height
        return 0, 0

    def screen_rect(self, include_shadow: bool = False) -> Rect:
        """Absolute screen rectangle to grab.

        *include_shadow* only affects window captures: the window frame is
        widened by ``WINDOW_SHADOW_MARGIN`` on every side.
        """
        if self.window is not None:
            return self._window_rect(include_shadow)
        if self.display is None:
            raise GeometryInvalid()
        if self.crop is not None:
            return Rect(
                self.display.left + self.crop.x,
                self.display.top + self.crop.y,
                self.crop.width,
                self.crop.height,
            )
        return self.display.rect


@dataclass
class Recording:
    """A finished recording as stored in the recording library."""

    id: str
    created_at: float  # epoch seconds
    source_video_path: str
    duration: float  # seconds
    exported_gif_path: Optional[str] = None

    @staticmethod
    def create(source_video_path: str, duration: float) -> "Recording":
        """Factory that auto-generates a UUID and creation time."""
        return Recording(
            id=str(uuid.uuid4()),
            created_at=time.time(),
            source_video_path=source_video_path,
            duration=duration,
        )

    @property
    def formatted_duration(self) -> str:
        minutes = int(self.duration) // 60
        seconds = int(self.duration) % 60
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    @property
    def display_name(self) -> str:
        return datetime.fromtimestamp(self.created_at).strftime("%Y-%m-%d %H:%M")

    @property
    def file_size(self) -> Optional[int]:
        """Size of the GIF if exported, else of the source video."""
        path = self.exported_gif_path or self.source_video_path
        try:
            return os.path.getsize(path)
        except OSError:
            return None

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "createdAt": self.created_at,
            "sourceVideoPath": self.source_video_path,
            "duration": self.duration,
        }
        if self.exported_gif_path:
            d["exportedGifPath"] = self.exported_gif_path
        return d

    @staticmethod
    def from_dict(d: dict) -> "Recording":
        """Reconstruct from a dict, ignoring unknown keys for forward compat."""
        return Recording(
            id=d["id"],
            created_at=d["createdAt"],
            source_video_path=d["sourceVideoPath"],
            duration=d.get("duration", 0.0),
            exported_gif_path=d.get("exportedGifPath"),
        )
