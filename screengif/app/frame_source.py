"""Frame sources: push timestamped BGRA buffers to a callback.

The mss-backed source grabs a screen rectangle on its own thread at the
configured frame rate and stamps each buffer with ``time.perf_counter()``.
It has no backpressure signal; the consumer decides what to drop.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Protocol

import cv2
import mss
from mss.exception import ScreenShotError
import numpy as np

from .cursor_overlay import CursorPosition, CursorTemplate, draw_cursor, system_cursor_position
from .models import CaptureGeometry, DisplayTarget, Rect
from .utils import precise_sleep

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray, float], None]


class FrameSource(Protocol):
    def start(self, callback: FrameCallback) -> None: ...

    def stop(self) -> None: ...


def list_displays() -> List[DisplayTarget]:
    """Return the available monitors (index 1 = primary)."""
    with mss.mss() as sct:
        displays: List[DisplayTarget] = []
        for i, m in enumerate(sct.monitors):
            if i == 0:  # "all monitors" virtual screen
                continue
            displays.append(
                DisplayTarget(
                    index=i,
                    width=m["width"],
                    height=m["height"],
                    left=m["left"],
                    top=m["top"],
                )
            )
        return displays


def grab_thumbnail(rect: Rect, max_w: int = 280, max_h: int = 160) -> Optional[np.ndarray]:
    """Grab *rect* once and return a scaled RGB thumbnail, or None."""
    try:
        with mss.mss() as sct:
            frame = np.asarray(sct.grab(rect.to_dict()))
    except ScreenShotError as exc:
        logger.warning("Thumbnail grab failed: %s", exc)
        return None
    frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB)
    h, w = frame_rgb.shape[:2]
    scale = min(max_w / w, max_h / h)
    return cv2.resize(frame_rgb, (max(1, int(w * scale)), max(1, int(h * scale))))


class MssFrameSource:
    """Captures a display, crop region or window rectangle via mss.

    With *shows_cursor* the pointer is drawn onto every frame at its
    position relative to the grabbed rectangle.  *include_shadow* widens
    a window grab to take in the drop shadow around it.
    """

    def __init__(
        self,
        geometry: CaptureGeometry,
        fps: int = 30,
        shows_cursor: bool = False,
        include_shadow: bool = False,
        cursor_position: CursorPosition = system_cursor_position,
    ) -> None:
        self._rect = geometry.screen_rect(include_shadow)
        self._fps = max(1, fps)
        self._cursor: Optional[CursorTemplate] = CursorTemplate() if shows_cursor else None
        self._cursor_position = cursor_position
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._callback: Optional[FrameCallback] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def rect(self) -> Rect:
        return self._rect

    def start(self, callback: FrameCallback) -> None:
        """Begin delivering frames to *callback* on a capture thread."""
        self.stop()
        self._callback = callback
        self._running = True
        self._thread = threading.Thread(
            target=self._capture_loop, name="screengif-capture", daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the capture thread; no callback fires after this returns."""
        self._running = False
        if self._thread:
            self._thread.join()
            self._thread = None

    def _overlay_cursor(self, frame: np.ndarray) -> np.ndarray:
        if self._cursor is None:
            return frame
        position = self._cursor_position()
        if position is None:
            return frame
        frame = np.array(frame)  # grab buffers are reused by mss
        draw_cursor(frame, position, self._rect, self._cursor)
        return frame

    def _capture_loop(self) -> None:
        monitor = self._rect.to_dict()
        interval = 1.0 / self._fps
        try:
            with mss.mss() as sct:
                while self._running:
                    t0 = time.perf_counter()
                    frame = self._overlay_cursor(np.asarray(sct.grab(monitor)))
                    if self._callback is not None and self._running:
                        self._callback(frame, t0)
                    elapsed = time.perf_counter() - t0
                    sleep_time = max(0.0, interval - elapsed)
                    if sleep_time > 0:
                        precise_sleep(sleep_time)
        except ScreenShotError as exc:
            logger.error("mss capture error: %s", exc)
            self._running = False
