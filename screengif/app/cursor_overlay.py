"""Pointer overlay for captured frames.

mss grabs never contain the mouse pointer, so when a capture asks for
one it is stamped onto each BGRA frame from a pre-rendered arrow
template at the current pointer position.
"""

import sys
from typing import Callable, Optional, Tuple

import cv2
import numpy as np
from PySide6.QtGui import QCursor, QGuiApplication

from .models import Rect

# GetCursorPos reports physical pixels, matching mss coordinates
if sys.platform == "win32":
    import ctypes
    import ctypes.wintypes as wintypes

CursorPosition = Callable[[], Optional[Tuple[int, int]]]

CURSOR_HEIGHT = 22                   # arrow height in pixels
CURSOR_OUTLINE = (30, 30, 30)        # near-black outline, RGB
CURSOR_SHADOW_ALPHA = 80             # drop shadow opacity (0-255)

# Normalized arrow polygon, tip at (0, 0), unit height
_ARROW_POINTS = [
    (0.0, 0.0),
    (0.0, 1.0),
    (0.22, 0.74),
    (0.42, 1.08),
    (0.56, 0.96),
    (0.32, 0.63),
    (0.60, 0.63),
]


def system_cursor_position() -> Optional[Tuple[int, int]]:
    """Return the pointer position in physical screen pixels, or None."""
    if sys.platform == "win32":
        pt = wintypes.POINT()
        if not ctypes.windll.user32.GetCursorPos(ctypes.byref(pt)):
            return None
        return pt.x, pt.y

    # QCursor needs a GUI application; headless runs record without a pointer
    if not isinstance(QGuiApplication.instance(), QGuiApplication):
        return None
    pos = QCursor.pos()
    screen = QGuiApplication.screenAt(pos)
    ratio = screen.devicePixelRatio() if screen is not None else 1.0
    return int(pos.x() * ratio), int(pos.y() * ratio)


class CursorTemplate:
    """A pre-rendered arrow: BGR pixels, alpha mask and the tip offset."""

    def __init__(self, height: int = CURSOR_HEIGHT) -> None:
        self.bgr, self.alpha, self.tip = _build_template(height)


def _build_template(height: int) -> Tuple[np.ndarray, np.ndarray, Tuple[int, int]]:
    h = max(height, 8)
    w = int(h * 0.7) + 2
    shadow_off = max(2, int(h * 0.08))
    pad = shadow_off + 4

    canvas = np.zeros((h + pad * 2, w + pad * 2, 4), dtype=np.uint8)
    pts = np.array(
        [[int(x * h) + pad, int(y * h) + pad] for x, y in _ARROW_POINTS],
        dtype=np.int32,
    )

    cv2.fillPoly(canvas, [pts + shadow_off], (0, 0, 0, CURSOR_SHADOW_ALPHA))
    blur_k = max(3, int(h * 0.1)) | 1  # must be odd
    canvas[:, :, 3] = cv2.GaussianBlur(canvas[:, :, 3].copy(), (blur_k, blur_k), 0)

    outline = (*CURSOR_OUTLINE[::-1], 255)
    cv2.fillPoly(canvas, [pts], outline)
    cv2.polylines(canvas, [pts], True, outline, max(2, int(h * 0.09)), cv2.LINE_AA)
    cv2.fillPoly(canvas, [pts], (255, 255, 255, 255))

    # Trim to the visible pixels, remembering where the tip ended up
    alpha = canvas[:, :, 3]
    rows = np.where(np.any(alpha > 0, axis=1))[0]
    cols = np.where(np.any(alpha > 0, axis=0))[0]
    top, left = int(rows[0]), int(cols[0])
    cropped = canvas[top:int(rows[-1]) + 1, left:int(cols[-1]) + 1]
    return cropped[:, :, :3].copy(), cropped[:, :, 3].copy(), (pad - left, pad - top)


def draw_cursor(
    frame: np.ndarray,
    position: Tuple[int, int],
    rect: Rect,
    template: CursorTemplate,
) -> bool:
    """Blend the arrow onto *frame* in-place.

    *position* is in absolute screen pixels; *rect* is the screen area
    *frame* was grabbed from.  Returns False when the pointer lies
    entirely outside the frame.
    """
    fh, fw = frame.shape[:2]
    ch, cw = template.alpha.shape

    # Tip in frame pixels, scaled in case the grab differs from the rect
    px = int((position[0] - rect.x) * fw / max(rect.width, 1)) - template.tip[0]
    py = int((position[1] - rect.y) * fh / max(rect.height, 1)) - template.tip[1]

    x1, y1 = max(0, px), max(0, py)
    x2, y2 = min(fw, px + cw), min(fh, py + ch)
    if x2 <= x1 or y2 <= y1:
        return False
    sx, sy = x1 - px, y1 - py

    roi = frame[y1:y2, x1:x2, :3]
    c_roi = template.bgr[sy:sy + (y2 - y1), sx:sx + (x2 - x1)]
    a_roi = template.alpha[sy:sy + (y2 - y1), sx:sx + (x2 - x1)]

    alpha = a_roi[:, :, np.newaxis].astype(np.float32) / 255.0
    blended = c_roi.astype(np.float32) * alpha + roi.astype(np.float32) * (1 - alpha)
    np.copyto(roi, blended.astype(np.uint8))
    return True
