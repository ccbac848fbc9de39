"""Selection overlay — drag a rectangle over the screen to pick a crop region."""

from typing import Optional

from PySide6.QtCore import Qt, QPoint, QRect, Signal
from PySide6.QtGui import QColor, QGuiApplication, QPainter, QPen
from PySide6.QtWidgets import QWidget

from ..models import Rect

MIN_SELECTION = 10  # px; smaller drags are discarded


def normalize_selection(x0: int, y0: int, x1: int, y1: int,
                        min_size: int = MIN_SELECTION) -> Optional[Rect]:
    """Rectangle spanned by two drag corners, or None if it's too small.

    Both sides must exceed *min_size*.
    """
    left, right = sorted((x0, x1))
    top, bottom = sorted((y0, y1))
    w, h = right - left, bottom - top
    if w <= min_size or h <= min_size:
        return None
    return Rect(left, top, w, h)


class SelectionOverlay(QWidget):
    """Frameless translucent overlay covering one screen.

    Emits ``selection_made(Rect)`` (screen-relative) on mouse release or
    Enter, or ``cancelled()`` on Esc / a drag that's too small.
    """

    selection_made = Signal(object)
    cancelled = Signal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground)
        self.setCursor(Qt.CursorShape.CrossCursor)
        self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
        self._origin: Optional[QPoint] = None
        self._current: Optional[QPoint] = None

    def show_on_primary_screen(self) -> None:
        screen = QGuiApplication.primaryScreen()
        if screen is not None:
            self.setGeometry(screen.geometry())
        self.showFullScreen()
        self.activateWindow()
        self.setFocus()

    def current_selection(self) -> Optional[Rect]:
        if self._origin is None or self._current is None:
            return None
        return normalize_selection(
            self._origin.x(), self._origin.y(), self._current.x(), self._current.y(),
        )

    # ── events ──────────────────────────────────────────────────────

    def mousePressEvent(self, event) -> None:  # type: ignore[override]
        if event.button() == Qt.MouseButton.LeftButton:
            self._origin = event.position().toPoint()
            self._current = self._origin
            self.update()

    def mouseMoveEvent(self, event) -> None:  # type: ignore[override]
        if self._origin is not None:
            self._current = event.position().toPoint()
            self.update()

    def mouseReleaseEvent(self, event) -> None:  # type: ignore[override]
        if event.button() != Qt.MouseButton.LeftButton or self._origin is None:
            return
        self._current = event.position().toPoint()
        self._finish()

    def keyPressEvent(self, event) -> None:  # type: ignore[override]
        key = event.key()
        if key == Qt.Key.Key_Escape:
            self._origin = self._current = None
            self._finish()
        elif key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            self._finish()
        else:
            super().keyPressEvent(event)

    def _finish(self) -> None:
        rect = self.current_selection()
        self.hide()
        if rect is None:
            self.cancelled.emit()
        else:
            self.selection_made.emit(rect)

    def paintEvent(self, event) -> None:  # type: ignore[override]
        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor(0, 0, 0, 90))
        if self._origin is not None and self._current is not None:
            sel = QRect(self._origin, self._current).normalized()
            painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_Clear)
            painter.fillRect(sel, Qt.GlobalColor.transparent)
            painter.setCompositionMode(QPainter.CompositionMode.CompositionMode_SourceOver)
            painter.setPen(QPen(QColor("#8b5cf6"), 2))
            painter.drawRect(sel)
            painter.setPen(QColor(255, 255, 255, 230))
            painter.drawText(sel.left(), sel.top() - 6, f"{sel.width()} × {sel.height()}")
        painter.end()
