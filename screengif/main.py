"""ScreenGif — record a screen region and turn it into a high-quality GIF."""

import argparse
import logging
import os
import sys
import time
from typing import List, Optional

import cv2
from tqdm import tqdm

from app.controller import RecordingController
from app.errors import ScreenGifError
from app.export_settings import DitheringMode, ExportPreset, ExportSettings
from app.frame_source import grab_thumbnail, list_displays
from app.gif_exporter import GifExporter, TranscodeJob
from app.installer import TranscoderInstaller, shared_installer
from app.library import RecordingLibrary
from app.models import (
    CaptureConfiguration,
    CaptureGeometry,
    CaptureQuality,
    Rect,
    WindowTarget,
)
from app.paths import gif_path_for
from app.settings import AppSettings
from app.utils import fmt_time
from app.version import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s | %(levelname)s | %(message)s",
)

_logger = logging.getLogger(__name__)


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _parse_rect(text: str) -> Rect:
    try:
        x, y, w, h = (int(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected x,y,width,height, got {text!r}")
    return Rect(x, y, w, h)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="screengif", description=__doc__)
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    disp = sub.add_parser("displays", help="List displays")
    disp.add_argument("--thumbnails", default="", help="Also save a PNG thumbnail per display here")

    rec = sub.add_parser("record", help="Record a display, crop region or window")
    rec.add_argument("--display", type=int, default=None, help="Display index (1 = primary)")
    rec.add_argument("--crop", type=_parse_rect, default=None, help="x,y,w,h relative to the display")
    rec.add_argument("--window", type=_parse_rect, default=None, help="Window rectangle x,y,w,h")
    rec.add_argument("--select", action="store_true", help="Drag a crop region on screen first")
    rec.add_argument("--seconds", type=float, default=0.0, help="Stop after N seconds (default: Ctrl+C)")
    rec.add_argument("--fps", type=int, default=None)
    rec.add_argument("--quality", choices=[q.value for q in CaptureQuality], default=None)
    rec.add_argument("--output", default="", help="Output video path")

    sub.add_parser("select", help="Drag a rectangle and print it")

    exp = sub.add_parser("export", help="Export a recording (id or video path) as GIF")
    exp.add_argument("source")
    exp.add_argument("--preset", choices=[p.value for p in ExportPreset], default=None)
    exp.add_argument("--fps", type=int, default=None)
    exp.add_argument("--width", type=int, default=None)
    exp.add_argument("--colors", type=int, default=None)
    exp.add_argument("--dither", choices=[d.value for d in DitheringMode], default=None)
    exp.add_argument("--loop", type=int, default=None, help="0 = loop forever")
    exp.add_argument("--output", default="")
    exp.add_argument("--quick", action="store_true", help="No progress output")

    prev = sub.add_parser("preview", help="Save one frame of a video as PNG")
    prev.add_argument("video")
    prev.add_argument("--at", type=float, default=0.0)
    prev.add_argument("--width", type=int, default=200)
    prev.add_argument("--output", default="")

    sub.add_parser("list", help="List saved recordings")

    rm = sub.add_parser("delete", help="Delete a recording and its files")
    rm.add_argument("id")
    return ap


def _select_region() -> Optional[Rect]:
    """Show the selection overlay and block until it emits."""
    from PySide6.QtWidgets import QApplication
    from app.widgets.selection_overlay import SelectionOverlay

    qt_app = QApplication.instance() or QApplication(sys.argv)
    result: List[Optional[Rect]] = [None]
    overlay = SelectionOverlay()

    def _done(rect) -> None:
        result[0] = rect
        qt_app.quit()

    overlay.selection_made.connect(_done)
    overlay.cancelled.connect(qt_app.quit)
    overlay.show_on_primary_screen()
    qt_app.exec()
    return result[0]


def _cmd_displays(args, settings: AppSettings) -> int:
    for d in list_displays():
        print(f"{d.index}: {d.name}  at ({d.left}, {d.top})")
        if args.thumbnails:
            thumb = grab_thumbnail(d.rect)
            if thumb is not None:
                os.makedirs(args.thumbnails, exist_ok=True)
                cv2.imwrite(os.path.join(args.thumbnails, f"display_{d.index}.png"),
                            cv2.cvtColor(thumb, cv2.COLOR_RGB2BGR))
    return 0


def _cmd_record(args, settings: AppSettings) -> int:
    config = settings.capture_configuration
    if args.fps or args.quality:
        config = CaptureConfiguration(
            fps=args.fps or config.fps,
            shows_cursor=config.shows_cursor,
            include_window_shadow=config.include_window_shadow,
            quality=CaptureQuality(args.quality) if args.quality else config.quality,
            queue_depth=config.queue_depth,
        )

    if args.window is not None:
        w = args.window
        geometry = CaptureGeometry.for_window(
            WindowTarget(handle=0, title="window", width=w.width, height=w.height, left=w.x, top=w.y)
        )
    else:
        displays = {d.index: d for d in list_displays()}
        index = args.display or 1
        crop = args.crop
        if args.select:
            crop = _select_region()
            if crop is None:
                print("Selection cancelled")
                return 1
        geometry = CaptureGeometry.for_display(displays.get(index), crop)  # type: ignore[arg-type]

    if config.shows_cursor and sys.platform != "win32":
        # the pointer position is read through QCursor
        from PySide6.QtGui import QGuiApplication
        _qt_app = QGuiApplication.instance() or QGuiApplication(sys.argv)  # noqa: F841

    controller = RecordingController(output_dir=settings.output_dir)
    path = controller.start(geometry, config, args.output)
    print(f"Recording to {path} (Ctrl+C to stop)")
    try:
        deadline = time.monotonic() + args.seconds if args.seconds > 0 else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.1)
            print(f"\r  {fmt_time(controller.recorder.recording_duration * 1000)}", end="", flush=True)
    except KeyboardInterrupt:
        pass
    print()
    recording = controller.stop()
    print(f"Saved {recording.id}  {recording.formatted_duration}  {recording.source_video_path}")
    return 0


def _export_settings_from_args(args, base: ExportSettings) -> ExportSettings:
    return ExportSettings(
        preset=ExportPreset(args.preset) if args.preset else base.preset,
        custom_fps=args.fps if args.fps is not None else base.custom_fps,
        custom_max_width=args.width if args.width is not None else base.custom_max_width,
        custom_max_colors=args.colors if args.colors is not None else base.custom_max_colors,
        custom_dithering=DitheringMode(args.dither) if args.dither else base.custom_dithering,
        loop_count=args.loop if args.loop is not None else base.loop_count,
    )


def _cmd_export(args, settings: AppSettings) -> int:
    export_settings = _export_settings_from_args(args, settings.export_settings)
    library = RecordingLibrary()
    recording = library.get(args.source)
    controller = RecordingController(library=library)

    bar = None if args.quick else tqdm(total=100, unit="%", desc="GIF")

    def _on_progress(fraction: float) -> None:
        if bar is not None:
            bar.update(int(fraction * 100) - bar.n)

    try:
        if recording is not None:
            recording = controller.export(
                recording, export_settings,
                on_progress=None if args.quick else _on_progress,
                destination_path=args.output,
            )
            out = recording.exported_gif_path
        else:
            job = TranscodeJob(
                source_path=args.source,
                destination_path=args.output or gif_path_for(args.source),
                settings=export_settings,
            )
            exporter = GifExporter()
            out = exporter.quick_export(job) if args.quick else exporter.export(job, _on_progress)
    finally:
        if bar is not None:
            bar.close()
    print(f"Wrote {out} ({os.path.getsize(out)} bytes)")
    return 0


def _cmd_preview(args, settings: AppSettings) -> int:
    out = GifExporter().generate_preview_frame(
        args.video, at_time=args.at, size=(args.width, args.width), output_path=args.output,
    )
    print(out)
    return 0


def _cmd_select(args, settings: AppSettings) -> int:
    rect = _select_region()
    if rect is None:
        print("Selection cancelled")
        return 1
    print(f"{rect.x},{rect.y},{rect.width},{rect.height}")
    return 0


def _cmd_list(args, settings: AppSettings) -> int:
    for r in RecordingLibrary().list():
        gif = f"  gif: {r.exported_gif_path}" if r.exported_gif_path else ""
        print(f"{r.id}  {r.display_name}  {r.formatted_duration}  {r.source_video_path}{gif}")
    return 0


def _cmd_delete(args, settings: AppSettings) -> int:
    library = RecordingLibrary()
    recording = library.get(args.id)
    if recording is None:
        print(f"No recording {args.id}")
        return 1
    library.delete(recording)
    return 0


_COMMANDS = {
    "displays": _cmd_displays,
    "record": _cmd_record,
    "select": _cmd_select,
    "export": _cmd_export,
    "preview": _cmd_preview,
    "list": _cmd_list,
    "delete": _cmd_delete,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point."""
    sys.excepthook = _global_exception_handler
    args = _build_parser().parse_args(argv)
    settings = AppSettings()

    # Every ffmpeg user in the process shares this installer
    shared_installer(lambda: TranscoderInstaller(override=settings.ffmpeg_path, show_progress=True))

    try:
        return _COMMANDS[args.command](args, settings)
    except ScreenGifError as exc:
        _logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
