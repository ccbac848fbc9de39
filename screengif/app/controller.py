"""Application-level glue: record → catalog → export → catalog.

The pipelines themselves know nothing about the recording library; this
controller threads their outputs (paths and durations) into it.
"""

import logging
from typing import Callable, Optional

from .errors import NoActiveRecording
from .gif_exporter import GifExporter, TranscodeJob, probe_duration
from .library import RecordingLibrary
from .models import CaptureConfiguration, CaptureGeometry, Recording
from .paths import gif_path_for, new_recording_path
from .screen_recorder import ScreenRecorder
from .export_settings import ExportSettings

logger = logging.getLogger(__name__)


class RecordingController:
    def __init__(
        self,
        recorder: Optional[ScreenRecorder] = None,
        exporter: Optional[GifExporter] = None,
        library: Optional[RecordingLibrary] = None,
        output_dir: str = "",
    ) -> None:
        self.recorder = recorder or ScreenRecorder()
        self.exporter = exporter or GifExporter()
        self.library = library or RecordingLibrary()
        self._output_dir = output_dir

    @property
    def is_recording(self) -> bool:
        return self.recorder.is_recording

    def start(
        self,
        geometry: CaptureGeometry,
        configuration: Optional[CaptureConfiguration] = None,
        output_path: str = "",
    ) -> str:
        """Start recording *geometry*; returns the video path being written."""
        path = output_path or new_recording_path(self._output_dir)
        self.recorder.start_recording(geometry, configuration or CaptureConfiguration(), path)
        return path

    def stop(self) -> Recording:
        """Finalize the recording and add it to the library."""
        if not self.recorder.is_recording:
            raise NoActiveRecording()
        path = self.recorder.stop_recording()
        duration = self.recorder.last_duration or probe_duration(path)
        recording = Recording.create(path, duration)
        self.library.insert(recording)
        logger.info("Saved recording %s (%s)", recording.id, recording.formatted_duration)
        return recording

    def export(
        self,
        recording: Recording,
        settings: Optional[ExportSettings] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        destination_path: str = "",
    ) -> Recording:
        """Export *recording* as a GIF and record the GIF path in the library."""
        job = TranscodeJob(
            source_path=recording.source_video_path,
            destination_path=destination_path or gif_path_for(recording.source_video_path),
            settings=settings or ExportSettings(),
            duration=recording.duration or None,
        )
        recording.exported_gif_path = self.exporter.export(job, on_progress=on_progress)
        self.library.update(recording)
        return recording
