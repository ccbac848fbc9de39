"""Tests for app.controller — record, catalog, export."""

import os

import pytest

from app.capture import CapturePipeline
from app.controller import RecordingController
from app.errors import NoActiveRecording
from app.export_settings import ExportPreset, ExportSettings
from app.gif_exporter import GifExporter
from app.library import RecordingLibrary
from app.models import CaptureConfiguration
from app.screen_recorder import ScreenRecorder

from conftest import make_frame


class TouchingWriterFactory:
    """Wraps the fake writer factory so finish() leaves a file on disk."""

    def __init__(self, inner) -> None:
        self.inner = inner

    def __call__(self, output_path, width, height, configuration):
        writer = self.inner(output_path, width, height, configuration)
        original_finish = writer.finish

        def finish():
            original_finish()
            with open(output_path, "wb") as f:
                f.write(b"\x00" * 128)

        writer.finish = finish
        return writer


class OneShotSource:
    def start(self, callback) -> None:
        for i in range(15):
            callback(make_frame(), 50.0 + i / 30)

    def stop(self) -> None:
        pass


@pytest.fixture
def controller(qapp, tmp_path, writer_factory, fake_transcoder) -> RecordingController:
    pipeline = CapturePipeline(writer_factory=TouchingWriterFactory(writer_factory))
    recorder = ScreenRecorder(pipeline, lambda g, c: OneShotSource())
    return RecordingController(
        recorder=recorder,
        exporter=GifExporter(fake_transcoder),
        library=RecordingLibrary(str(tmp_path / "library.json")),
        output_dir=str(tmp_path / "recordings"),
    )


class TestRecordingController:
    def test_record_adds_to_library(self, controller, display_geometry, tmp_path) -> None:
        path = controller.start(display_geometry, CaptureConfiguration(queue_depth=64))
        assert path.startswith(str(tmp_path / "recordings"))
        assert path.endswith(".mp4")
        assert controller.is_recording

        recording = controller.stop()
        assert not controller.is_recording
        assert recording.source_video_path == path
        assert recording.duration == pytest.approx(0.5)
        assert controller.library.list() == [recording]

    def test_stop_without_start(self, controller) -> None:
        with pytest.raises(NoActiveRecording):
            controller.stop()

    def test_export_records_gif_path(self, controller, display_geometry, fake_transcoder) -> None:
        controller.start(display_geometry)
        recording = controller.stop()
        values = []
        updated = controller.export(recording, ExportSettings(preset=ExportPreset.SMALL),
                                    on_progress=values.append)
        assert updated.exported_gif_path == os.path.splitext(recording.source_video_path)[0] + ".gif"
        assert os.path.isfile(updated.exported_gif_path)
        assert controller.library.get(recording.id).exported_gif_path == updated.exported_gif_path
        assert values[-1] == 1.0
        assert "fps=10," in " ".join(fake_transcoder.calls[0]["args"])

    def test_export_to_explicit_destination(self, controller, display_geometry, tmp_path) -> None:
        controller.start(display_geometry)
        recording = controller.stop()
        dest = str(tmp_path / "out" / "custom.gif")
        assert controller.export(recording, destination_path=dest).exported_gif_path == dest
