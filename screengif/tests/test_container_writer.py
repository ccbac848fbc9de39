"""Tests for app.container_writer.

Slotting / backpressure use a shell script that swallows stdin; the
real-encode tests use the ffmpeg bundled with imageio-ffmpeg.
"""

import os
import threading

import pytest

from app.capture import CapturePipeline, CaptureState
from app.container_writer import ContainerWriter
from app.errors import ContainerIOError, RecordingFailed
from app.gif_exporter import probe_duration
from app.models import CaptureConfiguration

from conftest import make_frame, posix_only, write_script


@pytest.fixture(scope="module")
def ffmpeg_exe() -> str:
    imageio_ffmpeg = pytest.importorskip("imageio_ffmpeg")
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError:
        pytest.skip("no ffmpeg binary available")


@pytest.fixture
def sink(tmp_path) -> str:
    """Fake ffmpeg that reads and discards stdin."""
    return write_script(tmp_path / "ffmpeg", "cat > /dev/null\nexit 0\n")


def _writer(exe: str, path: str, w: int = 64, h: int = 48, fps: int = 10, depth: int = 100) -> ContainerWriter:
    return ContainerWriter(path, w, h, fps, ffmpeg=exe, queue_depth=depth)


class TestBuildCommand:
    def test_raw_bgra_from_stdin(self) -> None:
        cmd = _writer("/usr/bin/ffmpeg", "/tmp/o.mp4", 320, 240, 30).build_command()
        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-pix_fmt") + 1] == "bgra"
        assert cmd[cmd.index("-s") + 1] == "320x240"
        assert cmd[cmd.index("-r") + 1] == "30"
        assert cmd[cmd.index("-i") + 1] == "pipe:0"
        assert cmd[-1] == "/tmp/o.mp4"


@posix_only
class TestSlotting:
    def test_gaps_filled_with_repeats(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        w.open()
        assert w.append(make_frame(), 0.0)
        assert w.append(make_frame(), 0.5)   # slot 5
        w.finish()
        assert w.frames_written == 6
        assert w.duration == pytest.approx(0.6)

    def test_same_slot_skipped(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        w.open()
        w.append(make_frame(), 0.0)
        w.append(make_frame(), 0.02)  # rounds to slot 0
        w.append(make_frame(), 0.1)
        w.finish()
        assert w.frames_written == 2
        assert w.frames_skipped == 1

    def test_leading_gap_uses_first_frame(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        w.open()
        w.append(make_frame(), 0.3)
        w.finish()
        assert w.frames_written == 4

    def test_frames_resized_to_output(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"), 32, 24)
        w.open()
        w.append(make_frame(100, 80), 0.0)
        w.finish()
        assert w.frames_written == 1

    def test_no_frames_fails(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        w.open()
        with pytest.raises(RecordingFailed, match="No frames"):
            w.finish()

    def test_not_ready_before_open_and_after_finish(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        assert not w.is_ready_for_more_data
        assert not w.append(make_frame(), 0.0)
        w.open()
        assert w.is_ready_for_more_data
        w.append(make_frame(), 0.0)
        w.finish()
        assert not w.append(make_frame(), 1.0)


@posix_only
class TestFailures:
    def test_ffmpeg_exits_immediately(self, tmp_path) -> None:
        exe = write_script(tmp_path / "ffmpeg", 'echo "No such file or directory" >&2\nexit 1\n')
        with pytest.raises(ContainerIOError, match="No such file"):
            _writer(exe, str(tmp_path / "o.mp4")).open()

    def test_missing_binary(self, tmp_path) -> None:
        with pytest.raises(ContainerIOError):
            _writer(str(tmp_path / "missing"), str(tmp_path / "o.mp4")).open()

    def test_encoder_failure_on_finish(self, tmp_path) -> None:
        exe = write_script(tmp_path / "ffmpeg", 'cat > /dev/null\necho "encoder died" >&2\nexit 1\n')
        w = _writer(exe, str(tmp_path / "o.mp4"))
        w.open()
        w.append(make_frame(), 0.0)
        with pytest.raises(RecordingFailed, match="encoder died"):
            w.finish()

    def test_never_opened(self, tmp_path) -> None:
        with pytest.raises(RecordingFailed):
            _writer("/bin/true", str(tmp_path / "o.mp4")).finish()


@posix_only
class TestMalformedFrames:
    def test_malformed_frame_is_skipped(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"), depth=2)
        w.open()
        assert w.append(make_frame().reshape(-1), 0.0)
        w.append(make_frame(), 0.1)
        w.finish()
        assert w.frames_skipped == 1
        assert w.frames_written == 2

    def test_wrong_channel_count_is_skipped(self, sink, tmp_path) -> None:
        w = _writer(sink, str(tmp_path / "o.mp4"))
        w.open()
        w.append(make_frame()[:, :, :2], 0.0)
        w.append(make_frame(), 0.1)
        w.finish()
        assert w.frames_skipped == 1

    def test_stop_returns_after_malformed_frame(self, sink, tmp_path, display_geometry) -> None:
        def factory(path, width, height, configuration):
            return ContainerWriter(path, width, height, configuration.fps,
                                   ffmpeg=sink, queue_depth=configuration.queue_depth)

        pipeline = CapturePipeline(writer_factory=factory)
        session = pipeline.start(display_geometry, CaptureConfiguration(queue_depth=2),
                                 str(tmp_path / "o.mp4"))
        pipeline.on_frame(make_frame().reshape(-1), 0.1)
        for i in range(1, 9):
            pipeline.on_frame(make_frame(), 0.1 + i / 30)

        outcome = []

        def stop() -> None:
            try:
                outcome.append(pipeline.stop(session))
            except RecordingFailed as exc:
                outcome.append(exc)

        t = threading.Thread(target=stop, daemon=True)
        t.start()
        t.join(timeout=10)
        assert not t.is_alive()
        assert pipeline.state is CaptureState.FINALIZED
        assert outcome == [session.output_path]

    def test_finish_does_not_block_on_dead_writer_thread(self, sink, tmp_path) -> None:
        class DeadThreadWriter(ContainerWriter):
            def _write_loop(self) -> None:
                return

        w = DeadThreadWriter(str(tmp_path / "o.mp4"), 64, 48, 10, ffmpeg=sink, queue_depth=2)
        w.open()
        w._thread.join(timeout=5)
        w.append(make_frame(), 0.0)
        w.append(make_frame(), 0.1)

        outcome = []

        def finish() -> None:
            try:
                w.finish()
            except RecordingFailed as exc:
                outcome.append(exc)

        t = threading.Thread(target=finish, daemon=True)
        t.start()
        t.join(timeout=10)
        assert not t.is_alive()
        assert "writer thread" in str(outcome[0])


class TestRealEncode:
    def test_one_second_of_frames(self, ffmpeg_exe, tmp_path) -> None:
        out = str(tmp_path / "real.mp4")
        w = ContainerWriter(out, 160, 120, 30, ffmpeg=ffmpeg_exe, queue_depth=64)
        w.open()
        for i in range(30):
            assert w.append(make_frame(160, 120, value=i * 8), i / 30)
        w.finish()
        assert os.path.getsize(out) > 0
        assert probe_duration(out) == pytest.approx(1.0, abs=1 / 30)

    def test_odd_sized_input_frames(self, ffmpeg_exe, tmp_path) -> None:
        out = str(tmp_path / "odd.mp4")
        w = ContainerWriter(out, 160, 120, 30, ffmpeg=ffmpeg_exe, queue_depth=64)
        w.open()
        for i in range(5):
            w.append(make_frame(161, 121), i / 30)
        w.finish()
        assert os.path.getsize(out) > 0
