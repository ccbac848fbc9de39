"""Tests for app.installer — download, extraction, idempotence, races."""

import io
import os
import threading
import zipfile
from unittest import mock

import pytest
import requests

from app import installer as installer_mod
from app.errors import BinaryUnavailable
from app.installer import TranscoderInstaller, default_download_url

from conftest import posix_only, write_script

URL = "https://downloads.example.com/ffmpeg-release.zip"


def _zip_with(name: str = "ffmpeg-7.0/ffmpeg", body: bytes = b"#!/bin/sh\necho fake\n") -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(name, body)
        zf.writestr("ffmpeg-7.0/README.txt", "readme")
    return buf.getvalue()


class FakeResponse:
    def __init__(self, payload: bytes, delay: float = 0.0) -> None:
        self._payload = payload
        self._delay = delay
        self.headers = {"content-length": str(len(payload))}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self) -> None:
        pass

    def iter_content(self, chunk_size: int = 1024):
        if self._delay:
            threading.Event().wait(self._delay)
        for i in range(0, len(self._payload), chunk_size):
            yield self._payload[i:i + chunk_size]


@pytest.fixture
def cache_path(tmp_path) -> str:
    return str(tmp_path / "bin" / "ffmpeg")


def _leftovers(cache_path: str) -> list:
    parent = os.path.dirname(cache_path)
    if not os.path.isdir(parent):
        return []
    return [n for n in os.listdir(parent) if n.startswith(".ffmpeg-install-")]


@posix_only
class TestEnsureAvailable:
    def test_downloads_once(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get",
                               return_value=FakeResponse(_zip_with())) as get:
            assert inst.ensure_available() == cache_path
            assert inst.ensure_available() == cache_path
        assert get.call_count == 1
        assert os.access(cache_path, os.X_OK)
        assert inst.is_available
        assert _leftovers(cache_path) == []

    def test_existing_binary_skips_download(self, cache_path) -> None:
        os.makedirs(os.path.dirname(cache_path))
        write_script(cache_path, "exit 0\n")
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get") as get:
            assert inst.ensure_available() == cache_path
        get.assert_not_called()

    def test_concurrent_callers_share_one_download(self, cache_path) -> None:
        results, errors = [], []
        barrier = threading.Barrier(4)

        def call() -> None:
            barrier.wait()
            try:
                results.append(TranscoderInstaller(cache_path=cache_path, download_url=URL).ensure_available())
            except BinaryUnavailable as exc:
                errors.append(exc)

        with mock.patch.object(installer_mod.requests, "get",
                               side_effect=lambda *a, **k: FakeResponse(_zip_with(), delay=0.2)) as get:
            threads = [threading.Thread(target=call) for _ in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert errors == []
        assert results == [cache_path] * 4
        assert get.call_count == 1

    def test_network_failure(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get",
                               side_effect=requests.exceptions.ConnectionError("offline")):
            with pytest.raises(BinaryUnavailable, match="download"):
                inst.ensure_available()
        assert not os.path.exists(cache_path)
        assert _leftovers(cache_path) == []

    def test_archive_without_binary(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get",
                               return_value=FakeResponse(_zip_with(name="other/ffprobe"))):
            with pytest.raises(BinaryUnavailable, match="not found"):
                inst.ensure_available()
        assert not os.path.exists(cache_path)
        assert _leftovers(cache_path) == []

    def test_corrupt_archive(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get",
                               return_value=FakeResponse(b"not a zip at all")):
            with pytest.raises(BinaryUnavailable):
                inst.ensure_available()
        assert not os.path.exists(cache_path)

    def test_failure_then_retry_succeeds(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.requests, "get",
                               side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(BinaryUnavailable):
                inst.ensure_available()
        with mock.patch.object(installer_mod.requests, "get",
                               return_value=FakeResponse(_zip_with())):
            assert inst.ensure_available() == cache_path

    def test_unwritable_work_dir(self, cache_path) -> None:
        inst = TranscoderInstaller(cache_path=cache_path, download_url=URL)
        with mock.patch.object(installer_mod.tempfile, "mkdtemp",
                               side_effect=PermissionError("read-only file system")), \
                mock.patch.object(installer_mod.requests, "get") as get:
            with pytest.raises(BinaryUnavailable, match="read-only"):
                inst.ensure_available()
        get.assert_not_called()
        assert not os.path.exists(cache_path)


@posix_only
class TestOverride:
    def test_override_wins(self, tmp_path, cache_path) -> None:
        exe = write_script(tmp_path / "my-ffmpeg", "exit 0\n")
        inst = TranscoderInstaller(cache_path=cache_path, override=exe)
        with mock.patch.object(installer_mod.requests, "get") as get:
            assert inst.ensure_available() == exe
        get.assert_not_called()

    def test_bad_override(self, tmp_path) -> None:
        inst = TranscoderInstaller(override=str(tmp_path / "missing"))
        assert not inst.is_available
        with pytest.raises(BinaryUnavailable, match="not executable"):
            inst.ensure_available()


class TestDownloadUrl:
    def test_known_platforms(self, monkeypatch) -> None:
        monkeypatch.setattr(installer_mod.sys, "platform", "darwin")
        assert "evermeet" in default_download_url()
        monkeypatch.setattr(installer_mod.sys, "platform", "linux")
        assert default_download_url().endswith(".tar.xz")

    def test_unknown_platform(self, monkeypatch) -> None:
        monkeypatch.setattr(installer_mod.sys, "platform", "sunos5")
        with pytest.raises(BinaryUnavailable):
            default_download_url()
