"""One-time download and install of the ffmpeg executable.

The binary is fetched as a platform-specific archive, unpacked into a
temporary directory next to the cache location, made executable, and
only then moved into place.  A process-wide lock serializes installs so
concurrent callers share one download instead of racing a second one.
"""

import logging
import os
import shutil
import stat
import sys
import tempfile
import threading
from typing import Callable, Dict, Optional

import requests
from tqdm import tqdm

from .errors import BinaryUnavailable
from .paths import ffmpeg_binary_name, ffmpeg_cache_path

logger = logging.getLogger(__name__)

# Static builds, one archive per platform
DOWNLOAD_URLS: Dict[str, str] = {
    "darwin": "https://evermeet.cx/ffmpeg/getrelease/ffmpeg/zip",
    "linux": "https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz",
    "win32": "https://www.gyan.dev/ffmpeg/builds/ffmpeg-release-essentials.zip",
}

_ARCHIVE_SUFFIXES = (".zip", ".tar.xz", ".tar.gz", ".tgz", ".tar")

# Shared across all installer instances: one install at a time per process
_INSTALL_LOCK = threading.Lock()


def default_download_url() -> str:
    for prefix, url in DOWNLOAD_URLS.items():
        if sys.platform.startswith(prefix):
            return url
    raise BinaryUnavailable(f"No ffmpeg download available for platform {sys.platform!r}")


def _archive_suffix(url: str) -> str:
    lower = url.lower()
    for suffix in _ARCHIVE_SUFFIXES:
        if lower.endswith(suffix):
            return suffix
    # evermeet's getrelease endpoint serves a zip without an extension
    return ".zip"


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


class TranscoderInstaller:
    """Owns the cached ffmpeg binary and installs it at most once.

    ``ensure_available()`` returns the executable path, resolving in order:
    an explicit *override* path, the cached binary, then a download.
    """

    def __init__(
        self,
        cache_path: str = "",
        download_url: str = "",
        override: str = "",
        show_progress: bool = False,
        timeout: float = 120.0,
    ) -> None:
        self._cache_path = cache_path
        self._download_url = download_url
        self._override = override
        self._show_progress = show_progress
        self._timeout = timeout

    @property
    def cache_path(self) -> str:
        if not self._cache_path:
            self._cache_path = ffmpeg_cache_path()
        return self._cache_path

    @property
    def is_available(self) -> bool:
        if self._override:
            return _is_executable(self._override)
        return _is_executable(self.cache_path)

    def ensure_available(self) -> str:
        if self._override:
            if not _is_executable(self._override):
                raise BinaryUnavailable(f"Configured ffmpeg is not executable: {self._override}")
            return self._override

        target = self.cache_path
        if _is_executable(target):
            return target

        with _INSTALL_LOCK:
            # another caller may have finished the install while we waited
            if _is_executable(target):
                return target
            self._install(target)
        return target

    # ── internal ────────────────────────────────────────────────────

    def _install(self, target: str) -> None:
        url = self._download_url or default_download_url()
        target_dir = os.path.dirname(target) or "."
        try:
            os.makedirs(target_dir, exist_ok=True)
        except OSError as exc:
            raise BinaryUnavailable(f"Cannot create ffmpeg cache dir: {exc}") from exc

        work_dir: Optional[str] = None
        try:
            # Same filesystem as the target so the final move is atomic
            work_dir = tempfile.mkdtemp(prefix=".ffmpeg-install-", dir=target_dir)
            archive = os.path.join(work_dir, "download" + _archive_suffix(url))
            logger.info("Downloading ffmpeg from %s", url)
            self._download(url, archive)

            extract_dir = os.path.join(work_dir, "extracted")
            try:
                shutil.unpack_archive(archive, extract_dir)
            except (shutil.ReadError, ValueError, OSError) as exc:
                raise BinaryUnavailable(f"Failed to extract ffmpeg: {exc}") from exc

            binary = self._find_binary(extract_dir)
            if binary is None:
                raise BinaryUnavailable("ffmpeg binary not found in download")

            mode = os.stat(binary).st_mode
            os.chmod(binary, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
                     | stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
            if not _is_executable(binary):
                raise BinaryUnavailable("Downloaded ffmpeg is not executable")

            os.replace(binary, target)
            logger.info("ffmpeg installed at %s", target)
        except OSError as exc:
            raise BinaryUnavailable(f"Failed to install ffmpeg: {exc}") from exc
        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)

    def _download(self, url: str, destination: str) -> None:
        try:
            with requests.get(url, stream=True, timeout=self._timeout) as r:
                r.raise_for_status()
                total_size = int(r.headers.get("content-length", 0))
                with open(destination, "wb") as f, tqdm(
                    desc="ffmpeg",
                    total=total_size,
                    unit="iB",
                    unit_scale=True,
                    unit_divisor=1024,
                    disable=not self._show_progress,
                ) as bar:
                    for chunk in r.iter_content(chunk_size=65536):
                        if chunk:
                            bar.update(f.write(chunk))
        except requests.exceptions.RequestException as exc:
            raise BinaryUnavailable(f"Failed to download ffmpeg: {exc}") from exc

    @staticmethod
    def _find_binary(root: str) -> Optional[str]:
        name = ffmpeg_binary_name()
        for dirpath, _dirnames, filenames in os.walk(root):
            if name in filenames:
                return os.path.join(dirpath, name)
        return None


_shared: Optional[TranscoderInstaller] = None
_shared_lock = threading.Lock()


def shared_installer(factory: Optional[Callable[[], TranscoderInstaller]] = None) -> TranscoderInstaller:
    """Lazily created process-wide installer."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = factory() if factory else TranscoderInstaller()
        return _shared
