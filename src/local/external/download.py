import os
import re
import sys
import shutil
import psutil
import logging
import requests
import threading
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern

from src.local.config import effective_settings as config
from src.local.errors import DownloadCancelled, DownloadError, ExtractionError

log = logging.getLogger(__name__)

PART_SUFFIX = ".part"
EXTRACT_DIR_PREFIX = "temp-"
EXTRACT_TIMEOUT = 600  # seconds

ProgressCallback = Callable[[int, int], None]


class DownloadSignal:
    """Cooperative cancellation flag checked by the transfer loop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def abort(self) -> None:
        self._event.set()

    @property
    def is_aborted(self) -> bool:
        return self._event.is_set()


def partial_path(dest: Path) -> Path:
    return dest.with_name(dest.name + PART_SUFFIX)


#* --- Transfer ---
def download_file(
    url: str,
    dest: Path,
    signal: Optional[DownloadSignal] = None,
    expected_size: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    resume: bool = False,
    timeout: Optional[float] = None,
) -> Path:
    """
    Streams `url` into `dest`, going through a `.part` file that is renamed on completion.

    :param url: The asset URL (redirects are followed).
    :param dest: The final archive path.
    :param signal: Cancellation flag, checked before every chunk.
    :param expected_size: Size advertised by the release; a mismatch fails the download.
    :param on_progress: Called with (downloaded_bytes, total_bytes); total is 0 if unknown.
    :param resume: Continue an existing `.part` file with an HTTP Range request.
    :raises DownloadCancelled: If `signal` was aborted. The `.part` file is removed.
    :raises DownloadError: On HTTP or transport errors, or a size mismatch.
    :return: `dest`.
    """
    dest = Path(dest)
    part = partial_path(dest)
    offset = part.stat().st_size if resume and part.exists() else 0

    headers = {"User-Agent": config.USER_AGENT}
    if offset:
        headers["Range"] = f"bytes={offset}-"

    log.info(f"Downloading from {url}...")
    downloaded = 0
    try:
        if signal is not None and signal.is_aborted:
            raise DownloadCancelled(f"Download of {dest.name} cancelled")

        with requests.get(url, stream=True, timeout=timeout or config.DOWNLOAD_TIMEOUT, headers=headers) as r:
            if r.status_code not in (200, 206):
                raise DownloadError(f"Download of {dest.name} failed: HTTP {r.status_code}")
            if offset and r.status_code != 206:
                log.info("Server ignored the range request, restarting download from scratch.")
                offset = 0

            content_length = int(r.headers.get("content-length") or 0)
            total = content_length + offset if content_length else (expected_size or 0)
            downloaded = offset

            with open(part, "ab" if offset else "wb") as f:
                for chunk in r.iter_content(chunk_size=config.DOWNLOAD_CHUNK_SIZE):
                    if signal is not None and signal.is_aborted:
                        raise DownloadCancelled(f"Download of {dest.name} cancelled")
                    if not chunk:
                        continue
                    f.write(chunk)
                    downloaded += len(chunk)
                    if on_progress:
                        on_progress(downloaded, total)
    except DownloadCancelled:
        part.unlink(missing_ok=True)
        log.info(f"Download of {dest.name} cancelled after {downloaded} bytes.")
        raise
    except requests.RequestException as e:
        raise DownloadError(f"Download failed: {e}") from e

    if expected_size and downloaded != expected_size:
        part.unlink(missing_ok=True)
        raise DownloadError(
            f"Download of {dest.name} is incomplete: got {downloaded} of {expected_size} bytes"
        )

    part.replace(dest)
    log.info(f"Successfully downloaded to '{dest}' ({downloaded / 1024 / 1024:.2f} MB).")
    return dest


#* --- Disk Space ---
@dataclass(frozen=True)
class DiskSpaceCheck:
    ok: bool
    required_bytes: int
    available_bytes: Optional[int]


def check_disk_space(path: Path, required_bytes: int) -> DiskSpaceCheck:
    """Compares the free space of the filesystem holding `path` against `required_bytes`."""
    try:
        available = psutil.disk_usage(str(path)).free
    except OSError as e:
        log.warning(f"Could not determine free disk space at '{path}': {e}. Continuing.")
        return DiskSpaceCheck(ok=True, required_bytes=required_bytes, available_bytes=None)
    return DiskSpaceCheck(ok=available >= required_bytes, required_bytes=required_bytes, available_bytes=available)


#* --- Cleanup ---
def cleanup_stale_downloads(directory: Path) -> int:
    """
    Removes `.part` files and `temp-*` extraction directories left by interrupted runs.

    :return: The number of removed entries.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    removed = 0
    for entry in directory.iterdir():
        try:
            if entry.is_file() and entry.name.endswith(PART_SUFFIX):
                entry.unlink()
            elif entry.is_dir() and entry.name.startswith(EXTRACT_DIR_PREFIX):
                shutil.rmtree(entry)
            else:
                continue
        except OSError as e:
            log.warning(f"Could not remove stale download '{entry}': {e}")
            continue
        removed += 1
        log.debug(f"Removed stale download '{entry.name}'.")
    return removed


#* --- Extraction ---
def _extract_command(archive: Path, dest: Path, platform: str) -> List[str]:
    name = archive.name.lower()
    if name.endswith((".tar.gz", ".tgz")):
        return ["tar", "-xzf", str(archive), "-C", str(dest)]
    if platform == "win32":
        src = str(archive).replace("'", "''")
        out = str(dest).replace("'", "''")
        return [
            "powershell", "-NoProfile", "-Command",
            f"Expand-Archive -Force -Path '{src}' -DestinationPath '{out}'",
        ]
    return ["unzip", "-o", "-q", str(archive), "-d", str(dest)]


def extract_archive(archive: Path, dest: Path, platform: Optional[str] = None) -> None:
    """
    Unpacks `archive` into `dest` with the platform's archive tool.

    :raises ExtractionError: If the tool is missing or fails.
    """
    cmd = _extract_command(Path(archive), Path(dest), platform or sys.platform)
    log.info(f"Extracting '{Path(archive).name}' with {cmd[0]}...")
    try:
        subprocess.run(cmd, check=True, capture_output=True, timeout=EXTRACT_TIMEOUT)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
        raise ExtractionError(f"Extraction failed: {cmd[0]} exited with {e.returncode}: {stderr}") from e
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ExtractionError(f"Extraction failed: {e}") from e


#* --- File Search ---
def _sorted_entries(directory: Path) -> List[os.DirEntry]:
    with os.scandir(directory) as it:
        return sorted(it, key=lambda e: e.name)


def find_file(root: Path, name: str, max_depth: Optional[int] = None, _depth: int = 0) -> Optional[Path]:
    """Depth-bounded recursive search for a file called exactly `name`."""
    max_depth = config.ARCHIVE_SEARCH_DEPTH if max_depth is None else max_depth
    if _depth >= max_depth:
        return None
    for entry in _sorted_entries(root):
        if entry.is_dir(follow_symlinks=False):
            found = find_file(Path(entry.path), name, max_depth, _depth + 1)
            if found:
                return found
        elif entry.name == name:
            return Path(entry.path)
    return None


def find_files(root: Path, pattern: Pattern[str], max_depth: Optional[int] = None, _depth: int = 0) -> List[Path]:
    """Depth-bounded recursive search for files whose name matches `pattern`."""
    max_depth = config.ARCHIVE_SEARCH_DEPTH if max_depth is None else max_depth
    if _depth >= max_depth:
        return []
    results: List[Path] = []
    for entry in _sorted_entries(root):
        if entry.is_dir(follow_symlinks=False):
            results.extend(find_files(Path(entry.path), pattern, max_depth, _depth + 1))
        elif re.search(pattern, entry.name):
            results.append(Path(entry.path))
    return results


def set_executable(path: Path, platform: Optional[str] = None) -> None:
    """Marks `path` as executable (0o755); no-op on Windows."""
    if (platform or sys.platform) != "win32":
        os.chmod(path, 0o755)
