from __future__ import annotations

import io
import json
import struct
import tarfile
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from src.local.external.releases import ReleaseAsset, ReleaseMetadata
from src.local.supervisor.binary import ARCH_CPU_TYPES, MACHO_MAGIC_64


#* --- Timers ---
class FakeTimer:
    """Stands in for ``threading.Timer``; fired explicitly by the test."""

    def __init__(self, interval: float, function: Callable) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        assert self.started and not self.cancelled, "timer is not pending"
        self.fired = True
        self.function()

    @property
    def pending(self) -> bool:
        return self.started and not self.cancelled and not self.fired


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, interval: float, function: Callable) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    def pending(self, interval: float) -> List[FakeTimer]:
        return [t for t in self.timers if t.interval == interval and t.pending]


#* --- Listener process ---
class FakeListenerProcess:
    def __init__(self, pid: int, on_stdout, on_stderr, on_exit) -> None:
        self.pid = pid
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr
        self.on_exit = on_exit
        self.terminated = False

    def terminate(self) -> None:
        self.terminated = True


class FakeLauncher:
    """Replaces ``spawn_listener``; records every spawn."""

    def __init__(self) -> None:
        self.processes: List[FakeListenerProcess] = []
        self.error: Optional[OSError] = None

    def __call__(self, path, name, on_stdout, on_stderr, on_exit) -> FakeListenerProcess:
        if self.error is not None:
            raise self.error
        process = FakeListenerProcess(1000 + len(self.processes), on_stdout, on_stderr, on_exit)
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeListenerProcess:
        return self.processes[-1]


def write_macho(path: Path, arch: str = "arm64", magic: int = MACHO_MAGIC_64) -> Path:
    path.write_bytes(struct.pack("<Ii", magic, ARCH_CPU_TYPES[arch]) + b"\0" * 24)
    path.chmod(0o755)
    return path


#* --- HTTP ---
class FakeResponse:
    def __init__(self, status_code: int = 200, chunks: Iterable[bytes] = (), json_data=None,
                 headers: Optional[dict] = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._chunks = list(chunks)
        self._json_data = json_data
        self._text = text
        self.headers = headers if headers is not None else {
            "content-length": str(sum(len(c) for c in self._chunks))
        }

    def iter_content(self, chunk_size: int = 8192):
        yield from self._chunks

    def json(self):
        if self._text is not None:
            return json.loads(self._text)
        return self._json_data

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class FakeReleaseClient:
    repo = "ggerganov/llama.cpp"
    version_override = None

    def __init__(self, release: Optional[ReleaseMetadata] = None, error: Optional[Exception] = None) -> None:
        self.release = release
        self.error = error
        self.calls = 0

    def fetch(self) -> ReleaseMetadata:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.release


class FakeDiskUsage:
    def __init__(self, free: int) -> None:
        self.free = free


def make_release(*names_and_sizes, tag: str = "b4500") -> ReleaseMetadata:
    return ReleaseMetadata(
        tag=tag,
        assets=[
            ReleaseAsset(name=name, download_url=f"https://example.invalid/{name}", size=size)
            for name, size in names_and_sizes
        ],
    )


def build_tar_gz(files: dict) -> bytes:
    """Returns a gzip'd tarball holding ``files`` (archive path -> bytes)."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()
