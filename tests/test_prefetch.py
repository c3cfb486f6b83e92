from __future__ import annotations

from pathlib import Path

from src.local.errors import ReleaseFetchError
from src.local.external.assets import BUNDLED_ASSETS
from src.local.script_entry import prefetch
from tests.helpers import FakeReleaseClient, make_release


def test_existing_binary_is_skipped_without_force(tmp_path: Path) -> None:
    asset = BUNDLED_ASSETS["darwin-arm64"]
    (tmp_path / asset.output_name).write_bytes(b"old")
    client = FakeReleaseClient(make_release())

    assert prefetch.install_bundled_binary("darwin-arm64", asset, client, tmp_path) is True
    assert client.calls == 0


def test_missing_release_asset_fails_target(tmp_path: Path) -> None:
    client = FakeReleaseClient(make_release(("llama-b4500-bin-ubuntu-x64.tar.gz", 10)))

    assert prefetch.install_bundled_binary("darwin-arm64", BUNDLED_ASSETS["darwin-arm64"], client, tmp_path) is False


def test_install_copies_binary_and_libraries(tmp_path: Path, monkeypatch) -> None:
    def fake_download(url, dest, **kwargs):
        Path(dest).write_bytes(b"archive")
        return dest

    def fake_extract(archive, dest, platform=None):
        bin_dir = Path(dest) / "build" / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "llama-server").write_bytes(b"server")
        (bin_dir / "libllama.dylib").write_bytes(b"lib")
        (bin_dir / "README.md").write_bytes(b"docs")

    monkeypatch.setattr(prefetch, "download_file", fake_download)
    monkeypatch.setattr(prefetch, "extract_archive", fake_extract)
    client = FakeReleaseClient(make_release(("llama-b4500-bin-macos-arm64.tar.gz", 7)))

    ok = prefetch.install_bundled_binary("darwin-arm64", BUNDLED_ASSETS["darwin-arm64"], client, tmp_path)

    assert ok
    assert sorted(p.name for p in tmp_path.iterdir()) == ["libllama.dylib", "llama-server-darwin-arm64"]


def test_main_returns_error_when_release_fetch_fails(tmp_path: Path) -> None:
    client = FakeReleaseClient(error=ReleaseFetchError("GitHub API returned 404"))

    assert prefetch.main(["--current", "--bin-dir", str(tmp_path)], client=client) == 1


def test_main_rejects_unsupported_target(tmp_path: Path) -> None:
    client = FakeReleaseClient(make_release())

    code = prefetch.main(["--current", "--platform-arch", "freebsd-x64", "--bin-dir", str(tmp_path)], client=client)

    assert code == 1


def test_main_current_target_already_present(tmp_path: Path) -> None:
    (tmp_path / "llama-server-linux-x64-cpu").write_bytes(b"x")
    (tmp_path / "llama-server-darwin-arm64").write_bytes(b"x")
    client = FakeReleaseClient(make_release())

    code = prefetch.main(
        ["--current", "--platform-arch", "linux-x64", "--cleanup", "--bin-dir", str(tmp_path)],
        client=client,
    )

    assert code == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["llama-server-linux-x64-cpu"]


def test_cleanup_other_platforms_keeps_target_and_unrelated_files(tmp_path: Path) -> None:
    for name in ("llama-server-win32-x64-cpu.exe", "llama-server-darwin-x64", "llama-server-darwin-arm64", "ggml.dll"):
        (tmp_path / name).write_bytes(b"x")

    removed = prefetch.cleanup_other_platforms(tmp_path, "win32-x64")

    assert sorted(removed) == ["llama-server-darwin-arm64", "llama-server-darwin-x64"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["ggml.dll", "llama-server-win32-x64-cpu.exe"]
