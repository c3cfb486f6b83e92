import os
import sys
import time
import shutil
import logging
import threading
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Dict, Optional

from src.local.config import effective_settings as config
from src.local.errors import AssetNotFoundError, DownloadCancelled, InstallError, InsufficientDiskSpaceError
from src.local.external.assets import VULKAN_ASSETS, BinaryAsset, platform_key
from src.local.external.download import (
    EXTRACT_DIR_PREFIX,
    DownloadSignal,
    ProgressCallback,
    check_disk_space,
    cleanup_stale_downloads,
    download_file,
    extract_archive,
    find_file,
    find_files,
    set_executable,
)
from src.local.external.releases import ReleaseClient

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadResult:
    success: bool
    cancelled: bool = False


class BinaryInstallManager:
    """
    Installs and removes the optional GPU-accelerated llama-server binary.

    One generic algorithm serves every platform: the asset descriptor for the
    host names the release asset, the binary inside the archive, the installed
    file name and the shared libraries to copy alongside it.
    """

    def __init__(
        self,
        bin_dir: Optional[Path] = None,
        platform: Optional[str] = None,
        arch: Optional[str] = None,
        assets: Optional[Dict[str, BinaryAsset]] = None,
        release_client: Optional[ReleaseClient] = None,
    ) -> None:
        self.bin_dir = Path(bin_dir or config.BIN_DIR)
        self.platform = platform or sys.platform
        self.platform_key = platform_key(self.platform, arch)
        self._asset: Optional[BinaryAsset] = (VULKAN_ASSETS if assets is None else assets).get(self.platform_key)
        self._release_client = release_client or ReleaseClient.from_settings(memoize=False)

        self._downloading = False
        self._download_signal: Optional[DownloadSignal] = None
        self._state_lock = threading.Lock()

    #* --- Status ---
    def is_supported(self) -> bool:
        return self._asset is not None

    def get_binary_path(self) -> Optional[Path]:
        """Returns the installed binary's path if it currently exists on disk."""
        if self._asset is None:
            return None
        path = self.bin_dir / self._asset.output_name
        return path if path.exists() else None

    def is_downloaded(self) -> bool:
        return self.get_binary_path() is not None

    @property
    def is_downloading(self) -> bool:
        return self._downloading

    def get_status(self) -> Dict[str, Any]:
        return {
            "supported": self.is_supported(),
            "downloaded": self.is_downloaded(),
            "downloading": self._downloading,
        }

    #* --- Install ---
    def download(self, on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        """
        BLOCKING: Fetches, extracts and installs the binary for this host.

        :param on_progress: Called with (downloaded_bytes, total_bytes).
        :raises InstallError: If a download is already running, the host is
            unsupported, or any step fails (network, disk space, extraction).
        :return: A successful or cancelled result.
        """
        with self._state_lock:
            if self._downloading:
                raise InstallError("Download already in progress")
            if self._asset is None:
                raise InstallError(f"Vulkan llama-server is not available for {self.platform_key}")
            self._downloading = True
            signal = DownloadSignal()
            self._download_signal = signal

        try:
            return self._install(self._asset, signal, on_progress)
        except DownloadCancelled:
            log.info("Vulkan llama-server download cancelled by user.")
            return DownloadResult(success=False, cancelled=True)
        finally:
            with self._state_lock:
                self._downloading = False
                self._download_signal = None

    def _install(self, asset: BinaryAsset, signal: DownloadSignal, on_progress: Optional[ProgressCallback]) -> DownloadResult:
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        cleanup_stale_downloads(self.bin_dir)

        release = self._release_client.fetch()
        release_asset = release.find_asset(asset)
        if release_asset is None:
            raise AssetNotFoundError("Vulkan binary not found in latest release")
        log.info(f"Selected release asset '{release_asset.name}' ({release.tag or 'untagged'}).")

        self._ensure_disk_space(release_asset.size or config.FALLBACK_ASSET_SIZE)
        self._check_cancelled(signal)

        archive_path = self.bin_dir / release_asset.name
        extract_dir: Optional[Path] = None
        try:
            download_file(
                release_asset.download_url,
                archive_path,
                signal=signal,
                expected_size=release_asset.size or None,
                on_progress=on_progress,
            )
            self._check_cancelled(signal)

            extract_dir = self.bin_dir / f"{EXTRACT_DIR_PREFIX}vulkan-{int(time.time() * 1000)}"
            extract_dir.mkdir(parents=True, exist_ok=True)
            extract_archive(archive_path, extract_dir, self.platform)
            self._check_cancelled(signal)

            output_path = self._install_from(extract_dir, asset)
        finally:
            self._cleanup(extract_dir, archive_path)

        log.info(f"Vulkan llama-server installed at '{output_path}'.")
        return DownloadResult(success=True)

    def _ensure_disk_space(self, asset_size: int) -> None:
        required = int(asset_size * config.DISK_SPACE_MULTIPLIER)
        space = check_disk_space(self.bin_dir, required)
        if not space.ok:
            raise InsufficientDiskSpaceError(required, space.available_bytes or 0)

    def _check_cancelled(self, signal: DownloadSignal) -> None:
        if signal.is_aborted:
            raise DownloadCancelled("Vulkan llama-server download cancelled")

    def _install_from(self, extract_dir: Path, asset: BinaryAsset) -> Path:
        binary_path: Optional[Path] = extract_dir / asset.binary_path
        if not binary_path.is_file():
            binary_path = find_file(extract_dir, asset.binary_name)
        if binary_path is None:
            raise AssetNotFoundError(f"{asset.binary_name} not found in archive")

        output_path = self.bin_dir / asset.output_name
        self._install_file(binary_path, output_path)

        for lib in find_files(extract_dir, asset.lib_pattern):
            self._install_file(lib, self.bin_dir / lib.name)
            log.debug(f"Copied library {lib.name}")
        return output_path

    def _install_file(self, src: Path, dest: Path) -> None:
        """Copies next to `dest` first and renames, so `dest` is never half-written."""
        staging = dest.with_name(dest.name + ".tmp")
        try:
            shutil.copyfile(src, staging)
            set_executable(staging, self.platform)
            os.replace(staging, dest)
        except OSError:
            staging.unlink(missing_ok=True)
            raise

    def _cleanup(self, extract_dir: Optional[Path], archive_path: Path) -> None:
        if extract_dir is not None:
            shutil.rmtree(extract_dir, ignore_errors=True)
        try:
            archive_path.unlink(missing_ok=True)
        except OSError as e:
            log.debug(f"Could not remove archive '{archive_path}': {e}")

    def cancel_download(self) -> bool:
        """Signals the active download to stop. Returns True if one was running."""
        with self._state_lock:
            if self._download_signal is None:
                return False
            self._download_signal.abort()
            self._download_signal = None
        log.info("Cancellation requested for the Vulkan llama-server download.")
        return True

    #* --- Uninstall ---
    def delete_binary(self) -> Dict[str, Any]:
        """Removes the installed binary and its companion libraries."""
        if self._asset is None:
            return {"success": True, "deleted_count": 0}

        deleted_count = 0
        try:
            entries = list(self.bin_dir.iterdir())
        except FileNotFoundError:
            entries = []

        for entry in entries:
            if not entry.is_file():
                continue
            if entry.name == self._asset.output_name or self._asset.matches_library(entry.name):
                try:
                    entry.unlink()
                    deleted_count += 1
                except OSError as e:
                    log.warning(f"Could not delete '{entry}': {e}")

        log.info(f"Vulkan llama-server deleted ({deleted_count} files removed).")
        return {"success": True, "deleted_count": deleted_count}
