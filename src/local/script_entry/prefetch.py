"""
Build-time entry point that downloads the bundled CPU llama-server binaries.

Usage:
    python -m src.local.script_entry.prefetch [--current] [--force]
                                              [--platform-arch KEY] [--cleanup]

All targets share one memoized release lookup, so the GitHub API is queried
once per run. Set LLAMA_CPP_VERSION to pin a release tag.
"""
import sys
import shutil
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from src.log.setup import setup_logging
from src.local.config import effective_settings as config
from src.local.errors import HelperError, ReleaseFetchError
from src.local.external.assets import BUNDLED_ASSETS, BinaryAsset, platform_key
from src.local.external.download import download_file, extract_archive, find_file, find_files, set_executable
from src.local.external.releases import ReleaseClient

log = logging.getLogger(__name__)

OUTPUT_PREFIX = "llama-server"


def install_bundled_binary(key: str, asset: BinaryAsset, client: ReleaseClient, bin_dir: Path, force: bool = False) -> bool:
    """
    Downloads one target's archive and installs its binary and libraries into `bin_dir`.

    :return: True if the binary is present afterwards.
    """
    output_path = bin_dir / asset.output_name
    if output_path.exists() and not force:
        log.info(f"{key}: Already exists (use --force to re-download)")
        return True

    release_asset = client.fetch().find_asset(asset)
    if release_asset is None:
        log.error(f"{key}: No matching asset found for pattern {asset.asset_pattern.pattern}")
        return False

    archive_path = bin_dir / release_asset.name
    extract_dir = bin_dir / f"temp-llama-{key}"
    try:
        download_file(release_asset.download_url, archive_path, expected_size=release_asset.size or None, resume=True)
        extract_dir.mkdir(parents=True, exist_ok=True)
        extract_archive(archive_path, extract_dir)

        binary_path: Optional[Path] = extract_dir / asset.binary_path
        if not binary_path.is_file():
            binary_path = find_file(extract_dir, asset.binary_name)
        if binary_path is None:
            log.error(f"{key}: Binary '{asset.binary_name}' not found in archive")
            return False

        shutil.copyfile(binary_path, output_path)
        set_executable(output_path)
        log.info(f"{key}: Extracted to {asset.output_name}")

        for lib in find_files(extract_dir, asset.lib_pattern):
            shutil.copyfile(lib, bin_dir / lib.name)
            set_executable(bin_dir / lib.name)
            log.info(f"{key}: Copied library {lib.name}")
        return True
    except (HelperError, OSError) as e:
        log.error(f"{key}: Failed - {e}")
        return False
    finally:
        shutil.rmtree(extract_dir, ignore_errors=True)
        archive_path.unlink(missing_ok=True)


def cleanup_other_platforms(bin_dir: Path, platform_arch: str) -> List[str]:
    """Removes llama-server binaries that belong to other platforms."""
    keep = f"{OUTPUT_PREFIX}-{platform_arch}"
    removed = []
    for entry in bin_dir.iterdir():
        if entry.is_file() and entry.name.startswith(OUTPUT_PREFIX) and not entry.name.startswith(keep):
            entry.unlink()
            removed.append(entry.name)
            log.info(f"Removed {entry.name} (not needed for {platform_arch})")
    return removed


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Download bundled llama-server binaries.")
    parser.add_argument("--current", action="store_true", help="Only download for the target platform.")
    parser.add_argument("--platform-arch", default=None, help="Target key such as 'darwin-arm64' (default: host).")
    parser.add_argument("--force", action="store_true", help="Re-download binaries that already exist.")
    parser.add_argument("--cleanup", action="store_true", help="With --current, remove other platforms' binaries.")
    parser.add_argument("--bin-dir", type=Path, default=config.RESOURCES_DIR / "bin")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, client: Optional[ReleaseClient] = None) -> int:
    """Runs the prefetch and returns the process exit code."""
    args = _parse_args(argv)
    client = client or ReleaseClient.from_settings(memoize=True)
    bin_dir: Path = args.bin_dir

    if client.version_override:
        log.info(f"[llama-server] Using pinned version: {client.version_override}")
    else:
        log.info("[llama-server] Fetching latest release...")

    try:
        release = client.fetch()
    except ReleaseFetchError as e:
        log.error(f"[llama-server] Could not fetch release from {client.repo}: {e}")
        return 1

    log.info(f"Downloading llama-server binaries ({release.tag or 'untagged'})...")
    bin_dir.mkdir(parents=True, exist_ok=True)

    if args.current:
        target = args.platform_arch or platform_key()
        asset = BUNDLED_ASSETS.get(target)
        if asset is None:
            log.error(f"Unsupported platform/arch: {target}")
            return 1
        if not install_bundled_binary(target, asset, client, bin_dir, args.force):
            log.error(f"Failed to download binaries for {target}")
            return 1
        if args.cleanup:
            cleanup_other_platforms(bin_dir, target)
    else:
        for key, asset in BUNDLED_ASSETS.items():
            install_bundled_binary(key, asset, client, bin_dir, args.force)

    available = sorted(p for p in bin_dir.iterdir() if p.name.startswith(OUTPUT_PREFIX))
    if available:
        log.info("Available llama-server binaries:")
        for path in available:
            log.info(f"  - {path.name} ({path.stat().st_size / 1024 / 1024:.0f}MB)")
    else:
        log.warning(f"No binaries downloaded yet. Make sure a release exists for {client.repo}.")
    return 0


if __name__ == "__main__":
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    sys.exit(main())
