import os
import struct
import logging
import platform
from pathlib import Path
from typing import Iterable, List, Optional

from src.local.config import effective_settings as config
from src.local.errors import ArchitectureMismatchError, BinaryNotFoundError, BinaryPermissionError

log = logging.getLogger(__name__)

#* --- Mach-O Header ---
MACHO_MAGIC_64 = 0xFEEDFACF
ARCH_CPU_TYPES = {
    "arm64": 0x0100000C,  # CPU_TYPE_ARM64
    "x64": 0x01000007,    # CPU_TYPE_X86_64
}
CPU_TYPE_NAMES = {
    ARCH_CPU_TYPES["arm64"]: "arm64",
    ARCH_CPU_TYPES["x64"]: "x86_64",
}
# Target triple prefixes used by the listener build command.
BUILD_TARGETS = {"arm64": "arm64", "x64": "x86_64"}

_MACHINE_ALIASES = {
    "arm64": "arm64",
    "aarch64": "arm64",
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
}


def host_arch() -> str:
    """Returns the host CPU architecture as 'arm64', 'x64' or the raw machine name."""
    machine = platform.machine().lower()
    return _MACHINE_ALIASES.get(machine, machine)


def build_command(arch: str) -> str:
    """Returns the listener build command targeting `arch`."""
    return config.LISTENER_BUILD_COMMAND.format(target=BUILD_TARGETS.get(arch, arch))


def candidate_paths(binary_name: str, resources_path: Optional[Path] = None) -> List[Path]:
    """
    Lists the locations probed for a helper binary, development tree first.

    :param binary_name: The helper's file name.
    :param resources_path: Root of the packaged application's resources, if any.
    :return: Ordered, de-duplicated candidate paths.
    """
    candidates = [
        config.RESOURCES_DIR / "bin" / binary_name,
        config.RESOURCES_DIR / binary_name,
    ]
    if resources_path:
        res = Path(resources_path)
        candidates += [
            res / binary_name,
            res / "bin" / binary_name,
            res / "resources" / binary_name,
            res / "resources" / "bin" / binary_name,
        ]
    return list(dict.fromkeys(candidates))


def resolve_binary(candidates: Iterable[Path]) -> Optional[Path]:
    """Returns the first candidate that exists and is a regular file."""
    for candidate in candidates:
        try:
            if Path(candidate).is_file():
                return Path(candidate)
        except OSError:
            continue
    return None


def resolve_listener_binary(candidates: Iterable[Path], arch: str) -> Path:
    """
    Resolves the listener binary or raises an actionable error.

    :raises BinaryNotFoundError: If no candidate exists.
    """
    path = resolve_binary(candidates)
    if path is None:
        raise BinaryNotFoundError(
            "macOS Globe listener binary not found. "
            f"Run `{build_command(arch)}` before packaging."
        )
    return path


def check_arch_mismatch(binary_path: Path, arch: str) -> Optional[str]:
    """
    Compares the binary's Mach-O header with the host architecture.

    Verification is best-effort: an unreadable header is logged and accepted.

    :param binary_path: The helper binary.
    :param arch: The host architecture ('arm64' or 'x64').
    :return: A descriptive mismatch message, or None if the binary may be spawned.
    """
    try:
        with open(binary_path, "rb") as f:
            header = f.read(8)
        magic, cpu_type = struct.unpack("<Ii", header)
    except (OSError, struct.error) as e:
        log.warning(f"Could not verify architecture of '{binary_path}': {e}")
        return None

    if magic != MACHO_MAGIC_64:
        return f"Globe listener binary is not a valid 64-bit Mach-O file (magic: 0x{magic:x})"

    expected_cpu = ARCH_CPU_TYPES.get(arch)
    if expected_cpu is not None and cpu_type != expected_cpu:
        binary_arch = CPU_TYPE_NAMES.get(cpu_type, f"unknown(0x{cpu_type & 0xFFFFFFFF:x})")
        return (
            f"Globe listener binary architecture mismatch: binary is {binary_arch} "
            f"but this Mac requires {arch}. The app may have been built incorrectly. "
            f"Try reinstalling or run `{build_command(arch)}`."
        )

    log.debug(f"Binary architecture verified for {arch} (cpu type 0x{cpu_type:x}).")
    return None


def verify_architecture(binary_path: Path, arch: str) -> None:
    """:raises ArchitectureMismatchError: If the header disagrees with `arch`."""
    mismatch = check_arch_mismatch(binary_path, arch)
    if mismatch:
        raise ArchitectureMismatchError(mismatch)


def ensure_executable(binary_path: Path) -> None:
    """
    Makes sure the binary carries the executable bit.

    :raises BinaryPermissionError: If it is not executable and chmod fails.
    """
    if os.access(binary_path, os.X_OK):
        return
    log.info(f"Binary '{binary_path}' is not executable, attempting chmod.")
    try:
        os.chmod(binary_path, 0o755)
    except OSError as e:
        raise BinaryPermissionError(
            f"macOS Globe listener is not executable and chmod failed: {binary_path} ({e})"
        ) from e
