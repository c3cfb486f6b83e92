import re
import sys
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Optional, Pattern

from src.local.supervisor.binary import host_arch


@dataclass(frozen=True)
class BinaryAsset:
    """Where to find a helper binary in a release and how to install it."""
    asset_pattern: Pattern[str]   # matched against release asset names
    binary_path: str              # expected path inside the archive
    output_name: str              # installed file name
    lib_pattern: Pattern[str]     # companion shared libraries copied alongside

    @property
    def binary_name(self) -> str:
        return PurePosixPath(self.binary_path).name

    def matches_asset(self, name: str) -> bool:
        return bool(self.asset_pattern.search(name))

    def matches_library(self, name: str) -> bool:
        return bool(self.lib_pattern.search(name))


_DLL = re.compile(r"\.dll$", re.IGNORECASE)
_SO = re.compile(r"\.so(\.\d+)*$")
_DYLIB = re.compile(r"\.dylib$")

#* --- GPU (Vulkan) llama-server, installed on demand ---
VULKAN_ASSETS: Dict[str, BinaryAsset] = {
    "win32-x64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-win-vulkan-x64\.zip$"),
        binary_path="llama-server.exe",
        output_name="llama-server-vulkan.exe",
        lib_pattern=_DLL,
    ),
    "linux-x64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-ubuntu-vulkan-x64\.tar\.gz$"),
        binary_path="build/bin/llama-server",
        output_name="llama-server-vulkan",
        lib_pattern=_SO,
    ),
}

#* --- CPU llama-server, bundled at build time ---
BUNDLED_ASSETS: Dict[str, BinaryAsset] = {
    "darwin-arm64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-macos-arm64\.tar\.gz$"),
        binary_path="build/bin/llama-server",
        output_name="llama-server-darwin-arm64",
        lib_pattern=_DYLIB,
    ),
    "darwin-x64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-macos-x64\.tar\.gz$"),
        binary_path="build/bin/llama-server",
        output_name="llama-server-darwin-x64",
        lib_pattern=_DYLIB,
    ),
    "win32-x64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-win-cpu-x64\.zip$"),
        binary_path="build/bin/llama-server.exe",
        output_name="llama-server-win32-x64-cpu.exe",
        lib_pattern=_DLL,
    ),
    "linux-x64": BinaryAsset(
        asset_pattern=re.compile(r"^llama-.*-bin-ubuntu-x64\.tar\.gz$"),
        binary_path="build/bin/llama-server",
        output_name="llama-server-linux-x64-cpu",
        lib_pattern=_SO,
    ),
}


def platform_key(platform: Optional[str] = None, arch: Optional[str] = None) -> str:
    """Returns the '<platform>-<arch>' key for the host, e.g. 'linux-x64'."""
    return f"{platform or sys.platform}-{arch or host_arch()}"
