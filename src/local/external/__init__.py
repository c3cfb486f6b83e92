"""
This module initializes the external binary management system.
It exposes the `BinaryInstallManager` class and the release/download helpers
it is built on.
"""

from .installer import BinaryInstallManager, DownloadResult
from .releases import ReleaseClient, ReleaseMetadata, ReleaseAsset
from .background_tasks import start_download

__all__ = [
    "BinaryInstallManager",
    "DownloadResult",
    "ReleaseClient",
    "ReleaseMetadata",
    "ReleaseAsset",
    "start_download",
]
