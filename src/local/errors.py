"""
Exception types raised by the helper-binary supervisor and installer.

Supervisor failures are delivered through its `error` event, installer
failures propagate to the caller of `download()`.
"""


class HelperError(Exception):
    """Base class for all helper-binary lifecycle errors."""


#* --- Process Supervisor ---
class BinaryNotFoundError(HelperError):
    """No candidate location holds the helper binary."""


class ArchitectureMismatchError(HelperError):
    """The helper binary was built for a different CPU architecture."""


class BinaryPermissionError(HelperError):
    """The helper binary is not executable and could not be made so."""


class ProcessFaultError(HelperError):
    """The helper process failed to spawn, crashed, or kept exiting."""


#* --- Install Manager ---
class InstallError(HelperError):
    """An install request could not be started or completed."""


class AssetNotFoundError(InstallError):
    """The release or the downloaded archive lacks the expected file."""


class ReleaseFetchError(InstallError):
    """Release metadata could not be fetched or parsed."""


class DownloadError(InstallError):
    """The asset transfer failed."""


class ExtractionError(InstallError):
    """The external archive tool failed."""


class InsufficientDiskSpaceError(InstallError):
    """Not enough free space for download, extraction and install."""

    def __init__(self, required_bytes: int, available_bytes: int) -> None:
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f"Not enough disk space. Need ~{round(required_bytes / 1_000_000)}MB, "
            f"only {round(available_bytes / 1_000_000)}MB available."
        )


class DownloadCancelled(HelperError):
    """Raised inside a transfer when the user aborts it. Not a failure."""
