import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

from src.local.errors import HelperError

if TYPE_CHECKING:
    from .installer import BinaryInstallManager, DownloadResult

log = logging.getLogger(__name__)


def _run_download(manager: "BinaryInstallManager", on_progress: Optional[Callable], on_done: Optional[Callable]) -> None:
    """
    Runs a blocking download and reports its outcome.
    Runs in a dedicated background thread.
    """
    result: Optional["DownloadResult"] = None
    error: Optional[Exception] = None
    try:
        result = manager.download(on_progress)
    except HelperError as e:
        error = e
        log.error(f"Vulkan llama-server download failed: {e}")
    except Exception as e:
        error = e
        log.error(f"Unexpected error while downloading Vulkan llama-server: {e}", exc_info=True)

    if on_done:
        on_done(result, error)


def start_download(
    manager: "BinaryInstallManager",
    on_progress: Optional[Callable[[int, int], None]] = None,
    on_done: Optional[Callable[[Optional["DownloadResult"], Optional[Exception]], None]] = None,
) -> threading.Thread:
    """
    Starts a thread that downloads and installs the accelerated binary.

    :param manager: The BinaryInstallManager instance.
    :param on_progress: Forwarded to `download()`.
    :param on_done: Called with (result, error) once the download ends.
    :return: The started thread.
    """
    download_thread = threading.Thread(
        target=_run_download,
        args=(manager, on_progress, on_done),
        daemon=True,
        name="VulkanDownloadThread",
    )
    download_thread.start()
    return download_thread
