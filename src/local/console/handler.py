import sys
import time
import psutil
import logging
import threading
from typing import List, Optional

from src.local.config import effective_settings as config
from src.local.external import BinaryInstallManager, DownloadResult, start_download
from src.local.supervisor import KeyListenerSupervisor
from src.local.supervisor import events

log = logging.getLogger(__name__)

listener = KeyListenerSupervisor()
installer = BinaryInstallManager()
_download_thread: Optional[threading.Thread] = None


def _wire_listener_events() -> None:
    """Logs every listener event so the console shows key activity."""
    listener.on(events.GLOBE_DOWN, lambda: log.info("Globe key down"))
    listener.on(events.GLOBE_UP, lambda: log.info("Globe key up"))
    listener.on(events.RIGHT_MODIFIER_DOWN, lambda mod: log.info(f"Right modifier down: {mod}"))
    listener.on(events.RIGHT_MODIFIER_UP, lambda mod: log.info(f"Right modifier up: {mod}"))
    listener.on(events.MODIFIER_UP, lambda mod: log.info(f"Modifier up: {mod}"))
    listener.on(events.ERROR, lambda err: print(f"\nKey listener error: {err}\n"))

_wire_listener_events()


#* --- Key Listener ---
def start_listener() -> None:
    listener.start()
    status = listener.get_status()
    if status["running"]:
        print(f"Key listener running with PID {status['pid']}.")
    elif not status["supported"]:
        print("The Globe key listener is only available on macOS.")


def stop_listener() -> None:
    listener.stop()
    print("Key listener stopped.")


def run_listener_foreground() -> None:
    """BLOCKING: Runs the listener until interrupted (one-shot 'start')."""
    start_listener()
    if not listener.is_supported:
        return
    print("Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        listener.stop()


#* --- Accelerated Binary ---
def _print_progress(downloaded: int, total: int) -> None:
    done = int(50 * downloaded / total) if total else 0
    sys.stdout.write(f"\r[{'=' * done}{' ' * (50 - done)}] {downloaded / 1024 / 1024:.2f} MB")
    sys.stdout.flush()


def _on_download_done(result: Optional[DownloadResult], error: Optional[Exception]) -> None:
    sys.stdout.write("\n")
    if error is not None:
        print(f"Download failed: {error}")
    elif result is not None and result.cancelled:
        print("Download cancelled.")
    else:
        print(f"Vulkan llama-server installed at {installer.get_binary_path()}.")


def handle_download_command(wait: bool = False) -> None:
    """Starts the accelerated binary download in the background, or waits for it."""
    global _download_thread
    if not installer.is_supported():
        print(f"The Vulkan llama-server is not available for {installer.platform_key}.")
        return
    if installer.is_downloading:
        print("A download is already in progress. Use 'cancel' to abort it.")
        return

    _download_thread = start_download(installer, _print_progress, _on_download_done)
    if not wait:
        print("Download started. Use 'cancel' to abort it.")
        return
    try:
        _download_thread.join()
    except KeyboardInterrupt:
        installer.cancel_download()
        _download_thread.join()


def handle_cancel_command() -> None:
    if installer.cancel_download():
        print("Cancelling download...")
    else:
        print("No download in progress.")


def handle_delete_command() -> None:
    if installer.is_downloading:
        print("\nERROR: Cannot delete while a download is in progress. Use 'cancel' first.\n")
        return
    result = installer.delete_binary()
    print(f"Removed {result['deleted_count']} file(s) from {installer.bin_dir}.")


#* --- Status ---
def display_status() -> None:
    """Displays the listener state, its resource usage and the installer status."""
    status = listener.get_status()
    print("\n--- Helper Status ---")
    print(f"  Key listener          : {status['state'].upper()} (supported: {status['supported']}, restarts: {status['restart_count']})")
    if status["pid"]:
        try:
            p = psutil.Process(status["pid"])
            cpu = p.cpu_percent(interval=0.1)
            mem = p.memory_info().rss
            print(f"  {p.name():<22}: PID {status['pid']:<8} | CPU: {cpu:.1f}% | MEM: {mem / 1024 / 1024:.1f} MB")
        except psutil.NoSuchProcess:
            print(f"  {'':<22}: PID {status['pid']:<8} | Status: EXITED")
        except psutil.AccessDenied:
            print(f"  {'':<22}: PID {status['pid']:<8} | Status: RUNNING (Access Denied)")

    install_status = installer.get_status()
    print(f"  Vulkan llama-server   : supported: {install_status['supported']} | "
          f"downloaded: {install_status['downloaded']} | downloading: {install_status['downloading']}")
    if install_status["downloaded"]:
        print(f"  {'':<22}  {installer.get_binary_path()}")
    print("-" * 21 + "\n")


#* --- Config ---
def _config_show() -> None:
    print("\n--- Current Helper Configuration ---")
    for key, value in config.modifiable_values().items():
        print(f"  {key} = {value}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("Restart the key listener for supervisor settings to apply.")
    print("------------------------------------\n")


def _config_set(args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return
    key, value_str = args[0].upper(), " ".join(args[1:])
    _, message = config.update_setting(key, value_str)
    print(message)


def _config_help() -> None:
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change and persist a setting.")
    print("  config help                - Show this help message.")


def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start                  - Start the Globe key listener (macOS).")
    print("  stop                   - Stop the Globe key listener.")
    print("  status                 - Show listener and accelerated binary status.")
    print("  download               - Download and install the Vulkan llama-server.")
    print("  cancel                 - Cancel the running download.")
    print("  delete                 - Remove the installed Vulkan llama-server and its libraries.")
    print("  config <cmd>           - Manage configuration. Use 'config help' for more details.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  exit                   - Stop helpers and exit the console.")
    print()
