import logging
from typing import List

from src.local.console.handler import (
    display_status,
    handle_cancel_command,
    handle_config_command,
    handle_delete_command,
    handle_download_command,
    print_help,
    run_listener_foreground,
    start_listener,
    stop_listener,
    toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str], interactive: bool = True) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'download').
    :param args: A list of arguments for the command.
    :param interactive: False for one-shot invocations, which block until long-running commands finish.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "start": start_listener if interactive else run_listener_foreground,
        "stop": stop_listener,
        "status": display_status,
        "download": lambda: handle_download_command(wait=not interactive),
        "cancel": handle_cancel_command,
        "delete": handle_delete_command,
        "config": lambda: handle_config_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        handle_cancel_command()
        stop_listener()
        return True

    if command in command_map:
        command_map[command]()
    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
    return False
