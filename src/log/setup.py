import sys
import logging
from logging.handlers import RotatingFileHandler

from src.local.config import effective_settings as config


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw subprocess logs."""

    FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'

    def format(self, record):
        # If the log is from a helper process, tag it with the process name only.
        if record.name.startswith('proc.'):
            return f"[{record.name[len('proc.'):]}] {record.getMessage()}"

        original_format = self._style._fmt
        self._style._fmt = self.FORMAT
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Configures the root logger for the helper subsystem.
    This sets up handlers for console and a rotating log file,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- File Handler (all levels, rotated) ---
    try:
        config.LOG_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.LOG_FILE_PATH,
            maxBytes=config.LOG_FILE_MAX_BYTES,
            backupCount=config.LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(MainFormatter())
        root_logger.addHandler(file_handler)
    except OSError as e:
        root_logger.error(f"Failed to initialize file logging handler: {e}. Logging to file will be disabled.")
