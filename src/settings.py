"""
This module contains the configuration settings for the dictation helper subsystem.
It defines paths, helper-binary locations, supervisor tuning, release sources and
the logging configuration. It is used throughout the application to ensure
consistent settings and paths.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
SRC_DIR = BASE_DIR / "src"
RESOURCES_DIR = BASE_DIR / "resources"
LOGS_DIR = BASE_DIR / "logs"
BIN_DIR = pathlib.Path(os.getenv("HELPER_BIN_DIR", str(BASE_DIR / "bin")))

#* --- Application File Paths ---
LOG_FILE_PATH = LOGS_DIR / "helpers.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3
OVERRIDES_JSON_PATH = BIN_DIR / "overrides.json"

#* --- Packaged Resources ---
# Frozen (PyInstaller) builds unpack bundled resources under sys._MEIPASS.
HELPER_RESOURCES_PATH = os.getenv("HELPER_RESOURCES_PATH") or getattr(sys, "_MEIPASS", None)

#* --- Key Listener (Process Supervisor) ---
LISTENER_BINARY_NAME = "macos-globe-listener"
LISTENER_PROCESS_NAME = "globe-listener"
LISTENER_BUILD_COMMAND = (
    "swiftc -O -target {target}-apple-macos11 "
    "resources/macos-globe-listener.swift -o resources/bin/macos-globe-listener"
)
LISTENER_FATAL_STDERR = ("Failed to create event tap",)
MAX_RESTART_ATTEMPTS = 3
RESTART_DELAY_SECONDS = 1.0    # delay between automatic restarts
RESTART_RESET_SECONDS = 10.0   # sustained uptime that forgives prior restarts

#* --- Release Sources ---
LLAMA_CPP_REPO = "ggerganov/llama.cpp"
GITHUB_API_URL = "https://api.github.com"
# Pin a release tag for reproducible builds, e.g. LLAMA_CPP_VERSION=b4500
LLAMA_CPP_VERSION = os.getenv("LLAMA_CPP_VERSION") or None
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN") or None
USER_AGENT = "DictationHelpers/1.0"
RELEASE_FETCH_TIMEOUT = 15     # seconds
DOWNLOAD_TIMEOUT = 30          # seconds, per socket read
DOWNLOAD_CHUNK_SIZE = 8192

#* --- Install Manager ---
DISK_SPACE_MULTIPLIER = 2.5         # compressed archive + extracted output + temp copy
FALLBACK_ASSET_SIZE = 100_000_000   # used when the release omits an asset size
ARCHIVE_SEARCH_DEPTH = 5

#* --- Application variables ---
VERBOSE_LOGGING = os.getenv("HELPER_LOG_LEVEL", "INFO").upper() == "DEBUG"

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "MAX_RESTART_ATTEMPTS", "RESTART_DELAY_SECONDS", "RESTART_RESET_SECONDS",
    # Install Manager
    "DISK_SPACE_MULTIPLIER", "RELEASE_FETCH_TIMEOUT", "DOWNLOAD_TIMEOUT",
    # Logging
    "VERBOSE_LOGGING",
}
