import os
import sys
from pathlib import Path

APP_TITLE = "Golden Copy"
APP_NAME = "GoldenCopy"

# Capture
POLL_MS = 500
CAPTURE_SETTLE_MS = 50
READ_RETRIES = 4
READ_BACKOFF_MS = 30

# Playback
WRITE_RETRIES = 5
WRITE_BACKOFF_MS = 30
PASTE_SETTLE_MS = 100

# History
MAX_ENTRIES = 500  # favorites are never evicted; 0 disables the cap
PREVIEW_CHARS = 200

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
FAVORITE_ICON = "★"

HISTORY_FILE = "history.dat"
SETTINGS_FILE = "settings.dat"
LOG_FILE = "golden_copy.jsonl"

DATA_DIR_ENV = "GOLDEN_COPY_DATA_DIR"


def app_dir() -> Path:
    # Where the app "lives" (package folder now, exe folder when frozen)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def data_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    if getattr(sys, "frozen", False):
        # Portable build: data sits next to the exe
        return app_dir() / "data"
    if os.name == "nt":
        base = os.environ.get("APPDATA")
        if base:
            return Path(base) / APP_NAME
    return Path.home() / ".config" / "golden_copy"


def history_path() -> Path:
    return data_dir() / HISTORY_FILE


def settings_path() -> Path:
    return data_dir() / SETTINGS_FILE
