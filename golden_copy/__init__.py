"""Clipboard history engine: capture, dedup, persist and play back clipboard states."""

from .engine import ClipboardEngine
from .models import Entry, FormatPayload, PayloadKind, Settings
from .playback import PasteResult, PlaybackState
from .store import HistoryStore

__version__ = "0.1.0"

__all__ = [
    "ClipboardEngine",
    "Entry",
    "FormatPayload",
    "HistoryStore",
    "PasteResult",
    "PayloadKind",
    "PlaybackState",
    "Settings",
]
