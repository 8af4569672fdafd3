"""Exceptions raised by the clipboard engine."""

import time


class GoldenCopyError(Exception):
    """Base exception for the clipboard engine."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error
        self.timestamp = time.time()

    def __str__(self):
        base_msg = super().__str__()
        if self.original_error:
            return f"{base_msg} (Caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base_msg


class ClipboardError(GoldenCopyError):
    """Base class for OS clipboard errors."""


class ClipboardBusyError(ClipboardError):
    """The clipboard is held by another process for the moment."""


class ClipboardWriteError(ClipboardError):
    """Writing an entry back to the clipboard failed."""


class KeystrokeError(GoldenCopyError):
    """Synthesizing the paste keystroke failed."""


class PersistenceError(GoldenCopyError):
    """A persisted stream could not be decoded."""
