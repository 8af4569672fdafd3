import logging
import sys
import time
from enum import Enum, auto
from typing import Callable

from . import codec
from .backends import ClipboardBackend
from .config import PASTE_SETTLE_MS, WRITE_BACKOFF_MS, WRITE_RETRIES
from .errors import ClipboardBusyError, ClipboardWriteError, KeystrokeError
from .models import Entry
from .monitor import ChangeMonitor

# Optional at runtime: pynput needs a display server on Linux.
try:
    from pynput import keyboard as pynput_keyboard  # type: ignore
    PYNPUT_AVAILABLE = True
except Exception:
    pynput_keyboard = None  # type: ignore
    PYNPUT_AVAILABLE = False

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    IDLE = auto()
    SETTING_CLIPBOARD = auto()
    CLIPBOARD_SET = auto()
    HIDING = auto()
    WAITING = auto()
    SENDING_KEYS = auto()
    FAILED = auto()


class PasteResult(Enum):
    PASTED = auto()
    COPIED = auto()   # clipboard set, keystroke failed
    FAILED = auto()   # clipboard could not be set


class PynputKeySender:
    """Sends the platform paste shortcut with pynput (Cmd+V on macOS, Ctrl+V elsewhere)."""

    def __init__(self):
        self._controller = None

    def send_paste(self):
        if not PYNPUT_AVAILABLE:
            raise KeystrokeError("Paste keystroke requires 'pynput' (pip install pynput).")
        try:
            if self._controller is None:
                self._controller = pynput_keyboard.Controller()
            Key = pynput_keyboard.Key
            modifier = Key.cmd if sys.platform == "darwin" else Key.ctrl
            self._controller.press(modifier)
            try:
                self._controller.press("v")
                self._controller.release("v")
            finally:
                self._controller.release(modifier)
        except Exception as e:
            raise KeystrokeError("Could not send the paste keystroke.", e) from e


class PlaybackController:
    """Puts a stored entry back on the clipboard and optionally pastes it."""

    def __init__(
        self,
        backend: ClipboardBackend,
        monitor: ChangeMonitor,
        key_sender=None,
        hide: Callable[[], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_state: Callable[[PlaybackState], None] | None = None,
        retries: int = WRITE_RETRIES,
        backoff_ms: int = WRITE_BACKOFF_MS,
        settle_ms: int = PASTE_SETTLE_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.monitor = monitor
        self.key_sender = key_sender if key_sender is not None else PynputKeySender()
        self.hide = hide
        self.on_error = on_error
        self.on_state = on_state
        self.retries = max(1, retries)
        self.backoff_ms = backoff_ms
        self.settle_ms = settle_ms
        self._sleep = sleep
        self._state = PlaybackState.IDLE

    @property
    def state(self) -> PlaybackState:
        return self._state

    def _set_state(self, state: PlaybackState):
        self._state = state
        if self.on_state:
            self.on_state(state)

    def _report(self, msg: str):
        logger.warning(msg)
        if self.on_error:
            self.on_error(msg)

    def apply_to_clipboard(self, entry: Entry):
        """Write every restorable payload of ``entry`` in one clipboard transaction.

        Raises ClipboardWriteError when nothing could be restored, when the
        backend fails, or when the clipboard stays busy for all retries.
        """
        self._set_state(PlaybackState.SETTING_CLIPBOARD)
        snapshot = codec.restore_all(entry.payloads)
        if not snapshot:
            self._set_state(PlaybackState.FAILED)
            raise ClipboardWriteError("None of the entry's formats could be restored.")

        last_error = None
        for attempt in range(1, self.retries + 1):
            self.monitor.suppress()
            try:
                self.backend.write_snapshot(snapshot)
            except ClipboardBusyError as e:
                self.monitor.cancel_suppress()
                last_error = e
                logger.debug("Clipboard busy on write (attempt %d/%d)", attempt, self.retries)
                if attempt < self.retries:
                    self._sleep(self.backoff_ms / 1000)
                continue
            except ClipboardWriteError:
                self.monitor.cancel_suppress()
                self._set_state(PlaybackState.FAILED)
                raise
            except Exception as e:
                self.monitor.cancel_suppress()
                self._set_state(PlaybackState.FAILED)
                raise ClipboardWriteError("Clipboard write failed.", e) from e
            self._set_state(PlaybackState.CLIPBOARD_SET)
            return

        self._set_state(PlaybackState.FAILED)
        raise ClipboardWriteError(f"Clipboard stayed busy after {self.retries} attempts.", last_error)

    def copy(self, entry: Entry) -> bool:
        try:
            self.apply_to_clipboard(entry)
            return True
        except ClipboardWriteError as e:
            self._report(f"Copy failed: {e}")
            return False
        finally:
            self._set_state(PlaybackState.IDLE)

    def paste(self, entry: Entry) -> PasteResult:
        try:
            self.apply_to_clipboard(entry)
        except ClipboardWriteError as e:
            self._report(f"Paste failed: {e}")
            self._set_state(PlaybackState.IDLE)
            return PasteResult.FAILED

        self._set_state(PlaybackState.HIDING)
        if self.hide:
            try:
                self.hide()
            except Exception as e:
                logger.debug("Hide callback failed: %s", e)

        self._set_state(PlaybackState.WAITING)
        if self.settle_ms:
            self._sleep(self.settle_ms / 1000)

        self._set_state(PlaybackState.SENDING_KEYS)
        try:
            self.key_sender.send_paste()
        except KeystrokeError as e:
            self._report(f"Copied, but the paste keystroke failed: {e}")
            return PasteResult.COPIED
        finally:
            self._set_state(PlaybackState.IDLE)
        return PasteResult.PASTED
