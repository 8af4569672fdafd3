import logging
import os
import queue
import threading
import time
from typing import Callable

from . import codec
from .backends import ClipboardBackend
from .config import CAPTURE_SETTLE_MS, POLL_MS, READ_BACKOFF_MS, READ_RETRIES
from .errors import ClipboardBusyError
from .models import Entry

logger = logging.getLogger(__name__)


class ChangeMonitor:
    """Turns clipboard-change notifications into captured entries.

    ``sink`` receives each captured entry and returns True when it was
    stored. Call ``notify``/``poll`` from the thread that owns the history;
    the listener threads below only post events for that thread.
    """

    def __init__(
        self,
        backend: ClipboardBackend,
        sink: Callable[[Entry], bool],
        retries: int = READ_RETRIES,
        backoff_ms: int = READ_BACKOFF_MS,
        settle_ms: int = CAPTURE_SETTLE_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.sink = sink
        self.retries = max(1, retries)
        self.backoff_ms = backoff_ms
        self.settle_ms = settle_ms
        self._sleep = sleep

        self.suppress_next_capture = False
        self.last_captured_text: str | None = None
        self.last_sequence: int | None = None
        self.paused = False

    def suppress(self):
        """Ignore the next notification (our own clipboard write)."""
        self.suppress_next_capture = True

    def cancel_suppress(self):
        self.suppress_next_capture = False

    def _read_snapshot(self) -> dict[str, object] | None:
        for attempt in range(1, self.retries + 1):
            try:
                return self.backend.read_snapshot()
            except ClipboardBusyError:
                if attempt < self.retries:
                    self._sleep(self.backoff_ms / 1000)
            except Exception as e:
                logger.debug("Clipboard read failed: %s", e)
                return None
        logger.debug("Clipboard stayed busy for %d reads, change skipped", self.retries)
        return None

    def _remember_text(self, snapshot: dict[str, object] | None):
        text = snapshot.get("Text") if snapshot else None
        self.last_captured_text = text if isinstance(text, str) else None

    def notify(self) -> Entry | None:
        if self.suppress_next_capture:
            self.suppress_next_capture = False
            self._mark_seen()
            logger.debug("Own clipboard write, not captured")
            return None

        if self.settle_ms:
            self._sleep(self.settle_ms / 1000)

        snapshot = self._read_snapshot()
        if snapshot is None:
            return None
        self._remember_text(snapshot)

        if self.paused:
            # Resuming must not capture something copied while paused.
            return None

        entry = codec.capture_entry(snapshot)
        if entry is None:
            return None
        if self.sink(entry):
            logger.debug("Captured %s", entry.formats)
            return entry
        return None

    def _mark_seen(self):
        try:
            self.last_sequence = self.backend.sequence_number()
            text = self.backend.read_text()
        except Exception as e:
            logger.debug("Could not sample clipboard after own write: %s", e)
            return
        self.last_captured_text = text

    def poll(self) -> Entry | None:
        """Timer tick: cheap change check before the full capture."""
        try:
            seq = self.backend.sequence_number()
        except Exception:
            seq = None
        if seq is not None:
            changed = seq != self.last_sequence
            self.last_sequence = seq
        else:
            try:
                text = self.backend.read_text()
            except ClipboardBusyError:
                return None
            except Exception as e:
                logger.debug("Clipboard text read failed: %s", e)
                return None
            # Without text there is nothing cheap to compare; the head check dedups.
            changed = text is None or text != self.last_captured_text
        if not changed:
            # An own write that left the text as it was produces no change to swallow.
            self.suppress_next_capture = False
            return None
        return self.notify()


# ---- Background notification sources ----
class ClipboardPoller:
    """Posts a POLL event every ``interval_ms`` for the owner thread."""

    def __init__(self, event_queue: "queue.Queue[tuple]", interval_ms: int = POLL_MS):
        self.q = event_queue
        self.interval_ms = interval_ms
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="clipboard-poller", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive() and not self._stop.is_set())

    def _run(self):
        while not self._stop.wait(self.interval_ms / 1000):
            self.q.put(("POLL", None))


def run_message_window(class_name: str, handlers: dict, on_created: Callable[[int], bool]):
    """Create a hidden window and pump its messages until WM_QUIT.

    ``handlers`` maps a message id to ``fn(hwnd)``; other messages go to
    DefWindowProcW. The loop is skipped when ``on_created(hwnd)`` is false.
    Windows only; must run on the thread that owns the window.
    """
    import ctypes
    from ctypes import wintypes

    user32 = ctypes.windll.user32
    kernel32 = ctypes.windll.kernel32

    LRESULT = wintypes.LPARAM
    WNDPROC = ctypes.WINFUNCTYPE(LRESULT, wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM)

    class WNDCLASSW(ctypes.Structure):
        _fields_ = [
            ("style", wintypes.UINT),
            ("lpfnWndProc", WNDPROC),
            ("cbClsExtra", ctypes.c_int),
            ("cbWndExtra", ctypes.c_int),
            ("hInstance", wintypes.HINSTANCE),
            ("hIcon", wintypes.HICON),
            ("hCursor", wintypes.HCURSOR),
            ("hbrBackground", wintypes.HBRUSH),
            ("lpszMenuName", wintypes.LPCWSTR),
            ("lpszClassName", wintypes.LPCWSTR),
        ]

    kernel32.GetModuleHandleW.argtypes = [wintypes.LPCWSTR]
    kernel32.GetModuleHandleW.restype = wintypes.HMODULE
    user32.DefWindowProcW.argtypes = [wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM]
    user32.DefWindowProcW.restype = LRESULT
    user32.RegisterClassW.argtypes = [ctypes.POINTER(WNDCLASSW)]
    user32.RegisterClassW.restype = wintypes.ATOM
    user32.CreateWindowExW.argtypes = [
        wintypes.DWORD, wintypes.LPCWSTR, wintypes.LPCWSTR, wintypes.DWORD,
        ctypes.c_int, ctypes.c_int, ctypes.c_int, ctypes.c_int,
        wintypes.HWND, wintypes.HMENU, wintypes.HINSTANCE, wintypes.LPVOID,
    ]
    user32.CreateWindowExW.restype = wintypes.HWND
    user32.GetMessageW.argtypes = [ctypes.POINTER(wintypes.MSG), wintypes.HWND, wintypes.UINT, wintypes.UINT]
    user32.GetMessageW.restype = wintypes.BOOL

    def dispatch(hwnd, msg, wparam, lparam):
        handler = handlers.get(msg)
        if handler is None:
            return user32.DefWindowProcW(hwnd, msg, wparam, lparam)
        handler(hwnd)
        return 0

    wndproc = WNDPROC(dispatch)
    instance = kernel32.GetModuleHandleW(None)
    wc = WNDCLASSW(lpfnWndProc=wndproc, hInstance=instance, lpszClassName=class_name)
    user32.RegisterClassW(ctypes.byref(wc))
    hwnd = user32.CreateWindowExW(0, class_name, class_name, 0, 0, 0, 0, 0, None, None, instance, None)
    if not on_created(hwnd):
        return

    msg = wintypes.MSG()
    while user32.GetMessageW(ctypes.byref(msg), None, 0, 0) > 0:
        user32.TranslateMessage(ctypes.byref(msg))
        user32.DispatchMessageW(ctypes.byref(msg))


class WindowsClipboardListener:
    """Hidden window that forwards WM_CLIPBOARDUPDATE to the event queue."""

    CLASS_NAME = "GoldenCopyClipboardListener"
    WM_DESTROY = 0x0002
    WM_CLOSE = 0x0010
    WM_CLIPBOARDUPDATE = 0x031D

    def __init__(self, event_queue: "queue.Queue[tuple]"):
        self.q = event_queue
        self._thread = None
        self._hwnd = None
        self._ready = threading.Event()
        self.ok = False

    def start(self) -> bool:
        if os.name != "nt":
            return False
        if self._thread and self._thread.is_alive():
            return self.ok
        self.ok = False
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="clipboard-listener", daemon=True)
        self._thread.start()
        self._ready.wait(timeout=2.0)
        return self.ok

    def stop(self):
        if os.name != "nt" or not self._hwnd:
            return
        try:
            import ctypes
            from ctypes import wintypes

            post = ctypes.windll.user32.PostMessageW
            post.argtypes = [wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM]
            post(self._hwnd, self.WM_CLOSE, 0, 0)
        except Exception as e:
            logger.debug("Could not close listener window: %s", e)
        self._hwnd = None

    def _run(self):
        import ctypes
        from ctypes import wintypes

        user32 = ctypes.windll.user32
        for name in ("AddClipboardFormatListener", "RemoveClipboardFormatListener", "DestroyWindow"):
            fn = getattr(user32, name)
            fn.argtypes = [wintypes.HWND]
            fn.restype = wintypes.BOOL

        def on_created(hwnd) -> bool:
            self._hwnd = hwnd
            self.ok = bool(hwnd) and bool(user32.AddClipboardFormatListener(hwnd))
            if self.ok:
                self.q.put(("INFO", "Clipboard listener ready."))
            else:
                self.q.put(("ERROR", "Could not register the clipboard listener."))
            self._ready.set()
            return self.ok

        def on_destroy(hwnd):
            user32.RemoveClipboardFormatListener(hwnd)
            user32.PostQuitMessage(0)

        handlers = {
            self.WM_CLIPBOARDUPDATE: lambda hwnd: self.q.put(("CLIPBOARD_CHANGED", None)),
            self.WM_CLOSE: user32.DestroyWindow,
            self.WM_DESTROY: on_destroy,
        }
        try:
            run_message_window(self.CLASS_NAME, handlers, on_created)
        except Exception as e:
            logger.warning("Clipboard listener thread failed: %s", e)
        finally:
            self._ready.set()
