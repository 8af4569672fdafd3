import logging
import os
import queue
import threading
import time
from dataclasses import fields
from pathlib import Path
from typing import Callable

from . import config, persistence
from .backends import ClipboardBackend
from .models import Entry, Settings
from .monitor import ChangeMonitor, ClipboardPoller, WindowsClipboardListener
from .playback import PasteResult, PlaybackController
from .store import HistoryStore

logger = logging.getLogger(__name__)

_KEEP = object()


class ClipboardEngine:
    """Clipboard history engine behind a presentation layer.

    All methods except ``post`` must run on one owner thread (the UI thread
    when a UI is attached). Listener threads only put ``(kind, payload)``
    events on ``self.q``; ``process_events`` handles them on the owner
    thread, so history mutations are never interleaved.
    """

    def __init__(
        self,
        backend: ClipboardBackend,
        history_path: Path | None = None,
        settings_path: Path | None = None,
        key_sender=None,
        max_entries: int | None = config.MAX_ENTRIES,
        hide: Callable[[], None] | None = None,
        force_poll: bool = False,
        poll_ms: int = config.POLL_MS,
        event_queue: "queue.Queue[tuple] | None" = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.history_path = Path(history_path) if history_path else config.history_path()
        self.settings_path = Path(settings_path) if settings_path else config.settings_path()
        self.q: "queue.Queue[tuple]" = event_queue if event_queue is not None else queue.Queue()
        self.force_poll = force_poll
        self.poll_ms = poll_ms

        self.store = HistoryStore(max_entries=max_entries)
        self.settings = Settings()
        self.monitor = ChangeMonitor(backend, self._on_captured, sleep=sleep)
        self.playback = PlaybackController(
            backend,
            self.monitor,
            key_sender=key_sender,
            hide=hide,
            on_error=lambda msg: self._notice("ERROR", msg),
            sleep=sleep,
        )

        self.favorites_only = False
        self.search: str | None = None

        self._listeners: list[Callable[[list[Entry]], None]] = []
        self._notice_listeners: list[Callable[[str, str], None]] = []
        self._clipboard_listener = None
        self._poller = None
        self._stopped = threading.Event()

    # ---------- Subscribers ----------
    def subscribe(self, callback: Callable[[list[Entry]], None]):
        """``callback`` gets the filtered view after every change."""
        self._listeners.append(callback)

    def subscribe_notices(self, callback: Callable[[str, str], None]):
        """``callback(kind, message)`` for INFO/ERROR notices."""
        self._notice_listeners.append(callback)

    def _publish(self):
        view = self.current_view()
        for cb in list(self._listeners):
            try:
                cb(view)
            except Exception:
                logger.exception("History listener failed")

    def _notice(self, kind: str, msg: str):
        for cb in list(self._notice_listeners):
            try:
                cb(kind, msg)
            except Exception:
                logger.exception("Notice listener failed")

    # ---------- Lifecycle ----------
    def load(self):
        self.store.replace_all(persistence.load_history(self.history_path))
        self.settings = persistence.load_settings(self.settings_path)
        self.monitor.paused = self.settings.monitoring_paused
        logger.info("Loaded %d clipboard entries", len(self.store))
        self._publish()

    def start(self, capture_now: bool = True):
        self._stopped.clear()
        self.load()
        if capture_now:
            self.monitor.notify()

        if os.name == "nt" and not self.force_poll:
            self._clipboard_listener = WindowsClipboardListener(self.q)
            if self._clipboard_listener.start():
                return
            logger.warning("Clipboard listener unavailable, falling back to polling")
            self._clipboard_listener = None

        self._poller = ClipboardPoller(self.q, self.poll_ms)
        self._poller.start()

    def stop(self):
        self._stopped.set()
        if self._clipboard_listener:
            self._clipboard_listener.stop()
            self._clipboard_listener = None
        if self._poller:
            self._poller.stop()
            self._poller = None

    def shutdown(self):
        self.stop()
        self.settings.first_run = False
        persistence.save_history(self.history_path, self.store.entries)
        persistence.save_settings(self.settings_path, self.settings)
        logger.info("Clipboard engine stopped")

    # ---------- Event processing ----------
    def post(self, kind: str, payload=None):
        """Thread-safe: queue an event for the owner thread."""
        self.q.put((kind, payload))

    def _dispatch(self, kind: str, payload):
        if kind == "CLIPBOARD_CHANGED":
            self.monitor.notify()
        elif kind == "POLL":
            self.monitor.poll()
        elif kind in ("INFO", "ERROR"):
            self._notice(kind, str(payload))
        elif kind == "CALL":
            payload()
        else:
            logger.debug("Ignoring unknown event %r", kind)

    def process_events(self) -> int:
        handled = 0
        try:
            while True:
                kind, payload = self.q.get_nowait()
                self._dispatch(kind, payload)
                handled += 1
        except queue.Empty:
            pass
        return handled

    def run_forever(self, timeout: float = 0.25):
        """Block the calling thread, handling events until ``stop`` is called."""
        while not self._stopped.is_set():
            try:
                kind, payload = self.q.get(timeout=timeout)
            except queue.Empty:
                continue
            self._dispatch(kind, payload)

    def attach(self, root, interval_ms: int = 50):
        """Drive ``process_events`` from a Tk root's ``after`` loop."""
        def tick():
            if self._stopped.is_set():
                return
            self.process_events()
            root.after(interval_ms, tick)

        root.after(interval_ms, tick)

    # ---------- History ----------
    def _on_captured(self, entry: Entry) -> bool:
        return self.insert(entry)

    def _changed(self):
        persistence.save_history(self.history_path, self.store.entries)
        self._publish()

    def insert(self, candidate: Entry) -> bool:
        inserted = self.store.try_insert(candidate)
        if inserted:
            self._changed()
        return inserted

    def remove(self, entry) -> bool:
        removed = self.store.remove(entry)
        if removed:
            self._changed()
        return removed

    def toggle_favorite(self, entry) -> bool | None:
        state = self.store.toggle_favorite(entry)
        if state is not None:
            self._changed()
        return state

    def edit_text(self, entry, text: str) -> bool:
        edited = self.store.edit_text(entry, text)
        if edited:
            self._changed()
        return edited

    def clear(self, keep_favorites: bool = False) -> int:
        removed = self.store.clear(keep_favorites)
        if removed:
            self._changed()
        return removed

    def get_filtered_view(self, favorites_only: bool = False, search: str | None = None) -> list[Entry]:
        return self.store.get_filtered_view(favorites_only, search)

    def set_filter(self, favorites_only=_KEEP, search=_KEEP):
        """Change the published view; an argument left out keeps its current value."""
        if favorites_only is not _KEEP:
            self.favorites_only = bool(favorites_only)
        if search is not _KEEP:
            self.search = search
        self._publish()

    def current_view(self) -> list[Entry]:
        return self.store.get_filtered_view(self.favorites_only, self.search)

    # ---------- Playback ----------
    def copy(self, entry) -> bool:
        target = self.store.get(entry)
        if target is None:
            self._notice("ERROR", "Copy failed: entry is no longer in the history.")
            return False
        ok = self.playback.copy(target)
        if ok:
            self._notice("INFO", "Copied back to clipboard!")
        return ok

    def paste(self, entry) -> PasteResult:
        target = self.store.get(entry)
        if target is None:
            self._notice("ERROR", "Paste failed: entry is no longer in the history.")
            return PasteResult.FAILED
        return self.playback.paste(target)

    # ---------- Monitoring / settings ----------
    def pause(self):
        self._set_paused(True)

    def resume(self):
        self._set_paused(False)

    def toggle_monitoring(self) -> bool:
        self._set_paused(not self.monitor.paused)
        return self.monitor.paused

    def _set_paused(self, paused: bool):
        self.monitor.paused = paused
        self.settings.monitoring_paused = paused
        persistence.save_settings(self.settings_path, self.settings)
        self._notice("INFO", "Clipboard monitoring paused." if paused else "Clipboard monitoring resumed.")

    def update_settings(self, **changes):
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(self.settings, name, value)
        if "monitoring_paused" in changes:
            self.monitor.paused = bool(self.settings.monitoring_paused)
        persistence.save_settings(self.settings_path, self.settings)
