import logging
from typing import Iterable, Iterator

from .config import MAX_ENTRIES
from .models import Entry

logger = logging.getLogger(__name__)


def _entry_id(entry_or_id) -> str:
    return entry_or_id.id if isinstance(entry_or_id, Entry) else str(entry_or_id)


class HistoryStore:
    """Clipboard history, newest first.

    Only the owner thread may call the mutating methods; the list is not
    locked. Lookups for delete/favorite/edit go by entry id, and an id that
    is not in the history is ignored.
    """

    def __init__(self, entries: Iterable[Entry] = (), max_entries: int | None = MAX_ENTRIES):
        self._entries: list[Entry] = list(entries)
        self.max_entries = max_entries or 0
        self._trim()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> Entry:
        return self._entries[index]

    @property
    def entries(self) -> list[Entry]:
        return list(self._entries)

    @property
    def head(self) -> Entry | None:
        return self._entries[0] if self._entries else None

    def index_of(self, entry_or_id) -> int:
        entry_id = _entry_id(entry_or_id)
        for i, e in enumerate(self._entries):
            if e.id == entry_id:
                return i
        return -1

    def get(self, entry_or_id) -> Entry | None:
        i = self.index_of(entry_or_id)
        return self._entries[i] if i >= 0 else None

    # ---------- Mutations ----------
    def try_insert(self, candidate: Entry) -> bool:
        head = self.head
        if head is not None and head.equivalent(candidate):
            logger.debug("Duplicate of the newest entry, not inserted")
            return False
        self._entries.insert(0, candidate)
        self._trim()
        return True

    def replace_all(self, entries: Iterable[Entry]):
        self._entries = list(entries)
        self._trim()

    def remove(self, entry_or_id) -> bool:
        i = self.index_of(entry_or_id)
        if i < 0:
            return False
        del self._entries[i]
        return True

    def toggle_favorite(self, entry_or_id) -> bool | None:
        entry = self.get(entry_or_id)
        if entry is None:
            return None
        entry.is_favorite = not entry.is_favorite
        return entry.is_favorite

    def edit_text(self, entry_or_id, text: str) -> bool:
        entry = self.get(entry_or_id)
        if entry is None:
            return False
        entry.payloads = entry.with_text(text)
        return True

    def clear(self, keep_favorites: bool = False) -> int:
        before = len(self._entries)
        if keep_favorites:
            self._entries = [e for e in self._entries if e.is_favorite]
        else:
            self._entries = []
        return before - len(self._entries)

    def _trim(self):
        # Favorites and the newest entry are never pushed out; eviction starts
        # from the oldest entry. With favorites filling the cap, it is exceeded.
        if not self.max_entries or len(self._entries) <= self.max_entries:
            return
        excess = len(self._entries) - self.max_entries
        kept: list[Entry] = []
        for e in reversed(self._entries[1:]):
            if excess and not e.is_favorite:
                excess -= 1
                continue
            kept.append(e)
        kept.append(self._entries[0])
        kept.reverse()
        evicted = len(self._entries) - len(kept)
        if evicted:
            logger.debug("Evicted %d old entries (cap %d)", evicted, self.max_entries)
        self._entries = kept

    # ---------- Views ----------
    def get_filtered_view(self, favorites_only: bool = False, search: str | None = None) -> list[Entry]:
        q = (search or "").casefold()
        view: list[Entry] = []
        for e in self._entries:
            if favorites_only and not e.is_favorite:
                continue
            if q:
                text = e.text
                if text is None or q not in text.casefold():
                    continue
            view.append(e)
        return view
