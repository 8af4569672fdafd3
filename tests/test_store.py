import random

import pytest

from golden_copy.models import Entry, FormatPayload, PayloadKind
from golden_copy.store import HistoryStore


@pytest.fixture
def store():
    return HistoryStore(max_entries=0)


def texts(entries):
    return [e.text for e in entries]


def test_duplicate_of_head_is_not_inserted(store):
    assert store.try_insert(Entry.from_text("hello"))
    assert not store.try_insert(Entry.from_text("hello"))
    assert len(store) == 1

    assert store.try_insert(Entry.from_text("world"))
    assert texts(store) == ["world", "hello"]


def test_only_the_head_is_checked(store):
    store.try_insert(Entry.from_text("a"))
    store.try_insert(Entry.from_text("b"))
    assert store.try_insert(Entry.from_text("a"))
    assert texts(store) == ["a", "b", "a"]


def test_same_candidate_twice_grows_by_one(store):
    store.try_insert(Entry.from_text("seed"))
    candidate = Entry([FormatPayload.from_text("x"), FormatPayload("Custom", PayloadKind.BINARY, b"1")])
    before = len(store)
    store.try_insert(candidate)
    store.try_insert(candidate)
    assert len(store) == before + 1


def test_no_consecutive_equivalent_entries_after_random_inserts(store):
    rng = random.Random(1234)
    for _ in range(300):
        store.try_insert(Entry.from_text(rng.choice("abc")))
    entries = store.entries
    for newer, older in zip(entries, entries[1:]):
        assert not newer.equivalent(older)


def test_remove_and_missing_entry_are_benign(store):
    a = Entry.from_text("a")
    store.try_insert(a)
    assert store.remove(a)
    assert not store.remove(a)
    assert not store.remove("no-such-id")
    assert len(store) == 0


def test_toggle_favorite_twice_restores_state(store):
    for t in ("one", "two", "three"):
        store.try_insert(Entry.from_text(t))
    order = [e.id for e in store]
    target = store[1]
    original = target.is_favorite

    assert store.toggle_favorite(target) is (not original)
    assert store.toggle_favorite(target.id) is original
    assert [e.id for e in store] == order
    assert len(store) == 3
    assert store.toggle_favorite("missing") is None


def test_filtered_view_favorites(store):
    for t in ("a", "b", "c", "d"):
        store.try_insert(Entry.from_text(t))
    store.toggle_favorite(store[0])
    store.toggle_favorite(store[2])

    view = store.get_filtered_view(favorites_only=True)
    assert texts(view) == ["d", "b"]
    assert all(e.is_favorite for e in view)


def test_filtered_view_search_is_case_insensitive(store, png_bytes):
    store.try_insert(Entry.from_text("xxABCxx"))
    store.try_insert(Entry([FormatPayload("Image", PayloadKind.IMAGE, png_bytes)]))
    store.try_insert(Entry.from_text("nothing here"))
    store.try_insert(Entry.from_text("abc at start"))

    assert texts(store.get_filtered_view(search="abc")) == ["abc at start", "xxABCxx"]
    assert len(store.get_filtered_view(search="")) == 4
    assert len(store.get_filtered_view(search=None)) == 4


def test_filtered_view_combines_filters_and_does_not_mutate(store):
    store.try_insert(Entry.from_text("abc one"))
    store.try_insert(Entry.from_text("abc two"))
    store.toggle_favorite(store[1])
    before = store.entries

    view = store.get_filtered_view(favorites_only=True, search="ABC")
    assert texts(view) == ["abc one"]
    view.clear()
    assert store.entries == before


def test_edit_text_updates_in_place(store):
    store.try_insert(Entry.from_text("old"))
    entry = store[0]
    assert store.edit_text(entry, "new text")
    assert store[0] is entry
    assert entry.text == "new text"
    assert entry.preview == "new text"
    assert not store.edit_text("missing", "x")


def test_cap_evicts_oldest_but_keeps_favorites():
    store = HistoryStore(max_entries=3)
    store.try_insert(Entry.from_text("fav"))
    store.toggle_favorite(store[0])
    for t in ("a", "b", "c", "d"):
        store.try_insert(Entry.from_text(t))

    assert len(store) == 3
    assert texts(store) == ["d", "c", "fav"]


def test_cap_applies_to_loaded_entries():
    entries = [Entry.from_text(str(i)) for i in range(10)]
    store = HistoryStore(entries, max_entries=4)
    assert texts(store) == ["0", "1", "2", "3"]


def test_clear_can_keep_favorites(store):
    for t in ("a", "b", "c"):
        store.try_insert(Entry.from_text(t))
    store.toggle_favorite(store[1])
    assert store.clear(keep_favorites=True) == 2
    assert texts(store) == ["b"]
    assert store.clear() == 1
    assert store.head is None


def test_new_entry_survives_when_favorites_fill_the_cap():
    store = HistoryStore(max_entries=2)
    for t in ("f1", "f2"):
        store.try_insert(Entry.from_text(t))
        store.toggle_favorite(store[0])

    assert store.try_insert(Entry.from_text("new"))
    assert texts(store) == ["new", "f2", "f1"]

    assert store.try_insert(Entry.from_text("newer"))
    assert texts(store) == ["newer", "f2", "f1"]
