import pytest

from golden_copy.errors import ClipboardWriteError
from golden_copy.models import Entry, FormatPayload, PayloadKind
from golden_copy.monitor import ChangeMonitor
from golden_copy.playback import PasteResult, PlaybackController, PlaybackState
from golden_copy.store import HistoryStore


@pytest.fixture
def store():
    return HistoryStore(max_entries=0)


@pytest.fixture
def monitor(clipboard, store, fake_sleep):
    return ChangeMonitor(clipboard, store.try_insert, sleep=fake_sleep)


@pytest.fixture
def states():
    return []


@pytest.fixture
def errors():
    return []


@pytest.fixture
def hidden():
    return []


@pytest.fixture
def playback(clipboard, monitor, key_sender, fake_sleep, states, errors, hidden):
    return PlaybackController(
        clipboard,
        monitor,
        key_sender=key_sender,
        hide=lambda: hidden.append(True),
        on_error=errors.append,
        on_state=states.append,
        sleep=fake_sleep,
    )


def test_apply_writes_all_formats_and_suppresses(clipboard, monitor, playback, png_bytes):
    entry = Entry([
        FormatPayload.from_text("hi"),
        FormatPayload.from_text("<b>hi</b>", "HTML"),
        FormatPayload("Image", PayloadKind.IMAGE, png_bytes),
        FormatPayload("Custom", PayloadKind.BINARY, b"\x01"),
    ])
    playback.apply_to_clipboard(entry)

    (written,) = clipboard.writes
    assert list(written) == ["Text", "HTML", "Image", "Custom"]
    assert written["Text"] == "hi"
    assert written["Custom"] == b"\x01"
    assert written["Image"].size == (10, 10)
    assert monitor.suppress_next_capture is True
    assert playback.state is PlaybackState.CLIPBOARD_SET


def test_unrestorable_formats_are_skipped(clipboard, playback):
    entry = Entry([
        FormatPayload("Opaque", PayloadKind.OPAQUE, b"garbage"),
        FormatPayload.from_text("still here"),
    ])
    playback.apply_to_clipboard(entry)
    assert clipboard.writes == [{"Text": "still here"}]


def test_nothing_restorable_fails(clipboard, monitor, playback):
    entry = Entry([FormatPayload("Opaque", PayloadKind.OPAQUE, b"garbage")])
    with pytest.raises(ClipboardWriteError):
        playback.apply_to_clipboard(entry)
    assert clipboard.write_attempts == 0
    assert monitor.suppress_next_capture is False


def test_busy_write_is_retried(clipboard, playback, fake_sleep):
    clipboard.busy_writes = 2
    assert playback.copy(Entry.from_text("retry me"))
    assert clipboard.write_attempts == 3
    assert fake_sleep.calls == [0.03, 0.03]


def test_paste_runs_full_sequence(clipboard, playback, key_sender, states, hidden, fake_sleep, errors):
    assert playback.paste(Entry.from_text("paste me")) is PasteResult.PASTED

    assert clipboard.snapshot == {"Text": "paste me"}
    assert hidden == [True]
    assert key_sender.calls == 1
    assert fake_sleep.calls == [0.1]
    assert errors == []
    assert states == [
        PlaybackState.SETTING_CLIPBOARD,
        PlaybackState.CLIPBOARD_SET,
        PlaybackState.HIDING,
        PlaybackState.WAITING,
        PlaybackState.SENDING_KEYS,
        PlaybackState.IDLE,
    ]


def test_paste_reports_failure_when_clipboard_stays_busy(clipboard, monitor, playback, key_sender, states, errors, hidden):
    clipboard.set(Text="untouched")
    clipboard.always_busy = True

    assert playback.paste(Entry.from_text("never written")) is PasteResult.FAILED
    assert clipboard.write_attempts == 5
    assert clipboard.snapshot == {"Text": "untouched"}
    assert key_sender.calls == 0
    assert hidden == []
    assert monitor.suppress_next_capture is False
    assert len(errors) == 1 and errors[0].startswith("Paste failed")
    assert states[-2:] == [PlaybackState.FAILED, PlaybackState.IDLE]
    assert playback.state is PlaybackState.IDLE


def test_keystroke_failure_keeps_clipboard(clipboard, monitor, fake_sleep, failing_key_sender, errors):
    playback = PlaybackController(
        clipboard, monitor, key_sender=failing_key_sender, on_error=errors.append, sleep=fake_sleep
    )
    assert playback.paste(Entry.from_text("manual paste")) is PasteResult.COPIED
    assert failing_key_sender.calls == 1
    assert clipboard.snapshot == {"Text": "manual paste"}
    assert len(errors) == 1 and "keystroke" in errors[0]
    assert playback.state is PlaybackState.IDLE


def test_copy_failure_is_reported(clipboard, playback, errors, key_sender):
    clipboard.always_busy = True
    assert playback.copy(Entry.from_text("x")) is False
    assert errors and errors[0].startswith("Copy failed")
    assert key_sender.calls == 0
