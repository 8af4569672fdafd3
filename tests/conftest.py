import io

import pytest
from PIL import Image

from golden_copy.backends import ClipboardBackend
from golden_copy.engine import ClipboardEngine
from golden_copy.errors import ClipboardBusyError, KeystrokeError


class FakeClipboard(ClipboardBackend):
    """In-memory clipboard that can pretend to be busy."""

    def __init__(self, snapshot=None, use_sequence=False):
        self.snapshot = dict(snapshot or {})
        self.use_sequence = use_sequence
        self.seq = 1
        self.busy_reads = 0
        self.busy_writes = 0
        self.always_busy = False
        self.reads = 0
        self.write_attempts = 0
        self.writes = []

    def set(self, **formats):
        """Simulate another application writing to the clipboard."""
        self.snapshot = dict(formats)
        self.seq += 1

    def read_snapshot(self):
        self.reads += 1
        if self.always_busy or self.busy_reads > 0:
            self.busy_reads = max(0, self.busy_reads - 1)
            raise ClipboardBusyError("busy")
        return dict(self.snapshot)

    def write_snapshot(self, snapshot):
        self.write_attempts += 1
        if self.always_busy or self.busy_writes > 0:
            self.busy_writes = max(0, self.busy_writes - 1)
            raise ClipboardBusyError("busy")
        self.writes.append(dict(snapshot))
        self.snapshot = dict(snapshot)
        self.seq += 1

    def read_text(self):
        value = self.snapshot.get("Text")
        return value if isinstance(value, str) else None

    def sequence_number(self):
        return self.seq if self.use_sequence else None


class RecordingKeySender:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def send_paste(self):
        self.calls += 1
        if self.fail:
            raise KeystrokeError("no input injection here")


class FakeSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def clipboard():
    return FakeClipboard()


@pytest.fixture
def sequenced_clipboard():
    return FakeClipboard(use_sequence=True)


@pytest.fixture
def key_sender():
    return RecordingKeySender()


@pytest.fixture
def failing_key_sender():
    return RecordingKeySender(fail=True)


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def png_bytes():
    """A freshly encoded 10x10 PNG."""
    img = Image.new("RGB", (10, 10), (200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def history_file(tmp_path):
    return tmp_path / "data" / "history.dat"


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "data" / "settings.dat"


@pytest.fixture
def engine(clipboard, key_sender, fake_sleep, history_file, settings_file):
    eng = ClipboardEngine(
        clipboard,
        history_path=history_file,
        settings_path=settings_file,
        key_sender=key_sender,
        force_poll=True,
        sleep=fake_sleep,
    )
    yield eng
    eng.stop()
