"""Binary history and settings files.

Both files are little-endian. Strings are UTF-8 with a 7-bit varint length
prefix. The history file starts with the 4-byte marker ``GCH\\x01`` and an
``int32`` entry count, followed by one record per entry. Every record starts
with its own ``int32`` byte length so that fields added later can be
appended to the end of a record::

    int64   timestamp (epoch milliseconds)
    string  format of the first payload
    string  preview
    uint8   favorite                       optional, default 0
    int32   data length, then the bytes    optional, default empty
    uint8   kind tag of the first payload  optional, inferred from format
    string  entry id                       optional, a fresh id
    int32   extra payload count, then per payload:
            string format, uint8 kind, int32 length, bytes
                                           optional, default none

A field is read only when the record still has bytes left. Files written
before a field existed therefore still load, with the default in its place.

Files without the marker are the older unframed layout: an ``int32`` count,
then per entry ``int64 timestamp``, ``string format``, ``string preview``,
``uint8 favorite`` and ``int32`` data length plus bytes, with no record
lengths. Files from before the favorite flag lack that byte. Both are
accepted, and the trailing favorite and data of the last entry are optional.
Timestamps in these files may also be .NET ``DateTime.ToBinary`` ticks.

The settings file is ``int32 x, int32 y`` followed by the optional booleans
``dark_theme``, ``first_run`` and ``monitoring_paused``.
"""

import logging
import os
import struct
import tempfile
from pathlib import Path
from typing import Iterable

from .errors import PersistenceError
from .models import IMAGE_FORMATS, Entry, FormatPayload, PayloadKind, Settings

logger = logging.getLogger(__name__)

TEXT_FORMATS = {"text", "unicodetext", "rtf", "html"}


class _Writer:
    def __init__(self):
        self._parts: list[bytes] = []

    def getvalue(self) -> bytes:
        return b"".join(self._parts)

    def int32(self, value: int):
        self._parts.append(struct.pack("<i", value))

    def int64(self, value: int):
        self._parts.append(struct.pack("<q", value))

    def uint8(self, value: int):
        self._parts.append(struct.pack("<B", value))

    def boolean(self, value: bool):
        self.uint8(1 if value else 0)

    def raw(self, data: bytes):
        self._parts.append(data)

    def blob(self, data: bytes):
        self.int32(len(data))
        self.raw(data)

    def string(self, value: str):
        data = value.encode("utf-8")
        n = len(data)
        while n >= 0x80:
            self.uint8((n & 0x7F) | 0x80)
            n >>= 7
        self.uint8(n)
        self.raw(data)


class _Reader:
    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n < 0 or n > self.remaining:
            raise PersistenceError(f"Stream ended early (wanted {n} bytes, {self.remaining} left)")
        chunk = self._data[self._pos:self._pos + n].tobytes()
        self._pos += n
        return chunk

    def int32(self) -> int:
        return struct.unpack("<i", self._take(4))[0]

    def int64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def uint8(self) -> int:
        return self._take(1)[0]

    def boolean(self) -> bool:
        return self.uint8() != 0

    def blob(self) -> bytes:
        return self._take(self.int32())

    def string(self) -> str:
        n = 0
        shift = 0
        while True:
            if shift > 28:
                raise PersistenceError("Bad string length prefix")
            b = self.uint8()
            n |= (b & 0x7F) << shift
            if not b & 0x80:
                break
            shift += 7
        try:
            return self._take(n).decode("utf-8")
        except UnicodeDecodeError as e:
            raise PersistenceError("String is not valid UTF-8", e) from e

    def sub(self, n: int) -> "_Reader":
        return _Reader(self._take(n))


def _infer_kind(format: str) -> PayloadKind:
    key = format.casefold()
    if key in TEXT_FORMATS:
        return PayloadKind.TEXT
    if key in IMAGE_FORMATS:
        return PayloadKind.IMAGE
    return PayloadKind.BINARY


# ---------- History ----------
HISTORY_MAGIC = b"GCH\x01"

# DateTime.ToBinary: the top two bits hold the DateTimeKind
DOTNET_TICKS_MASK = 0x3FFFFFFFFFFFFFFF
DOTNET_EPOCH_TICKS = 621355968000000000


def _decode_timestamp(raw: int) -> float:
    ticks = raw & DOTNET_TICKS_MASK
    if ticks >= DOTNET_EPOCH_TICKS:
        return (ticks - DOTNET_EPOCH_TICKS) / 10_000_000
    return raw / 1000


def _legacy_payload(format: str, preview: str, data: bytes) -> FormatPayload:
    kind = _infer_kind(format)
    if kind is PayloadKind.TEXT and not data:
        # Old records kept the text itself in the preview field.
        data = preview.encode("utf-8")
    return FormatPayload(format, kind, data)


def _encode_entry(entry: Entry) -> bytes:
    w = _Writer()
    first, extras = entry.payloads[0], entry.payloads[1:]
    w.int64(int(round(entry.timestamp * 1000)))
    w.string(first.format)
    w.string(entry.preview)
    w.boolean(entry.is_favorite)
    w.blob(first.data)
    w.uint8(first.kind.value)
    w.string(entry.id)
    w.int32(len(extras))
    for p in extras:
        w.string(p.format)
        w.uint8(p.kind.value)
        w.blob(p.data)
    return w.getvalue()


def encode_history(entries: Iterable[Entry]) -> bytes:
    entries = list(entries)
    w = _Writer()
    w.raw(HISTORY_MAGIC)
    w.int32(len(entries))
    for entry in entries:
        w.blob(_encode_entry(entry))
    return w.getvalue()


def _decode_entry(r: _Reader) -> Entry:
    timestamp = _decode_timestamp(r.int64())
    format = r.string()
    preview = r.string()

    is_favorite = r.boolean() if r.remaining else False
    data = r.blob() if r.remaining else b""
    if not r.remaining:
        return Entry([_legacy_payload(format, preview, data)], timestamp=timestamp, is_favorite=is_favorite)

    try:
        kind = PayloadKind.from_tag(r.uint8())
    except ValueError as e:
        raise PersistenceError(f"Unknown payload kind in entry {format!r}", e) from e

    kwargs = {}
    if r.remaining:
        kwargs["id"] = r.string()

    payloads = [FormatPayload(format, kind, data)]
    if r.remaining:
        for _ in range(r.int32()):
            p_format = r.string()
            try:
                p_kind = PayloadKind.from_tag(r.uint8())
            except ValueError as e:
                raise PersistenceError(f"Unknown payload kind in entry {p_format!r}", e) from e
            payloads.append(FormatPayload(p_format, p_kind, r.blob()))

    return Entry(payloads, timestamp=timestamp, is_favorite=is_favorite, **kwargs)


def _read_count(r: _Reader) -> int:
    count = r.int32()
    if count < 0:
        raise PersistenceError(f"Negative entry count {count}")
    return count


def _decode_framed(r: _Reader) -> list[Entry]:
    entries: list[Entry] = []
    for i in range(_read_count(r)):
        length = r.int32()
        try:
            entries.append(_decode_entry(r.sub(length)))
        except PersistenceError:
            raise
        except (ValueError, struct.error) as e:
            raise PersistenceError(f"Entry {i} is malformed", e) from e
    return entries


def _decode_unframed(r: _Reader, with_favorite: bool) -> list[Entry]:
    entries: list[Entry] = []
    for i in range(_read_count(r)):
        try:
            timestamp = _decode_timestamp(r.int64())
            format = r.string()
            preview = r.string()
            is_favorite = r.boolean() if with_favorite and r.remaining else False
            data = r.blob() if r.remaining else b""
            entries.append(Entry(
                [_legacy_payload(format, preview, data)],
                timestamp=timestamp,
                is_favorite=is_favorite,
            ))
        except PersistenceError:
            raise
        except (ValueError, struct.error) as e:
            raise PersistenceError(f"Entry {i} is malformed", e) from e
    if r.remaining:
        raise PersistenceError(f"{r.remaining} bytes left after the last entry")
    return entries


def decode_history(data: bytes) -> list[Entry]:
    if data[:len(HISTORY_MAGIC)] == HISTORY_MAGIC:
        return _decode_framed(_Reader(data[len(HISTORY_MAGIC):]))

    # Unframed: with the favorite byte first, then the layout from before it.
    try:
        return _decode_unframed(_Reader(data), with_favorite=True)
    except PersistenceError as e:
        first_error = e
    try:
        return _decode_unframed(_Reader(data), with_favorite=False)
    except PersistenceError:
        raise first_error


# ---------- Settings ----------
def encode_settings(settings: Settings) -> bytes:
    w = _Writer()
    w.int32(settings.window_x)
    w.int32(settings.window_y)
    w.boolean(settings.dark_theme)
    w.boolean(settings.first_run)
    w.boolean(settings.monitoring_paused)
    return w.getvalue()


def decode_settings(data: bytes) -> Settings:
    r = _Reader(data)
    s = Settings(window_x=r.int32(), window_y=r.int32(), first_run=False)
    if r.remaining:
        s.dark_theme = r.boolean()
    if r.remaining:
        s.first_run = r.boolean()
    if r.remaining:
        s.monitoring_paused = r.boolean()
    return s


# ---------- Files ----------
def _atomic_write(path: Path, data: bytes) -> bool:
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=path.name + ".", suffix=".tmp", delete=False) as f:
            tmp_name = f.name
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
        return True
    except OSError as e:
        logger.warning("Could not save %s: %s", path, e)
        return False
    finally:
        if tmp_name:
            try:
                os.remove(tmp_name)
            except OSError:
                pass


def _encode_for_save(path: Path, encode, value) -> bytes | None:
    try:
        return encode(value)
    except (struct.error, ValueError, OverflowError, TypeError, AttributeError) as e:
        logger.warning("Could not save %s, the data does not encode: %s", path, e)
        return None


def save_history(path: Path, entries: Iterable[Entry]) -> bool:
    data = _encode_for_save(path, encode_history, entries)
    return data is not None and _atomic_write(path, data)


def load_history(path: Path) -> list[Entry]:
    path = Path(path)
    if not path.exists():
        return []
    try:
        entries = decode_history(path.read_bytes())
    except (OSError, PersistenceError) as e:
        logger.warning("Could not load history from %s, starting empty: %s", path, e)
        return []
    logger.debug("Loaded %d entries from %s", len(entries), path)
    return entries


def save_settings(path: Path, settings: Settings) -> bool:
    data = _encode_for_save(path, encode_settings, settings)
    return data is not None and _atomic_write(path, data)


def load_settings(path: Path) -> Settings:
    path = Path(path)
    if not path.exists():
        return Settings()
    try:
        return decode_settings(path.read_bytes())
    except (OSError, PersistenceError) as e:
        logger.warning("Could not load settings from %s, using defaults: %s", path, e)
        return Settings()
