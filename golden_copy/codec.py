"""Conversion between native clipboard values and storable payloads.

A native snapshot is a mapping of format name to whatever the clipboard
backend produced for it: ``str`` for text, a Pillow image for bitmaps,
``bytes`` for raw formats, or some other Python object. ``capture`` turns
it into a list of ``FormatPayload`` and ``restore`` goes the other way.
Neither function raises; a format that cannot be converted is left out.
"""

import io
import logging
import pickle
from typing import Iterable, Mapping

from PIL import Image

from .models import IMAGE_FORMATS, PNG_SIGNATURE, Entry, FormatPayload, PayloadKind, png_size  # noqa: F401

logger = logging.getLogger(__name__)

# Opaque payloads are read back from the history file: unpickling rebuilds
# plain builtin values only.
SAFE_BUILTINS = frozenset({
    "bool", "bytearray", "bytes", "complex", "dict", "float", "frozenset",
    "int", "list", "set", "slice", "str", "tuple",
})


class _SafeUnpickler(pickle.Unpickler):
    def find_class(self, module, name):
        if module == "builtins" and name in SAFE_BUILTINS:
            return super().find_class(module, name)
        raise pickle.UnpicklingError(f"{module}.{name} is not allowed in a clipboard payload")


def _unpickle(data: bytes):
    return _SafeUnpickler(io.BytesIO(data)).load()


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def _capture_one(name: str, value) -> FormatPayload | None:
    if value is None:
        return None
    if isinstance(value, str):
        return FormatPayload(name, PayloadKind.TEXT, value.encode("utf-8"))
    if isinstance(value, Image.Image):
        return FormatPayload(name, PayloadKind.IMAGE, encode_png(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        if name.casefold() in IMAGE_FORMATS and data.startswith(PNG_SIGNATURE):
            return FormatPayload(name, PayloadKind.IMAGE, data)
        return FormatPayload(name, PayloadKind.BINARY, data)
    return FormatPayload(name, PayloadKind.OPAQUE, pickle.dumps(value))


def capture(snapshot: Mapping[str, object]) -> list[FormatPayload]:
    payloads: list[FormatPayload] = []
    for name, value in snapshot.items():
        try:
            payload = _capture_one(str(name), value)
        except Exception as e:
            logger.debug("Dropping clipboard format %r: %s", name, e)
            continue
        if payload is not None:
            payloads.append(payload)
    return payloads


def capture_entry(snapshot: Mapping[str, object]) -> Entry | None:
    payloads = capture(snapshot)
    if not payloads:
        return None
    return Entry(payloads)


def restore(payload: FormatPayload):
    """Native value for ``payload``, or None when it cannot be rebuilt."""
    try:
        if payload.kind is PayloadKind.TEXT:
            return payload.data.decode("utf-8")
        if payload.kind is PayloadKind.IMAGE:
            return decode_png(payload.data)
        if payload.kind is PayloadKind.BINARY:
            return payload.data
        return _unpickle(payload.data)
    except Exception as e:
        logger.debug("Cannot restore format %r (%s): %s", payload.format, payload.kind.name, e)
        return None


def restore_all(payloads: Iterable[FormatPayload]) -> dict[str, object]:
    snapshot: dict[str, object] = {}
    for p in payloads:
        value = restore(p)
        if value is not None:
            snapshot[p.format] = value
    return snapshot
