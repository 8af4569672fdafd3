import struct
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from .config import PREVIEW_CHARS

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Format names (casefolded) whose payloads are images
IMAGE_FORMATS = frozenset({"image", "png", "image/png", "bitmap", "dib", "cf_dib"})


class PayloadKind(Enum):
    """How a format's bytes are to be interpreted. The value is the wire tag."""
    TEXT = 0
    IMAGE = 1
    BINARY = 2
    OPAQUE = 3

    @classmethod
    def from_tag(cls, tag: int) -> "PayloadKind":
        return cls(tag)


def png_size(data: bytes) -> tuple[int, int] | None:
    """Read (width, height) from a PNG header without decoding the image."""
    if len(data) < 24 or not data.startswith(PNG_SIGNATURE) or data[12:16] != b"IHDR":
        return None
    return struct.unpack(">II", data[16:24])


@dataclass(frozen=True)
class FormatPayload:
    format: str
    kind: PayloadKind
    data: bytes

    def __post_init__(self):
        if self.data is None:
            raise ValueError(f"payload for format {self.format!r} has no data")
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        if not isinstance(self.kind, PayloadKind):
            object.__setattr__(self, "kind", PayloadKind(self.kind))

    @classmethod
    def from_text(cls, text: str, format: str = "Text") -> "FormatPayload":
        return cls(format, PayloadKind.TEXT, text.encode("utf-8"))

    @property
    def format_key(self) -> str:
        return self.format.casefold()

    @property
    def text(self) -> str | None:
        if self.kind is not PayloadKind.TEXT:
            return None
        return self.data.decode("utf-8", errors="replace")

    def equivalent(self, other: "FormatPayload") -> bool:
        return (
            self.format_key == other.format_key
            and self.kind is other.kind
            and self.data == other.data
        )


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Entry:
    """One captured clipboard state.

    ``payloads`` is never empty and holds at most one payload per format
    name (compared case-insensitively). Its order is the capture order and
    decides which payload the preview is drawn from.
    """
    payloads: list[FormatPayload]
    id: str = field(default_factory=_new_id)
    timestamp: float = field(default_factory=time.time)
    is_favorite: bool = False

    def __post_init__(self):
        seen = set()
        unique: list[FormatPayload] = []
        for p in self.payloads:
            if p.format_key in seen:
                continue
            seen.add(p.format_key)
            unique.append(p)
        if not unique:
            raise ValueError("an entry needs at least one payload")
        self.payloads = unique
        # Millisecond precision survives the on-disk format unchanged.
        self.timestamp = round(float(self.timestamp), 3)
        self.is_favorite = bool(self.is_favorite)

    @classmethod
    def from_text(cls, text: str, **kwargs) -> "Entry":
        return cls([FormatPayload.from_text(text)], **kwargs)

    @property
    def text(self) -> str | None:
        # Plain "Text" wins over RTF/HTML markup that was also captured as text.
        texts = [p for p in self.payloads if p.kind is PayloadKind.TEXT]
        for p in texts:
            if p.format_key == "text":
                return p.text
        return texts[0].text if texts else None

    @property
    def formats(self) -> list[str]:
        return [p.format for p in self.payloads]

    @property
    def preview(self) -> str:
        text = self.text
        if text is not None:
            snippet = " ".join(text.split())
            if len(snippet) > PREVIEW_CHARS:
                snippet = snippet[:PREVIEW_CHARS] + "..."
            return snippet
        for p in self.payloads:
            if p.kind is PayloadKind.IMAGE:
                size = png_size(p.data)
                if size:
                    return f"Image ({size[0]}x{size[1]})"
        return self.payloads[0].format

    def payload(self, format: str) -> FormatPayload | None:
        key = format.casefold()
        for p in self.payloads:
            if p.format_key == key:
                return p
        return None

    def equivalent(self, other: "Entry") -> bool:
        if len(self.payloads) != len(other.payloads):
            return False
        return all(a.equivalent(b) for a, b in zip(self.payloads, other.payloads))

    def with_text(self, text: str) -> list[FormatPayload]:
        """Payload list with the text payload replaced (or added in front)."""
        target = self.payload("Text")
        if target is None:
            target = next((p for p in self.payloads if p.kind is PayloadKind.TEXT), None)
        replaced = False
        payloads: list[FormatPayload] = []
        for p in self.payloads:
            if not replaced and p is target:
                payloads.append(FormatPayload.from_text(text, p.format))
                replaced = True
            else:
                payloads.append(p)
        if not replaced:
            payloads.insert(0, FormatPayload.from_text(text))
        return payloads


@dataclass
class Settings:
    window_x: int = 0
    window_y: int = 0
    dark_theme: bool = True
    first_run: bool = True
    monitoring_paused: bool = False
