"""OS clipboard access.

A backend reads the clipboard into a native snapshot (format name -> value)
and writes a snapshot back in one transaction. ``ClipboardBusyError`` means
another process holds the clipboard right now and the call may be retried.
"""

import io
import logging
import os

from PIL import Image

from .codec import encode_png
from .errors import ClipboardBusyError, ClipboardWriteError

logger = logging.getLogger(__name__)


class ClipboardBackend:
    def read_snapshot(self) -> dict[str, object]:
        raise NotImplementedError

    def write_snapshot(self, snapshot: dict[str, object]) -> None:
        raise NotImplementedError

    def read_text(self) -> str | None:
        value = self.read_snapshot().get("Text")
        return value if isinstance(value, str) else None

    def sequence_number(self) -> int | None:
        return None


# ---- Windows (ctypes) ----
class Win32Clipboard(ClipboardBackend):
    CF_TEXT = 1
    CF_BITMAP = 2
    CF_METAFILEPICT = 3
    CF_OEMTEXT = 7
    CF_DIB = 8
    CF_PALETTE = 9
    CF_UNICODETEXT = 13
    CF_ENHMETAFILE = 14
    CF_HDROP = 15
    CF_LOCALE = 16
    CF_DIBV5 = 17

    GMEM_MOVEABLE = 0x0002

    # Registered format name -> snapshot name
    ALIASES = {"Rich Text Format": "RTF", "HTML Format": "HTML"}
    # Text-like registered formats and how their bytes are encoded
    TEXT_ENCODINGS = {"RTF": "latin-1", "HTML": "utf-8"}
    STANDARD_NAMES = {CF_HDROP: "FileDrop"}

    def __init__(self):
        import ctypes
        from ctypes import wintypes

        self._ctypes = ctypes
        user32 = ctypes.windll.user32
        kernel32 = ctypes.windll.kernel32

        user32.OpenClipboard.argtypes = [wintypes.HWND]
        user32.OpenClipboard.restype = wintypes.BOOL
        user32.CloseClipboard.restype = wintypes.BOOL
        user32.EmptyClipboard.restype = wintypes.BOOL
        user32.EnumClipboardFormats.argtypes = [wintypes.UINT]
        user32.EnumClipboardFormats.restype = wintypes.UINT
        user32.GetClipboardData.argtypes = [wintypes.UINT]
        user32.GetClipboardData.restype = wintypes.HANDLE
        user32.SetClipboardData.argtypes = [wintypes.UINT, wintypes.HANDLE]
        user32.SetClipboardData.restype = wintypes.HANDLE
        user32.GetClipboardFormatNameW.argtypes = [wintypes.UINT, wintypes.LPWSTR, ctypes.c_int]
        user32.GetClipboardFormatNameW.restype = ctypes.c_int
        user32.RegisterClipboardFormatW.argtypes = [wintypes.LPCWSTR]
        user32.RegisterClipboardFormatW.restype = wintypes.UINT
        user32.GetClipboardSequenceNumber.restype = wintypes.DWORD

        kernel32.GlobalAlloc.argtypes = [wintypes.UINT, ctypes.c_size_t]
        kernel32.GlobalAlloc.restype = wintypes.HGLOBAL
        kernel32.GlobalLock.argtypes = [wintypes.HGLOBAL]
        kernel32.GlobalLock.restype = wintypes.LPVOID
        kernel32.GlobalUnlock.argtypes = [wintypes.HGLOBAL]
        kernel32.GlobalUnlock.restype = wintypes.BOOL
        kernel32.GlobalSize.argtypes = [wintypes.HGLOBAL]
        kernel32.GlobalSize.restype = ctypes.c_size_t
        kernel32.GlobalFree.argtypes = [wintypes.HGLOBAL]
        kernel32.GlobalFree.restype = wintypes.HGLOBAL

        self.user32 = user32
        self.kernel32 = kernel32

    # ---------- Low level ----------
    def _open(self):
        if not self.user32.OpenClipboard(None):
            raise ClipboardBusyError("Clipboard is in use by another application.")

    def _close(self):
        try:
            self.user32.CloseClipboard()
        except Exception as e:
            logger.debug("CloseClipboard failed: %s", e)

    def _format_name(self, fmt: int) -> str | None:
        if fmt == self.CF_UNICODETEXT:
            return "Text"
        if fmt == self.CF_DIB:
            return "Image"
        if fmt in self.STANDARD_NAMES:
            return self.STANDARD_NAMES[fmt]
        if fmt < 0xC000:
            # GDI handles and formats Windows synthesizes from the ones above
            return None
        buf = self._ctypes.create_unicode_buffer(256)
        if not self.user32.GetClipboardFormatNameW(fmt, buf, 256):
            return None
        return self.ALIASES.get(buf.value, buf.value)

    def _format_id(self, name: str) -> int | None:
        key = name.casefold()
        if key == "text":
            return self.CF_UNICODETEXT
        if key == "image":
            return self.CF_DIB
        for fmt, std in self.STANDARD_NAMES.items():
            if std.casefold() == key:
                return fmt
        registered = name
        for reg, alias in self.ALIASES.items():
            if alias.casefold() == key:
                registered = reg
        return self.user32.RegisterClipboardFormatW(registered) or None

    def _read_global(self, fmt: int) -> bytes | None:
        h = self.user32.GetClipboardData(fmt)
        if not h:
            return None
        p = self.kernel32.GlobalLock(h)
        if not p:
            return None
        try:
            size = self.kernel32.GlobalSize(h)
            return self._ctypes.string_at(p, size)
        finally:
            self.kernel32.GlobalUnlock(h)

    def _set_global(self, fmt: int, data: bytes):
        h = self.kernel32.GlobalAlloc(self.GMEM_MOVEABLE, max(len(data), 1))
        if not h:
            raise ClipboardWriteError("GlobalAlloc failed.")
        p = self.kernel32.GlobalLock(h)
        if not p:
            self.kernel32.GlobalFree(h)
            raise ClipboardWriteError("GlobalLock failed.")
        try:
            self._ctypes.memmove(p, data, len(data))
        finally:
            self.kernel32.GlobalUnlock(h)
        if not self.user32.SetClipboardData(fmt, h):
            self.kernel32.GlobalFree(h)
            raise ClipboardWriteError(f"SetClipboardData failed for format {fmt}.")
        # On success, the clipboard owns the memory handle.

    # ---------- Conversions ----------
    @staticmethod
    def _cstring(data: bytes, encoding: str) -> str:
        if encoding == "utf-16-le":
            text = data.decode(encoding, errors="replace")
            return text.split("\0", 1)[0]
        return data.split(b"\0", 1)[0].decode(encoding, errors="replace")

    @staticmethod
    def _dib_to_image(data: bytes) -> Image.Image:
        from PIL import BmpImagePlugin

        img = BmpImagePlugin.DibImageFile(io.BytesIO(data))
        img.load()
        return img

    @staticmethod
    def _image_to_dib(img: Image.Image) -> bytes:
        output = io.BytesIO()
        img.convert("RGB").save(output, "BMP")
        # BMP includes a 14-byte file header; CF_DIB expects the DIB payload.
        return output.getvalue()[14:]

    def _encode(self, name: str, value) -> bytes | None:
        key = name.casefold()
        if isinstance(value, Image.Image):
            # Only "Image" maps to CF_DIB; registered image formats such as "PNG" carry PNG files
            return self._image_to_dib(value) if key == "image" else encode_png(value)
        if isinstance(value, str):
            if key == "text":
                return (value + "\0").encode("utf-16-le")
            encoding = self.TEXT_ENCODINGS.get(self.ALIASES.get(name, name).upper(), "utf-8")
            return (value + "\0").encode(encoding, errors="replace")
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        return None

    # ---------- Backend API ----------
    def read_snapshot(self) -> dict[str, object]:
        self._open()
        raw: dict[str, object] = {}
        try:
            fmt = self.user32.EnumClipboardFormats(0)
            while fmt:
                name = self._format_name(fmt)
                if name and name not in raw:
                    try:
                        data = self._read_global(fmt)
                        if data is not None:
                            raw[name] = data
                    except Exception as e:
                        logger.debug("Skipping clipboard format %s: %s", name, e)
                fmt = self.user32.EnumClipboardFormats(fmt)
        finally:
            self._close()

        # Plain text first so it drives the preview.
        snapshot: dict[str, object] = {}
        if "Text" in raw:
            snapshot["Text"] = self._cstring(raw.pop("Text"), "utf-16-le")
        for name, encoding in self.TEXT_ENCODINGS.items():
            if name in raw:
                snapshot[name] = self._cstring(raw.pop(name), encoding)
        if "Image" in raw:
            data = raw.pop("Image")
            try:
                snapshot["Image"] = self._dib_to_image(data)
            except Exception as e:
                logger.debug("Clipboard bitmap could not be decoded: %s", e)
        snapshot.update(raw)
        return snapshot

    def write_snapshot(self, snapshot: dict[str, object]) -> None:
        staged: list[tuple[int, bytes]] = []
        for name, value in snapshot.items():
            data = self._encode(name, value)
            fmt = self._format_id(name) if data is not None else None
            if fmt is None:
                logger.debug("No Windows clipboard representation for %r, skipped", name)
                continue
            staged.append((fmt, data))
        if not staged:
            raise ClipboardWriteError("Nothing in this entry can be placed on the clipboard.")

        self._open()
        try:
            self.user32.EmptyClipboard()
            for fmt, data in staged:
                self._set_global(fmt, data)
        finally:
            self._close()

    def read_text(self) -> str | None:
        self._open()
        try:
            data = self._read_global(self.CF_UNICODETEXT)
        finally:
            self._close()
        if data is None:
            return None
        return self._cstring(data, "utf-16-le")

    def sequence_number(self) -> int | None:
        return int(self.user32.GetClipboardSequenceNumber())


# ---- Tk (any platform) ----
class TkClipboard(ClipboardBackend):
    """Text clipboard through Tk; images are read with Pillow's ImageGrab."""

    def __init__(self, root=None):
        import tkinter as tk

        self._tk = tk
        if root is None:
            root = tk.Tk()
            root.withdraw()
        self.root = root

    def read_text(self) -> str | None:
        try:
            data = self.root.clipboard_get()
            if isinstance(data, str):
                return data
        except self._tk.TclError:
            return None
        return None

    def _grab_image(self):
        try:
            from PIL import ImageGrab

            return ImageGrab.grabclipboard()
        except Exception as e:
            logger.debug("ImageGrab.grabclipboard failed: %s", e)
            return None

    def read_snapshot(self) -> dict[str, object]:
        snapshot: dict[str, object] = {}
        text = self.read_text()
        if text is not None:
            snapshot["Text"] = text
        grabbed = self._grab_image()
        if isinstance(grabbed, Image.Image):
            snapshot["Image"] = grabbed
        elif isinstance(grabbed, list) and grabbed:
            snapshot["FileDrop"] = "\n".join(str(p) for p in grabbed)
        return snapshot

    def write_snapshot(self, snapshot: dict[str, object]) -> None:
        text = snapshot.get("Text")
        if not isinstance(text, str):
            text = next((v for v in snapshot.values() if isinstance(v, str)), None)
        if text is None:
            raise ClipboardWriteError("The Tk clipboard can only hold text.")
        skipped = [k for k, v in snapshot.items() if v is not text]
        if skipped:
            logger.debug("Tk clipboard ignores formats: %s", ", ".join(skipped))
        try:
            self.root.clipboard_clear()
            self.root.clipboard_append(text)
            self.root.update_idletasks()
        except self._tk.TclError as e:
            raise ClipboardWriteError("Tk clipboard write failed.", e) from e


def default_backend(root=None) -> ClipboardBackend:
    if os.name == "nt":
        return Win32Clipboard()
    return TkClipboard(root)
