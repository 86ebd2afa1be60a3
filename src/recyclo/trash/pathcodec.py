"""Percent encoding for the ``Path=`` value of a trashinfo file.

Paths are raw bytes. Anything outside the unreserved URI set (plus ``/``) is
written as ``%XX`` so the sidecar stays printable ASCII whatever the bytes of
the original name were.
"""

from __future__ import annotations

import re
from urllib.parse import quote_from_bytes, unquote_to_bytes

from .errors import MalformedEntry

SAFE_CHARS = "/"

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def encode_path(raw: bytes) -> str:
    if b"\x00" in raw:
        raise ValueError("路徑不可包含 NUL 字元")
    return quote_from_bytes(raw, safe=SAFE_CHARS)


def decode_path(text: str) -> bytes:
    """Inverse of :func:`encode_path`.

    Unescaped non-ASCII characters written by other tools are taken as UTF-8.
    A ``%`` that does not start a two-digit hex escape is an error.
    """
    bad = _BAD_ESCAPE.search(text)
    if bad:
        raise MalformedEntry(f"路徑編碼無效（位置 {bad.start()}）：{text!r}")
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in text):
        raise MalformedEntry(f"路徑包含控制字元：{text!r}")
    raw = unquote_to_bytes(text)
    if b"\x00" in raw:
        raise MalformedEntry(f"路徑解碼後包含 NUL 字元：{text!r}")
    return raw
