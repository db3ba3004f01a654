"""
Conversions between local image files, transport-safe base64 payloads and
displayable data URIs.

Payloads on the wire are raw base64 with no ``data:`` prefix; the prefix is
only added for rendering.
"""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Union

from .errors import ImageDecodeError, ImageReadError

DEFAULT_MIME_TYPE = "image/jpeg"

_MAGIC_NUMBERS = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def encode_file(path: Union[str, Path]) -> str:
    try:
        raw = Path(path).read_bytes()
    except OSError as exc:
        raise ImageReadError(f"cannot read image {path}: {exc}") from exc
    return encode_bytes(raw)


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def strip_data_uri(encoded: str) -> str:
    if encoded.startswith("data:") and "," in encoded:
        return encoded.split(",", 1)[1]
    return encoded


def decode(encoded: str) -> bytes:
    """Decode a payload, accepting an optional data-URI prefix."""
    try:
        return base64.b64decode(strip_data_uri(encoded), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"malformed base64 image payload: {exc}") from exc


def to_data_uri(encoded: str, mime_hint: str = DEFAULT_MIME_TYPE) -> str:
    return f"data:{mime_hint};base64,{encoded}"


def sniff_mime_type(data: bytes, default: str = DEFAULT_MIME_TYPE) -> str:
    for magic, mime in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return default


def extension_for(mime_type: str) -> str:
    return {
        "image/jpeg": ".jpg",
        "image/png": ".png",
        "image/gif": ".gif",
        "image/webp": ".webp",
    }.get(mime_type, ".img")
