"""
Image Store - Turns image bytes into opaque references and back.

The game core never looks inside a reference; it only hands references from
one turn to the next. The data-URL store keeps references self-contained, so
no separate blob storage is required.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
import base64
import binascii
import re

from ..errors import InvalidImageReference

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)


def sniff_mime_type(data: bytes) -> str:
    """Best guess at an image's MIME type from its leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:1024].lower()):
        return "image/svg+xml"
    return "image/png"


class ImageStore(ABC):
    """Storage for image blobs referenced by turns and rooms."""

    @abstractmethod
    def put(self, data: bytes, mime_type: str | None = None) -> str:
        """Store image bytes and return a reference."""

    @abstractmethod
    def get(self, ref: str) -> bytes:
        """Load the bytes behind a reference."""


class DataUrlImageStore(ImageStore):
    """References are `data:<mime>;base64,<payload>` URLs."""

    def put(self, data: bytes, mime_type: str | None = None) -> str:
        mime = mime_type or sniff_mime_type(data)
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"

    def get(self, ref: str) -> bytes:
        match = _DATA_URL.match(ref or "")
        if not match:
            raise InvalidImageReference()
        try:
            return base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError):
            raise InvalidImageReference("Image reference is not valid base64")
