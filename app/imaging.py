"""Utility helpers for handling photo bytes."""

from __future__ import annotations

import base64
import binascii
import io
import re
from pathlib import Path
from typing import Iterable

from PIL import Image, UnidentifiedImageError

from app.exceptions import ImageDownloadError

DEFAULT_MIME_TYPE = "image/jpeg"

_FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
}

_filename_strip_re = re.compile(r"[^A-Za-z0-9._-]+")


def detect_mime_type(data: bytes) -> str:
    """Return the MIME type of an encoded image.

    Raises
    ------
    ImageDownloadError
        If the bytes are not a recognisable image.
    """

    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format or ""
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDownloadError("Downloaded content is not a supported image") from exc
    return _FORMAT_MIME_TYPES.get(image_format.upper(), DEFAULT_MIME_TYPE)


def guess_mime_type(data: bytes) -> str:
    """Like :func:`detect_mime_type` but falls back to JPEG for unreadable bytes."""
    try:
        return detect_mime_type(data)
    except ImageDownloadError:
        return DEFAULT_MIME_TYPE


def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_image(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Stored image is not valid base64") from exc


def secure_filename(filename: str) -> str:
    """Return a filename safe for a Content-Disposition header or archive entry."""
    name = Path(filename).name
    if not name:
        return "file"
    name = _filename_strip_re.sub("_", name)
    return name or "file"


def with_extension(filename: str, mime_type: str) -> str:
    """Swap the extension of ``filename`` for the one matching ``mime_type``."""
    suffix = _MIME_EXTENSIONS.get(mime_type)
    if not suffix:
        return filename
    return str(Path(filename).with_suffix(suffix))


def unique_filename(existing: Iterable[str], desired: str) -> str:
    base = Path(desired)
    stem = base.stem
    suffix = base.suffix
    candidate = desired
    counter = 1
    existing_set = set(existing)
    while candidate in existing_set:
        candidate = f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate
