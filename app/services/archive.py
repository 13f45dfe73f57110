from __future__ import annotations

import asyncio
import io
import zipfile
from enum import Enum
from typing import Iterable, List, Tuple

from app.imaging import decode_image, secure_filename, unique_filename
from app.models import JobRecord, PhotoRecord


class Variant(str, Enum):
    OPTIMIZED = "optimized"
    ORIGINAL = "original"


def photo_bytes(photo: PhotoRecord) -> bytes:
    """Return the stored bytes of a photo record, optimized side first."""
    encoded = photo.optimized_base64 or photo.original_base64
    if not encoded:
        raise ValueError(f"Photo {photo.photo_id} has no stored image data")
    return decode_image(encoded)


def collect_files(job: JobRecord, variant: Variant) -> List[Tuple[str, bytes]]:
    files: List[Tuple[str, bytes]] = []
    names: List[str] = []
    for pair in job.image_pairs:
        photo = pair.optimized if variant is Variant.OPTIMIZED else pair.original
        if photo is None:
            continue
        encoded = photo.optimized_base64 if variant is Variant.OPTIMIZED else photo.original_base64
        if not encoded:
            continue
        prefix = "optimized-" if variant is Variant.OPTIMIZED else ""
        name = unique_filename(names, secure_filename(prefix + photo.file_name))
        names.append(name)
        files.append((name, decode_image(encoded)))
    return files


async def build_archive(job: JobRecord, variant: Variant) -> bytes:
    """Zip every available image of ``variant`` for ``job``.

    Raises
    ------
    ValueError
        If the job has no image of that variant.
    """

    files = collect_files(job, variant)
    if not files:
        raise ValueError(f"No {variant.value} images available for download")
    return await asyncio.to_thread(_write_zip_archive, files)


def _write_zip_archive(files: Iterable[Tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in files:
            archive.writestr(name, data)
    return buffer.getvalue()
