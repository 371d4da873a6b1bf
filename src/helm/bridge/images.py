"""Stage inline base64 images as temp files the assistant CLI can read."""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
import re
import time
from pathlib import Path
from typing import Iterable, Sequence

from .errors import ImageStagingError

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:image/(\w+);base64,(.+)$", re.DOTALL)
_sequence = itertools.count()


def _b64decode(value: str) -> bytes | None:
    cleaned = value.strip().replace("\n", "").replace("\r", "")
    padding = len(cleaned) % 4
    if padding:
        cleaned += "=" * (4 - padding)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def decode_image_data_url(value: str) -> tuple[bytes, str]:
    """Return the decoded bytes and file extension of an image data URL."""

    match = _DATA_URL.match(value) if isinstance(value, str) else None
    if match is None:
        raise ImageStagingError("Invalid base64 image format")

    subtype = match.group(1).lower()
    data = _b64decode(match.group(2))
    if not data:
        raise ImageStagingError("Invalid base64 image format")
    extension = "jpg" if subtype == "jpeg" else subtype
    return data, extension


def build_image_path(directory: Path, prefix: str, extension: str) -> Path:
    # Millisecond timestamp plus a process-wide sequence keeps concurrent
    # requests from colliding.
    millis = int(time.time() * 1000)
    return directory / f"{prefix}-{millis}-{next(_sequence)}.{extension}"


async def stage_images(
    images: Sequence[str] | None,
    *,
    directory: Path,
    prefix: str,
) -> list[Path]:
    """Write each image to ``directory`` and return the created paths.

    Images that fail to decode or write are logged and skipped.
    """

    staged: list[Path] = []
    if not images:
        return staged

    for index, image in enumerate(images):
        try:
            data, extension = decode_image_data_url(image)
            path = build_image_path(directory, prefix, extension)
            await asyncio.to_thread(path.write_bytes, data)
        except (ImageStagingError, OSError) as exc:
            logger.error("Failed to save image %d: %s", index, exc)
            continue
        staged.append(path)

    if staged:
        logger.debug("Staged %d image(s) under %s", len(staged), directory)
    return staged


def cleanup_temp_files(paths: Iterable[str | Path]) -> None:
    """Delete staged files, ignoring ones that are already gone."""

    for raw_path in paths:
        path = Path(raw_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to cleanup temp file %s: %s", path, exc)


__all__ = [
    "build_image_path",
    "cleanup_temp_files",
    "decode_image_data_url",
    "stage_images",
]
