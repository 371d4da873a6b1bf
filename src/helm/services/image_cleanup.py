"""Background cleanup of staged chat images."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


def cleanup_expired_images(
    directory: str | Path,
    *,
    prefix: str,
    max_age: timedelta,
    now: datetime | None = None,
) -> int:
    """Delete ``<prefix>-*`` files in ``directory`` older than ``max_age``.

    A non-positive ``max_age`` disables the sweep. Returns the number of files
    removed.
    """

    if max_age.total_seconds() <= 0:
        return 0

    dir_path = Path(directory)
    if not dir_path.is_dir():
        return 0

    cutoff = (now or datetime.now(timezone.utc)).astimezone(timezone.utc) - max_age
    removed = 0
    errors = 0

    for image_file in dir_path.glob(f"{prefix}-*"):
        try:
            if not image_file.is_file():
                continue
            mtime = datetime.fromtimestamp(image_file.stat().st_mtime, tz=timezone.utc)
            if mtime < cutoff:
                image_file.unlink()
                removed += 1
                logger.debug("Deleted expired image: %s", image_file)
        except FileNotFoundError:
            continue
        except OSError as exc:
            errors += 1
            logger.warning("Failed to delete %s: %s", image_file, exc)

    if removed or errors:
        logger.info(
            "Image cleanup complete: %d file(s) deleted, %d error(s) encountered",
            removed,
            errors,
        )
    return removed


__all__ = ["cleanup_expired_images"]
