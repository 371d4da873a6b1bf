"""Current-time context injected at the top of every assistant prompt."""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_LOCAL_DEFAULT = _dt.datetime.now().astimezone().tzinfo or _dt.timezone.utc


def resolve_timezone(
    timezone_name: Optional[str],
    fallback: Optional[_dt.tzinfo] = None,
) -> _dt.tzinfo:
    """Resolve ``timezone_name`` to a tzinfo, falling back to sensible defaults."""

    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using fallback", timezone_name)

    if fallback is not None:
        return fallback

    return _LOCAL_DEFAULT


@dataclass(slots=True)
class TimeSnapshot:
    """Snapshot of the current moment in UTC and a target timezone."""

    tzinfo: _dt.tzinfo
    now_utc: _dt.datetime
    now_local: _dt.datetime

    def human_readable(self) -> str:
        """Return e.g. ``Monday, October 19, 2026 at 3:04 PM PDT``."""

        local = self.now_local
        hour = local.hour % 12 or 12
        zone = local.tzname() or ""
        return (
            f"{local:%A, %B} {local.day}, {local.year} at "
            f"{hour}:{local:%M %p} {zone}"
        ).rstrip()


def create_time_snapshot(
    timezone_name: Optional[str] = None,
    *,
    now: Optional[_dt.datetime] = None,
    fallback: Optional[_dt.tzinfo] = None,
) -> TimeSnapshot:
    """Return a TimeSnapshot for ``timezone_name``."""

    tzinfo = resolve_timezone(timezone_name, fallback)
    now_utc = (now or _dt.datetime.now(_dt.timezone.utc)).astimezone(_dt.timezone.utc)
    now_local = now_utc.astimezone(tzinfo)
    return TimeSnapshot(tzinfo=tzinfo, now_utc=now_utc, now_local=now_local)


__all__ = ["TimeSnapshot", "create_time_snapshot", "resolve_timezone"]
