"""Timestamp helpers shared by the client and the aggregators."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an Azure DevOps ISO8601 timestamp into an aware UTC datetime.

    Accepts ``Z`` suffixes and fractional seconds of any precision. Returns
    ``None`` for missing or unparseable values instead of raising.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda match: "." + (match.group(1) + "000000")[:6], text, count=1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as UTC ISO8601 suitable for Azure DevOps query params."""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.isoformat().replace("+00:00", "Z")


def millis(delta: timedelta) -> int:
    return delta // timedelta(milliseconds=1)


def elapsed_ms(start: datetime, end: datetime) -> int:
    return millis(end - start)
