"""RFC 3339 timestamp helpers for Google API values."""

from datetime import datetime, timezone
from typing import Optional


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 string into an aware datetime, or None if absent or malformed."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # Activity timestamps can carry nanoseconds; datetime stops at micro
    if "." in text:
        head, _, tail = text.partition(".")
        digits = len(tail) - len(tail.lstrip("0123456789"))
        tail = tail[:digits][:6] + tail[digits:]
        text = f"{head}.{tail}" if tail[:1].isdigit() else head + tail
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_after(candidate: Optional[str], current: Optional[str]) -> bool:
    """True when ``candidate`` is strictly later than ``current``.

    An unparsable ``current`` is treated as absent so it can be replaced.
    """
    new = parse_timestamp(candidate)
    if new is None:
        return False
    old = parse_timestamp(current)
    return old is None or new > old


def latest(*values: Optional[str]) -> Optional[str]:
    """Return the latest parsable timestamp string among ``values``."""
    best: Optional[str] = None
    for value in values:
        if is_after(value, best):
            best = value
    return best
