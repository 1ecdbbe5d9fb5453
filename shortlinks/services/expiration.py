import re
from datetime import datetime, timezone
from typing import Optional

RFC3339_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?(?P<tz>[Zz]|[+-]\d{2}:\d{2})$"
)

def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp into an aware datetime, or None if invalid.

    The offset is mandatory. Fractional seconds of any precision are accepted
    and truncated to microseconds.
    """
    if value is None:
        return None
    match = RFC3339_RE.match(value.strip())
    if not match:
        return None

    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz in ("Z", "z"):
        tz = "+00:00"

    try:
        return datetime.fromisoformat(f"{match.group('date')}T{match.group('time')}.{frac}{tz}")
    except ValueError:
        # out-of-range fields, e.g. month 13 or a leap second
        return None

def is_expired(expires_at: Optional[str], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False

    deadline = parse_rfc3339(expires_at)
    if deadline is None:
        # corrupt expiry data never means "valid forever"
        return True

    if now is None:
        now = datetime.now(timezone.utc)
    return now >= deadline
