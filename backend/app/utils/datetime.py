import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(dt_value, default_now: bool = False) -> datetime | None:
    """
    Parse a datetime from a webhook payload to naive UTC.

    Handles:
    - ISO string with timezone (e.g., "2024-01-01T00:00:00Z") -> naive UTC datetime
    - epoch milliseconds (Jenkins, e.g. 1704067200000) -> naive UTC datetime
    - datetime object with timezone -> naive UTC datetime
    - datetime object without timezone -> returned as-is
    - None or invalid -> current UTC time (if default_now=True) or None

    MongoDB hands back naive UTC datetimes, so everything stored by the
    reconciler is kept naive to allow arithmetic between stored and parsed values.
    """
    if dt_value is None or dt_value == "":
        return utc_now() if default_now else None

    if isinstance(dt_value, bool):
        logger.warning(f"Unexpected datetime type: {type(dt_value)}")
        return utc_now() if default_now else None

    if isinstance(dt_value, (int, float)):
        try:
            dt = datetime.fromtimestamp(dt_value / 1000, tz=timezone.utc)
            return dt.replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Failed to parse epoch timestamp: {dt_value}")
            return utc_now() if default_now else None

    if isinstance(dt_value, str):
        try:
            # GitLab sends "2024-01-01 00:00:00 UTC"
            normalized = dt_value.strip()
            if normalized.endswith(" UTC"):
                normalized = normalized[: -len(" UTC")] + "+00:00"
            dt = datetime.fromisoformat(normalized.replace("Z", "+00:00"))
            return ensure_naive_utc(dt)
        except (ValueError, AttributeError):
            logger.warning(f"Failed to parse datetime string: {dt_value}")
            return utc_now() if default_now else None

    if isinstance(dt_value, datetime):
        return ensure_naive_utc(dt_value)

    logger.warning(f"Unexpected datetime type: {type(dt_value)}")
    return utc_now() if default_now else None


def ensure_naive_utc(dt_value: datetime | None) -> datetime | None:
    """
    Ensure a datetime is naive UTC.

    Useful when reading from database where datetime might be stored
    as naive but needs to be compared with other naive UTC datetimes.
    """
    if dt_value is None:
        return None

    if isinstance(dt_value, datetime):
        if dt_value.tzinfo is not None:
            return dt_value.astimezone(timezone.utc).replace(tzinfo=None)
        return dt_value

    return None


def seconds_between(started_at: datetime | None, finished_at: datetime | None) -> int | None:
    """Whole seconds from start to finish, clamped at zero for clock skew."""
    if started_at is None or finished_at is None:
        return None
    delta = (ensure_naive_utc(finished_at) - ensure_naive_utc(started_at)).total_seconds()
    return max(0, int(delta))
