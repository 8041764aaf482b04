"""Timestamp helpers. Every timestamp on disk is ISO-8601 UTC."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO timestamp, returning None for empty or malformed values."""
    if not value:
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def seconds_since(value: str | None, now: datetime | None = None) -> float | None:
    moment = parse_iso(value)
    if moment is None:
        return None
    return ((now or utc_now()) - moment).total_seconds()
