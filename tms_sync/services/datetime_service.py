"""Datetime parsing and conversion to revision keys."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts ISO 8601 variants, ``YYYY-MM-DD HH:MM[:SS[.ffffff]][±TZ]`` and
    bare dates. Missing timezone defaults to ``default_tz``; missing time
    components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def to_revision(value: datetime | date | int | str | None) -> int | None:
    """Convert a modification time to a revision key (whole unix seconds).

    Naive datetimes are taken as UTC. Integers pass through; strings are
    parsed leniently.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"Not a modification time: {value!r}"
        raise TypeError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        value = parse_datetime(stripped)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp())


def now_revision() -> int:
    """Revision key for the current instant."""
    return int(now_utc().timestamp())
