"""Date helpers for standup days."""

from datetime import date, datetime, time, timedelta, timezone


def parse_date_only(value: str | date | datetime | None) -> date | None:
    """Normalize a date, datetime or ISO string to a calendar date. Invalid input gives None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10]) if len(text) >= 10 else None
    except ValueError:
        return None


def format_date_only(value: date) -> str:
    return value.isoformat()


def parse_timestamp(value: str | date | datetime | None) -> datetime | None:
    """Parse an ISO date or datetime into an aware UTC datetime.

    Naive values are taken as UTC and a bare date means midnight UTC.
    Invalid input gives None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if len(text) > 10 and text[10] == " ":
            text = text[:10] + "T" + text[11:]
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def get_previous_standup_date(base: date, skip_weekends: bool) -> date:
    previous = base - timedelta(days=1)
    if not skip_weekends:
        return previous

    # Saturday=5, Sunday=6
    while previous.weekday() >= 5:
        previous -= timedelta(days=1)
    return previous
