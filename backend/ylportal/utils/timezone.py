from datetime import date, datetime, timezone


def now_utc() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def today_utc() -> date:
    return now_utc().date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, months: int) -> date:
    """First day of the month ``months`` away from ``d`` (negative goes back)."""
    idx = d.year * 12 + (d.month - 1) + months
    return date(idx // 12, idx % 12 + 1, 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"
