# packages/quant_lib/date_utils.py

from datetime import datetime, date, timedelta, timezone


def get_current_utc_date() -> date:
    """Returns the current date in UTC."""
    return datetime.now(timezone.utc).date()


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


def last_weekday_on_or_before(day: date) -> date:
    """Steps back over Saturday/Sunday."""
    while not is_weekday(day):
        day -= timedelta(days=1)
    return day


def weekdays_ending(end: date, count: int) -> list[date]:
    """
    Returns `count` consecutive weekdays, oldest first, ending on the last
    weekday on or before `end`. Holidays are not modelled.
    """
    days: list[date] = []
    cursor = last_weekday_on_or_before(end)
    while len(days) < count:
        if is_weekday(cursor):
            days.append(cursor)
        cursor -= timedelta(days=1)
    days.reverse()
    return days


def calendar_days_for_bars(bars: int) -> int:
    """Calendar lookback that comfortably covers `bars` trading sessions (weekends + holidays)."""
    return int(bars * 1.5) + 10
