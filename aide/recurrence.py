"""Schedule occurrence rules.

Weekdays are numbered 0=Sunday..6=Saturday. All datetimes here are naive and
expressed in the assistant's local timezone; callers convert with
``to_local_minute`` first.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from aide.models import Frequency, ScheduleEntry

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def sunday_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def to_local_minute(now: datetime, tz: ZoneInfo) -> datetime:
    """Convert an aware timestamp to naive local time truncated to the minute."""

    if now.tzinfo is not None:
        now = now.astimezone(tz).replace(tzinfo=None)
    return now.replace(second=0, microsecond=0)


def falls_on(entry: ScheduleEntry, day: date) -> bool:
    """Whether ``entry`` has an occurrence on calendar day ``day``."""

    if entry.frequency is Frequency.DAILY:
        return True
    if entry.frequency is Frequency.WEEKLY:
        return entry.day_of_week == sunday_weekday(day)
    if entry.frequency is Frequency.MONTHLY:
        return entry.day_of_month == day.day
    return entry.scheduled_date == day


def matches(entry: ScheduleEntry, now: datetime) -> bool:
    """Exact-minute match of ``entry`` against local ``now``."""

    return entry.time_of_day == now.strftime("%H:%M") and falls_on(entry, now.date())


def occurrence_slot(entry: ScheduleEntry, now: datetime) -> datetime | None:
    """Most recent occurrence at or before ``now``, looking back at most one day."""

    hours, minutes = (int(part) for part in entry.time_of_day.split(":"))
    now = now.replace(second=0, microsecond=0)
    for day in (now.date(), now.date() - timedelta(days=1)):
        if not falls_on(entry, day):
            continue
        slot = datetime.combine(day, time(hours, minutes))
        if slot <= now:
            return slot
    return None


def is_due(entry: ScheduleEntry, now: datetime, catchup: timedelta = timedelta(0)) -> bool:
    """Whether ``entry`` should fire at ``now``.

    An occurrence fires when its slot is at most ``catchup`` in the past, is
    not earlier than ``active_from`` and nothing was delivered for the slot's
    day yet. Every frequency has at most one slot per day, so moving the time
    of an entry that already fired today does not deliver it twice. With no
    catch-up this is the exact-minute match.
    """
    if not entry.active:
        return False
    slot = occurrence_slot(entry, now)
    if slot is None or now - slot > catchup:
        return False
    if entry.active_from is not None and slot < entry.active_from:
        return False
    return entry.last_fired_at is None or entry.last_fired_at.date() < slot.date()


def describe_frequency(entry: ScheduleEntry) -> str:
    if entry.frequency is Frequency.ONCE:
        return f"once on {entry.scheduled_date.isoformat() if entry.scheduled_date else '?'}"
    if entry.frequency is Frequency.WEEKLY:
        day = WEEKDAY_NAMES[entry.day_of_week] if entry.day_of_week is not None else "?"
        return f"every {day}"
    if entry.frequency is Frequency.MONTHLY:
        return f"monthly on day {entry.day_of_month}"
    return "daily"


def describe_schedule(entry: ScheduleEntry) -> str:
    """One-line human description, e.g. ``#3 [static] every Monday at 09:00: "Stand-up"``."""

    return (
        f"#{entry.id} [{entry.kind.value}] {describe_frequency(entry)} at {entry.time_of_day}: "
        f'"{entry.content}"'
    )
