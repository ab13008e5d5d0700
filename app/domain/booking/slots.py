"""Slot grid calculator - pure derivation of bookable slots for one doctor-day"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    label: str  # canonical "HH:MM", the value stored on appointments
    display_label: str  # "09:15 AM"
    available: bool


@dataclass(frozen=True)
class DailyWindow:
    start: time
    end: time


def parse_time_label(value: str) -> time:
    """Parse a canonical "HH:MM" label; raises ValueError on anything else"""
    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time label: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def format_time_label(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def format_display_label(moment: datetime) -> str:
    return moment.strftime("%I:%M %p")


def resolve_daily_window(
    day: date,
    default_start: str,
    default_end: str,
    weekly_availability: Optional[dict] = None,
) -> Optional[DailyWindow]:
    """
    Pick the working window for a day.

    A doctor's weekday entry overrides the clinic default; an entry marked
    unavailable means no window at all (returns None).
    """
    start, end = default_start, default_end
    entry = (weekly_availability or {}).get(WEEKDAYS[day.weekday()])
    if entry:
        if entry.get("available") is False:
            return None
        start = entry.get("start") or start
        end = entry.get("end") or end
    return DailyWindow(start=parse_time_label(start), end=parse_time_label(end))


def build_slot_grid(
    day: date,
    window: Optional[DailyWindow],
    slot_minutes: int,
    taken: Iterable[str] = (),
) -> list[Slot]:
    """
    Ordered, gap-free full-duration slots covering [window.start, window.end).

    A trailing remainder shorter than slot_minutes is dropped. Availability is
    the absence of the slot's label from `taken`.
    """
    if slot_minutes <= 0:
        raise ValueError("Slot duration must be positive")
    if window is None:
        return []

    taken_labels = set(taken)
    step = timedelta(minutes=slot_minutes)
    cursor = datetime.combine(day, window.start)
    window_end = datetime.combine(day, window.end)

    slots = []
    while cursor + step <= window_end:
        label = format_time_label(cursor)
        slots.append(
            Slot(
                start=cursor,
                end=cursor + step,
                label=label,
                display_label=format_display_label(cursor),
                available=label not in taken_labels,
            )
        )
        cursor += step
    return slots
