"""
Slot generation

Turns a service's working window into the candidate start times for one day.
Pure code: no database access, safe to call from any thread.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional, Union

from .exceptions import InvalidServiceSchedule

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def weekday_name(day: Union[date, datetime]) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def parse_time_of_day(value: Union[str, time]) -> time:
    """Parse "HH:MM" (or "HH:MM:SS") into a time; raises ValueError on bad input"""
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid time of day: {value!r}")
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(*(int(p) for p in parts))


def normalize_days(days: Optional[Iterable[str]]) -> set[str]:
    return {str(d).strip().lower() for d in (days or [])}


class DailySlots:
    """
    Ordered start times for one calendar day.

    Iterating twice yields the same sequence; nothing is computed until
    iteration starts.
    """

    def __init__(
        self,
        day: date,
        start_time: time,
        end_time: time,
        duration: int,
        buffer_before: int = 0,
        buffer_after: int = 0,
        open_on_day: bool = True,
    ):
        if duration <= 0:
            raise ValueError("Service duration must be positive")
        if start_time >= end_time:
            raise ValueError("Service start time must be before end time")
        self.day = day
        self.start_time = start_time
        self.end_time = end_time
        self.duration = timedelta(minutes=duration)
        self.buffer_after = timedelta(minutes=buffer_after)
        self.step = timedelta(minutes=duration + buffer_before + buffer_after)
        self.open_on_day = open_on_day

    def __iter__(self) -> Iterator[datetime]:
        if not self.open_on_day:
            return
        slot = datetime.combine(self.day, self.start_time)
        window_end = datetime.combine(self.day, self.end_time)
        while slot + self.duration + self.buffer_after <= window_end:
            yield slot
            slot += self.step

    def __repr__(self):
        return f"DailySlots(day={self.day}, {self.start_time}-{self.end_time}, step={self.step})"


def generate_slots(service, day: Union[date, datetime]) -> DailySlots:
    """
    Candidate slots for ``service`` on ``day``; empty when the service is closed that weekday.
    Raises InvalidServiceSchedule when the stored hours or duration cannot produce slots.
    """
    if isinstance(day, datetime):
        day = day.date()
    try:
        return DailySlots(
            day=day,
            start_time=parse_time_of_day(service.start_time),
            end_time=parse_time_of_day(service.end_time),
            duration=service.duration,
            buffer_before=service.buffer_time_before or 0,
            buffer_after=service.buffer_time_after or 0,
            open_on_day=weekday_name(day) in normalize_days(service.available_days),
        )
    except (TypeError, ValueError) as e:
        raise InvalidServiceSchedule(f"Service {service.id} has an unusable schedule: {e}") from e
