"""Weekly business-hours window.

Pure functions only: the caller supplies the instant, so the result depends
on nothing but (instant, time zone, schedule).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple
from zoneinfo import ZoneInfo

DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_ENTRY_RE = re.compile(
    r"^(?P<first>[a-z]{3})[a-z]*(?:\s*-\s*(?P<last>[a-z]{3})[a-z]*)?"
    r"\s+(?P<open>\d{1,2})(?::00)?\s*-\s*(?P<close>\d{1,2})(?::00)?$"
)


class HourWindow(NamedTuple):
    open: int
    close: int

    def contains(self, hour: int) -> bool:
        if self.open == self.close:
            return False
        if self.open < self.close:
            return self.open <= hour < self.close
        # overnight: wraps past midnight
        return hour >= self.open or hour < self.close


@dataclass(frozen=True)
class WeeklySchedule:
    """Opening windows keyed by weekday (0=Mon ... 6=Sun)."""

    windows: dict[int, tuple[HourWindow, ...]] = field(default_factory=dict)

    def windows_for(self, weekday: int) -> tuple[HourWindow, ...]:
        return self.windows.get(weekday, ())

    def is_open(self, weekday: int, hour: int) -> bool:
        return any(w.contains(hour) for w in self.windows_for(weekday))


def default_schedule(start: int, end: int) -> WeeklySchedule:
    """Mon-Fri start..end, weekends closed."""
    window = (HourWindow(start, end),)
    return WeeklySchedule({day: window for day in range(5)})


def parse_schedule(text: str) -> WeeklySchedule:
    """Parse e.g. ``"mon-fri 7-17; sat 7-12"`` into a schedule.

    Days not mentioned are closed. A day may appear in several entries to
    get more than one window. Raises ValueError on anything unparseable.
    """
    windows: dict[int, list[HourWindow]] = {}
    entries = [e.strip() for e in re.split(r"[;,]", text.lower()) if e.strip()]
    if not entries:
        raise ValueError("empty schedule")

    for entry in entries:
        m = _ENTRY_RE.match(entry)
        if not m:
            raise ValueError(f"cannot parse schedule entry {entry!r}")
        first = _day_index(m.group("first"))
        last = _day_index(m.group("last")) if m.group("last") else first
        if last < first:
            raise ValueError(f"day range runs backwards in {entry!r}")
        window = HourWindow(_hour(m.group("open")), _hour(m.group("close")))
        for day in range(first, last + 1):
            windows.setdefault(day, []).append(window)

    return WeeklySchedule({day: tuple(ws) for day, ws in windows.items()})


def is_within_business_hours(now: datetime, tz: ZoneInfo | str, schedule: WeeklySchedule) -> bool:
    """True if ``now``, seen in ``tz``, falls inside an opening window."""
    if isinstance(tz, str):
        tz = ZoneInfo(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    return schedule.is_open(local.weekday(), local.hour)


def _day_index(name: str) -> int:
    try:
        return DAY_NAMES.index(name[:3])
    except ValueError:
        raise ValueError(f"unknown day {name!r}") from None


def _hour(value: str) -> int:
    hour = int(value)
    if not 0 <= hour <= 24:
        raise ValueError(f"hour out of range: {hour}")
    return hour
