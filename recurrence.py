"""
Periodicity rules.

Every periodicity tag maps to a rule that knows where the recurrence window
("period") containing a given local datetime starts. One execution inside a
period satisfies the checklist for that period; a checklist with a time of day
is re-armed once that time has passed on the current day and the last
execution predates it.

New periodicities are added with register_rule() without touching the
evaluator.
"""

import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Optional, Tuple

from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, rrule
from dateutil.rrule import WEEKLY as RRULE_WEEKLY

LOOSE = "loose"
DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
QUARTERLY = "quarterly"
SEMIANNUAL = "semiannual"
ANNUAL = "annual"
CUSTOM = "custom"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time(value) -> Optional[time]:
    """Parse "HH:MM" (or "HH:MM:SS"); anything else is treated as no threshold."""
    if not isinstance(value, str):
        return None
    m = _TIME_RE.match(value.strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def due_instant(now: datetime, value) -> Optional[datetime]:
    """Today's (now's date) threshold instant, or None without a usable time."""
    t = parse_time(value)
    if t is None:
        return None
    return now.replace(hour=t.hour, minute=t.minute, second=0, microsecond=0)


def threshold_crossed(last: datetime, now: datetime, value) -> bool:
    """True when today's threshold has passed and the last execution predates it."""
    threshold = due_instant(now, value)
    return threshold is not None and now > threshold and last < threshold


def sunday_weekday(d: date) -> int:
    """Weekday with 0=Sunday..6=Saturday."""
    return (d.weekday() + 1) % 7


def start_of_week(d: date) -> date:
    # weeks start on Sunday
    return d - timedelta(days=sunday_weekday(d))


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def start_of_quarter(d: date) -> date:
    return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)


def start_of_half(d: date) -> date:
    return date(d.year, 1 if d.month <= 6 else 7, 1)


def start_of_year(d: date) -> date:
    return date(d.year, 1, 1)


class PeriodRule(ABC):
    """Base rule: subclasses locate the start of the period containing a datetime."""

    # whether the time-of-day threshold can re-open a period already satisfied
    rearms_on_time = True

    @abstractmethod
    def period_start(self, dt: datetime, custom_days: Iterable[int] = ()) -> Optional[date]:
        ...

    def is_same_period(self, a: datetime, b: datetime, custom_days: Iterable[int] = ()) -> bool:
        start = self.period_start(a, custom_days)
        return start is not None and start == self.period_start(b, custom_days)


class OneShotRule(PeriodRule):
    """Loose checklists: a single period that never ends."""

    rearms_on_time = False

    def period_start(self, dt, custom_days=()):
        return date.min


class CalendarRule(PeriodRule):
    """Fixed calendar windows: day, week, month, quarter, half-year, year."""

    def __init__(self, start_of, rearms_on_time: bool = True):
        self._start_of = start_of
        self.rearms_on_time = rearms_on_time

    def period_start(self, dt, custom_days=()):
        return self._start_of(dt.date())


# rrule weekday constants indexed by 0=Sunday..6=Saturday
_RRULE_DAYS = [SU, MO, TU, WE, TH, FR, SA]


class WeekdaySetRule(PeriodRule):
    """
    Custom weekdays: a period opens on every date whose weekday is listed and
    runs until the next listed weekday. Without listed weekdays there is no
    period at all, so the checklist is always due.
    """

    rearms_on_time = False

    def period_start(self, dt, custom_days=()):
        days = sorted({d for d in custom_days if isinstance(d, int) and 0 <= d <= 6})
        if not days:
            return None
        day_start = datetime.combine(dt.date(), time.min)
        rule = rrule(
            RRULE_WEEKLY,
            dtstart=day_start - timedelta(days=6),
            byweekday=[_RRULE_DAYS[d] for d in days],
        )
        occurrence = rule.before(day_start, inc=True)
        return occurrence.date() if occurrence else None


RULES: Dict[str, PeriodRule] = {}


def register_rule(tag: str, rule: PeriodRule) -> PeriodRule:
    RULES[tag] = rule
    return rule


def get_rule(tag) -> Optional[PeriodRule]:
    if not isinstance(tag, str):
        return None
    return RULES.get(tag)


def known_periodicities() -> Tuple[str, ...]:
    return tuple(RULES)


register_rule(LOOSE, OneShotRule())
register_rule(DAILY, CalendarRule(lambda d: d))
register_rule(WEEKLY, CalendarRule(start_of_week))
register_rule(MONTHLY, CalendarRule(start_of_month))
# longer windows are satisfied once per period regardless of the time of day
register_rule(QUARTERLY, CalendarRule(start_of_quarter, rearms_on_time=False))
register_rule(SEMIANNUAL, CalendarRule(start_of_half, rearms_on_time=False))
register_rule(ANNUAL, CalendarRule(start_of_year, rearms_on_time=False))
register_rule(CUSTOM, WeekdaySetRule())
