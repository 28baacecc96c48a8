"""
Due-date evaluation and the technician's pending set.

Everything here is a pure function of (checklists, execution history, now).
Callers sample `now` once per request and pass it down. Calendar comparisons
use the technician's local zone `tz`; naive datetimes are read as local time.
"""

import logging
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from recurrence import DAILY, LOOSE, due_instant, get_rule, threshold_crossed
from schemas import Checklist, DailyProgress, DueStatus, Execution, OverallStats, ProfessionalView

logger = logging.getLogger(__name__)


def _localize(dt: datetime, zone: Optional[tzinfo]) -> datetime:
    if zone is None:
        return dt.astimezone().replace(tzinfo=None) if dt.tzinfo is not None else dt
    if dt.tzinfo is None:
        return dt.replace(tzinfo=zone)
    return dt.astimezone(zone)


def _last_completions(user_id: str, history: Iterable[Execution], zone) -> Dict[str, datetime]:
    """Latest completedAt per checklist id for this technician."""
    last: Dict[str, datetime] = {}
    for record in history:
        if record.user_id != user_id:
            continue
        completed_at = _localize(record.completed_at, zone)
        current = last.get(record.checklist_id)
        if current is None or completed_at > current:
            last[record.checklist_id] = completed_at
    return last


def is_expired(checklist: Checklist, now: datetime, tz: Optional[tzinfo] = None) -> bool:
    if checklist.validity is None:
        return False
    zone = tz if tz is not None else now.tzinfo
    return _localize(now, zone) >= _localize(checklist.validity, zone)


def _evaluate(checklist: Checklist, now: datetime, last: Optional[datetime], zone) -> bool:
    if is_expired(checklist, now, zone):
        return False
    if last is None:
        return True

    rule = get_rule(checklist.periodicity)
    if rule is None:
        return True
    if not rule.is_same_period(last, now, checklist.custom_days):
        return True
    return rule.rearms_on_time and threshold_crossed(last, now, checklist.time)


def _completed_on_day(now: datetime, last: Optional[datetime], time_value) -> bool:
    if last is None or last.date() != now.date():
        return False
    threshold = due_instant(now, time_value)
    return threshold is None or last >= threshold


def due_status(
    checklist: Checklist,
    user_id: str,
    now: datetime,
    history: Iterable[Execution],
    tz: Optional[tzinfo] = None,
) -> DueStatus:
    zone = tz if tz is not None else now.tzinfo
    now = _localize(now, zone)
    last = _last_completions(user_id, history, zone).get(checklist.id)
    return DueStatus(
        checklist_id=checklist.id,
        due=_evaluate(checklist, now, last, zone),
        last_completed_at=last,
    )


def is_due(
    checklist: Checklist,
    user_id: str,
    now: datetime,
    history: Iterable[Execution],
    tz: Optional[tzinfo] = None,
) -> bool:
    """Whether `user_id` must execute `checklist` at `now`. Never raises."""
    return due_status(checklist, user_id, now, history, tz).due


def completed_today(
    checklist: Checklist,
    user_id: str,
    now: datetime,
    history: Iterable[Execution],
    tz: Optional[tzinfo] = None,
) -> bool:
    """Executed today, and after today's threshold when the checklist has one."""
    zone = tz if tz is not None else now.tzinfo
    now = _localize(now, zone)
    last = _last_completions(user_id, history, zone).get(checklist.id)
    return _completed_on_day(now, last, checklist.time)


def visible_to(checklists: Iterable[Checklist], user_id: str) -> List[Checklist]:
    """Active checklists assigned to the technician or left in the loose pool."""
    return [c for c in checklists if c.active and (c.assigned_to is None or c.assigned_to == user_id)]


def compute_professional_view(
    user_id: str,
    checklists: Iterable[Checklist],
    history: Iterable[Execution],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> ProfessionalView:
    zone = tz if tz is not None else now.tzinfo
    now = _localize(now, zone)
    history = list(history)
    last_by_checklist = _last_completions(user_id, history, zone)

    pending: List[Checklist] = []
    pending_today: List[Checklist] = []
    total_daily = completed_daily = scheduled = 0

    for checklist in visible_to(checklists, user_id):
        if get_rule(checklist.periodicity) is None:
            logger.warning(
                "unknown periodicity %r, treating checklist as due",
                checklist.periodicity,
                extra={"checklist_id": checklist.id},
            )

        last = last_by_checklist.get(checklist.id)
        due = _evaluate(checklist, now, last, zone)
        if due:
            pending.append(checklist)

        if checklist.periodicity == DAILY:
            total_daily += 1
            if _completed_on_day(now, last, checklist.time):
                completed_daily += 1
            if due:
                pending_today.append(checklist)

        if checklist.periodicity != LOOSE and not is_expired(checklist, now, zone):
            scheduled += 1

    executed = {record.checklist_id for record in history if record.user_id == user_id}

    return ProfessionalView(
        daily_progress=DailyProgress(
            total_daily_checklists=total_daily,
            completed_daily_checklists_today=completed_daily,
            pending_checklists_today=pending_today,
        ),
        overall_stats=OverallStats(
            total_completed_overall=len(executed),
            total_scheduled_overall=scheduled,
        ),
        pending_checklists=pending,
    )
