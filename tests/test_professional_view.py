import logging
from datetime import datetime

from due_dates import compute_professional_view
from schemas import Checklist, Execution

USER = "tech-1"
NOW = datetime(2026, 10, 14, 10, 0)  # Wednesday


def _checklist(cid, periodicity, **kw):
    return Checklist(id=cid, periodicity=periodicity, **kw)


def _run(cid, at, user_id=USER):
    return Execution(checklist_id=cid, user_id=user_id, completed_at=at)


def test_zero_state():
    view = compute_professional_view(USER, [], [], NOW)
    assert view.daily_progress.total_daily_checklists == 0
    assert view.daily_progress.completed_daily_checklists_today == 0
    assert view.daily_progress.pending_checklists_today == []
    assert view.pending_checklists == []
    assert view.overall_stats.total_completed_overall == 0
    assert view.overall_stats.total_scheduled_overall == 0
    assert view.daily_progress.percentage == 100
    assert view.overall_stats.percentage == 100


def test_mixed_checklists():
    checklists = [
        _checklist("daily-done", "daily", assigned_to=USER),
        _checklist("daily-loose-pool", "daily"),
        _checklist("weekly", "weekly", assigned_to=USER),
        _checklist("loose-done", "loose"),
        _checklist("inactive", "daily", assigned_to=USER, active=False),
        _checklist("someone-else", "daily", assigned_to="tech-2"),
        _checklist("expired", "monthly", assigned_to=USER, validity="2026-10-01T00:00:00"),
    ]
    history = [
        _run("daily-done", datetime(2026, 10, 14, 8, 0)),
        _run("loose-done", datetime(2026, 9, 1, 8, 0)),
        _run("weekly", datetime(2026, 10, 4, 8, 0)),  # previous week
        _run("daily-loose-pool", datetime(2026, 10, 14, 8, 0), user_id="tech-2"),
    ]

    view = compute_professional_view(USER, checklists, history, NOW)

    assert [c.id for c in view.pending_checklists] == ["daily-loose-pool", "weekly"]
    assert view.daily_progress.total_daily_checklists == 2
    assert view.daily_progress.completed_daily_checklists_today == 1
    assert [c.id for c in view.daily_progress.pending_checklists_today] == ["daily-loose-pool"]
    assert view.daily_progress.percentage == 50
    # daily-done, daily-loose-pool, weekly; loose and expired are not scheduled
    assert view.overall_stats.total_scheduled_overall == 3
    assert view.overall_stats.total_completed_overall == 3


def test_overall_completed_counts_distinct_checklists():
    checklists = [_checklist("d", "daily", assigned_to=USER)]
    history = [_run("d", datetime(2026, 10, day, 9, 0)) for day in range(9, 14)]
    view = compute_professional_view(USER, checklists, history, NOW)
    assert len(history) == 5
    assert view.overall_stats.total_completed_overall == 1


def test_completed_today_requires_run_after_threshold():
    checklists = [_checklist("d", "daily", assigned_to=USER, time="09:00")]
    history = [_run("d", datetime(2026, 10, 14, 8, 0))]
    view = compute_professional_view(USER, checklists, history, NOW)
    assert view.daily_progress.completed_daily_checklists_today == 0
    assert [c.id for c in view.pending_checklists] == ["d"]


def test_unknown_periodicity_is_pending_and_logged(caplog):
    checklists = [_checklist("odd", "every-other-tuesday", assigned_to=USER)]
    with caplog.at_level(logging.WARNING, logger="due_dates"):
        view = compute_professional_view(USER, checklists, [_run("odd", NOW)], NOW)
    assert [c.id for c in view.pending_checklists] == ["odd"]
    assert "unknown periodicity" in caplog.text


def test_serializes_with_camel_case_keys():
    view = compute_professional_view(USER, [_checklist("d", "daily")], [], NOW)
    data = view.model_dump(by_alias=True, mode="json")
    assert data["dailyProgress"]["totalDailyChecklists"] == 1
    assert data["dailyProgress"]["percentage"] == 0
    assert data["overallStats"]["totalScheduledOverall"] == 1
    assert data["pendingChecklists"][0]["id"] == "d"
