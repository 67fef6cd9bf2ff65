"""Tests for issue/assignment analytics and technician ratings."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from analytics import (
    AnalyticsService, assignment_analytics, count_by, issue_analytics,
    period_start, rating_summary,
)
from domain import AssignmentSnapshot, IssueSnapshot
from errors import NotFoundError, ValidationError
from models import Assignment, AssignmentStatus, IssueCategory, IssuePriority, IssueStatus
from store import SqlRecordStore
from tests.conftest import days_ago

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _issue(n, status=IssueStatus.NEW, category="water", priority="medium", **extra) -> IssueSnapshot:
    return IssueSnapshot(
        id=f"issue-{n}",
        title="Leak",
        category=category,
        priority=priority,
        status=status,
        reported_by="resident-1",
        created_at=NOW - timedelta(days=3),
        **extra,
    )


def _assignment(n, technician="tech-1", status=AssignmentStatus.PENDING, **extra) -> AssignmentSnapshot:
    return AssignmentSnapshot(
        id=f"asg-{n}",
        issue_id=f"issue-{n}",
        status=status,
        assigned_to=technician,
        assigned_by="committee-1",
        assigned_at=NOW - timedelta(days=2),
        **extra,
    )


# ============================================================
# PURE AGGREGATES
# ============================================================

def test_period_start():
    assert period_start("week", NOW) == NOW - timedelta(days=7)
    assert period_start("year", NOW) == NOW - timedelta(days=365)
    with pytest.raises(ValidationError):
        period_start("fortnight", NOW)


def test_count_by_orders_by_frequency_then_name():
    assert count_by(["water", "noise", "water", "cleaning"], "category") == [
        {"category": "water", "count": 2},
        {"category": "cleaning", "count": 1},
        {"category": "noise", "count": 1},
    ]


def test_issue_analytics():
    issues = [
        _issue(1, IssueStatus.RESOLVED, resolved_at=NOW - timedelta(days=3) + timedelta(hours=4)),
        _issue(2, IssueStatus.CLOSED, resolved_at=NOW - timedelta(days=3) + timedelta(hours=8)),
        _issue(3, IssueStatus.IN_PROGRESS, category="noise", priority="high"),
        _issue(4, IssueStatus.NEW, category="noise"),
    ]
    report = issue_analytics(issues, "month")
    assert report["total_issues"] == 4
    assert report["resolved_issues"] == 2
    assert report["pending_issues"] == 2
    assert report["resolution_rate"] == 50.0
    assert report["average_resolution_hours"] == 6.0
    assert report["category_stats"] == [{"category": "noise", "count": 2}, {"category": "water", "count": 2}]
    assert report["priority_stats"][0] == {"priority": "medium", "count": 3}


def test_issue_analytics_empty():
    report = issue_analytics([], "week")
    assert report["resolution_rate"] == 0.0
    assert report["average_resolution_hours"] is None
    assert report["status_stats"] == []


def test_assignment_analytics_with_technician_table():
    done_at = NOW - timedelta(days=1)
    assignments = [
        _assignment(1, status=AssignmentStatus.COMPLETED, actual_completion_time=done_at, time_spent=40),
        _assignment(2, status=AssignmentStatus.COMPLETED, actual_completion_time=done_at, time_spent=20),
        _assignment(3, status=AssignmentStatus.REJECTED),
        _assignment(4, technician="tech-2", status=AssignmentStatus.ACCEPTED),
    ]
    report = assignment_analytics(assignments, "month", {"tech-1": "Tariq", "tech-2": "Uma"})
    assert report["completed_assignments"] == 2
    assert report["pending_assignments"] == 1
    assert report["completion_rate"] == 50.0
    assert report["average_completion_hours"] == 24.0
    assert report["average_time_spent"] == 30.0
    assert report["technician_stats"] == [
        {"technician_id": "tech-1", "technician_name": "Tariq", "total_assignments": 3,
         "completed_assignments": 2, "average_time_spent": 30.0},
        {"technician_id": "tech-2", "technician_name": "Uma", "total_assignments": 1,
         "completed_assignments": 0, "average_time_spent": None},
    ]


def test_assignment_analytics_without_names_has_no_table():
    assert "technician_stats" not in assignment_analytics([_assignment(1)], "week")


def test_rating_summary():
    summary = rating_summary([5, 4, 4])
    assert summary["average_rating"] == 4.3
    assert summary["total_ratings"] == 3
    assert summary["distribution"] == {"1": 0, "2": 0, "3": 0, "4": 2, "5": 1}
    assert rating_summary([])["average_rating"] == 0.0


# ============================================================
# SERVICE
# ============================================================

async def _add_assignment(db_session, issue, technician, committee, status, assigned_at, **extra):
    assignment = Assignment(
        id=str(uuid.uuid4()),
        issue_id=issue.id,
        status=status,
        assigned_to=technician.id,
        assigned_by=committee.id,
        assigned_at=assigned_at,
        materials_used=[],
        **extra,
    )
    db_session.add(assignment)
    await db_session.commit()
    return assignment


@pytest.mark.asyncio
async def test_issue_analytics_windows_and_filters(db_session, make_issue):
    await make_issue(created_at=days_ago(2))
    await make_issue(created_at=days_ago(20), status=IssueStatus.RESOLVED, resolved_at=days_ago(19))
    await make_issue(created_at=days_ago(60))
    await make_issue(title="Loud music", category=IssueCategory.NOISE, created_at=days_ago(1), priority=IssuePriority.HIGH)
    store = SqlRecordStore(db_session)
    service = AnalyticsService(store, store)

    week = await service.issue_analytics("week")
    assert week["total_issues"] == 2

    month = await service.issue_analytics("month", category="water")
    assert month["total_issues"] == 2
    assert month["resolved_issues"] == 1
    assert month["average_resolution_hours"] == 24.0

    assert (await service.issue_analytics("quarter"))["total_issues"] == 4


@pytest.mark.asyncio
async def test_assignment_analytics_by_technician(db_session, make_issue, committee, technician, other_technician):
    first, second, third = await make_issue(), await make_issue(), await make_issue()
    await _add_assignment(
        db_session, first, technician, committee, AssignmentStatus.COMPLETED, days_ago(3),
        actual_completion_time=days_ago(2), time_spent=90,
    )
    await _add_assignment(db_session, second, technician, committee, AssignmentStatus.PENDING, days_ago(1))
    await _add_assignment(db_session, third, other_technician, committee, AssignmentStatus.REJECTED, days_ago(1))
    await _add_assignment(db_session, third, other_technician, committee, AssignmentStatus.COMPLETED, days_ago(40))
    store = SqlRecordStore(db_session)
    service = AnalyticsService(store, store)

    report = await service.assignment_analytics("month")
    assert report["total_assignments"] == 3
    assert report["completed_assignments"] == 1
    assert [row["technician_name"] for row in report["technician_stats"]] == ["Tariq Technician", "Uma Technician"]

    mine = await service.assignment_analytics("month", technician_id=technician.id)
    assert mine["total_assignments"] == 2
    assert mine["average_time_spent"] == 90.0
    assert "technician_stats" not in mine


@pytest.mark.asyncio
async def test_technician_ratings(db_session, make_issue, technician, other_technician, resident):
    for n, rating in enumerate([5, 3, 4]):
        await make_issue(
            title=f"Fix {n}", status=IssueStatus.CLOSED, assigned_to=technician.id,
            resolved_at=days_ago(10 - n), rating=rating,
        )
    await make_issue(status=IssueStatus.RESOLVED, assigned_to=other_technician.id, resolved_at=days_ago(1), rating=5)
    await make_issue(status=IssueStatus.RESOLVED, assigned_to=technician.id, resolved_at=days_ago(1))
    store = SqlRecordStore(db_session)
    service = AnalyticsService(store, store)

    report = await service.technician_ratings(technician.id, recent_limit=2)
    assert report["technician"]["name"] == "Tariq Technician"
    assert report["summary"]["average_rating"] == 4.0
    assert report["summary"]["total_ratings"] == 3
    assert [f["title"] for f in report["recent_feedback"]] == ["Fix 2", "Fix 1"]

    everyone = await service.all_technician_ratings()
    assert [row["technician"]["id"] for row in everyone] == [other_technician.id, technician.id]

    with pytest.raises(NotFoundError) as exc:
        await service.technician_ratings(resident.id)
    assert exc.value.code == "RD-USR-002"
