# analytics.py — Issue, assignment and technician rating aggregates
"""
Read-only committee reporting over a trailing period.

Periods are "week" (7 days), "month" (30), "quarter" (90) and "year" (365).
Issues are windowed on ``created_at`` and assignments on ``assigned_at``.
Rating summaries are built from the rating on each resolved issue, credited
to the technician the issue is still assigned to.

The aggregate functions are pure; ``AnalyticsService`` only loads records
and hands them over.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

import config
from domain import AssignmentSnapshot, IssueSnapshot
from errors import NotFoundError, ValidationError
from models import AssignmentStatus, IssueStatus, UserRole, utcnow
from store import RecordStore, UserContact, UserDirectory
from telemetry import get_tracer, start_span

logger = logging.getLogger("residency-desk.analytics")

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}
DEFAULT_PERIOD = "month"

DONE_ISSUE_STATUSES = (IssueStatus.RESOLVED, IssueStatus.CLOSED)
OPEN_ISSUE_STATUSES = (IssueStatus.NEW, IssueStatus.ASSIGNED, IssueStatus.IN_PROGRESS)
OPEN_ASSIGNMENT_STATUSES = (
    AssignmentStatus.PENDING,
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.IN_PROGRESS,
)


# ============================================================
# PURE HELPERS
# ============================================================

def period_start(period: str, now: datetime) -> datetime:
    if period not in PERIOD_DAYS:
        raise ValidationError(
            f"Unknown period: {period}; expected one of {', '.join(PERIOD_DAYS)}", field="period"
        )
    return now - timedelta(days=PERIOD_DAYS[period])


def percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _mean(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 1) if values else None


def count_by(values: Iterable[str], key: str) -> List[Dict[str, Any]]:
    """[{key: value, "count": n}], most frequent first, ties by value."""
    counts = Counter(values)
    return [
        {key: value, "count": n}
        for value, n in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def issue_analytics(issues: List[IssueSnapshot], period: str) -> Dict[str, Any]:
    total = len(issues)
    done = [i for i in issues if i.status in DONE_ISSUE_STATUSES]
    hours = [
        (i.resolved_at - i.created_at).total_seconds() / 3600
        for i in done
        if i.resolved_at is not None and i.resolved_at > i.created_at
    ]
    return {
        "period": period,
        "total_issues": total,
        "resolved_issues": len(done),
        "pending_issues": sum(1 for i in issues if i.status in OPEN_ISSUE_STATUSES),
        "resolution_rate": percent(len(done), total),
        "average_resolution_hours": _mean(hours),
        "category_stats": count_by((i.category for i in issues), "category"),
        "priority_stats": count_by((i.priority for i in issues), "priority"),
        "status_stats": count_by((i.status.value for i in issues), "status"),
    }


def technician_stats(
    assignments: List[AssignmentSnapshot], names: Dict[str, str]
) -> List[Dict[str, Any]]:
    by_technician: Dict[str, List[AssignmentSnapshot]] = {}
    for assignment in assignments:
        by_technician.setdefault(assignment.assigned_to, []).append(assignment)

    rows = []
    for technician_id, own in by_technician.items():
        completed = [a for a in own if a.status == AssignmentStatus.COMPLETED]
        rows.append({
            "technician_id": technician_id,
            "technician_name": names.get(technician_id, ""),
            "total_assignments": len(own),
            "completed_assignments": len(completed),
            "average_time_spent": _mean([a.time_spent for a in completed if a.time_spent is not None]),
        })
    return sorted(rows, key=lambda r: (-r["completed_assignments"], -r["total_assignments"], r["technician_id"]))


def assignment_analytics(
    assignments: List[AssignmentSnapshot],
    period: str,
    names: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Totals for a set of assignments; ``names`` adds the per-technician table."""
    total = len(assignments)
    completed = [a for a in assignments if a.status == AssignmentStatus.COMPLETED]
    hours = [
        (a.actual_completion_time - a.assigned_at).total_seconds() / 3600
        for a in completed
        if a.actual_completion_time is not None and a.actual_completion_time > a.assigned_at
    ]
    body = {
        "period": period,
        "total_assignments": total,
        "completed_assignments": len(completed),
        "pending_assignments": sum(1 for a in assignments if a.status in OPEN_ASSIGNMENT_STATUSES),
        "completion_rate": percent(len(completed), total),
        "average_completion_hours": _mean(hours),
        "average_time_spent": _mean([a.time_spent for a in completed if a.time_spent is not None]),
        "status_stats": count_by((a.status.value for a in assignments), "status"),
    }
    if names is not None:
        body["technician_stats"] = technician_stats(assignments, names)
    return body


def rating_summary(ratings: Iterable[int]) -> Dict[str, Any]:
    ratings = list(ratings)
    distribution = Counter(ratings)
    return {
        "average_rating": round(sum(ratings) / len(ratings), 1) if ratings else 0.0,
        "total_ratings": len(ratings),
        "distribution": {str(stars): distribution.get(stars, 0) for stars in range(1, 6)},
    }


def recent_feedback(issues: List[IssueSnapshot], limit: int) -> List[Dict[str, Any]]:
    return [
        {
            "issue_id": issue.id,
            "title": issue.title,
            "category": issue.category,
            "rating": issue.rating,
            "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
        }
        for issue in issues[:limit]
    ]


def _technician_card(technician: UserContact) -> Dict[str, Any]:
    return {
        "id": technician.id,
        "name": technician.name,
        "email": technician.email,
        "specializations": technician.specializations,
    }


# ============================================================
# SERVICE
# ============================================================

class AnalyticsService:
    def __init__(self, store: RecordStore, users: UserDirectory, clock: Callable = utcnow):
        self.store = store
        self.users = users
        self.clock = clock
        self.tracer = get_tracer("residency-desk.analytics")

    async def issue_analytics(self, period: str = DEFAULT_PERIOD, category: Optional[str] = None) -> Dict[str, Any]:
        since = period_start(period, self.clock())
        with start_span(self.tracer, "analytics.issues", period=period, category=category):
            issues = await self.store.find_issues_since(since)
        if category:
            issues = [i for i in issues if i.category == category]
        logger.info(f"Issue analytics: {len(issues)} issues over the last {period}")
        return issue_analytics(issues, period)

    async def assignment_analytics(
        self, period: str = DEFAULT_PERIOD, technician_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Assignment totals; the per-technician table only when not filtered."""
        since = period_start(period, self.clock())
        with start_span(self.tracer, "analytics.assignments", period=period, technician_id=technician_id):
            assignments = await self.store.find_assignments_since(since)
            names = None
            if technician_id:
                assignments = [a for a in assignments if a.assigned_to == technician_id]
            else:
                names = await self._technician_names(a.assigned_to for a in assignments)
        logger.info(f"Assignment analytics: {len(assignments)} assignments over the last {period}")
        return assignment_analytics(assignments, period, names)

    async def technician_ratings(
        self, technician_id: str, recent_limit: int = config.RATINGS_RECENT_LIMIT
    ) -> Dict[str, Any]:
        technician = await self.users.find_user(technician_id)
        if technician is None or technician.role != UserRole.TECHNICIAN.value:
            raise NotFoundError(code="RD-USR-002", technician_id=technician_id)
        rated = await self.store.find_rated_issues(technician_id)
        return {
            "technician": _technician_card(technician),
            "summary": rating_summary(i.rating for i in rated),
            "recent_feedback": recent_feedback(rated, recent_limit),
        }

    async def all_technician_ratings(self) -> List[Dict[str, Any]]:
        """Every active technician's rating summary, best rated first."""
        technicians = await self.users.find_users_by_role(UserRole.TECHNICIAN)
        ratings: Dict[str, List[int]] = {}
        for issue in await self.store.find_rated_issues():
            ratings.setdefault(issue.assigned_to, []).append(issue.rating)

        rows = [
            {"technician": _technician_card(t), "summary": rating_summary(ratings.get(t.id, []))}
            for t in technicians
        ]
        return sorted(
            rows,
            key=lambda r: (-r["summary"]["average_rating"], -r["summary"]["total_ratings"], r["technician"]["name"]),
        )

    async def _technician_names(self, ids: Iterable[str]) -> Dict[str, str]:
        names = {t.id: t.name for t in await self.users.find_users_by_role(UserRole.TECHNICIAN)}
        for technician_id in set(ids) - set(names):
            # Deactivated technicians still own their past assignments
            user = await self.users.find_user(technician_id)
            names[technician_id] = user.name if user else ""
        return names
