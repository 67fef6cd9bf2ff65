# routers/issues.py — Issue reporting, assignment and status
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from analytics import DEFAULT_PERIOD, AnalyticsService
from auth import get_current_user, require_role, CurrentUser
from database import get_db_session
from deps import get_analytics, get_coordinator, get_store
from domain import IssueSnapshot
from errors import AuthorizationError, NotFoundError
from lifecycle import LifecycleCoordinator
from models import Issue, IssueCategory, IssuePriority, IssueStatus, UserRole
from serializers import issue_out, ok, outcome_out
from store import SqlRecordStore

router = APIRouter(prefix="/api/v1/issues", tags=["Issues"])


# --- Schemas ---

class IssueCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)
    category: IssueCategory = IssueCategory.OTHER
    priority: IssuePriority = IssuePriority.MEDIUM
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    block_number: Optional[str] = Field(default=None, max_length=10)
    apartment_number: Optional[str] = Field(default=None, max_length=20)
    floor_number: Optional[str] = Field(default=None, max_length=5)
    area: Optional[str] = Field(default=None, max_length=100)
    cost: Optional[float] = Field(default=None, ge=0)


class IssueUpdate(BaseModel):
    """Descriptive fields only; status and people change through the lifecycle routes."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[IssueCategory] = None
    priority: Optional[IssuePriority] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    block_number: Optional[str] = Field(default=None, max_length=10)
    apartment_number: Optional[str] = Field(default=None, max_length=20)
    floor_number: Optional[str] = Field(default=None, max_length=5)
    area: Optional[str] = Field(default=None, max_length=100)
    cost: Optional[float] = Field(default=None, ge=0)
    estimated_hours: Optional[float] = Field(default=None, ge=0)


class AssignRequest(BaseModel):
    technician_id: str = Field(..., min_length=1)
    estimated_hours: Optional[Any] = None
    assignment_notes: Optional[str] = Field(default=None, max_length=500)
    payment_amount: Any = 0


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    notes: Optional[str] = Field(default=None, max_length=500)


class RatingRequest(BaseModel):
    rating: Any


def _can_read(issue: IssueSnapshot, user: CurrentUser) -> bool:
    if user.is_committee:
        return True
    return user.id in (issue.reported_by, issue.assigned_to)


# ============================================================
# REPORT
# ============================================================

@router.post("", status_code=201)
async def report_issue(
    data: IssueCreate,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    outcome = await coordinator.report_issue(user.id, **data.model_dump())
    return ok({"issue": issue_out(outcome.issue)}, "Issue reported successfully")


# ============================================================
# LIST / GET
# ============================================================

@router.get("")
async def list_issues(
    status: Optional[IssueStatus] = Query(None),
    category: Optional[IssueCategory] = Query(None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    query = select(Issue)
    if user.role == UserRole.RESIDENT.value:
        query = query.where(Issue.reported_by == user.id)
    elif user.role == UserRole.TECHNICIAN.value:
        query = query.where(Issue.assigned_to == user.id)
    if status:
        query = query.where(Issue.status == status)
    if category:
        query = query.where(Issue.category == category)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(Issue.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    issues = [issue_out(IssueSnapshot.from_model(i)) for i in result.scalars().all()]
    return ok({
        "issues": issues,
        "pagination": {"page": page, "limit": limit, "total": total},
    })


# ============================================================
# CATEGORIES / ANALYTICS
# ============================================================

@router.get("/categories")
async def list_categories(user: CurrentUser = Depends(get_current_user)):
    categories = [
        {"value": category.value, "label": category.value.replace("_", " ").title()}
        for category in IssueCategory
    ]
    return ok({"categories": categories})


@router.get("/analytics")
async def issue_analytics(
    period: str = Query(default=DEFAULT_PERIOD),
    category: Optional[IssueCategory] = Query(None),
    analytics: AnalyticsService = Depends(get_analytics),
    user: CurrentUser = Depends(require_role(UserRole.TECHNICIAN, UserRole.COMMITTEE)),
):
    report = await analytics.issue_analytics(period, category.value if category else None)
    return ok({"analytics": report})


# ============================================================
# SINGLE ISSUE
# ============================================================

@router.get("/{issue_id}")
async def get_issue(
    issue_id: str,
    store: SqlRecordStore = Depends(get_store),
    user: CurrentUser = Depends(get_current_user),
):
    issue = await store.get_issue(issue_id)
    if issue is None:
        raise NotFoundError(issue_id=issue_id)
    if not _can_read(issue, user):
        raise AuthorizationError("Access denied to this issue")
    live = await store.live_assignment_for_issue(issue_id)
    return ok({
        "issue": issue_out(issue),
        "active_assignment_id": live.id if live else None,
    })


@router.put("/{issue_id}")
async def update_issue(
    issue_id: str,
    data: IssueUpdate,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    outcome = await coordinator.update_issue(issue_id, user.id, data.model_dump(exclude_unset=True))
    return ok({"issue": issue_out(outcome.issue)}, "Issue updated successfully")


# ============================================================
# LIFECYCLE
# ============================================================

@router.post("/{issue_id}/assign")
async def assign_issue(
    issue_id: str,
    data: AssignRequest,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    outcome = await coordinator.create_assignment(
        issue_id,
        data.technician_id,
        user.id,
        estimate_hours=data.estimated_hours,
        notes=data.assignment_notes,
        payment_amount=data.payment_amount,
    )
    return ok(outcome_out(outcome), "Issue assigned successfully")


@router.put("/{issue_id}/status")
async def update_issue_status(
    issue_id: str,
    data: StatusUpdate,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    outcome = await coordinator.update_issue_status(issue_id, user.id, data.status, data.notes)
    return ok(outcome_out(outcome), "Issue status updated successfully")


@router.post("/{issue_id}/rating")
async def rate_issue(
    issue_id: str,
    data: RatingRequest,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    outcome = await coordinator.rate_issue(issue_id, user.id, data.rating)
    return ok({"issue": issue_out(outcome.issue)}, "Thank you for your feedback")
