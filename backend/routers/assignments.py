# routers/assignments.py — Technician work orders
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from analytics import DEFAULT_PERIOD, AnalyticsService
from auth import get_current_user, require_role, CurrentUser
from database import get_db_session
from deps import get_analytics, get_coordinator, get_store
from domain import AssignmentSnapshot
from errors import AuthorizationError, NotFoundError
from lifecycle import LifecycleCoordinator
from models import Assignment, AssignmentStatus, UserRole
from serializers import assignment_out, ok, outcome_out, user_out
from store import SqlRecordStore

router = APIRouter(prefix="/api/v1/assignments", tags=["Assignments"])


# --- Schemas ---

class RejectRequest(BaseModel):
    reason: Any = None


class CompleteRequest(BaseModel):
    completion_notes: Optional[str] = Field(default=None, max_length=500)
    time_spent: Any = None
    materials_used: Any = None


class TimeUpdate(BaseModel):
    time_spent: Any = None


class AssignmentUpdate(BaseModel):
    assignment_notes: Optional[str] = Field(default=None, max_length=500)
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    payment_amount: Optional[float] = Field(default=None, ge=0)


async def _load_for(
    assignment_id: str, store: SqlRecordStore, user: CurrentUser
) -> AssignmentSnapshot:
    """Technicians may act on their own assignments; committee on all."""
    assignment = await store.get_assignment(assignment_id)
    if assignment is None:
        raise NotFoundError(code="RD-ASG-001", assignment_id=assignment_id)
    if user.is_committee:
        return assignment
    if user.role == UserRole.TECHNICIAN.value and assignment.assigned_to == user.id:
        return assignment
    raise AuthorizationError("Access denied to this assignment")


# ============================================================
# LIST / GET
# ============================================================

@router.get("")
async def list_assignments(
    status: Optional[AssignmentStatus] = Query(None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_role(UserRole.TECHNICIAN, UserRole.COMMITTEE)),
):
    query = select(Assignment)
    if user.role == UserRole.TECHNICIAN.value:
        query = query.where(Assignment.assigned_to == user.id)
    if status:
        query = query.where(Assignment.status == status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(Assignment.assigned_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    assignments = [assignment_out(AssignmentSnapshot.from_model(a)) for a in result.scalars().all()]
    return ok({
        "assignments": assignments,
        "pagination": {"page": page, "limit": limit, "total": total},
    })


@router.get("/technicians")
async def list_technicians(
    specialization: Optional[str] = Query(None),
    store: SqlRecordStore = Depends(get_store),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    technicians = await store.find_users_by_role(UserRole.TECHNICIAN)
    if specialization:
        technicians = [t for t in technicians if specialization in t.specializations]
    return ok({"technicians": [user_out(t) for t in technicians]})


@router.get("/technicians/ratings")
async def all_technician_ratings(
    analytics: AnalyticsService = Depends(get_analytics),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    return ok({"technicians": await analytics.all_technician_ratings()})


@router.get("/technicians/{technician_id}/ratings")
async def technician_ratings(
    technician_id: str,
    analytics: AnalyticsService = Depends(get_analytics),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    return ok(await analytics.technician_ratings(technician_id))


@router.get("/analytics")
async def assignment_analytics(
    period: str = Query(default=DEFAULT_PERIOD),
    technician_id: Optional[str] = Query(None),
    analytics: AnalyticsService = Depends(get_analytics),
    user: CurrentUser = Depends(require_role(UserRole.TECHNICIAN, UserRole.COMMITTEE)),
):
    """Committee sees everyone; a technician only ever sees their own numbers."""
    if user.role == UserRole.TECHNICIAN.value:
        if technician_id not in (None, user.id):
            raise AuthorizationError("Technicians can only view their own analytics")
        technician_id = user.id
    report = await analytics.assignment_analytics(period, technician_id)
    return ok({"analytics": report})


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: str,
    store: SqlRecordStore = Depends(get_store),
    user: CurrentUser = Depends(get_current_user),
):
    assignment = await _load_for(assignment_id, store, user)
    return ok({"assignment": assignment_out(assignment)})


# ============================================================
# TRANSITIONS
# ============================================================

@router.post("/{assignment_id}/accept")
async def accept_assignment(
    assignment_id: str,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.accept(assignment_id, user.id)
    return ok(outcome_out(outcome), "Assignment accepted successfully")


@router.post("/{assignment_id}/reject")
async def reject_assignment(
    assignment_id: str,
    data: RejectRequest,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.reject(assignment_id, user.id, data.reason)
    return ok(outcome_out(outcome), "Assignment rejected successfully")


@router.post("/{assignment_id}/start")
async def start_work(
    assignment_id: str,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.start_work(assignment_id, user.id)
    return ok(outcome_out(outcome), "Work started successfully")


@router.post("/{assignment_id}/complete")
async def complete_assignment(
    assignment_id: str,
    data: CompleteRequest,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.complete(
        assignment_id,
        user.id,
        completion_notes=data.completion_notes,
        time_spent=data.time_spent,
        materials_used=data.materials_used,
    )
    return ok(outcome_out(outcome), "Assignment completed successfully")


@router.put("/{assignment_id}/time")
async def update_time_spent(
    assignment_id: str,
    data: TimeUpdate,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.update_time_spent(assignment_id, user.id, data.time_spent)
    return ok({"assignment": assignment_out(outcome.assignment)}, "Time spent updated successfully")


@router.put("/{assignment_id}")
async def update_assignment(
    assignment_id: str,
    data: AssignmentUpdate,
    store: SqlRecordStore = Depends(get_store),
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
    user: CurrentUser = Depends(get_current_user),
):
    await _load_for(assignment_id, store, user)
    outcome = await coordinator.update_assignment(assignment_id, user.id, data.model_dump(exclude_unset=True))
    return ok({"assignment": assignment_out(outcome.assignment)}, "Assignment updated successfully")
