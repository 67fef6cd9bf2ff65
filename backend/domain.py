# domain.py — Issue/Assignment value types and pure lifecycle transitions
# Snapshots are frozen; every transition takes snapshots and returns a
# Transition (new snapshots + events + the status precondition the store
# must re-check atomically). Nothing here touches the database or the network.

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from errors import AuthorizationError, ConflictError, InvalidStateError
from models import AssignmentStatus, IssueStatus, UserRole, as_utc
from validation import (
    LOCATION_FIELDS, validate_assignment_changes, validate_estimated_hours,
    validate_issue_changes, validate_payment_amount, validate_rating,
    validate_reason, validate_time_spent, normalize_materials,
)


# ============================================================
# VALUE TYPES
# ============================================================

@dataclass(frozen=True)
class Material:
    name: str
    quantity: float = 1
    unit: str = "piece"
    cost: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "quantity": self.quantity, "unit": self.unit, "cost": self.cost}


@dataclass(frozen=True)
class Location:
    block_number: Optional[str] = None
    apartment_number: Optional[str] = None
    floor_number: Optional[str] = None
    area: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def label(self) -> str:
        """Grouping label: block, then area, then "unknown"."""
        return self.block_number or self.area or "unknown"

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block_number": self.block_number,
            "apartment_number": self.apartment_number,
            "floor_number": self.floor_number,
            "area": self.area,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(frozen=True)
class IssueSnapshot:
    id: str
    title: str
    category: str
    priority: str
    status: IssueStatus
    reported_by: str
    created_at: datetime
    description: str = ""
    location: Location = field(default_factory=Location)
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    cost: Optional[float] = None
    rating: Optional[int] = None

    @classmethod
    def from_model(cls, issue) -> "IssueSnapshot":
        return cls(
            id=issue.id,
            title=issue.title,
            description=issue.description or "",
            category=_enum_value(issue.category),
            priority=_enum_value(issue.priority),
            status=IssueStatus(issue.status),
            reported_by=issue.reported_by,
            created_at=as_utc(issue.created_at),
            location=Location(
                block_number=issue.block_number,
                apartment_number=issue.apartment_number,
                floor_number=issue.floor_number,
                area=issue.area,
                latitude=issue.latitude,
                longitude=issue.longitude,
            ),
            assigned_to=issue.assigned_to,
            assigned_by=issue.assigned_by,
            assigned_at=as_utc(issue.assigned_at),
            started_at=as_utc(issue.started_at),
            resolved_at=as_utc(issue.resolved_at),
            closed_at=as_utc(issue.closed_at),
            estimated_hours=issue.estimated_hours,
            cost=issue.cost,
            rating=issue.rating,
        )


@dataclass(frozen=True)
class AssignmentSnapshot:
    id: str
    issue_id: str
    status: AssignmentStatus
    assigned_to: str
    assigned_by: str
    assigned_at: datetime
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    actual_completion_time: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    estimated_completion_time: Optional[datetime] = None
    assignment_notes: Optional[str] = None
    payment_amount: float = 0
    time_spent: Optional[int] = None
    materials_used: Tuple[Material, ...] = ()
    completion_notes: Optional[str] = None
    rejection_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_model(cls, assignment) -> "AssignmentSnapshot":
        return cls(
            id=assignment.id,
            issue_id=assignment.issue_id,
            status=AssignmentStatus(assignment.status),
            assigned_to=assignment.assigned_to,
            assigned_by=assignment.assigned_by,
            assigned_at=as_utc(assignment.assigned_at),
            accepted_at=as_utc(assignment.accepted_at),
            started_at=as_utc(assignment.started_at),
            actual_completion_time=as_utc(assignment.actual_completion_time),
            rejected_at=as_utc(assignment.rejected_at),
            estimated_completion_time=as_utc(assignment.estimated_completion_time),
            assignment_notes=assignment.assignment_notes,
            payment_amount=assignment.payment_amount or 0,
            time_spent=assignment.time_spent,
            materials_used=tuple(
                Material(
                    name=m.get("name", ""),
                    quantity=m.get("quantity", 1),
                    unit=m.get("unit", "piece"),
                    cost=m.get("cost", 0),
                )
                for m in (assignment.materials_used or [])
            ),
            completion_notes=assignment.completion_notes,
            rejection_reason=assignment.rejection_reason,
        )


@dataclass(frozen=True)
class TransitionEvent:
    action: str
    issue_id: str
    actor_id: str
    assignment_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict, compare=False)

    def audit_details(self) -> Dict[str, Any]:
        body = {
            "issue_id": self.issue_id,
            "assignment_id": self.assignment_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }
        body.update(self.details)
        return {k: v for k, v in body.items() if v is not None}


@dataclass(frozen=True)
class Transition:
    """Result of a pure transition, ready for the coordinator to persist."""
    issue: IssueSnapshot
    assignment: Optional[AssignmentSnapshot]
    events: Tuple[TransitionEvent, ...]
    expected_assignment: Tuple[AssignmentStatus, ...] = ()
    expected_issue: Tuple[IssueStatus, ...] = ()
    # Issue columns that must still be NULL when the write lands
    unset_issue: Tuple[str, ...] = ()


# ============================================================
# HELPERS
# ============================================================

def _enum_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def changed_values(before, after) -> Dict[str, Any]:
    """Column values that differ between two snapshots of the same record."""
    values: Dict[str, Any] = {}
    for f in fields(after):
        if f.name == "id":
            continue
        new = getattr(after, f.name)
        if f.name == "location":
            # Location fields are stored as flat issue columns
            values.update(changed_values(getattr(before, "location", Location()), new))
            continue
        if getattr(before, f.name, None) != new:
            if f.name == "materials_used":
                new = [m.to_dict() for m in new]
            values[f.name] = new
    return values


def _require_assignment_status(assignment: AssignmentSnapshot, *allowed: AssignmentStatus) -> None:
    if assignment.status not in allowed:
        raise InvalidStateError(
            f"Assignment is {assignment.status.value}; "
            f"expected {' or '.join(s.value for s in allowed)}",
            assignment_id=assignment.id,
            status=assignment.status.value,
        )


# ============================================================
# TRANSITIONS
# ============================================================

def assign_issue(
    issue: IssueSnapshot,
    *,
    assignment_id: str,
    technician_id: str,
    assigner_id: str,
    now: datetime,
    estimated_hours: Optional[float] = None,
    notes: Optional[str] = None,
    payment_amount: Any = None,
) -> Transition:
    """new -> assigned, creating a pending assignment for the technician."""
    amount = validate_payment_amount(payment_amount)
    estimated_hours = validate_estimated_hours(estimated_hours)
    if issue.status != IssueStatus.NEW:
        raise InvalidStateError(
            f"Issue is {issue.status.value}; only new issues can be assigned",
            code="RD-ISS-002",
            issue_id=issue.id,
        )

    assignment = AssignmentSnapshot(
        id=assignment_id,
        issue_id=issue.id,
        status=AssignmentStatus.PENDING,
        assigned_to=technician_id,
        assigned_by=assigner_id,
        assigned_at=now,
        estimated_completion_time=now + timedelta(hours=estimated_hours) if estimated_hours else None,
        assignment_notes=notes or None,
        payment_amount=amount,
    )
    new_issue = replace(
        issue,
        status=IssueStatus.ASSIGNED,
        assigned_to=technician_id,
        assigned_by=assigner_id,
        assigned_at=now,
        estimated_hours=estimated_hours if estimated_hours is not None else issue.estimated_hours,
    )
    event = TransitionEvent(
        action="ISSUE_ASSIGNED",
        issue_id=issue.id,
        assignment_id=assignment_id,
        actor_id=assigner_id,
        from_status=issue.status.value,
        to_status=IssueStatus.ASSIGNED.value,
        details={"technician_id": technician_id, "estimated_hours": estimated_hours},
    )
    return Transition(new_issue, assignment, (event,), expected_issue=(IssueStatus.NEW,))


def accept_assignment(
    assignment: AssignmentSnapshot, issue: IssueSnapshot, actor_id: str, now: datetime
) -> Transition:
    _require_assignment_status(assignment, AssignmentStatus.PENDING)
    new_assignment = replace(assignment, status=AssignmentStatus.ACCEPTED, accepted_at=now)
    new_issue = replace(issue, status=IssueStatus.ASSIGNED)
    event = TransitionEvent(
        action="ASSIGNMENT_ACCEPTED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        from_status=AssignmentStatus.PENDING.value,
        to_status=AssignmentStatus.ACCEPTED.value,
    )
    return Transition(new_issue, new_assignment, (event,), expected_assignment=(AssignmentStatus.PENDING,))


def reject_assignment(
    assignment: AssignmentSnapshot, issue: IssueSnapshot, actor_id: str, reason: Any, now: datetime
) -> Transition:
    reason = validate_reason(reason)
    _require_assignment_status(assignment, AssignmentStatus.PENDING)
    new_assignment = replace(
        assignment,
        status=AssignmentStatus.REJECTED,
        rejection_reason=reason,
        rejected_at=now,
    )
    # Back to the unassigned pool
    new_issue = replace(
        issue,
        status=IssueStatus.NEW,
        assigned_to=None,
        assigned_by=None,
        assigned_at=None,
    )
    event = TransitionEvent(
        action="ASSIGNMENT_REJECTED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        from_status=AssignmentStatus.PENDING.value,
        to_status=AssignmentStatus.REJECTED.value,
        details={"reason": reason},
    )
    return Transition(new_issue, new_assignment, (event,), expected_assignment=(AssignmentStatus.PENDING,))


def start_assignment(
    assignment: AssignmentSnapshot,
    issue: IssueSnapshot,
    actor_id: str,
    now: datetime,
    enforce_actor: bool = True,
) -> Transition:
    _require_assignment_status(assignment, AssignmentStatus.ACCEPTED)
    if enforce_actor and actor_id != assignment.assigned_to:
        raise AuthorizationError(
            "Only the assigned technician can start work",
            assignment_id=assignment.id,
        )
    new_assignment = replace(assignment, status=AssignmentStatus.IN_PROGRESS, started_at=now)
    new_issue = replace(issue, status=IssueStatus.IN_PROGRESS, started_at=now)
    event = TransitionEvent(
        action="ASSIGNMENT_STARTED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        from_status=AssignmentStatus.ACCEPTED.value,
        to_status=AssignmentStatus.IN_PROGRESS.value,
    )
    return Transition(new_issue, new_assignment, (event,), expected_assignment=(AssignmentStatus.ACCEPTED,))


_COMPLETABLE = (AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED, AssignmentStatus.IN_PROGRESS)


def complete_assignment(
    assignment: AssignmentSnapshot,
    issue: IssueSnapshot,
    actor_id: str,
    now: datetime,
    completion_notes: Optional[str] = None,
    time_spent: Any = None,
    materials_used: Any = None,
) -> Transition:
    if assignment.is_terminal:
        raise InvalidStateError(
            f"Assignment is already {assignment.status.value}",
            assignment_id=assignment.id,
            status=assignment.status.value,
        )
    minutes = validate_time_spent(time_spent, required=False)
    materials = tuple(Material(**m) for m in normalize_materials(materials_used))

    new_assignment = replace(
        assignment,
        status=AssignmentStatus.COMPLETED,
        actual_completion_time=now,
        completion_notes=completion_notes or None,
        time_spent=minutes if minutes is not None else assignment.time_spent,
        materials_used=materials,
    )
    new_issue = replace(issue, status=IssueStatus.RESOLVED, resolved_at=now)
    event = TransitionEvent(
        action="ASSIGNMENT_COMPLETED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        from_status=assignment.status.value,
        to_status=AssignmentStatus.COMPLETED.value,
        details={"time_spent": new_assignment.time_spent, "materials_count": len(materials)},
    )
    return Transition(new_issue, new_assignment, (event,), expected_assignment=_COMPLETABLE)


def record_time_spent(
    assignment: AssignmentSnapshot, issue: IssueSnapshot, actor_id: str, time_spent: Any
) -> Transition:
    minutes = validate_time_spent(time_spent, required=True)
    if assignment.status == AssignmentStatus.REJECTED:
        raise InvalidStateError("Cannot log time on a rejected assignment", assignment_id=assignment.id)
    new_assignment = replace(assignment, time_spent=minutes)
    event = TransitionEvent(
        action="ASSIGNMENT_TIME_UPDATED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        details={"time_spent": minutes},
    )
    allowed = tuple(s for s in AssignmentStatus if s != AssignmentStatus.REJECTED)
    return Transition(issue, new_assignment, (event,), expected_assignment=allowed)


def close_issue(issue: IssueSnapshot, actor_id: str, now: datetime) -> Transition:
    if issue.status != IssueStatus.RESOLVED:
        raise InvalidStateError(
            f"Issue is {issue.status.value}; only resolved issues can be closed",
            code="RD-ISS-002",
            issue_id=issue.id,
        )
    new_issue = replace(issue, status=IssueStatus.CLOSED, closed_at=now)
    event = TransitionEvent(
        action="ISSUE_STATUS_UPDATED",
        issue_id=issue.id,
        actor_id=actor_id,
        from_status=IssueStatus.RESOLVED.value,
        to_status=IssueStatus.CLOSED.value,
    )
    return Transition(new_issue, None, (event,), expected_issue=(IssueStatus.RESOLVED,))


def rate_issue(issue: IssueSnapshot, actor_id: str, rating: Any) -> Transition:
    value = validate_rating(rating)
    if issue.status not in (IssueStatus.RESOLVED, IssueStatus.CLOSED):
        raise InvalidStateError(
            "Only resolved or closed issues can be rated",
            code="RD-ISS-002",
            issue_id=issue.id,
        )
    if actor_id != issue.reported_by:
        raise AuthorizationError("Only the reporter can rate this issue", issue_id=issue.id)
    if issue.rating is not None:
        raise ConflictError("Issue has already been rated", code="RD-ISS-003", issue_id=issue.id)
    new_issue = replace(issue, rating=value)
    event = TransitionEvent(
        action="FEEDBACK_SUBMITTED",
        issue_id=issue.id,
        actor_id=actor_id,
        details={"rating": value},
    )
    return Transition(
        new_issue, None, (event,),
        expected_issue=(IssueStatus.RESOLVED, IssueStatus.CLOSED),
        unset_issue=("rating",),
    )


def edit_issue(issue: IssueSnapshot, actor_id: str, actor_role: str, changes: Dict[str, Any]) -> Transition:
    """Edit descriptive fields. Status, reporter and assignee never change here.

    Residents may edit only their own issues, and only while new. The
    technician on the job and the committee may edit in any status.
    """
    values = validate_issue_changes(changes)
    if actor_role == UserRole.RESIDENT.value:
        if actor_id != issue.reported_by:
            raise AuthorizationError("Only the reporter can edit this issue", issue_id=issue.id)
        if issue.status != IssueStatus.NEW:
            raise InvalidStateError(
                "Issues can only be edited while new",
                code="RD-ISS-002",
                issue_id=issue.id,
            )
    elif actor_role == UserRole.TECHNICIAN.value and actor_id != issue.assigned_to:
        raise AuthorizationError("Only the assigned technician can edit this issue", issue_id=issue.id)
    elif actor_role not in (UserRole.TECHNICIAN.value, UserRole.COMMITTEE.value):
        raise AuthorizationError("Access denied to this issue", issue_id=issue.id)

    location = {k: values.pop(k) for k in LOCATION_FIELDS if k in values}
    new_issue = replace(issue, location=replace(issue.location, **location), **values)
    event = TransitionEvent(
        action="ISSUE_UPDATED",
        issue_id=issue.id,
        actor_id=actor_id,
        details={"updated_fields": sorted(changes)},
    )
    # Pinned to the current status so an edit never writes back a stale one
    return Transition(new_issue, None, (event,), expected_issue=(issue.status,))


def edit_assignment(
    assignment: AssignmentSnapshot,
    issue: IssueSnapshot,
    actor_id: str,
    actor_is_committee: bool,
    changes: Dict[str, Any],
) -> Transition:
    """Edit notes, estimate or payment on an open assignment."""
    values = validate_assignment_changes(changes)
    if not actor_is_committee:
        if actor_id != assignment.assigned_to:
            raise AuthorizationError("Access denied to this assignment", assignment_id=assignment.id)
        if "payment_amount" in values:
            raise AuthorizationError(
                "Only committee members can change the payment amount", assignment_id=assignment.id
            )
    if assignment.is_terminal:
        raise InvalidStateError(
            f"Assignment is already {assignment.status.value}",
            assignment_id=assignment.id,
            status=assignment.status.value,
        )

    if "estimated_hours" in values:
        hours = values.pop("estimated_hours")
        values["estimated_completion_time"] = (
            assignment.assigned_at + timedelta(hours=hours) if hours else None
        )
    new_assignment = replace(assignment, **values)
    event = TransitionEvent(
        action="ASSIGNMENT_UPDATED",
        issue_id=issue.id,
        assignment_id=assignment.id,
        actor_id=actor_id,
        details={"updated_fields": sorted(changes)},
    )
    return Transition(issue, new_assignment, (event,), expected_assignment=(assignment.status,))


def status_override_event(issue: IssueSnapshot, actor_id: str, target: IssueStatus, notes: Optional[str]) -> TransitionEvent:
    return TransitionEvent(
        action="ISSUE_STATUS_UPDATED",
        issue_id=issue.id,
        actor_id=actor_id,
        from_status=issue.status.value,
        to_status=target.value,
        details={"notes": notes, "override": True},
    )
