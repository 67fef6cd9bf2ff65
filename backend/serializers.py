# serializers.py — JSON shapes for the HTTP surface
from datetime import datetime
from typing import Any, Dict, Optional

from domain import AssignmentSnapshot, IssueSnapshot
from lifecycle import TransitionOutcome
from store import UserContact


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def issue_out(issue: IssueSnapshot) -> Dict[str, Any]:
    return {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "category": issue.category,
        "priority": issue.priority,
        "status": issue.status.value,
        "location": issue.location.to_dict(),
        "reported_by": issue.reported_by,
        "assigned_to": issue.assigned_to,
        "assigned_by": issue.assigned_by,
        "assigned_at": _iso(issue.assigned_at),
        "started_at": _iso(issue.started_at),
        "resolved_at": _iso(issue.resolved_at),
        "closed_at": _iso(issue.closed_at),
        "estimated_hours": issue.estimated_hours,
        "cost": issue.cost,
        "rating": issue.rating,
        "created_at": _iso(issue.created_at),
    }


def assignment_out(assignment: Optional[AssignmentSnapshot]) -> Optional[Dict[str, Any]]:
    if assignment is None:
        return None
    return {
        "id": assignment.id,
        "issue_id": assignment.issue_id,
        "status": assignment.status.value,
        "assigned_to": assignment.assigned_to,
        "assigned_by": assignment.assigned_by,
        "assigned_at": _iso(assignment.assigned_at),
        "accepted_at": _iso(assignment.accepted_at),
        "started_at": _iso(assignment.started_at),
        "actual_completion_time": _iso(assignment.actual_completion_time),
        "rejected_at": _iso(assignment.rejected_at),
        "estimated_completion_time": _iso(assignment.estimated_completion_time),
        "assignment_notes": assignment.assignment_notes,
        "payment_amount": assignment.payment_amount,
        "time_spent": assignment.time_spent,
        "materials_used": [m.to_dict() for m in assignment.materials_used],
        "completion_notes": assignment.completion_notes,
        "rejection_reason": assignment.rejection_reason,
    }


def user_out(user: UserContact) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "phone_number": user.phone_number,
        "specializations": user.specializations,
    }


def outcome_out(outcome: TransitionOutcome) -> Dict[str, Any]:
    return {
        "issue": issue_out(outcome.issue),
        "assignment": assignment_out(outcome.assignment),
        "events": [event.action for event in outcome.events],
        "notifications": {
            "sent": sum(1 for d in outcome.deliveries if d.success),
            "failed": [d.to_dict() for d in outcome.failed_deliveries],
        },
    }
