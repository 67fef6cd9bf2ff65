"""Tests for the pure lifecycle transitions."""
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from domain import (
    AssignmentSnapshot, IssueSnapshot, Location, Material,
    accept_assignment, assign_issue, changed_values, close_issue,
    complete_assignment, edit_assignment, edit_issue, rate_issue,
    record_time_spent, reject_assignment,
    start_assignment,
)
from errors import AuthorizationError, ConflictError, InvalidStateError, ValidationError
from models import AssignmentStatus, IssueStatus

NOW = datetime(2026, 5, 10, 9, 30, tzinfo=timezone.utc)


def _issue(status=IssueStatus.NEW, **extra) -> IssueSnapshot:
    return IssueSnapshot(
        id="issue-1",
        title="Water leakage in basement",
        category="water",
        priority="high",
        status=status,
        reported_by="resident-1",
        created_at=NOW - timedelta(days=2),
        location=Location(block_number="A"),
        **extra,
    )


def _assignment(status=AssignmentStatus.PENDING, **extra) -> AssignmentSnapshot:
    return AssignmentSnapshot(
        id="asg-1",
        issue_id="issue-1",
        status=status,
        assigned_to="tech-1",
        assigned_by="committee-1",
        assigned_at=NOW - timedelta(hours=3),
        **extra,
    )


class TestAssign:
    def test_creates_pending_assignment(self):
        t = assign_issue(
            _issue(), assignment_id="asg-9", technician_id="tech-1",
            assigner_id="committee-1", now=NOW, estimated_hours=4, payment_amount=500,
        )
        assert t.issue.status == IssueStatus.ASSIGNED
        assert t.issue.assigned_to == "tech-1"
        assert t.assignment.status == AssignmentStatus.PENDING
        assert t.assignment.payment_amount == 500.0
        assert t.assignment.estimated_completion_time == NOW + timedelta(hours=4)
        assert t.expected_issue == (IssueStatus.NEW,)
        assert [e.action for e in t.events] == ["ISSUE_ASSIGNED"]

    def test_missing_payment_is_zero(self):
        t = assign_issue(
            _issue(), assignment_id="a", technician_id="t", assigner_id="c", now=NOW,
        )
        assert t.assignment.payment_amount == 0.0
        assert t.assignment.estimated_completion_time is None

    def test_negative_payment_rejected(self):
        with pytest.raises(ValidationError):
            assign_issue(
                _issue(), assignment_id="a", technician_id="t", assigner_id="c",
                now=NOW, payment_amount=-10,
            )

    @pytest.mark.parametrize("status", [IssueStatus.ASSIGNED, IssueStatus.RESOLVED, IssueStatus.CLOSED])
    def test_only_new_issues(self, status):
        with pytest.raises(InvalidStateError) as exc:
            assign_issue(
                _issue(status), assignment_id="a", technician_id="t", assigner_id="c", now=NOW,
            )
        assert exc.value.code == "RD-ISS-002"


class TestAcceptReject:
    def test_accept(self):
        t = accept_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-1", NOW)
        assert t.assignment.status == AssignmentStatus.ACCEPTED
        assert t.assignment.accepted_at == NOW
        assert t.issue.status == IssueStatus.ASSIGNED
        assert t.expected_assignment == (AssignmentStatus.PENDING,)

    def test_accept_twice_fails(self):
        with pytest.raises(InvalidStateError):
            accept_assignment(_assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED), "tech-1", NOW)

    def test_reject_returns_issue_to_pool(self):
        issue = _issue(IssueStatus.ASSIGNED, assigned_to="tech-1", assigned_by="committee-1", assigned_at=NOW)
        t = reject_assignment(_assignment(), issue, "tech-1", " Out of town ", NOW)
        assert t.assignment.status == AssignmentStatus.REJECTED
        assert t.assignment.rejection_reason == "Out of town"
        assert t.assignment.rejected_at == NOW
        assert t.issue.status == IssueStatus.NEW
        assert t.issue.assigned_to is None
        assert t.issue.assigned_at is None
        assert t.events[0].details == {"reason": "Out of town"}

    def test_reject_requires_reason(self):
        with pytest.raises(ValidationError):
            reject_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-1", "", NOW)

    def test_reject_after_accept_fails(self):
        with pytest.raises(InvalidStateError):
            reject_assignment(_assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED), "tech-1", "busy", NOW)


class TestStart:
    def test_start(self):
        t = start_assignment(_assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED), "tech-1", NOW)
        assert t.assignment.status == AssignmentStatus.IN_PROGRESS
        assert t.issue.status == IssueStatus.IN_PROGRESS
        assert t.issue.started_at == NOW

    def test_start_from_pending_fails(self):
        with pytest.raises(InvalidStateError):
            start_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-1", NOW)

    def test_only_assigned_technician(self):
        with pytest.raises(AuthorizationError):
            start_assignment(_assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED), "tech-2", NOW)

    def test_actor_check_can_be_waived(self):
        t = start_assignment(
            _assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED),
            "committee-1", NOW, enforce_actor=False,
        )
        assert t.assignment.status == AssignmentStatus.IN_PROGRESS


class TestComplete:
    @pytest.mark.parametrize(
        "status", [AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED, AssignmentStatus.IN_PROGRESS]
    )
    def test_complete_from_live_states(self, status):
        t = complete_assignment(
            _assignment(status), _issue(IssueStatus.IN_PROGRESS), "tech-1", NOW,
            completion_notes="Replaced valve", time_spent=45.0, materials_used="Valve",
        )
        assert t.assignment.status == AssignmentStatus.COMPLETED
        assert t.assignment.time_spent == 45
        assert t.assignment.materials_used == (Material(name="Valve"),)
        assert t.issue.status == IssueStatus.RESOLVED
        assert t.issue.resolved_at == NOW

    @pytest.mark.parametrize("status", [AssignmentStatus.COMPLETED, AssignmentStatus.REJECTED])
    def test_complete_terminal_fails(self, status):
        with pytest.raises(InvalidStateError):
            complete_assignment(_assignment(status), _issue(IssueStatus.RESOLVED), "tech-1", NOW)

    def test_keeps_previous_time_when_not_given(self):
        t = complete_assignment(
            _assignment(AssignmentStatus.IN_PROGRESS, time_spent=20), _issue(IssueStatus.IN_PROGRESS), "tech-1", NOW,
        )
        assert t.assignment.time_spent == 20

    def test_fractional_minutes_rejected(self):
        with pytest.raises(ValidationError):
            complete_assignment(
                _assignment(AssignmentStatus.IN_PROGRESS), _issue(IssueStatus.IN_PROGRESS), "tech-1", NOW,
                time_spent=12.5,
            )


def test_record_time_spent_not_on_rejected():
    with pytest.raises(InvalidStateError):
        record_time_spent(_assignment(AssignmentStatus.REJECTED), _issue(), "tech-1", 30)
    t = record_time_spent(_assignment(AssignmentStatus.COMPLETED), _issue(IssueStatus.RESOLVED), "tech-1", 30)
    assert t.assignment.time_spent == 30
    assert AssignmentStatus.REJECTED not in t.expected_assignment


def test_close_requires_resolved():
    with pytest.raises(InvalidStateError):
        close_issue(_issue(IssueStatus.IN_PROGRESS), "committee-1", NOW)
    t = close_issue(_issue(IssueStatus.RESOLVED), "committee-1", NOW)
    assert t.issue.status == IssueStatus.CLOSED
    assert t.issue.closed_at == NOW


class TestRate:
    def test_reporter_rates_resolved_issue(self):
        t = rate_issue(_issue(IssueStatus.RESOLVED), "resident-1", 4)
        assert t.issue.rating == 4

    def test_other_user_cannot_rate(self):
        with pytest.raises(AuthorizationError):
            rate_issue(_issue(IssueStatus.RESOLVED), "resident-2", 4)

    def test_open_issue_cannot_be_rated(self):
        with pytest.raises(InvalidStateError):
            rate_issue(_issue(IssueStatus.IN_PROGRESS), "resident-1", 4)

    def test_rating_only_once(self):
        with pytest.raises(ConflictError):
            rate_issue(_issue(IssueStatus.CLOSED, rating=5), "resident-1", 3)


def test_changed_values_only_diffs():
    before = _assignment(AssignmentStatus.IN_PROGRESS)
    after = replace(
        before, status=AssignmentStatus.COMPLETED, materials_used=(Material(name="Tape", cost=40),)
    )
    assert changed_values(before, after) == {
        "status": AssignmentStatus.COMPLETED,
        "materials_used": [{"name": "Tape", "quantity": 1, "unit": "piece", "cost": 40}],
    }


def test_changed_values_flattens_location():
    before = _issue()
    after = replace(before, location=Location(block_number="B", area="Clubhouse"))
    assert changed_values(before, after) == {"block_number": "B", "area": "Clubhouse"}


class TestEditIssue:
    def test_reporter_edits_new_issue(self):
        t = edit_issue(_issue(), "resident-1", "resident", {"title": " Pipe burst ", "block_number": "C"})
        assert t.issue.title == "Pipe burst"
        assert t.issue.location.block_number == "C"
        assert t.expected_issue == (IssueStatus.NEW,)
        assert t.events[0].action == "ISSUE_UPDATED"
        assert t.events[0].details == {"updated_fields": ["block_number", "title"]}

    def test_resident_cannot_edit_after_assignment(self):
        with pytest.raises(InvalidStateError):
            edit_issue(_issue(IssueStatus.ASSIGNED), "resident-1", "resident", {"title": "Later"})

    def test_other_resident_denied(self):
        with pytest.raises(AuthorizationError):
            edit_issue(_issue(), "resident-2", "resident", {"title": "Mine now"})

    def test_committee_edits_in_any_status_and_keeps_it(self):
        t = edit_issue(_issue(IssueStatus.IN_PROGRESS), "committee-1", "committee", {"priority": "urgent"})
        assert t.issue.priority == "urgent"
        assert t.issue.status == IssueStatus.IN_PROGRESS
        assert t.expected_issue == (IssueStatus.IN_PROGRESS,)

    def test_only_assigned_technician(self):
        issue = _issue(IssueStatus.ASSIGNED, assigned_to="tech-1")
        assert edit_issue(issue, "tech-1", "technician", {"cost": 120}).issue.cost == 120
        with pytest.raises(AuthorizationError):
            edit_issue(issue, "tech-2", "technician", {"cost": 120})

    @pytest.mark.parametrize("changes", [{"status": "closed"}, {"reported_by": "x"}, {"assigned_to": "tech-9"}, {}])
    def test_protected_or_empty_changes(self, changes):
        with pytest.raises(ValidationError):
            edit_issue(_issue(), "resident-1", "resident", changes)


class TestEditAssignment:
    def test_committee_updates_payment_and_estimate(self):
        t = edit_assignment(
            _assignment(AssignmentStatus.ACCEPTED), _issue(IssueStatus.ASSIGNED), "committee-1", True,
            {"payment_amount": 650, "estimated_hours": 2, "assignment_notes": "Use the side gate"},
        )
        assert t.assignment.payment_amount == 650.0
        assert t.assignment.estimated_completion_time == NOW - timedelta(hours=1)
        assert t.assignment.assignment_notes == "Use the side gate"
        assert t.expected_assignment == (AssignmentStatus.ACCEPTED,)
        assert t.expected_issue == ()
        assert t.events[0].action == "ASSIGNMENT_UPDATED"

    def test_technician_cannot_change_payment(self):
        with pytest.raises(AuthorizationError):
            edit_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-1", False, {"payment_amount": 1})

    def test_technician_updates_own_notes(self):
        t = edit_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-1", False, {"assignment_notes": "ok"})
        assert t.assignment.assignment_notes == "ok"
        with pytest.raises(AuthorizationError):
            edit_assignment(_assignment(), _issue(IssueStatus.ASSIGNED), "tech-2", False, {"assignment_notes": "x"})

    @pytest.mark.parametrize("status", [AssignmentStatus.COMPLETED, AssignmentStatus.REJECTED])
    def test_closed_assignments_are_frozen(self, status):
        with pytest.raises(InvalidStateError):
            edit_assignment(_assignment(status), _issue(IssueStatus.RESOLVED), "committee-1", True, {"assignment_notes": "x"})
