# lifecycle.py — Issue/Assignment lifecycle coordinator
"""
Single entry point for every change to an Issue or Assignment.

Each operation:
  1. loads snapshots from the record store,
  2. runs the pure transition from ``domain``,
  3. writes the pair in one transaction behind a status-guarded UPDATE
     (zero rows → rollback + ConflictError),
  4. after commit, fans events out to the audit recorder and the
     notification dispatcher. Fan-out failures are collected in the
     returned ``TransitionOutcome`` and never undo the transition.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from audit import AuditRecorder
from dispatch import DeliveryResult, NotificationDispatcher
from domain import (
    AssignmentSnapshot, IssueSnapshot, Transition, TransitionEvent,
    accept_assignment, assign_issue, changed_values, close_issue,
    complete_assignment, edit_assignment, edit_issue, rate_issue,
    record_time_spent, reject_assignment,
    start_assignment, status_override_event,
)
from errors import (
    AuthorizationError, ConflictError, InvalidStateError, NotFoundError, ValidationError,
)
from models import IssueCategory, IssuePriority, IssueStatus, UserRole, new_uuid, utcnow
from store import RecordStore, UserContact, UserDirectory
from telemetry import get_tracer, start_span

logger = logging.getLogger("residency-desk.lifecycle")

# (recipient field, template) per action. "reporter" is the issue's
# reporter, "assigner"/"technician" come from the assignment.
NOTIFICATION_PLAN: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "ISSUE_ASSIGNED": (("technician", "assignment_created"),),
    "ASSIGNMENT_ACCEPTED": (("assigner", "assignment_accepted"),),
    "ASSIGNMENT_REJECTED": (("assigner", "assignment_rejected"), ("reporter", "assignment_rejected")),
    "ASSIGNMENT_STARTED": (("assigner", "work_started"), ("reporter", "work_started")),
    "ASSIGNMENT_COMPLETED": (("reporter", "issue_resolved"), ("assigner", "assignment_completed")),
}

CLOSED_NOTIFICATION = (("reporter", "issue_closed"),)


@dataclass
class TransitionOutcome:
    issue: IssueSnapshot
    assignment: Optional[AssignmentSnapshot]
    events: List[TransitionEvent]
    deliveries: List[DeliveryResult] = field(default_factory=list)
    audit_ids: List[str] = field(default_factory=list)

    @property
    def failed_deliveries(self) -> List[DeliveryResult]:
        return [d for d in self.deliveries if not d.success and not d.skipped]


class LifecycleCoordinator:
    def __init__(
        self,
        store: RecordStore,
        users: UserDirectory,
        dispatcher: NotificationDispatcher,
        auditor: AuditRecorder,
        clock: Callable = utcnow,
        id_factory: Callable[[], str] = new_uuid,
    ):
        self.store = store
        self.users = users
        self.dispatcher = dispatcher
        self.auditor = auditor
        self.clock = clock
        self.id_factory = id_factory
        self.tracer = get_tracer("residency-desk.lifecycle")

    # ------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------

    async def _load_issue(self, issue_id: str) -> IssueSnapshot:
        issue = await self.store.get_issue(issue_id)
        if issue is None:
            raise NotFoundError(issue_id=issue_id)
        return issue

    async def _load_pair(self, assignment_id: str) -> Tuple[AssignmentSnapshot, IssueSnapshot]:
        assignment = await self.store.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError(code="RD-ASG-001", assignment_id=assignment_id)
        issue = await self.store.get_issue(assignment.issue_id)
        if issue is None:
            raise NotFoundError(issue_id=assignment.issue_id)
        return assignment, issue

    # ------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------

    async def _persist(
        self,
        transition: Transition,
        issue_before: IssueSnapshot,
        assignment_before: Optional[AssignmentSnapshot],
    ) -> None:
        """Write a transition atomically, or roll back and raise."""
        issue_values = changed_values(issue_before, transition.issue)
        try:
            if transition.assignment is not None and assignment_before is not None:
                values = changed_values(assignment_before, transition.assignment)
                ok = await self.store.conditional_update_assignment(
                    transition.assignment.id, transition.expected_assignment, values
                )
                if not ok:
                    raise ConflictError(assignment_id=transition.assignment.id)

            if transition.expected_issue:
                issue_values.setdefault("status", transition.issue.status)
                ok = await self.store.conditional_update_issue(
                    transition.issue.id, transition.expected_issue, issue_values,
                    unset=transition.unset_issue,
                )
                if not ok:
                    raise ConflictError(code="RD-ISS-003", issue_id=transition.issue.id)
            elif issue_values:
                # Assignment-guarded; an unchanged issue is not rewritten
                await self.store.update_issue(transition.issue.id, issue_values)

            if transition.assignment is not None and assignment_before is None:
                await self.store.add_assignment(transition.assignment)

            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

    # ------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------

    async def _audit(self, events: Sequence[TransitionEvent]) -> List[str]:
        ids = []
        for event in events:
            try:
                record_id = await self.auditor.record(event.actor_id, event.action, event.audit_details())
            except Exception as e:
                logger.warning(f"Audit of {event.action} on issue {event.issue_id} failed: {e}")
                continue
            if record_id:
                ids.append(record_id)
        return ids

    async def _notify(
        self,
        plan: Sequence[Tuple[str, str]],
        issue: IssueSnapshot,
        assignment: Optional[AssignmentSnapshot],
        extra: Optional[Dict[str, Any]] = None,
    ) -> List[DeliveryResult]:
        people: Dict[str, Optional[UserContact]] = {}

        async def lookup(user_id: Optional[str]) -> Optional[UserContact]:
            if not user_id:
                return None
            if user_id not in people:
                try:
                    people[user_id] = await self.users.find_user(user_id)
                except Exception as e:
                    logger.warning(f"Recipient lookup for {user_id} failed: {e}")
                    people[user_id] = None
            return people[user_id]

        ids = {
            "reporter": issue.reported_by,
            "assigner": assignment.assigned_by if assignment else issue.assigned_by,
            "technician": assignment.assigned_to if assignment else issue.assigned_to,
        }
        technician = await lookup(ids["technician"])
        assigner = await lookup(ids["assigner"])
        data = {
            "issue_id": issue.id,
            "assignment_id": assignment.id if assignment else None,
            "title": issue.title,
            "category": issue.category,
            "priority": issue.priority,
            "status": issue.status.value,
            "technician_name": technician.name if technician else "",
            "assigned_by_name": assigner.name if assigner else "",
        }
        data.update(extra or {})

        results: List[DeliveryResult] = []
        for role, template in plan:
            recipient = await lookup(ids[role])
            if recipient is None:
                logger.warning(f"No {role} to notify for issue {issue.id} ({template})")
                continue
            results.extend(await self._deliver(recipient, template, data))
        return results

    async def _deliver(self, recipient: UserContact, template: str, data: Dict[str, Any]) -> List[DeliveryResult]:
        """Send on every channel; one recipient's failure never stops the rest."""
        results = []
        for channel in self.dispatcher.channels:
            try:
                result = await self.dispatcher.send(channel, recipient, template, data)
            except Exception as e:
                logger.warning(f"Notification {template} to {recipient.id} via {channel} raised: {e}")
                result = DeliveryResult(recipient.id, channel, template, False, str(e)[:200])
            if not result.success and not result.skipped:
                logger.warning(
                    f"Notification {template} to {recipient.id} via {channel} failed: {result.error}"
                )
            results.append(result)
        return results

    async def _notify_committee(self, issue: IssueSnapshot, template: str) -> List[DeliveryResult]:
        try:
            committee = await self.users.find_users_by_role(UserRole.COMMITTEE)
            reporter = await self.users.find_user(issue.reported_by)
        except Exception as e:
            logger.warning(f"Committee lookup for issue {issue.id} failed: {e}")
            return []
        if not committee:
            logger.warning(f"No committee members to notify for issue {issue.id}")
            return []

        data = {
            "issue_id": issue.id,
            "title": issue.title,
            "category": issue.category,
            "priority": issue.priority,
            "status": issue.status.value,
            "reporter_name": reporter.name if reporter else "",
            "location_label": issue.location.label,
        }
        results: List[DeliveryResult] = []
        for member in committee:
            results.extend(await self._deliver(member, template, data))
        return results

    async def _finish(
        self,
        transition: Transition,
        plan: Sequence[Tuple[str, str]] = (),
        extra: Optional[Dict[str, Any]] = None,
    ) -> TransitionOutcome:
        outcome = TransitionOutcome(
            issue=transition.issue,
            assignment=transition.assignment,
            events=list(transition.events),
        )
        outcome.audit_ids = await self._audit(outcome.events)
        if plan:
            outcome.deliveries = await self._notify(plan, transition.issue, transition.assignment, extra)
        return outcome

    # ------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------

    async def report_issue(self, reporter_id: str, **fields: Any) -> TransitionOutcome:
        """File a new issue on behalf of a resident."""
        title = (fields.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required", field="title")
        try:
            fields["category"] = IssueCategory(fields.get("category") or IssueCategory.OTHER)
            fields["priority"] = IssuePriority(fields.get("priority") or IssuePriority.MEDIUM)
        except ValueError as e:
            raise ValidationError(str(e))
        cost = fields.get("cost")
        if cost is not None and (isinstance(cost, bool) or not isinstance(cost, (int, float)) or cost < 0):
            raise ValidationError("Cost must be a non-negative number", field="cost")

        fields.update(
            id=self.id_factory(),
            title=title,
            status=IssueStatus.NEW,
            reported_by=reporter_id,
            created_at=self.clock(),
        )
        try:
            issue = await self.store.add_issue(**fields)
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        event = TransitionEvent(
            action="ISSUE_CREATED",
            issue_id=issue.id,
            actor_id=reporter_id,
            to_status=IssueStatus.NEW.value,
            details={"category": issue.category, "priority": issue.priority},
        )
        logger.info(f"Issue created: {issue.id} by user: {reporter_id}")
        outcome = TransitionOutcome(issue=issue, assignment=None, events=[event])
        outcome.audit_ids = await self._audit(outcome.events)
        outcome.deliveries = await self._notify_committee(issue, "issue_reported")
        return outcome

    async def update_issue(self, issue_id: str, actor_id: str, changes: Dict[str, Any]) -> TransitionOutcome:
        """Edit an issue's descriptive fields (title, category, location, ...)."""
        actor = await self.users.find_user(actor_id)
        if actor is None:
            raise AuthorizationError("Unknown user")
        issue = await self._load_issue(issue_id)
        transition = edit_issue(issue, actor_id, actor.role, changes)
        await self._persist(transition, issue, None)
        logger.info(f"Issue updated: {issue_id} fields {sorted(changes)} by user: {actor_id}")
        return await self._finish(transition)

    async def update_assignment(
        self, assignment_id: str, actor_id: str, changes: Dict[str, Any]
    ) -> TransitionOutcome:
        """Edit notes, estimate or payment on an assignment that is still open."""
        actor = await self.users.find_user(actor_id)
        if actor is None:
            raise AuthorizationError("Unknown user")
        assignment, issue = await self._load_pair(assignment_id)
        transition = edit_assignment(
            assignment, issue, actor_id, actor.role == UserRole.COMMITTEE.value, changes
        )
        await self._persist(transition, issue, assignment)
        logger.info(f"Assignment updated: {assignment_id} fields {sorted(changes)} by user: {actor_id}")
        return await self._finish(transition)

    async def create_assignment(
        self,
        issue_id: str,
        technician_id: str,
        assigner_id: str,
        estimate_hours: Optional[float] = None,
        notes: Optional[str] = None,
        payment_amount: Any = 0,
    ) -> TransitionOutcome:
        with start_span(self.tracer, "lifecycle.create_assignment", issue_id=issue_id):
            issue = await self._load_issue(issue_id)
            technician = await self.users.find_user(technician_id)
            if technician is None or technician.role != UserRole.TECHNICIAN.value:
                raise NotFoundError(code="RD-USR-002", technician_id=technician_id)

            transition = assign_issue(
                issue,
                assignment_id=self.id_factory(),
                technician_id=technician_id,
                assigner_id=assigner_id,
                now=self.clock(),
                estimated_hours=estimate_hours,
                notes=notes,
                payment_amount=payment_amount,
            )
            await self._persist(transition, issue, None)
            logger.info(f"Issue assigned: {issue_id} to technician: {technician_id} by user: {assigner_id}")
            return await self._finish(transition, NOTIFICATION_PLAN["ISSUE_ASSIGNED"])

    async def accept(self, assignment_id: str, actor_id: str) -> TransitionOutcome:
        with start_span(self.tracer, "lifecycle.accept", assignment_id=assignment_id):
            assignment, issue = await self._load_pair(assignment_id)
            transition = accept_assignment(assignment, issue, actor_id, self.clock())
            await self._persist(transition, issue, assignment)
            logger.info(f"Assignment accepted: {assignment_id} by technician: {actor_id}")
            return await self._finish(transition, NOTIFICATION_PLAN["ASSIGNMENT_ACCEPTED"])

    async def reject(self, assignment_id: str, actor_id: str, reason: Any) -> TransitionOutcome:
        with start_span(self.tracer, "lifecycle.reject", assignment_id=assignment_id):
            assignment, issue = await self._load_pair(assignment_id)
            transition = reject_assignment(assignment, issue, actor_id, reason, self.clock())
            await self._persist(transition, issue, assignment)
            logger.info(f"Assignment rejected: {assignment_id} by technician: {actor_id}")
            return await self._finish(
                transition,
                NOTIFICATION_PLAN["ASSIGNMENT_REJECTED"],
                extra={"reason": transition.assignment.rejection_reason},
            )

    async def start_work(self, assignment_id: str, actor_id: str, enforce_actor: bool = True) -> TransitionOutcome:
        with start_span(self.tracer, "lifecycle.start_work", assignment_id=assignment_id):
            assignment, issue = await self._load_pair(assignment_id)
            transition = start_assignment(assignment, issue, actor_id, self.clock(), enforce_actor=enforce_actor)
            await self._persist(transition, issue, assignment)
            logger.info(f"Work started on assignment: {assignment_id} by user: {actor_id}")
            return await self._finish(transition, NOTIFICATION_PLAN["ASSIGNMENT_STARTED"])

    async def complete(
        self,
        assignment_id: str,
        actor_id: str,
        completion_notes: Optional[str] = None,
        time_spent: Any = None,
        materials_used: Any = None,
    ) -> TransitionOutcome:
        with start_span(self.tracer, "lifecycle.complete", assignment_id=assignment_id):
            assignment, issue = await self._load_pair(assignment_id)
            transition = complete_assignment(
                assignment, issue, actor_id, self.clock(),
                completion_notes=completion_notes,
                time_spent=time_spent,
                materials_used=materials_used,
            )
            await self._persist(transition, issue, assignment)
            logger.info(f"Assignment completed: {assignment_id} by technician: {actor_id}")
            return await self._finish(
                transition,
                NOTIFICATION_PLAN["ASSIGNMENT_COMPLETED"],
                extra={"completion_notes": transition.assignment.completion_notes or ""},
            )

    async def update_time_spent(self, assignment_id: str, actor_id: str, time_spent: Any) -> TransitionOutcome:
        assignment, issue = await self._load_pair(assignment_id)
        transition = record_time_spent(assignment, issue, actor_id, time_spent)
        await self._persist(transition, issue, assignment)
        logger.info(
            f"Assignment time updated: {assignment_id} to {transition.assignment.time_spent} minutes "
            f"by user: {actor_id}"
        )
        return await self._finish(transition)

    async def close_issue(self, issue_id: str, actor_id: str) -> TransitionOutcome:
        issue = await self._load_issue(issue_id)
        transition = close_issue(issue, actor_id, self.clock())
        await self._persist(transition, issue, None)
        logger.info(f"Issue closed: {issue_id} by user: {actor_id}")
        return await self._finish(transition, CLOSED_NOTIFICATION)

    async def rate_issue(self, issue_id: str, actor_id: str, rating: Any) -> TransitionOutcome:
        issue = await self._load_issue(issue_id)
        transition = rate_issue(issue, actor_id, rating)
        await self._persist(transition, issue, None)
        logger.info(f"Issue rated: {issue_id} rating {transition.issue.rating} by user: {actor_id}")
        return await self._finish(transition)

    async def update_issue_status(
        self, issue_id: str, actor_id: str, status: Any, notes: Optional[str] = None
    ) -> TransitionOutcome:
        """Committee status override, routed through the regular transitions."""
        try:
            target = IssueStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown issue status: {status}", field="status")

        actor = await self.users.find_user(actor_id)
        if actor is None or actor.role != UserRole.COMMITTEE.value:
            raise AuthorizationError("Only committee members can override issue status")

        issue = await self._load_issue(issue_id)

        if target == IssueStatus.CLOSED:
            return await self.close_issue(issue_id, actor_id)

        if target not in (IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED):
            raise InvalidStateError(
                f"Status cannot be set to {target.value} directly",
                code="RD-ISS-002",
                issue_id=issue_id,
            )

        live = await self.store.live_assignment_for_issue(issue_id)
        if live is None:
            raise InvalidStateError(
                f"Issue has no active assignment to move to {target.value}",
                code="RD-ISS-002",
                issue_id=issue_id,
            )

        if target == IssueStatus.IN_PROGRESS:
            outcome = await self.start_work(live.id, actor_id, enforce_actor=False)
        else:
            outcome = await self.complete(live.id, actor_id, completion_notes=notes)

        override = status_override_event(issue, actor_id, target, notes)
        outcome.events.append(override)
        outcome.audit_ids.extend(await self._audit([override]))
        logger.info(
            f"Issue status updated: {issue_id} from {issue.status.value} to {target.value} by user: {actor_id}"
        )
        return outcome
