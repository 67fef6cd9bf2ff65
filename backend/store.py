# store.py — Record store & user directory over the async SQLAlchemy session
"""
The lifecycle coordinator and recurring detector talk to storage only
through the two protocols below. ``SqlRecordStore`` implements both on one
``AsyncSession``; status-guarded writes are single ``UPDATE ... WHERE id = ?
AND status IN (...)`` statements so a lost race shows up as zero rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain import AssignmentSnapshot, IssueSnapshot
from models import (
    Assignment, AssignmentStatus, Issue, IssueStatus, User, UserRole, utcnow,
)

LIVE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.PENDING,
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.IN_PROGRESS,
)


@dataclass(frozen=True)
class UserContact:
    id: str
    name: str
    email: str
    role: str
    phone_number: Optional[str] = None
    is_mobile_verified: bool = False
    specializations: List[str] = field(default_factory=list, compare=False)

    @classmethod
    def from_model(cls, user: User) -> "UserContact":
        return cls(
            id=user.id,
            name=user.name or "",
            email=user.email,
            role=user.role.value if isinstance(user.role, UserRole) else user.role,
            phone_number=user.phone_number,
            is_mobile_verified=bool(user.is_mobile_verified),
            specializations=list(user.specializations or []),
        )


# ============================================================
# PROTOCOLS
# ============================================================

class RecordStore(Protocol):
    async def get_issue(self, issue_id: str) -> Optional[IssueSnapshot]: ...

    async def get_assignment(self, assignment_id: str) -> Optional[AssignmentSnapshot]: ...

    async def live_assignment_for_issue(self, issue_id: str) -> Optional[AssignmentSnapshot]: ...

    async def find_issues_since(self, since: datetime) -> List[IssueSnapshot]: ...

    async def find_assignments_since(self, since: datetime) -> List[AssignmentSnapshot]: ...

    async def find_rated_issues(self, technician_id: Optional[str] = None) -> List[IssueSnapshot]: ...

    async def add_issue(self, **values: Any) -> IssueSnapshot: ...

    async def add_assignment(self, assignment: AssignmentSnapshot) -> None: ...

    async def conditional_update_assignment(
        self, assignment_id: str, expected: Iterable[AssignmentStatus], values: Dict[str, Any]
    ) -> bool: ...

    async def conditional_update_issue(
        self,
        issue_id: str,
        expected: Iterable[IssueStatus],
        values: Dict[str, Any],
        unset: Iterable[str] = (),
    ) -> bool: ...

    async def update_issue(self, issue_id: str, values: Dict[str, Any]) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class UserDirectory(Protocol):
    async def find_user(self, user_id: str) -> Optional[UserContact]: ...

    async def find_users_by_role(self, role: UserRole) -> List[UserContact]: ...


# ============================================================
# SQLALCHEMY IMPLEMENTATION
# ============================================================

class SqlRecordStore:
    """RecordStore + UserDirectory on a single AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_issue(self, issue_id: str) -> Optional[IssueSnapshot]:
        result = await self.db.execute(
            select(Issue).where(Issue.id == issue_id).execution_options(populate_existing=True)
        )
        issue = result.scalar_one_or_none()
        return IssueSnapshot.from_model(issue) if issue else None

    async def get_assignment(self, assignment_id: str) -> Optional[AssignmentSnapshot]:
        result = await self.db.execute(
            select(Assignment)
            .where(Assignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        return AssignmentSnapshot.from_model(assignment) if assignment else None

    async def live_assignment_for_issue(self, issue_id: str) -> Optional[AssignmentSnapshot]:
        result = await self.db.execute(
            select(Assignment)
            .where(
                Assignment.issue_id == issue_id,
                Assignment.status.in_(LIVE_ASSIGNMENT_STATUSES),
            )
            .order_by(Assignment.assigned_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        return AssignmentSnapshot.from_model(assignment) if assignment else None

    async def find_issues_since(self, since: datetime) -> List[IssueSnapshot]:
        result = await self.db.execute(
            select(Issue)
            .where(Issue.created_at >= since)
            .order_by(Issue.created_at.asc(), Issue.id.asc())
            .execution_options(populate_existing=True)
        )
        return [IssueSnapshot.from_model(issue) for issue in result.scalars().all()]

    async def find_assignments_since(self, since: datetime) -> List[AssignmentSnapshot]:
        result = await self.db.execute(
            select(Assignment)
            .where(Assignment.assigned_at >= since)
            .order_by(Assignment.assigned_at.asc(), Assignment.id.asc())
        )
        return [AssignmentSnapshot.from_model(a) for a in result.scalars().all()]

    async def find_rated_issues(self, technician_id: Optional[str] = None) -> List[IssueSnapshot]:
        """Rated issues, newest resolution first, optionally for one technician."""
        query = select(Issue).where(Issue.rating.is_not(None), Issue.assigned_to.is_not(None))
        if technician_id:
            query = query.where(Issue.assigned_to == technician_id)
        result = await self.db.execute(
            query.order_by(Issue.resolved_at.desc(), Issue.created_at.desc(), Issue.id.asc())
        )
        return [IssueSnapshot.from_model(issue) for issue in result.scalars().all()]

    async def add_issue(self, **values: Any) -> IssueSnapshot:
        issue = Issue(**values)
        self.db.add(issue)
        await self.db.flush()
        await self.db.refresh(issue)
        return IssueSnapshot.from_model(issue)

    async def add_assignment(self, assignment: AssignmentSnapshot) -> None:
        self.db.add(Assignment(
            id=assignment.id,
            issue_id=assignment.issue_id,
            status=assignment.status,
            assigned_to=assignment.assigned_to,
            assigned_by=assignment.assigned_by,
            assigned_at=assignment.assigned_at,
            estimated_completion_time=assignment.estimated_completion_time,
            assignment_notes=assignment.assignment_notes,
            payment_amount=assignment.payment_amount,
            materials_used=[m.to_dict() for m in assignment.materials_used],
        ))
        await self.db.flush()

    async def conditional_update_assignment(
        self, assignment_id: str, expected: Iterable[AssignmentStatus], values: Dict[str, Any]
    ) -> bool:
        stmt = (
            update(Assignment)
            .where(Assignment.id == assignment_id, Assignment.status.in_(list(expected)))
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def conditional_update_issue(
        self,
        issue_id: str,
        expected: Iterable[IssueStatus],
        values: Dict[str, Any],
        unset: Iterable[str] = (),
    ) -> bool:
        """Guarded issue write; ``unset`` names columns that must still be NULL."""
        stmt = (
            update(Issue)
            .where(Issue.id == issue_id, Issue.status.in_(list(expected)))
            .where(*[getattr(Issue, column).is_(None) for column in unset])
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update_issue(self, issue_id: str, values: Dict[str, Any]) -> None:
        await self.db.execute(
            update(Issue)
            .where(Issue.id == issue_id)
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # --- UserDirectory ---

    async def find_user(self, user_id: str) -> Optional[UserContact]:
        if not user_id:
            return None
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        return UserContact.from_model(user) if user else None

    async def find_users_by_role(self, role: UserRole) -> List[UserContact]:
        result = await self.db.execute(
            select(User)
            .where(User.role == role, User.is_active.is_(True))
            .order_by(User.created_at.asc(), User.id.asc())
        )
        return [UserContact.from_model(user) for user in result.scalars().all()]
