# models.py — Database models for Residency Desk
# - UUID string primary keys everywhere
# - 3-role system (resident, committee, technician)
# - Issue / Assignment pair mutated only through lifecycle.py
# - Append-only compliance audit log
# - In-app notifications

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in the core is UTC-aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    RESIDENT = "resident"
    COMMITTEE = "committee"
    TECHNICIAN = "technician"


class IssueCategory(str, PyEnum):
    SANITATION = "sanitation"
    SECURITY = "security"
    WATER = "water"
    ELECTRICITY = "electricity"
    ELEVATOR = "elevator"
    NOISE = "noise"
    PARKING = "parking"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"
    PEST_CONTROL = "pest_control"
    LANDSCAPING = "landscaping"
    FIRE_SAFETY = "fire_safety"
    OTHER = "other"


class IssuePriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IssueStatus(str, PyEnum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class AssignmentStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (AssignmentStatus.REJECTED, AssignmentStatus.COMPLETED)


class NotificationPriority(str, PyEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, default="")
    email = Column(String, unique=True, nullable=False, index=True)
    phone_number = Column(String, nullable=True)
    is_mobile_verified = Column(Boolean, default=False)
    role = Column(SQLEnum(UserRole), default=UserRole.RESIDENT, nullable=False, index=True)
    block_number = Column(String, nullable=True)
    apartment_number = Column(String, nullable=True)
    specializations = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    notifications = relationship("Notification", back_populates="user")

    __table_args__ = (
        Index("idx_user_role_active", "role", "is_active"),
    )


# ============================================================
# ISSUES
# ============================================================

class Issue(Base):
    __tablename__ = "issues"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(SQLEnum(IssueCategory), nullable=False, default=IssueCategory.OTHER, index=True)
    priority = Column(SQLEnum(IssuePriority), nullable=False, default=IssuePriority.MEDIUM)
    status = Column(SQLEnum(IssueStatus), nullable=False, default=IssueStatus.NEW, index=True)

    # Location: coordinates plus the structured society address
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    block_number = Column(String(10), nullable=True)
    apartment_number = Column(String(20), nullable=True)
    floor_number = Column(String(5), nullable=True)
    area = Column(String(100), nullable=True)

    reported_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assigned_to = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    assigned_by = Column(String, ForeignKey("users.id"), nullable=True)

    assigned_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    estimated_hours = Column(Float, nullable=True)
    cost = Column(Float, nullable=True)
    rating = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    assignments = relationship("Assignment", back_populates="issue", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_issue_status_priority", "status", "priority"),
        Index("idx_issue_category_created", "category", "created_at"),
    )


# ============================================================
# ASSIGNMENTS (one technician work order against one issue)
# ============================================================

class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(String, primary_key=True, default=new_uuid)
    issue_id = Column(String, ForeignKey("issues.id"), nullable=False, index=True)
    status = Column(SQLEnum(AssignmentStatus), nullable=False, default=AssignmentStatus.PENDING, index=True)

    assigned_to = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assigned_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    actual_completion_time = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    estimated_completion_time = Column(DateTime(timezone=True), nullable=True)

    assignment_notes = Column(String(500), nullable=True)
    payment_amount = Column(Float, nullable=False, default=0)
    time_spent = Column(Integer, nullable=True)  # minutes
    materials_used = Column(JSON, nullable=False, default=list)
    completion_notes = Column(String(500), nullable=True)
    rejection_reason = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    issue = relationship("Issue", back_populates="assignments")

    __table_args__ = (
        Index("idx_assignment_tech_status", "assigned_to", "status"),
        Index("idx_assignment_issue_status", "issue_id", "status"),
    )


# ============================================================
# AUDIT LOGS (append-only, never updated or deleted)
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
    actor_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="SUCCESS")
    request_id = Column(String, index=True)

    __table_args__ = (
        Index("idx_audit_action_timestamp", "action", "timestamp"),
        Index("idx_audit_actor_timestamp", "actor_id", "timestamp"),
    )


# ============================================================
# NOTIFICATIONS (in-app channel)
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    template = Column(String, nullable=True, index=True)
    priority = Column(SQLEnum(NotificationPriority), default=NotificationPriority.NORMAL)
    channels = Column(JSON, default=lambda: ["in-app"])
    payload = Column(JSON, default=dict)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    user = relationship("User", back_populates="notifications")
