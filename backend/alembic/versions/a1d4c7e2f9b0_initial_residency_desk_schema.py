"""Initial Residency Desk schema (users, issues, assignments, audit, notifications)

Revision ID: a1d4c7e2f9b0
Revises:
Create Date: 2026-10-17T09:12:44.381207
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1d4c7e2f9b0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists Python enum members by name
USER_ROLE = sa.Enum('RESIDENT', 'COMMITTEE', 'TECHNICIAN', name='userrole')
ISSUE_CATEGORY = sa.Enum(
    'SANITATION', 'SECURITY', 'WATER', 'ELECTRICITY', 'ELEVATOR', 'NOISE', 'PARKING',
    'MAINTENANCE', 'CLEANING', 'PEST_CONTROL', 'LANDSCAPING', 'FIRE_SAFETY', 'OTHER',
    name='issuecategory',
)
ISSUE_PRIORITY = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='issuepriority')
ISSUE_STATUS = sa.Enum('NEW', 'ASSIGNED', 'IN_PROGRESS', 'RESOLVED', 'CLOSED', name='issuestatus')
ASSIGNMENT_STATUS = sa.Enum(
    'PENDING', 'ACCEPTED', 'REJECTED', 'IN_PROGRESS', 'COMPLETED', name='assignmentstatus',
)
NOTIFICATION_PRIORITY = sa.Enum('LOW', 'NORMAL', 'HIGH', 'URGENT', name='notificationpriority')


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False, server_default=''),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('is_mobile_verified', sa.Boolean(), nullable=True, server_default='false'),
        sa.Column('role', USER_ROLE, nullable=False, server_default='RESIDENT'),
        sa.Column('block_number', sa.String(), nullable=True),
        sa.Column('apartment_number', sa.String(), nullable=True),
        sa.Column('specializations', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    # --- issues ---
    op.create_table(
        'issues',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', ISSUE_CATEGORY, nullable=False, server_default='OTHER'),
        sa.Column('priority', ISSUE_PRIORITY, nullable=False, server_default='MEDIUM'),
        sa.Column('status', ISSUE_STATUS, nullable=False, server_default='NEW'),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('block_number', sa.String(length=10), nullable=True),
        sa.Column('apartment_number', sa.String(length=20), nullable=True),
        sa.Column('floor_number', sa.String(length=5), nullable=True),
        sa.Column('area', sa.String(length=100), nullable=True),
        sa.Column('reported_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_to', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('assigned_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_hours', sa.Float(), nullable=True),
        sa.Column('cost', sa.Float(), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_issues_category', 'issues', ['category'])
    op.create_index('ix_issues_status', 'issues', ['status'])
    op.create_index('ix_issues_reported_by', 'issues', ['reported_by'])
    op.create_index('ix_issues_assigned_to', 'issues', ['assigned_to'])
    op.create_index('ix_issues_created_at', 'issues', ['created_at'])
    op.create_index('idx_issue_status_priority', 'issues', ['status', 'priority'])
    op.create_index('idx_issue_category_created', 'issues', ['category', 'created_at'])

    # --- assignments ---
    op.create_table(
        'assignments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('issue_id', sa.String(), sa.ForeignKey('issues.id'), nullable=False),
        sa.Column('status', ASSIGNMENT_STATUS, nullable=False, server_default='PENDING'),
        sa.Column('assigned_to', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_by', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_completion_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_completion_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assignment_notes', sa.String(length=500), nullable=True),
        sa.Column('payment_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('time_spent', sa.Integer(), nullable=True),
        sa.Column('materials_used', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('completion_notes', sa.String(length=500), nullable=True),
        sa.Column('rejection_reason', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_assignments_issue_id', 'assignments', ['issue_id'])
    op.create_index('ix_assignments_status', 'assignments', ['status'])
    op.create_index('ix_assignments_assigned_to', 'assignments', ['assigned_to'])
    op.create_index('ix_assignments_assigned_by', 'assignments', ['assigned_by'])
    op.create_index('idx_assignment_tech_status', 'assignments', ['assigned_to', 'status'])
    op.create_index('idx_assignment_issue_status', 'assignments', ['issue_id', 'status'])

    # --- audit_logs (append-only) ---
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actor_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='SUCCESS'),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_request_id', 'audit_logs', ['request_id'])
    op.create_index('idx_audit_action_timestamp', 'audit_logs', ['action', 'timestamp'])
    op.create_index('idx_audit_actor_timestamp', 'audit_logs', ['actor_id', 'timestamp'])

    # --- notifications ---
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('template', sa.String(), nullable=True),
        sa.Column('priority', NOTIFICATION_PRIORITY, nullable=True, server_default='NORMAL'),
        sa.Column('channels', sa.JSON(), nullable=True, server_default='["in-app"]'),
        sa.Column('payload', sa.JSON(), nullable=True, server_default='{}'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_template', 'notifications', ['template'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('audit_logs')
    op.drop_table('assignments')
    op.drop_table('issues')
    op.drop_table('users')
    op.execute("DROP TYPE IF EXISTS notificationpriority")
    op.execute("DROP TYPE IF EXISTS assignmentstatus")
    op.execute("DROP TYPE IF EXISTS issuestatus")
    op.execute("DROP TYPE IF EXISTS issuepriority")
    op.execute("DROP TYPE IF EXISTS issuecategory")
    op.execute("DROP TYPE IF EXISTS userrole")
