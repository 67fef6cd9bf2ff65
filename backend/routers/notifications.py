# routers/notifications.py — In-app notification inbox
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import NotFoundError
from models import Notification, NotificationPriority, utcnow
from serializers import ok

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


# --- Schemas ---

class NotificationOut(BaseModel):
    id: str
    title: str
    body: str
    template: Optional[str] = None
    priority: str
    payload: dict
    read_at: Optional[str] = None
    is_read: bool
    created_at: str


def _notif_out(n) -> dict:
    return NotificationOut(
        id=n.id, title=n.title, body=n.body,
        template=n.template,
        priority=n.priority.value if hasattr(n.priority, 'value') else str(n.priority),
        payload=n.payload or {},
        read_at=n.read_at.isoformat() if n.read_at else None,
        is_read=n.read_at is not None,
        created_at=n.created_at.isoformat(),
    ).model_dump()


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    priority: Optional[NotificationPriority] = Query(None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    query = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        query = query.where(Notification.read_at.is_(None))
    if priority:
        query = query.where(Notification.priority == priority)
    query = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return ok({"notifications": [_notif_out(n) for n in result.scalars().all()]})


# ============================================================
# COUNT
# ============================================================

@router.get("/count")
async def notification_count(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    unread = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read_at.is_(None),
        )
    )).scalar() or 0

    urgent = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read_at.is_(None),
            Notification.priority.in_([NotificationPriority.HIGH, NotificationPriority.URGENT]),
        )
    )).scalar() or 0

    return ok({"unread": unread, "urgent": urgent})


# ============================================================
# MARK READ
# ============================================================

@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return ok({"marked": result.rowcount})


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFoundError(code="RD-NTF-001", notification_id=notification_id)
    if notif.read_at is None:
        notif.read_at = utcnow()
        await db.commit()
        await db.refresh(notif)
    return ok({"notification": _notif_out(notif)})
