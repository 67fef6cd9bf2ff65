# routers/recurring.py — Recurring problem dashboard & manual detection
from fastapi import APIRouter, Depends, Query

from auth import require_role, CurrentUser
from deps import get_detector
from models import UserRole
from recurring import RecurringProblemDetector
from serializers import ok

router = APIRouter(prefix="/api/v1/recurring-problems", tags=["Recurring Problems"])


@router.get("")
async def get_recurring_problems(
    window_months: int = Query(default=3, ge=1, le=24),
    detector: RecurringProblemDetector = Depends(get_detector),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    """Dashboard view. Read-only: never sends alerts."""
    return ok(await detector.get_recurring_problems_for_dashboard(window_months))


@router.post("/detect")
async def trigger_detection(
    window_months: int = Query(default=3, ge=1, le=24),
    detector: RecurringProblemDetector = Depends(get_detector),
    user: CurrentUser = Depends(require_role(UserRole.COMMITTEE)),
):
    groups = await detector.detect_recurring_problems(window_months, notify=True)
    deliveries = detector.last_deliveries
    return ok(
        {
            "detected_problems": len(groups),
            "problems": [group.to_dict() for group in groups],
            "alerts": {
                "sent": sum(1 for d in deliveries if d.success),
                "failed": sum(1 for d in deliveries if not d.success and not d.skipped),
            },
        },
        f"Recurring problem detection completed. Found {len(groups)} recurring problems.",
    )
