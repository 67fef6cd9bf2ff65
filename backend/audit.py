# audit.py — Compliance audit recorder
# Only allow-listed actions reach the append-only audit_logs table;
# everything else is logged at debug level and dropped. Write failures are
# absorbed here: audit never breaks the primary operation.

import logging
import uuid
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from logging_system import current_request_id
from models import AuditLog, utcnow

logger = logging.getLogger("residency-desk.audit")

COMPLIANCE_EVENTS = frozenset({
    "ISSUE_CREATED",
    "ISSUE_UPDATED",
    "ISSUE_DELETED",
    "ISSUE_ASSIGNED",
    "ISSUE_STATUS_UPDATED",
    "ASSIGNMENT_ACCEPTED",
    "ASSIGNMENT_REJECTED",
    "ASSIGNMENT_STARTED",
    "ASSIGNMENT_COMPLETED",
    "ASSIGNMENT_UPDATED",
    "ASSIGNMENT_TIME_UPDATED",
    "FEEDBACK_SUBMITTED",
})

CONTRACT = "Contract performance (Article 6(1)(b))"
LEGITIMATE_INTEREST = "Legitimate interest (Article 6(1)(f))"
RECORDS_OF_PROCESSING = "Article 30 - Records of processing activities"
RIGHT_TO_ERASURE = "Article 17 - Right to erasure"

DATA_RETENTION = "7 years"

LEGAL_BASIS = {
    "ISSUE_CREATED": CONTRACT,
    "ISSUE_UPDATED": CONTRACT,
    "ISSUE_DELETED": LEGITIMATE_INTEREST,
    "ISSUE_ASSIGNED": CONTRACT,
    "ISSUE_STATUS_UPDATED": CONTRACT,
    "ASSIGNMENT_ACCEPTED": CONTRACT,
    "ASSIGNMENT_REJECTED": CONTRACT,
    "ASSIGNMENT_STARTED": CONTRACT,
    "ASSIGNMENT_COMPLETED": CONTRACT,
    "ASSIGNMENT_UPDATED": CONTRACT,
    "ASSIGNMENT_TIME_UPDATED": CONTRACT,
}

GDPR_ARTICLE = {
    "ISSUE_DELETED": RIGHT_TO_ERASURE,
}


def legal_basis(action: str) -> str:
    return LEGAL_BASIS.get(action, LEGITIMATE_INTEREST)


def gdpr_article(action: str) -> str:
    return GDPR_ARTICLE.get(action, RECORDS_OF_PROCESSING)


class AuditRecorder(Protocol):
    async def record(self, actor_id: Optional[str], action: str, details: Dict[str, Any]) -> Optional[str]: ...


class SqlAuditRecorder:
    """Writes allow-listed compliance events as AuditLog rows."""

    def __init__(self, db: AsyncSession, resource_type: str = "issue"):
        self.db = db
        self.resource_type = resource_type

    async def record(
        self,
        actor_id: Optional[str],
        action: str,
        details: Dict[str, Any],
        status: str = "SUCCESS",
    ) -> Optional[str]:
        if action not in COMPLIANCE_EVENTS:
            logger.debug(f"Skipping non-compliance audit event {action}")
            return None

        resource_id = details.get("assignment_id") or details.get("issue_id")
        resource_type = "assignment" if details.get("assignment_id") else self.resource_type
        entry = AuditLog(
            id=str(uuid.uuid4()),
            timestamp=utcnow(),
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details={
                **details,
                "compliance_event": True,
                "legal_basis": legal_basis(action),
                "gdpr_article": gdpr_article(action),
                "data_retention": DATA_RETENTION,
            },
            status=status,
            request_id=current_request_id(),
        )

        try:
            self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Audit write failed for {action} by {actor_id}: {e}")
            return None

        logger.info(f"Compliance audit log created: {action} [{entry.id}]")
        return entry.id
