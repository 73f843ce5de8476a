import logging
import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any, Union

from procurement.database import db
from procurement.models.audit import AuditEvent, Action, Actor, ActionType
from procurement.models.purchase_request import PurchaseRequest, TimelineEntry, TimelineEntryType
from procurement.models.user import ActingContext

logger = logging.getLogger(__name__)

ENTRY_ACTION_TYPES = {
    TimelineEntryType.CREATED: ActionType.USER_ACTION,
    TimelineEntryType.TRANSITION: ActionType.STATE_CHANGE,
    TimelineEntryType.ASSIGNED: ActionType.ASSIGNMENT,
    TimelineEntryType.REASSIGNED: ActionType.REASSIGNMENT,
    TimelineEntryType.BUDGET_EXCEPTION_RAISED: ActionType.BUDGET_EXCEPTION,
    TimelineEntryType.BUDGET_EXCEPTION_RESOLVED: ActionType.BUDGET_EXCEPTION,
}

class AuditLogger:
    """
    Secondary audit trail. The PR timeline is the record of truth; this log
    adds who/what/when across PRs for reporting. Written after commit.
    """

    async def log_event(self,
                        pr_id: Optional[str],
                        event_type: Union[str, ActionType],
                        actor: Union[Dict[str, Any], Actor],
                        action_details: str,
                        metadata: Optional[Dict[str, Any]] = None,
                        pr_number: Optional[str] = None,
                        from_status: Optional[str] = None,
                        to_status: Optional[str] = None):
        """
        Generic logging point.
        """
        metadata = metadata or {}
        actor_obj = Actor(**actor) if isinstance(actor, dict) else actor

        if isinstance(event_type, str):
            try:
                e_type = ActionType(event_type)
            except ValueError:
                e_type = ActionType.USER_ACTION
        else:
            e_type = event_type

        event = AuditEvent(
            event_id=f"EVT-{uuid.uuid4().hex}",
            pr_id=pr_id,
            pr_number=pr_number,
            company_id=metadata.get("company_id"),
            timestamp=datetime.utcnow(),
            actor=actor_obj,
            action=Action(
                action_type=e_type,
                performed_by=actor_obj,
                details=action_details,
                timestamp=datetime.utcnow(),
                metadata=metadata
            ),
            from_status=from_status,
            to_status=to_status,
        )

        if db.audit:
            await db.audit.create(event)
        else:
            logger.warning("Audit DB not available, skipping log save.")

        logger.info(f"AUDIT [{e_type.value}]: {action_details} ({pr_number or pr_id})")
        return event

    async def log_timeline_entry(self, pr: PurchaseRequest, entry: TimelineEntry, ctx: ActingContext):
        """Mirror a committed timeline entry into the audit log."""
        from_status = entry.from_status.value if entry.from_status else None
        details = f"{entry.entry_type.value}: {from_status or '-'} -> {entry.status.value}"
        if entry.comment:
            details += f" ({entry.comment})"
        return await self.log_event(
            pr_id=pr.pr_id,
            event_type=ENTRY_ACTION_TYPES.get(entry.entry_type, ActionType.USER_ACTION),
            actor=Actor(id=ctx.user_id, role=ctx.role.value, type="USER"),
            action_details=details,
            metadata={"company_id": pr.company_id, "entry_id": entry.entry_id, "version": pr.version},
            pr_number=pr.pr_number,
            from_status=from_status,
            to_status=entry.status.value,
        )

    async def get_audit_trail(self, pr_id: str) -> List[AuditEvent]:
        if not db.audit:
            return []
        return await db.audit.get_for_pr(pr_id)

audit_logger = AuditLogger()
