import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set
from pydantic import BaseModel, Field

from procurement.config import settings
from procurement.models.status import Role

logger = logging.getLogger(__name__)

class NotificationEvent(BaseModel):
    type: str
    pr_id: str
    pr_number: Optional[str] = None
    recipient_role: Role
    recipient_ids: List[str] = []
    title: str
    message: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

# event type -> (title, message template)
NOTIFICATION_TEMPLATES: Dict[str, tuple] = {
    "PR_PENDING_APPROVAL": ("PR waiting for approval", "PR {pr_number} is waiting for your approval"),
    "PR_PENDING_APPROVAL_BRANCH": ("PR waiting for branch approval", "PR {pr_number} needs branch manager approval"),
    "PR_READY_FOR_ASSIGNMENT": ("PR ready for assignment", "PR {pr_number} is ready to be assigned to a buyer"),
    "PR_ASSIGNED": ("PR assigned", "You have been assigned PR {pr_number}"),
    "PR_REASSIGNED": ("PR reassigned", "PR {pr_number} has been reassigned to you"),
    "PR_REJECTED": ("PR rejected", "PR {pr_number} was rejected: {comment}"),
    "PR_RETURNED": ("PR returned", "PR {pr_number} was returned for changes: {comment}"),
    "PR_NEED_MORE_INFO": ("More information needed", "PR {pr_number} needs more information: {comment}"),
    "PR_STATUS_CHANGED": ("PR updated", "PR {pr_number} moved to {status}"),
    "PR_OVER_BUDGET_DECISION_REQUIRED": ("Over-budget decision required", "PR {pr_number} is over budget and needs your decision"),
    "PR_BUDGET_APPROVED": ("Over-budget approved", "Over-budget purchase on PR {pr_number} was approved"),
    "PR_BUDGET_REJECTED": ("Over-budget rejected", "Over-budget purchase on PR {pr_number} was rejected: {comment}"),
    "PR_NEGOTIATION_REQUESTED": ("Negotiation requested", "Renegotiate the price for PR {pr_number}: {comment}"),
    "PR_PAYMENT_DONE": ("Payment done", "PR {pr_number} has been paid"),
}

Sender = Callable[[NotificationEvent], Awaitable[None]]

class NotificationTool:
    """
    Fire-and-forget notification emission. Delivery transport lives outside the
    engine; senders are plugged in with register_sender(). dispatch() schedules
    delivery on the event loop and returns at once, so a failing or slow sender
    never reaches the caller.
    """
    def __init__(self):
        self.senders: List[Sender] = []
        # Scheduled deliveries, held until done
        self._pending: Set[asyncio.Task] = set()

    def register_sender(self, sender: Sender):
        self.senders.append(sender)

    def build_event(self, event_type: str, pr, recipient_role: Role,
                    recipient_ids: Optional[List[str]] = None, comment: Optional[str] = None) -> NotificationEvent:
        title, template = NOTIFICATION_TEMPLATES.get(
            event_type, ("PR update", "PR {pr_number} was updated")
        )
        message = template.format(
            pr_number=pr.pr_number,
            status=getattr(pr.status, "value", pr.status),
            comment=comment or "-",
        )
        return NotificationEvent(
            type=event_type,
            pr_id=pr.pr_id,
            pr_number=pr.pr_number,
            recipient_role=recipient_role,
            recipient_ids=recipient_ids or [],
            title=title,
            message=message,
        )

    async def notify(self, event_type: str, pr, recipient_role: Role,
                     recipient_ids: Optional[List[str]] = None, comment: Optional[str] = None) -> bool:
        """Emit one event. Returns False when any sender failed."""
        try:
            event = self.build_event(event_type, pr, recipient_role, recipient_ids, comment)
        except Exception as e:
            logger.error(f"Could not build notification {event_type} for {getattr(pr, 'pr_id', '?')}: {e}")
            return False

        return await self.deliver(event)

    def dispatch(self, event_type: str, pr, recipient_role: Role,
                 recipient_ids: Optional[List[str]] = None, comment: Optional[str] = None) -> Optional[asyncio.Task]:
        """Build the event now and deliver it in the background."""
        try:
            event = self.build_event(event_type, pr, recipient_role, recipient_ids, comment)
        except Exception as e:
            logger.error(f"Could not build notification {event_type} for {getattr(pr, 'pr_id', '?')}: {e}")
            return None

        task = asyncio.create_task(self.deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def deliver(self, event: NotificationEvent) -> bool:
        """Send one event through every sender, each bounded by the notification timeout."""
        logger.info(f"[NOTIFY] {event.type} -> {event.recipient_role.value} {event.recipient_ids or ''} ({event.pr_number})")
        delivered = True
        for sender in self.senders:
            try:
                await asyncio.wait_for(sender(event), timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
            except Exception as e:
                delivered = False
                logger.warning(f"Notification {event.type} for {event.pr_id} not delivered: {e!r}")
        return delivered

    async def drain(self, cancel: bool = False):
        """Wait for scheduled deliveries to finish, or cancel them (shutdown)."""
        pending = list(self._pending)
        if cancel:
            for task in pending:
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

notification_tool = NotificationTool()
