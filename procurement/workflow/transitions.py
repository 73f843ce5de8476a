"""
Plumbing shared by every state-changing operation: load the aggregate, run the
guards, append a timeline entry, commit with a version check, then audit and
notify. Guards never mutate the PR; the only write is the final commit.
"""
import logging
from typing import List, NamedTuple, Optional, Sequence

from procurement.database import db
from procurement.errors import Blocked, NotFound, StaleState, ValidationError
from procurement.guardrails.audit_logger import audit_logger
from procurement.models.purchase_request import PurchaseRequest, TimelineEntry, TimelineEntryType
from procurement.models.status import (
    PRStatus, Role, PENDING_STATUS_FOR_ROLE, assert_transition, is_terminal_failure,
)
from procurement.models.user import ActingContext
from procurement.tools.notification_tool import notification_tool

logger = logging.getLogger(__name__)

class Notice(NamedTuple):
    event_type: str
    recipient_role: Role
    recipient_ids: Sequence[str] = ()
    comment: Optional[str] = None


async def load_pr(pr_id: str, action: str) -> PurchaseRequest:
    pr = await db.purchase_requests.get_by_pr_id(pr_id)
    if not pr:
        raise NotFound(f"PR {pr_id} not found", action=action, pr_id=pr_id)
    return pr

def require_text(value: Optional[str], field: str, action: str, pr: Optional[PurchaseRequest] = None) -> str:
    """Mandatory free text (comment, reason, note): non-empty after stripping."""
    if value is None or not value.strip():
        raise ValidationError(
            f"A {field} is required to {action}",
            current_status=pr.status if pr else None,
            action=action,
            pr_id=pr.pr_id if pr else None,
        )
    return value.strip()

def check_not_blocked(pr: PurchaseRequest, action: str):
    if pr.status == PRStatus.BUDGET_EXCEPTION or pr.pending_exception is not None:
        raise Blocked(
            f"{pr.pr_number} has a pending budget exception; only the branch manager's decision can move it",
            current_status=pr.status,
            action=action,
            pr_id=pr.pr_id,
        )

def check_expected_version(pr: PurchaseRequest, expected_version: Optional[int], action: str):
    if expected_version is not None and expected_version != pr.version:
        raise StaleState(
            f"{pr.pr_number} changed since you loaded it (version {expected_version}, now {pr.version})",
            current_status=pr.status,
            action=action,
            pr_id=pr.pr_id,
        )

def check_stage_not_passed(pr: PurchaseRequest, ctx: ActingContext, action: str):
    """
    An approver whose stage the PR already went through is replaying an old
    decision (double click, retry, second tab).
    """
    stage = PENDING_STATUS_FOR_ROLE.get(ctx.role)
    if stage and pr.status != stage and pr.visited(stage):
        raise StaleState(
            f"{pr.pr_number} already left {stage.value} and is now {pr.status.value}",
            current_status=pr.status,
            action=action,
            pr_id=pr.pr_id,
        )

def transition(pr: PurchaseRequest, target: PRStatus, ctx: ActingContext, action: str,
               comment: Optional[str] = None,
               entry_type: TimelineEntryType = TimelineEntryType.TRANSITION) -> TimelineEntry:
    """Check the registry edge, then move the in-memory aggregate."""
    assert_transition(pr.status, target, action)
    return pr.append_entry(entry_type, target, ctx.user_id, ctx.role, comment)

def record(pr: PurchaseRequest, ctx: ActingContext, entry_type: TimelineEntryType,
           comment: Optional[str] = None) -> TimelineEntry:
    """Timeline entry that keeps the current status (assignment, reassignment)."""
    return pr.append_entry(entry_type, pr.status, ctx.user_id, ctx.role, comment)

def notices_for(pr: PurchaseRequest, entry: TimelineEntry, manager_id: Optional[str] = None) -> List[Notice]:
    """Default recipients for the status a PR just entered."""
    status = entry.status
    requestor = [pr.requestor_id]
    if entry.entry_type != TimelineEntryType.TRANSITION and entry.entry_type not in (
        TimelineEntryType.BUDGET_EXCEPTION_RAISED, TimelineEntryType.BUDGET_EXCEPTION_RESOLVED
    ):
        return []
    if status == PRStatus.MANAGER_PENDING:
        return [Notice("PR_PENDING_APPROVAL", Role.MANAGER, [manager_id] if manager_id else [])]
    if status == PRStatus.BRANCH_MANAGER_PENDING:
        return [Notice("PR_PENDING_APPROVAL_BRANCH", Role.BRANCH_MANAGER)]
    if status == PRStatus.BUYER_LEADER_PENDING:
        return [Notice("PR_READY_FOR_ASSIGNMENT", Role.BUYER_LEADER),
                Notice("PR_STATUS_CHANGED", Role.REQUESTOR, requestor)]
    if status == PRStatus.ASSIGNED_TO_BUYER:
        return [Notice("PR_ASSIGNED", Role.BUYER, pr.buyer_ids())]
    if status in (PRStatus.MANAGER_RETURNED, PRStatus.BRANCH_MANAGER_RETURNED):
        return [Notice("PR_RETURNED", Role.REQUESTOR, requestor, entry.comment)]
    if status == PRStatus.NEED_MORE_INFO:
        return [Notice("PR_NEED_MORE_INFO", Role.REQUESTOR, requestor, entry.comment)]
    if status == PRStatus.BUDGET_EXCEPTION:
        return [Notice("PR_OVER_BUDGET_DECISION_REQUIRED", Role.BRANCH_MANAGER)]
    if status == PRStatus.BUDGET_APPROVED:
        return [Notice("PR_BUDGET_APPROVED", Role.BUYER, pr.buyer_ids())]
    if status == PRStatus.BUDGET_REJECTED:
        return [Notice("PR_BUDGET_REJECTED", Role.REQUESTOR, requestor, entry.comment),
                Notice("PR_BUDGET_REJECTED", Role.BUYER, pr.buyer_ids(), entry.comment)]
    if status == PRStatus.QUOTATION_RECEIVED and entry.from_status == PRStatus.BUDGET_EXCEPTION:
        return [Notice("PR_NEGOTIATION_REQUESTED", Role.BUYER, pr.buyer_ids(), entry.comment)]
    if is_terminal_failure(status):
        return [Notice("PR_REJECTED", Role.REQUESTOR, requestor, entry.comment)]
    if status == PRStatus.PAYMENT_DONE:
        return [Notice("PR_PAYMENT_DONE", Role.REQUESTOR, requestor)]
    return [Notice("PR_STATUS_CHANGED", Role.REQUESTOR, requestor)]

async def commit(pr: PurchaseRequest, loaded_version: int, ctx: ActingContext,
                 entries: List[TimelineEntry], notices: Optional[List[Notice]] = None) -> PurchaseRequest:
    """
    Persist the aggregate (status, timeline, items, sub-records in one write),
    then audit and notify.
    """
    saved = await db.purchase_requests.save(pr, loaded_version)
    await publish(saved, ctx, entries, notices)
    return saved

async def publish(pr: PurchaseRequest, ctx: ActingContext,
                  entries: List[TimelineEntry], notices: Optional[List[Notice]] = None):
    """
    After-commit side effects. Audit and notification failures are logged and
    do not undo the committed change.
    """
    for entry in entries:
        logger.info(
            f"{pr.pr_number}: {entry.entry_type.value} "
            f"{entry.from_status.value if entry.from_status else '-'} -> {entry.status.value} "
            f"by {ctx.user_id} ({ctx.role.value})"
        )
        try:
            await audit_logger.log_timeline_entry(pr, entry, ctx)
        except Exception as e:
            logger.error(f"Audit write failed for {pr.pr_id} entry {entry.entry_id}: {e}")

    for notice in notices or []:
        notification_tool.dispatch(
            notice.event_type, pr, notice.recipient_role,
            recipient_ids=list(notice.recipient_ids), comment=notice.comment,
        )

def buyer_problem(user, pr: PurchaseRequest) -> Optional[str]:
    """Why a user cannot take this PR as buyer, or None when they can."""
    if user is None:
        return "unknown buyer"
    if user.role != Role.BUYER:
        return f"{user.user_id} is not a buyer"
    if not user.active:
        return f"buyer {user.user_id} is inactive"
    if user.purchase_categories and pr.pr_type.value not in user.purchase_categories:
        return f"buyer {user.user_id} does not handle {pr.pr_type.value} requests"
    return None
