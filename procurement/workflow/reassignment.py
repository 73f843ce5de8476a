import logging
from typing import Dict, Iterable, List, Optional

from procurement.config import settings
from procurement.database import db
from procurement.errors import Forbidden, InvalidReassignment
from procurement.guardrails.permissions import Permission, permission_checker
from procurement.models.purchase_request import PurchaseRequest, ReassignmentRecord, TimelineEntryType
from procurement.models.status import Role, is_buyer_owned, is_terminal
from procurement.models.user import ActingContext, User
from procurement.workflow.transitions import (
    Notice, buyer_problem, check_expected_version, commit, load_pr, record, require_text,
)

logger = logging.getLogger(__name__)

REASSIGNING_ROLES = (Role.BUYER_MANAGER, Role.BUYER_LEADER, Role.SYSTEM_ADMIN)

class ReassignmentCoordinator:

    async def reassign(self, pr_id: str, ctx: ActingContext, from_buyer_id: str, to_buyer_id: str,
                       reason: Optional[str], item_ids: Optional[List[str]] = None,
                       expected_version: Optional[int] = None) -> PurchaseRequest:
        """
        Move a PR, or some of its items, from one buyer to another.

        Whole-PR moves take the assignee and every line the old buyer held.
        Item moves only change the overall assignee once the new buyer holds
        every line. Status never changes; one REASSIGNED entry is appended.
        """
        action = "reassign"
        if ctx.role not in REASSIGNING_ROLES:
            raise Forbidden(f"{ctx.role.value} may not reassign purchase requests", action=action, pr_id=pr_id)
        permission_checker.require(ctx, Permission.REASSIGN_PR, action=action)
        reason = require_text(reason, "reason", action)

        pr = await load_pr(pr_id, action)
        check_expected_version(pr, expected_version, action)

        if is_terminal(pr.status) or not is_buyer_owned(pr.status):
            self._refuse(pr, f"{pr.pr_number} is not with a buyer ({pr.status.value})")
        if not from_buyer_id or not to_buyer_id:
            self._refuse(pr, "both the current and the new buyer are required")
        if from_buyer_id == to_buyer_id:
            self._refuse(pr, f"{pr.pr_number} is already with {to_buyer_id}")

        target = await db.users.get_by_user_id(to_buyer_id)
        problem = buyer_problem(target, pr)
        if problem:
            self._refuse(pr, problem)

        if item_ids:
            moving = list(dict.fromkeys(item_ids))
            for item_id in moving:
                item = pr.get_item(item_id)
                if item is None:
                    self._refuse(pr, f"item {item_id} is not on {pr.pr_number}")
                if self._holder(pr, item) != from_buyer_id:
                    self._refuse(pr, f"item {item_id} is not held by {from_buyer_id}")
        else:
            if pr.assignee_id != from_buyer_id:
                self._refuse(pr, f"{pr.pr_number} is assigned to {pr.assignee_id}, not {from_buyer_id}")
            moving = [item.item_id for item in pr.items if self._holder(pr, item) == from_buyer_id]

        loaded_version = pr.version
        for item_id in moving:
            pr.get_item(item_id).buyer_id = to_buyer_id
        if not item_ids or all(self._holder(pr, item) == to_buyer_id for item in pr.items):
            pr.assignee_id = to_buyer_id

        pr.reassignments.append(ReassignmentRecord(
            from_buyer_id=from_buyer_id,
            to_buyer_id=to_buyer_id,
            reason=reason,
            item_ids=moving if item_ids else None,
            actor_id=ctx.user_id,
        ))
        scope = f"items {moving}" if item_ids else "whole PR"
        entry = record(pr, ctx, TimelineEntryType.REASSIGNED, f"{from_buyer_id} -> {to_buyer_id} ({scope}): {reason}")

        notices = [
            Notice("PR_REASSIGNED", Role.BUYER, [to_buyer_id], reason),
            Notice("PR_STATUS_CHANGED", Role.BUYER, [from_buyer_id], reason),
        ]
        return await commit(pr, loaded_version, ctx, [entry], notices)

    async def buyer_workload(self) -> List[Dict]:
        """Open PRs per active buyer, read straight from the PR collection."""
        buyers = await db.users.list_by_role(Role.BUYER)
        prs = await db.purchase_requests.list_open()
        return workload_report(buyers, prs)

    def _holder(self, pr: PurchaseRequest, item) -> Optional[str]:
        # Lines without their own buyer follow the overall assignee
        return item.buyer_id or pr.assignee_id

    def _refuse(self, pr: PurchaseRequest, message: str):
        logger.warning(f"Reassignment refused on {pr.pr_id}: {message}")
        raise InvalidReassignment(message, current_status=pr.status, action="reassign", pr_id=pr.pr_id)


def workload_label(active_prs: int) -> str:
    if active_prs > settings.BUYER_OVERLOAD_WORKLOAD:
        return "Overload"
    if active_prs > settings.BUYER_HIGH_WORKLOAD:
        return "High"
    return "Normal"

def workload_report(buyers: Iterable[User], prs: Iterable[PurchaseRequest]) -> List[Dict]:
    counts: Dict[str, int] = {}
    for pr in prs:
        if is_terminal(pr.status):
            continue
        for buyer_id in pr.buyer_ids():
            counts[buyer_id] = counts.get(buyer_id, 0) + 1

    report = []
    for buyer in buyers:
        active = counts.get(buyer.user_id, 0)
        report.append({
            "buyer_id": buyer.user_id,
            "name": buyer.full_name or buyer.username,
            "active_prs": active,
            "workload": workload_label(active),
        })
    report.sort(key=lambda row: row["active_prs"], reverse=True)
    return report

reassignment_coordinator = ReassignmentCoordinator()
