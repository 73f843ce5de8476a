import logging
from typing import Optional

from procurement.errors import Blocked, InvalidTransition, StaleState, ValidationError
from procurement.guardrails.permissions import Permission, permission_checker
from procurement.models.purchase_request import (
    BudgetException, ExceptionResolution, PurchaseRequest, TimelineEntry, TimelineEntryType,
)
from procurement.models.status import PRStatus, Role, is_buyer_owned
from procurement.models.user import ActingContext
from procurement.workflow.transitions import (
    check_expected_version, commit, load_pr, notices_for, require_text, transition,
)

logger = logging.getLogger(__name__)

class BudgetExceptionFlow:
    """
    Over-budget sub-flow. A quote above the requestor's estimate parks the PR
    in BUDGET_EXCEPTION until the branch manager approves, rejects or sends the
    buyer back to negotiate. While an exception is pending nothing else moves.
    """

    async def raise_exception(self, pr_id: str, ctx: ActingContext, quoted_amount: float,
                              requested_amount: Optional[float] = None, comment: Optional[str] = None,
                              expected_version: Optional[int] = None) -> PurchaseRequest:
        action = "raise budget exception"
        permission_checker.require(ctx, Permission.RAISE_BUDGET_EXCEPTION, action=action)
        pr = await load_pr(pr_id, action)
        check_expected_version(pr, expected_version, action)

        loaded_version = pr.version
        entry = self.open_exception(pr, ctx, quoted_amount, requested_amount, comment, action)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    def open_exception(self, pr: PurchaseRequest, ctx: ActingContext, quoted_amount: float,
                       requested_amount: Optional[float], comment: Optional[str], action: str) -> TimelineEntry:
        """
        Validate and apply an exception to the in-memory PR. Used directly by
        the buyer desk when a supplier pick comes in over budget.
        """
        if pr.pending_exception is not None:
            raise Blocked(
                f"{pr.pr_number} already has a pending budget exception",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        if not is_buyer_owned(pr.status) or pr.status == PRStatus.BUDGET_APPROVED:
            raise InvalidTransition(
                f"A budget exception cannot be raised on {pr.pr_number} in {pr.status.value}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        if ctx.role == Role.BUYER:
            permission_checker.check_buyer(ctx, pr, action)

        requested = requested_amount if requested_amount is not None else pr.total_amount
        if quoted_amount is None or quoted_amount <= 0 or requested is None or requested <= 0:
            raise ValidationError(
                "Quoted and requested amounts must be positive",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        if quoted_amount <= requested:
            raise ValidationError(
                f"Quote {quoted_amount} does not exceed the estimate {requested}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        exception = BudgetException(
            requested_amount=requested,
            quoted_amount=quoted_amount,
            raised_by=ctx.user_id,
            comment=comment,
        )
        pr.budget_exceptions.append(exception)
        note = comment or f"Quote {quoted_amount} over estimate {requested} (+{exception.over_percent}%)"
        logger.info(f"Budget exception {exception.exception_id} raised on {pr.pr_number}: {note}")
        return transition(pr, PRStatus.BUDGET_EXCEPTION, ctx, action, note,
                          entry_type=TimelineEntryType.BUDGET_EXCEPTION_RAISED)

    async def approve_exception(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                                expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._resolve(pr_id, ctx, ExceptionResolution.APPROVED, PRStatus.BUDGET_APPROVED,
                                   "approve budget exception", comment, expected_version)

    async def reject_exception(self, pr_id: str, ctx: ActingContext, comment: Optional[str],
                               expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._resolve(pr_id, ctx, ExceptionResolution.REJECTED, PRStatus.BUDGET_REJECTED,
                                   "reject budget exception", comment, expected_version,
                                   comment_required=True)

    async def request_negotiation(self, pr_id: str, ctx: ActingContext, comment: Optional[str],
                                  expected_version: Optional[int] = None) -> PurchaseRequest:
        """Send the buyer back to the supplier. The PR returns to QUOTATION_RECEIVED."""
        return await self._resolve(pr_id, ctx, ExceptionResolution.NEGOTIATION_REQUESTED,
                                   PRStatus.QUOTATION_RECEIVED, "request negotiation", comment,
                                   expected_version, comment_required=True)

    async def _resolve(self, pr_id: str, ctx: ActingContext, resolution: ExceptionResolution,
                       target: PRStatus, action: str, comment: Optional[str],
                       expected_version: Optional[int], comment_required: bool = False) -> PurchaseRequest:
        pr = await load_pr(pr_id, action)
        check_expected_version(pr, expected_version, action)
        permission_checker.require(ctx, Permission.DECIDE_BUDGET_EXCEPTION, pr, action)

        exception = pr.pending_exception
        if exception is None:
            if pr.budget_exception is not None:
                # Decision already taken, most likely a repeated click
                raise StaleState(
                    f"The budget exception on {pr.pr_number} was already {pr.budget_exception.resolution.value.lower()}",
                    current_status=pr.status, action=action, pr_id=pr.pr_id,
                )
            raise InvalidTransition(
                f"{pr.pr_number} has no pending budget exception",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        if ctx.role != Role.SYSTEM_ADMIN:
            permission_checker.check_owner(ctx, pr, action)
            permission_checker.check_approver_scope(ctx, pr, None, action)
        if comment_required:
            comment = require_text(comment, "comment", action, pr)

        loaded_version = pr.version
        entry = transition(pr, target, ctx, action, comment,
                           entry_type=TimelineEntryType.BUDGET_EXCEPTION_RESOLVED)
        exception.resolution = resolution
        exception.resolved_by = ctx.user_id
        exception.resolved_at = entry.timestamp
        if comment:
            exception.comment = comment
        logger.info(f"Budget exception {exception.exception_id} on {pr.pr_number}: {resolution.value}")
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

budget_exception_flow = BudgetExceptionFlow()
