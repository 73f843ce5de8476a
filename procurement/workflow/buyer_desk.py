import logging
from typing import Optional

from procurement.errors import InvalidTransition, ValidationError
from procurement.guardrails.permissions import Permission, permission_checker
from procurement.models.purchase_request import ExceptionResolution, PurchaseRequest
from procurement.models.status import PRStatus, Role, is_terminal
from procurement.models.user import ActingContext
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.transitions import (
    check_expected_version, check_not_blocked, commit, load_pr, notices_for, require_text, transition,
)

logger = logging.getLogger(__name__)

class BuyerDesk:
    """Purchasing steps taken by the buyer holding a PR, from RFQ to payment."""

    async def mark_ready_for_rfq(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                                 expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._advance(pr_id, ctx, PRStatus.READY_FOR_RFQ, "mark ready for RFQ",
                                   comment, expected_version)

    async def start_rfq(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                        expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._advance(pr_id, ctx, PRStatus.RFQ_IN_PROGRESS, "start RFQ",
                                   comment, expected_version)

    async def record_quotation(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                               expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._advance(pr_id, ctx, PRStatus.QUOTATION_RECEIVED, "record quotation",
                                   comment, expected_version)

    async def request_more_info(self, pr_id: str, ctx: ActingContext, comment: Optional[str],
                                expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._advance(pr_id, ctx, PRStatus.NEED_MORE_INFO, "request more info",
                                   comment, expected_version, comment_required=True)

    async def mark_paid(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                        expected_version: Optional[int] = None) -> PurchaseRequest:
        return await self._advance(pr_id, ctx, PRStatus.PAYMENT_DONE, "mark paid",
                                   comment, expected_version)

    async def select_supplier(self, pr_id: str, ctx: ActingContext, quoted_amount: float,
                              supplier_name: str, comment: Optional[str] = None,
                              expected_version: Optional[int] = None) -> PurchaseRequest:
        """
        Record the chosen supplier. A quote above the PR total opens a budget
        exception instead; after an approved exception the quote may go up to
        the approved amount.
        """
        action = "select supplier"
        pr = await self._load_for_buyer(pr_id, ctx, action, expected_version)
        supplier_name = require_text(supplier_name, "supplier name", action, pr)
        if quoted_amount is None or quoted_amount <= 0:
            raise ValidationError(
                "Quoted amount must be positive",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        loaded_version = pr.version
        ceiling = pr.total_amount
        last = pr.budget_exception
        if pr.status == PRStatus.BUDGET_APPROVED and last and last.resolution == ExceptionResolution.APPROVED:
            ceiling = last.quoted_amount
            if quoted_amount > ceiling:
                raise ValidationError(
                    f"Quote {quoted_amount} exceeds the approved amount {ceiling}",
                    current_status=pr.status, action=action, pr_id=pr.pr_id,
                )

        pr.supplier_name = supplier_name
        pr.purchase_amount = quoted_amount
        if quoted_amount > ceiling:
            logger.info(f"{pr.pr_number}: quote {quoted_amount} from {supplier_name} is over budget {ceiling}")
            entry = budget_exception_flow.open_exception(pr, ctx, quoted_amount, None, comment, action)
        else:
            entry = transition(pr, PRStatus.SUPPLIER_SELECTED, ctx, action,
                               comment or f"Supplier {supplier_name} at {quoted_amount}")
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    async def _advance(self, pr_id: str, ctx: ActingContext, target: PRStatus, action: str,
                       comment: Optional[str], expected_version: Optional[int],
                       comment_required: bool = False) -> PurchaseRequest:
        pr = await self._load_for_buyer(pr_id, ctx, action, expected_version)
        if comment_required:
            comment = require_text(comment, "comment", action, pr)
        loaded_version = pr.version
        entry = transition(pr, target, ctx, action, comment)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    async def _load_for_buyer(self, pr_id: str, ctx: ActingContext, action: str,
                              expected_version: Optional[int]) -> PurchaseRequest:
        pr = await load_pr(pr_id, action)
        check_not_blocked(pr, action)
        check_expected_version(pr, expected_version, action)
        permission_checker.require(ctx, Permission.PROCESS_PR, pr, action)
        if is_terminal(pr.status):
            raise InvalidTransition(
                f"{pr.pr_number} is closed ({pr.status.value})",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        if ctx.role != Role.SYSTEM_ADMIN:
            permission_checker.check_owner(ctx, pr, action)
        permission_checker.check_buyer(ctx, pr, action)
        return pr

buyer_desk = BuyerDesk()
