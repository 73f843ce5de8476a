import logging
from collections import Counter
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from procurement.config import settings
from procurement.database import db
from procurement.errors import Forbidden, InvalidTransition, StaleState, ValidationError
from procurement.guardrails.permissions import Permission, permission_checker
from procurement.models.purchase_request import (
    AssignmentScope, BuyerAssignment, PRDraftInput, PRItem, PRItemInput, PRUpdateInput,
    PurchaseRequest, TimelineEntry, TimelineEntryType,
)
from procurement.models.status import (
    PRStatus, Role, StatusKind, PENDING_OUTCOMES, is_requestor_editable, is_terminal, status_kind,
)
from procurement.models.user import ActingContext
from procurement.workflow.numbering import generate_pr_number, normalize_department_code
from procurement.workflow.transitions import (
    Notice, buyer_problem, check_expected_version, check_not_blocked, check_stage_not_passed,
    commit, load_pr, notices_for, publish, record, require_text, transition,
)

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 10

class ApprovalRouter:
    """
    Moves a PR from draft through the approval chain to a buyer.

    Every decision runs the same guard sequence before anything is changed:
    existence, budget-exception block, staleness, ownership, registry edge,
    mandatory text. The aggregate is only written by the final commit.
    """

    async def create_draft(self, ctx: ActingContext, payload: PRDraftInput) -> PurchaseRequest:
        action = "create"
        permission_checker.require(ctx, Permission.CREATE_PR, action=action)
        items = self._build_items(payload.items, action)
        self._check_tax(payload.tax_rate, action)

        department = payload.department or ctx.department
        if not department:
            raise ValidationError("A department is required to create a PR", action=action)
        dept_code = normalize_department_code(department)

        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            pr_number = await generate_pr_number(dept_code)
            pr = PurchaseRequest(
                pr_number=pr_number,
                company_id=ctx.company_id or settings.COMPANY_ID,
                requestor_id=ctx.user_id,
                department=department,
                branch_code=payload.branch_code or ctx.branch_code,
                pr_type=payload.pr_type,
                currency=payload.currency or settings.DEFAULT_CURRENCY,
                tax_rate=payload.tax_rate,
                items=[item.model_copy() for item in items],
                required_date=payload.required_date,
                purpose=payload.purpose,
                notes=payload.notes,
            )
            entry = TimelineEntry(
                entry_type=TimelineEntryType.CREATED,
                status=PRStatus.DRAFT,
                actor_id=ctx.user_id,
                actor_role=ctx.role,
            )
            pr.timeline.append(entry)
            pr.updated_at = entry.timestamp
            try:
                saved = await db.purchase_requests.insert(pr)
            except DuplicateKeyError:
                # Another draft took the number between read and insert
                logger.warning(f"PR number {pr_number} already taken, retrying ({attempt}/{MAX_NUMBER_ATTEMPTS})")
                continue
            await publish(saved, ctx, [entry])
            return saved

        raise StaleState(
            f"Could not allocate a PR number for {dept_code} after {MAX_NUMBER_ATTEMPTS} attempts",
            action=action,
        )

    async def update_draft(self, pr_id: str, ctx: ActingContext, payload: PRUpdateInput,
                           expected_version: Optional[int] = None) -> PurchaseRequest:
        """Requestor edits a PR they hold. Status and timeline stay as they are."""
        action = "edit"
        pr = await load_pr(pr_id, action)
        check_expected_version(pr, expected_version, action)
        self._require_requestor(pr, ctx, action)
        if not is_requestor_editable(pr.status):
            raise InvalidTransition(
                f"{pr.pr_number} cannot be edited in {pr.status.value}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        loaded_version = pr.version
        changes = payload.model_dump(exclude_unset=True)
        if "items" in changes and payload.items is not None:
            pr.items = self._build_items(payload.items, action)
        if payload.tax_rate is not None:
            self._check_tax(payload.tax_rate, action)
            pr.tax_rate = payload.tax_rate
        for field in ("pr_type", "currency", "required_date", "purpose", "notes"):
            if field not in changes:
                continue
            # null clears the optional fields only; pr_type and currency keep their value
            if changes[field] is None and field in ("pr_type", "currency"):
                continue
            setattr(pr, field, getattr(payload, field))
        pr.recalculate_totals()

        logger.info(f"{pr.pr_number} edited by {ctx.user_id}: {sorted(changes)}")
        return await commit(pr, loaded_version, ctx, [])

    async def submit(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                     expected_version: Optional[int] = None) -> PurchaseRequest:
        action = "submit"
        pr = await load_pr(pr_id, action)
        check_not_blocked(pr, action)
        check_expected_version(pr, expected_version, action)
        permission_checker.require(ctx, Permission.SUBMIT_PR, pr, action)
        self._require_requestor(pr, ctx, action)

        loaded_version = pr.version
        resubmitting_after_buyer = pr.status == PRStatus.NEED_MORE_INFO
        entry = transition(pr, PRStatus.MANAGER_PENDING, ctx, action, comment)
        if resubmitting_after_buyer:
            # The PR goes through the chain again and gets a fresh assignment
            self._release_buyers(pr)

        manager_id = await self._direct_manager_id(pr)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry, manager_id))

    async def approve(self, pr_id: str, ctx: ActingContext, comment: Optional[str] = None,
                      buyer_id: Optional[str] = None, item_ids: Optional[List[str]] = None,
                      expected_version: Optional[int] = None) -> PurchaseRequest:
        """
        Approve the pending stage owned by the acting role.

        MANAGER_PENDING goes to the branch manager, or straight to the buyer
        leader when the branch does not require branch-manager approval.
        At BUYER_LEADER_PENDING approving means assigning a buyer.
        """
        action = "approve"
        pr = await self._load_for_decision(pr_id, ctx, action, Permission.APPROVE_PR, expected_version)

        if pr.status == PRStatus.BUYER_LEADER_PENDING:
            note = comment.strip() if comment and comment.strip() else f"Approved and assigned to {buyer_id}"
            return await self._assign_loaded(pr, ctx, buyer_id, note, item_ids, action)

        if pr.status == PRStatus.MANAGER_PENDING:
            target = await self._after_manager(pr)
        else:
            target = PRStatus.BUYER_LEADER_PENDING

        loaded_version = pr.version
        entry = transition(pr, target, ctx, action, comment)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    async def reject(self, pr_id: str, ctx: ActingContext, comment: Optional[str],
                     expected_version: Optional[int] = None) -> PurchaseRequest:
        action = "reject"
        pr = await self._load_for_decision(pr_id, ctx, action, Permission.REJECT_PR, expected_version)
        rejected, _ = PENDING_OUTCOMES[pr.status]
        if rejected is None:
            raise InvalidTransition(
                f"{pr.pr_number} cannot be rejected in {pr.status.value}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        comment = require_text(comment, "comment", action, pr)

        loaded_version = pr.version
        entry = transition(pr, rejected, ctx, action, comment)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    async def return_pr(self, pr_id: str, ctx: ActingContext, comment: Optional[str],
                        expected_version: Optional[int] = None) -> PurchaseRequest:
        action = "return"
        pr = await self._load_for_decision(pr_id, ctx, action, Permission.RETURN_PR, expected_version)
        _, returned = PENDING_OUTCOMES[pr.status]
        comment = require_text(comment, "comment", action, pr)

        loaded_version = pr.version
        entry = transition(pr, returned, ctx, action, comment)
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry))

    async def route(self, pr_id: str, ctx: ActingContext,
                    expected_version: Optional[int] = None) -> PurchaseRequest:
        """Advance a PR parked in a hand-off status (SUBMITTED, MANAGER_APPROVED)."""
        action = "route"
        pr = await load_pr(pr_id, action)
        check_not_blocked(pr, action)
        check_expected_version(pr, expected_version, action)
        permission_checker.require(ctx, Permission.ROUTE_PR, pr, action)
        if status_kind(pr.status) != StatusKind.HANDOFF:
            raise InvalidTransition(
                f"{pr.pr_number} is in {pr.status.value} and has nothing to route",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        if pr.status == PRStatus.SUBMITTED:
            target = PRStatus.MANAGER_PENDING
        else:
            target = await self._after_manager(pr)

        loaded_version = pr.version
        entry = transition(pr, target, ctx, action)
        manager_id = await self._direct_manager_id(pr) if target == PRStatus.MANAGER_PENDING else None
        return await commit(pr, loaded_version, ctx, [entry], notices_for(pr, entry, manager_id))

    async def assign(self, pr_id: str, ctx: ActingContext, buyer_id: str, note: Optional[str],
                     item_ids: Optional[List[str]] = None,
                     expected_version: Optional[int] = None) -> PurchaseRequest:
        """
        Buyer leader hands the whole PR (no item_ids) or some of its items to a
        buyer. The PR reaches ASSIGNED_TO_BUYER once every item has a buyer.
        """
        action = "assign"
        pr = await self._load_for_decision(pr_id, ctx, action, Permission.ASSIGN_PR, expected_version)
        note = require_text(note, "note", action, pr)
        return await self._assign_loaded(pr, ctx, buyer_id, note, item_ids, action)

    async def get_timeline(self, pr_id: str, ctx: Optional[ActingContext] = None) -> List[TimelineEntry]:
        pr = await load_pr(pr_id, "view")
        if ctx:
            permission_checker.require(ctx, Permission.VIEW_PR, pr, "view")
        return list(pr.timeline)

    async def needs_branch_manager(self, pr: PurchaseRequest) -> bool:
        """Branch rule lookup. No branch or no rule on file means approval is needed."""
        if not pr.branch_code:
            return True
        rule = await db.branch_rules.get_by_branch_code(pr.branch_code)
        if not rule:
            return True
        return rule.need_branch_manager_approval

    # Internals

    async def _load_for_decision(self, pr_id: str, ctx: ActingContext, action: str,
                                 permission: Permission, expected_version: Optional[int]) -> PurchaseRequest:
        pr = await load_pr(pr_id, action)
        check_not_blocked(pr, action)
        check_expected_version(pr, expected_version, action)
        check_stage_not_passed(pr, ctx, action)
        permission_checker.require(ctx, permission, pr, action)
        if is_terminal(pr.status):
            raise InvalidTransition(
                f"{pr.pr_number} is closed ({pr.status.value})",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        permission_checker.check_owner(ctx, pr, action)
        if pr.status not in PENDING_OUTCOMES:
            raise InvalidTransition(
                f"{pr.pr_number} is not waiting for a decision ({pr.status.value})",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        permission_checker.check_sod(ctx, pr, action)
        requestor = await db.users.get_by_user_id(pr.requestor_id) if ctx.role == Role.MANAGER else None
        permission_checker.check_approver_scope(ctx, pr, requestor, action)
        return pr

    async def _assign_loaded(self, pr: PurchaseRequest, ctx: ActingContext, buyer_id: Optional[str],
                             note: str, item_ids: Optional[List[str]], action: str) -> PurchaseRequest:
        if not buyer_id:
            raise ValidationError(
                f"A buyer is required to {action} {pr.pr_number}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )
        buyer = await db.users.get_by_user_id(buyer_id)
        problem = buyer_problem(buyer, pr)
        if problem:
            raise ValidationError(
                f"Cannot assign {pr.pr_number}: {problem}",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

        unassigned = pr.unassigned_item_ids()
        if item_ids:
            targets = list(dict.fromkeys(item_ids))
            unknown = [item_id for item_id in targets if pr.get_item(item_id) is None]
            taken = [item_id for item_id in targets if item_id not in unassigned and item_id not in unknown]
            if unknown or taken:
                raise ValidationError(
                    f"Cannot assign items on {pr.pr_number}: unknown {unknown}, already assigned {taken}",
                    current_status=pr.status, action=action, pr_id=pr.pr_id,
                )
            scope = AssignmentScope.PARTIAL
        else:
            targets = unassigned
            scope = AssignmentScope.FULL

        loaded_version = pr.version
        for item_id in targets:
            pr.get_item(item_id).buyer_id = buyer_id
        pr.assignments.append(BuyerAssignment(
            buyer_id=buyer_id, scope=scope, item_ids=targets, note=note, assigned_by=ctx.user_id,
        ))

        if pr.unassigned_item_ids():
            entry = record(pr, ctx, TimelineEntryType.ASSIGNED, note)
            notices = [Notice("PR_ASSIGNED", Role.BUYER, [buyer_id], note)]
        else:
            pr.assignee_id = self._main_buyer(pr)
            entry = transition(pr, PRStatus.ASSIGNED_TO_BUYER, ctx, action, note)
            notices = notices_for(pr, entry)
        return await commit(pr, loaded_version, ctx, [entry], notices)

    async def _after_manager(self, pr: PurchaseRequest) -> PRStatus:
        if await self.needs_branch_manager(pr):
            return PRStatus.BRANCH_MANAGER_PENDING
        logger.info(f"Branch {pr.branch_code} skips branch-manager approval for {pr.pr_number}")
        return PRStatus.BUYER_LEADER_PENDING

    async def _direct_manager_id(self, pr: PurchaseRequest) -> Optional[str]:
        requestor = await db.users.get_by_user_id(pr.requestor_id)
        return requestor.direct_manager_id if requestor else None

    def _build_items(self, inputs: List[PRItemInput], action: str) -> List[PRItem]:
        if not inputs:
            raise ValidationError("A PR needs at least one item", action=action)
        items = []
        for line_no, item in enumerate(inputs, start=1):
            if not item.description or not item.description.strip():
                raise ValidationError(f"Item {line_no} has no description", action=action)
            if item.quantity is None or item.quantity <= 0:
                raise ValidationError(f"Item {line_no} must have a positive quantity", action=action)
            if item.unit_price is None or item.unit_price < 0:
                raise ValidationError(f"Item {line_no} has a negative unit price", action=action)
            items.append(PRItem(
                line_no=line_no,
                description=item.description.strip(),
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
            ))
        return items

    def _check_tax(self, tax_rate: float, action: str):
        if tax_rate < 0:
            raise ValidationError("Tax rate cannot be negative", action=action)

    def _require_requestor(self, pr: PurchaseRequest, ctx: ActingContext, action: str):
        if ctx.user_id != pr.requestor_id:
            raise Forbidden(
                f"Only the requestor of {pr.pr_number} can {action} it",
                current_status=pr.status, action=action, pr_id=pr.pr_id,
            )

    def _release_buyers(self, pr: PurchaseRequest):
        pr.assignee_id = None
        for item in pr.items:
            item.buyer_id = None

    def _main_buyer(self, pr: PurchaseRequest) -> str:
        """Buyer holding the most lines; ties go to the earliest line."""
        counts = Counter(item.buyer_id for item in pr.items)
        best = max(counts.values())
        for item in sorted(pr.items, key=lambda i: i.line_no):
            if counts[item.buyer_id] == best:
                return item.buyer_id

approval_router = ApprovalRouter()
