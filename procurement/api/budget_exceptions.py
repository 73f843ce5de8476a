from typing import List

from fastapi import APIRouter, Body, Depends

from procurement.api.schemas import DecisionRequest, RaiseExceptionRequest
from procurement.database import db
from procurement.guardrails.decorators import require_permission
from procurement.guardrails.permissions import Permission
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.status import PRStatus
from procurement.models.user import ActingContext
from procurement.workflow.budget_exception import budget_exception_flow

router = APIRouter(prefix="/api/budget-exceptions", tags=["Budget Exceptions"])

@router.get("/pending", response_model=List[PurchaseRequest])
async def list_pending_exceptions(ctx: ActingContext = Depends(require_permission(Permission.DECIDE_BUDGET_EXCEPTION))):
    return await db.purchase_requests.list_by_status([PRStatus.BUDGET_EXCEPTION])

@router.post("/{pr_id}", response_model=PurchaseRequest, status_code=201)
async def raise_budget_exception(
    pr_id: str,
    request: RaiseExceptionRequest,
    ctx: ActingContext = Depends(require_permission(Permission.RAISE_BUDGET_EXCEPTION))
):
    return await budget_exception_flow.raise_exception(
        pr_id, ctx, request.quoted_amount,
        requested_amount=request.requested_amount,
        comment=request.comment,
        expected_version=request.expected_version,
    )

@router.post("/{pr_id}/approve", response_model=PurchaseRequest)
async def approve_budget_exception(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.DECIDE_BUDGET_EXCEPTION))
):
    return await budget_exception_flow.approve_exception(
        pr_id, ctx, decision.comment, expected_version=decision.expected_version
    )

@router.post("/{pr_id}/reject", response_model=PurchaseRequest)
async def reject_budget_exception(
    pr_id: str,
    decision: DecisionRequest = Body(...),
    ctx: ActingContext = Depends(require_permission(Permission.DECIDE_BUDGET_EXCEPTION))
):
    return await budget_exception_flow.reject_exception(
        pr_id, ctx, decision.comment, expected_version=decision.expected_version
    )

@router.post("/{pr_id}/negotiate", response_model=PurchaseRequest)
async def request_negotiation(
    pr_id: str,
    decision: DecisionRequest = Body(...),
    ctx: ActingContext = Depends(require_permission(Permission.DECIDE_BUDGET_EXCEPTION))
):
    return await budget_exception_flow.request_negotiation(
        pr_id, ctx, decision.comment, expected_version=decision.expected_version
    )
