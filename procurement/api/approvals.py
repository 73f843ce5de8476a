from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException

from procurement.api.schemas import ApproveRequest, AssignRequest, DecisionRequest
from procurement.database import db
from procurement.guardrails.decorators import require_permission
from procurement.guardrails.permissions import Permission
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.status import PENDING_STATUS_FOR_ROLE
from procurement.models.user import ActingContext
from procurement.workflow.router import approval_router

router = APIRouter(prefix="/api/approvals", tags=["Approvals"])

@router.get("/pending", response_model=List[PurchaseRequest])
async def list_pending_approvals(ctx: ActingContext = Depends(require_permission(Permission.APPROVE_PR))):
    """PRs waiting at the caller's approval stage."""
    stage = PENDING_STATUS_FOR_ROLE.get(ctx.role)
    if not stage:
        raise HTTPException(status_code=400, detail=f"{ctx.role.value} has no approval stage")
    return await db.purchase_requests.list_by_status([stage])

@router.post("/{pr_id}/approve", response_model=PurchaseRequest)
async def approve_purchase_request(
    pr_id: str,
    decision: ApproveRequest = Body(ApproveRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.APPROVE_PR))
):
    return await approval_router.approve(
        pr_id, ctx, decision.comment,
        buyer_id=decision.buyer_id,
        item_ids=decision.item_ids,
        expected_version=decision.expected_version,
    )

@router.post("/{pr_id}/reject", response_model=PurchaseRequest)
async def reject_purchase_request(
    pr_id: str,
    decision: DecisionRequest = Body(...),
    ctx: ActingContext = Depends(require_permission(Permission.REJECT_PR))
):
    return await approval_router.reject(pr_id, ctx, decision.comment, expected_version=decision.expected_version)

@router.post("/{pr_id}/return", response_model=PurchaseRequest)
async def return_purchase_request(
    pr_id: str,
    decision: DecisionRequest = Body(...),
    ctx: ActingContext = Depends(require_permission(Permission.RETURN_PR))
):
    return await approval_router.return_pr(pr_id, ctx, decision.comment, expected_version=decision.expected_version)

@router.post("/{pr_id}/assign", response_model=PurchaseRequest)
async def assign_purchase_request(
    pr_id: str,
    request: AssignRequest,
    ctx: ActingContext = Depends(require_permission(Permission.ASSIGN_PR))
):
    return await approval_router.assign(
        pr_id, ctx, request.buyer_id, request.note,
        item_ids=request.item_ids,
        expected_version=request.expected_version,
    )
