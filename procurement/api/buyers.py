from typing import Dict, List

from fastapi import APIRouter, Body, Depends

from procurement.api.schemas import DecisionRequest, ReassignRequest, SelectSupplierRequest
from procurement.database import db
from procurement.guardrails.decorators import require_permission
from procurement.guardrails.permissions import Permission
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.user import ActingContext
from procurement.workflow.buyer_desk import buyer_desk
from procurement.workflow.reassignment import reassignment_coordinator

router = APIRouter(prefix="/api/buyers", tags=["Buyers"])

@router.get("/workload")
async def get_buyer_workload(
    ctx: ActingContext = Depends(require_permission(Permission.REASSIGN_PR))
) -> List[Dict]:
    return await reassignment_coordinator.buyer_workload()

@router.get("/me/purchase-requests", response_model=List[PurchaseRequest])
async def list_my_purchase_requests(ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))):
    return await db.purchase_requests.list_by_assignee(ctx.user_id)

@router.post("/purchase-requests/{pr_id}/ready-for-rfq", response_model=PurchaseRequest)
async def mark_ready_for_rfq(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.mark_ready_for_rfq(pr_id, ctx, decision.comment, decision.expected_version)

@router.post("/purchase-requests/{pr_id}/rfq", response_model=PurchaseRequest)
async def start_rfq(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.start_rfq(pr_id, ctx, decision.comment, decision.expected_version)

@router.post("/purchase-requests/{pr_id}/quotation", response_model=PurchaseRequest)
async def record_quotation(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.record_quotation(pr_id, ctx, decision.comment, decision.expected_version)

@router.post("/purchase-requests/{pr_id}/select-supplier", response_model=PurchaseRequest)
async def select_supplier(
    pr_id: str,
    request: SelectSupplierRequest,
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.select_supplier(
        pr_id, ctx, request.quoted_amount, request.supplier_name,
        comment=request.comment, expected_version=request.expected_version,
    )

@router.post("/purchase-requests/{pr_id}/request-info", response_model=PurchaseRequest)
async def request_more_info(
    pr_id: str,
    decision: DecisionRequest = Body(...),
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.request_more_info(pr_id, ctx, decision.comment, decision.expected_version)

@router.post("/purchase-requests/{pr_id}/paid", response_model=PurchaseRequest)
async def mark_paid(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.PROCESS_PR))
):
    return await buyer_desk.mark_paid(pr_id, ctx, decision.comment, decision.expected_version)

@router.post("/purchase-requests/{pr_id}/reassign", response_model=PurchaseRequest)
async def reassign_purchase_request(
    pr_id: str,
    request: ReassignRequest,
    ctx: ActingContext = Depends(require_permission(Permission.REASSIGN_PR))
):
    return await reassignment_coordinator.reassign(
        pr_id, ctx, request.from_buyer_id, request.to_buyer_id, request.reason,
        item_ids=request.item_ids, expected_version=request.expected_version,
    )
