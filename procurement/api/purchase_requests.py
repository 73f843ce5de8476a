from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from procurement.api.schemas import DecisionRequest
from procurement.database import db
from procurement.guardrails.audit_logger import audit_logger
from procurement.guardrails.decorators import require_permission
from procurement.guardrails.permissions import Permission
from procurement.models.audit import AuditEvent
from procurement.models.purchase_request import PRDraftInput, PRUpdateInput, PurchaseRequest, TimelineEntry
from procurement.models.status import PRStatus
from procurement.models.user import ActingContext
from procurement.workflow.router import approval_router
from procurement.workflow.sla_clock import SLAReport, get_sla_status
from procurement.workflow.transitions import load_pr

router = APIRouter(prefix="/api/purchase-requests", tags=["Purchase Requests"])

@router.post("", response_model=PurchaseRequest, status_code=201)
async def create_purchase_request(
    payload: PRDraftInput,
    ctx: ActingContext = Depends(require_permission(Permission.CREATE_PR))
):
    return await approval_router.create_draft(ctx, payload)

@router.get("", response_model=List[PurchaseRequest])
async def list_purchase_requests(
    status: Optional[List[PRStatus]] = Query(None),
    mine: bool = False,
    skip: int = 0,
    limit: int = 100,
    ctx: ActingContext = Depends(require_permission(Permission.VIEW_PR))
):
    if mine:
        return await db.purchase_requests.list_by_requestor(ctx.user_id, skip=skip, limit=limit)
    if status:
        return await db.purchase_requests.list_by_status(status, skip=skip, limit=limit)
    return await db.purchase_requests.list({}, skip=skip, limit=limit, sort=[("updated_at", -1)])

@router.get("/{pr_id}", response_model=PurchaseRequest)
async def get_purchase_request(
    pr_id: str,
    ctx: ActingContext = Depends(require_permission(Permission.VIEW_PR))
):
    return await load_pr(pr_id, "view")

@router.patch("/{pr_id}", response_model=PurchaseRequest)
async def update_purchase_request(
    pr_id: str,
    payload: PRUpdateInput,
    expected_version: Optional[int] = None,
    ctx: ActingContext = Depends(require_permission(Permission.CREATE_PR))
):
    return await approval_router.update_draft(pr_id, ctx, payload, expected_version=expected_version)

@router.post("/{pr_id}/submit", response_model=PurchaseRequest)
async def submit_purchase_request(
    pr_id: str,
    decision: DecisionRequest = Body(DecisionRequest()),
    ctx: ActingContext = Depends(require_permission(Permission.SUBMIT_PR))
):
    return await approval_router.submit(pr_id, ctx, decision.comment, expected_version=decision.expected_version)

@router.post("/{pr_id}/route", response_model=PurchaseRequest)
async def route_purchase_request(
    pr_id: str,
    ctx: ActingContext = Depends(require_permission(Permission.ROUTE_PR))
):
    return await approval_router.route(pr_id, ctx)

@router.get("/{pr_id}/timeline", response_model=List[TimelineEntry])
async def get_timeline(
    pr_id: str,
    ctx: ActingContext = Depends(require_permission(Permission.VIEW_PR))
):
    return await approval_router.get_timeline(pr_id, ctx)

@router.get("/{pr_id}/sla", response_model=SLAReport)
async def get_sla(
    pr_id: str,
    ctx: ActingContext = Depends(require_permission(Permission.VIEW_PR))
):
    return await get_sla_status(pr_id)

@router.get("/{pr_id}/audit", response_model=List[AuditEvent])
async def get_audit_trail(
    pr_id: str,
    ctx: ActingContext = Depends(require_permission(Permission.VIEW_DASHBOARD))
):
    return await audit_logger.get_audit_trail(pr_id)
