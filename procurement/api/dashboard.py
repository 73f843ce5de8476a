from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from procurement.guardrails.decorators import require_permission
from procurement.guardrails.permissions import Permission
from procurement.models.user import ActingContext
from procurement.monitoring.metrics import metrics_engine
from procurement.workflow.reassignment import reassignment_coordinator

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])

@router.get("/summary")
async def get_summary(ctx: ActingContext = Depends(require_permission(Permission.VIEW_DASHBOARD))) -> Dict[str, Any]:
    return await metrics_engine.get_summary(ctx.company_id)

@router.get("/status-distribution")
async def get_status_distribution(ctx: ActingContext = Depends(require_permission(Permission.VIEW_DASHBOARD))) -> Dict[str, int]:
    return await metrics_engine.get_status_distribution(ctx.company_id)

@router.get("/sla-compliance")
async def get_sla_compliance(ctx: ActingContext = Depends(require_permission(Permission.VIEW_DASHBOARD))) -> Dict[str, Any]:
    return await metrics_engine.get_sla_compliance()

@router.get("/buyer-workload")
async def get_buyer_workload(ctx: ActingContext = Depends(require_permission(Permission.VIEW_DASHBOARD))) -> List[Dict]:
    return await reassignment_coordinator.buyer_workload()
