import logging
from datetime import datetime
from typing import Any, Dict, Optional

from procurement.database import db
from procurement.models.status import PRStatus, StatusKind, status_kind
from procurement.workflow.reassignment import reassignment_coordinator
from procurement.workflow.sla_clock import SLAState, sla_clock

logger = logging.getLogger(__name__)

class ProcurementMetrics:
    """Read models for dashboards. Computed on read, no counters are kept."""

    async def get_status_distribution(self, company_id: Optional[str] = None) -> Dict[str, int]:
        """
        Count of PRs per canonical status. Every status is present, zero when unused.
        """
        pipeline = []
        if company_id:
            pipeline.append({"$match": {"company_id": company_id}})
        pipeline.append({"$group": {"_id": "$status", "count": {"$sum": 1}}})
        results = await db.purchase_requests.collection.aggregate(pipeline).to_list(length=None)

        distribution = {status.value: 0 for status in PRStatus}
        for item in results:
            try:
                key = PRStatus(item["_id"]).value
            except ValueError:
                logger.warning(f"Unknown status in purchase_requests: {item['_id']}")
                continue
            distribution[key] += item["count"]
        return distribution

    async def get_sla_compliance(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """SLA state across open PRs waiting on someone."""
        now = now or datetime.utcnow()
        prs = await db.purchase_requests.list_open()

        compliance = {
            SLAState.ON_TIME.value: 0,
            SLAState.WARNING.value: 0,
            SLAState.OVERDUE.value: 0,
        }
        overdue = []
        for pr in prs:
            state = sla_clock.classify(pr.status, pr.last_transition_at, now)
            if state.value not in compliance:
                continue
            compliance[state.value] += 1
            if state == SLAState.OVERDUE:
                overdue.append(pr.pr_number)

        total = sum(compliance.values())
        rate = (compliance[SLAState.ON_TIME.value] + compliance[SLAState.WARNING.value]) / total * 100 if total else 100.0
        return {
            **compliance,
            "total_open": total,
            "compliance_rate": round(rate, 2),
            "overdue_pr_numbers": overdue,
        }

    async def get_summary(self, company_id: Optional[str] = None) -> Dict[str, Any]:
        distribution = await self.get_status_distribution(company_id)
        awaiting_decision = sum(
            count for status, count in distribution.items()
            if status_kind(status) in (StatusKind.PENDING, StatusKind.EXCEPTION)
        )
        return {
            "status_distribution": distribution,
            "total_prs": sum(distribution.values()),
            "awaiting_decision": awaiting_decision,
            "budget_exceptions": distribution[PRStatus.BUDGET_EXCEPTION.value],
            "sla": await self.get_sla_compliance(),
            "buyer_workload": await reassignment_coordinator.buyer_workload(),
        }

metrics_engine = ProcurementMetrics()
