import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from procurement.config import settings
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.status import (
    PRStatus, STAGES, STATUS_META, is_terminal_failure, is_terminal_success, stage_index,
)
from procurement.workflow.transitions import load_pr

logger = logging.getLogger(__name__)

class SLAState(str, Enum):
    ON_TIME = "on_time"
    WARNING = "warning"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    CLOSED = "closed"

class SLAReport(BaseModel):
    pr_id: Optional[str] = None
    pr_number: Optional[str] = None
    status: PRStatus
    status_label: str
    sla_state: SLAState
    sla_hours: float
    elapsed_hours: float
    remaining_hours: float
    remaining_percent: float
    due_at: datetime
    completion_percent: float

class SLAClock:
    """
    Time in the current status against the approval SLA. Pure: the same
    status, timestamps and thresholds always give the same answer.
    """
    def __init__(self, sla_hours: Optional[float] = None, warning_ratio: Optional[float] = None):
        self._sla_hours = sla_hours
        self._warning_ratio = warning_ratio

    @property
    def sla_hours(self) -> float:
        return self._sla_hours if self._sla_hours is not None else settings.SLA_HOURS

    @property
    def warning_ratio(self) -> float:
        return self._warning_ratio if self._warning_ratio is not None else settings.SLA_WARNING_RATIO

    def elapsed_hours(self, last_transition_at: datetime, now: datetime) -> float:
        return max(0.0, (now - last_transition_at).total_seconds() / 3600)

    def classify(self, status: PRStatus, last_transition_at: datetime, now: datetime) -> SLAState:
        if is_terminal_success(status):
            return SLAState.COMPLETED
        if is_terminal_failure(status):
            return SLAState.CLOSED
        remaining = self.sla_hours - self.elapsed_hours(last_transition_at, now)
        if remaining < 0:
            return SLAState.OVERDUE
        if remaining <= self.warning_ratio * self.sla_hours:
            return SLAState.WARNING
        return SLAState.ON_TIME

    def evaluate(self, status: PRStatus, last_transition_at: datetime, now: datetime) -> SLAReport:
        elapsed = self.elapsed_hours(last_transition_at, now)
        remaining = self.sla_hours - elapsed
        remaining_percent = min(100.0, max(0.0, remaining / self.sla_hours * 100)) if self.sla_hours else 0.0
        return SLAReport(
            status=status,
            status_label=STATUS_META[status].label,
            sla_state=self.classify(status, last_transition_at, now),
            sla_hours=self.sla_hours,
            elapsed_hours=round(elapsed, 2),
            remaining_hours=round(remaining, 2),
            remaining_percent=round(remaining_percent, 2),
            due_at=last_transition_at + timedelta(hours=self.sla_hours),
            completion_percent=completion_percent(status),
        )

    def report_for(self, pr: PurchaseRequest, now: Optional[datetime] = None) -> SLAReport:
        """SLA report measured from the PR's last timeline entry."""
        report = self.evaluate(pr.status, pr.last_transition_at, now or datetime.utcnow())
        report.pr_id = pr.pr_id
        report.pr_number = pr.pr_number
        return report


def completion_percent(status: PRStatus) -> float:
    """Progress through the lifecycle stages, 0 for rejected PRs and PRs sent back to the requestor."""
    if is_terminal_failure(status):
        return 0.0
    if is_terminal_success(status):
        return 100.0
    stage = stage_index(status)
    if stage is None:
        return 0.0
    return round((stage + 1) / len(STAGES) * 100, 2)

sla_clock = SLAClock()

def sla_report(pr: PurchaseRequest, now: Optional[datetime] = None) -> SLAReport:
    return sla_clock.report_for(pr, now)

async def get_sla_status(pr_id: str, now: Optional[datetime] = None) -> SLAReport:
    pr = await load_pr(pr_id, "view SLA")
    return sla_clock.report_for(pr, now)
