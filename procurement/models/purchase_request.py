import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional, Iterable
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from procurement.config import settings
from procurement.models.base import MongoModel
from procurement.models.status import (
    PRStatus, Role, canonical_status, canonical_role, allowed_transitions,
)
from procurement.errors import InvalidTransition

class PRType(str, Enum):
    COMMERCIAL = "COMMERCIAL"
    PRODUCTION = "PRODUCTION"

class TimelineEntryType(str, Enum):
    CREATED = "CREATED"
    TRANSITION = "TRANSITION"
    ASSIGNED = "ASSIGNED"
    REASSIGNED = "REASSIGNED"
    BUDGET_EXCEPTION_RAISED = "BUDGET_EXCEPTION_RAISED"
    BUDGET_EXCEPTION_RESOLVED = "BUDGET_EXCEPTION_RESOLVED"

class ExceptionResolution(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEGOTIATION_REQUESTED = "NEGOTIATION_REQUESTED"

class AssignmentScope(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


def compute_total(items: Iterable["PRItem"], tax_rate: float) -> float:
    """Sum(qty * unit_price) * (1 + tax/100), rounded to cents."""
    subtotal = sum(item.quantity * item.unit_price for item in items)
    return round(subtotal * (1 + (tax_rate or 0.0) / 100), 2)


class PRItem(MongoModel):
    """A line entry on a purchase request."""
    item_id: str = Field(default_factory=lambda: f"ITEM-{uuid.uuid4().hex[:8].upper()}")
    line_no: int = 1
    description: str
    quantity: float = Field(..., gt=0)
    unit: Optional[str] = None
    unit_price: float = Field(0.0, ge=0)
    amount: float = 0.0
    # Buyer currently handling this line, set by assignment/reassignment
    buyer_id: Optional[str] = None

    @model_validator(mode="after")
    def compute_amount(self):
        self.amount = round(self.quantity * self.unit_price, 2)
        return self

class TimelineEntry(MongoModel):
    """Immutable record of something that happened to a PR."""
    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: f"TL-{uuid.uuid4().hex[:12]}")
    entry_type: TimelineEntryType = TimelineEntryType.TRANSITION
    status: PRStatus
    from_status: Optional[PRStatus] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    actor_id: str
    actor_role: Role
    comment: Optional[str] = None

    @field_validator("status", "from_status", mode="before")
    @classmethod
    def resolve_legacy_status(cls, v):
        return canonical_status(v) if v is not None else None

    @field_validator("actor_role", mode="before")
    @classmethod
    def resolve_legacy_role(cls, v):
        return canonical_role(v)

class BudgetException(MongoModel):
    """Raised when the quoted price exceeds the requestor's estimate."""
    exception_id: str = Field(default_factory=lambda: f"BE-{uuid.uuid4().hex[:8].upper()}")
    requested_amount: float = Field(..., gt=0)
    quoted_amount: float = Field(..., gt=0)
    variance: float = 0.0
    over_percent: float = 0.0
    resolution: ExceptionResolution = ExceptionResolution.PENDING
    raised_by: Optional[str] = None
    raised_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    comment: Optional[str] = None

    @model_validator(mode="after")
    def compute_variance(self):
        self.variance = round(self.quoted_amount - self.requested_amount, 2)
        self.over_percent = round(self.variance / self.requested_amount * 100, 2)
        return self

    @property
    def is_pending(self) -> bool:
        return self.resolution == ExceptionResolution.PENDING

class ReassignmentRecord(MongoModel):
    from_buyer_id: str
    to_buyer_id: str
    reason: str
    item_ids: Optional[List[str]] = None
    actor_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

class BuyerAssignment(MongoModel):
    """A buyer leader's assignment of the whole PR or some of its items."""
    buyer_id: str
    scope: AssignmentScope = AssignmentScope.FULL
    item_ids: List[str] = []
    note: str
    assigned_by: str
    assigned_at: datetime = Field(default_factory=datetime.utcnow)

class PurchaseRequest(MongoModel):
    """
    Purchase request aggregate. Items, assignments, timeline, budget exceptions
    and reassignments live in the same document so one write commits them together.
    """
    pr_id: str = Field(default_factory=lambda: f"PR-{uuid.uuid4().hex[:12]}")
    pr_number: str = Field(..., description="<DEPT>-<YYYYMMDD>-<NNNN>")
    company_id: Optional[str] = None

    requestor_id: str
    department: str
    branch_code: Optional[str] = None
    pr_type: PRType = PRType.COMMERCIAL

    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    tax_rate: float = Field(0.0, ge=0)
    items: List[PRItem] = []
    total_amount: float = 0.0

    required_date: Optional[datetime] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None

    status: PRStatus = PRStatus.DRAFT
    assignee_id: Optional[str] = None
    assignments: List[BuyerAssignment] = []

    # Filled by the buyer when a supplier is picked
    supplier_name: Optional[str] = None
    purchase_amount: Optional[float] = None

    timeline: List[TimelineEntry] = []
    budget_exceptions: List[BudgetException] = []
    reassignments: List[ReassignmentRecord] = []

    # Optimistic concurrency token, bumped on every commit
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("status", mode="before")
    @classmethod
    def resolve_legacy_status(cls, v):
        return canonical_status(v)

    @model_validator(mode="after")
    def recompute_total(self):
        self.total_amount = compute_total(self.items, self.tax_rate)
        return self

    def recalculate_totals(self) -> float:
        for item in self.items:
            item.amount = round(item.quantity * item.unit_price, 2)
        self.total_amount = compute_total(self.items, self.tax_rate)
        return self.total_amount

    @property
    def last_entry(self) -> Optional[TimelineEntry]:
        return self.timeline[-1] if self.timeline else None

    @property
    def last_transition_at(self) -> datetime:
        entry = self.last_entry
        return entry.timestamp if entry else self.created_at

    @property
    def budget_exception(self) -> Optional[BudgetException]:
        """Most recent budget exception, if any."""
        return self.budget_exceptions[-1] if self.budget_exceptions else None

    @property
    def pending_exception(self) -> Optional[BudgetException]:
        for exception in self.budget_exceptions:
            if exception.is_pending:
                return exception
        return None

    def get_item(self, item_id: str) -> Optional[PRItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def item_ids(self) -> List[str]:
        return [item.item_id for item in self.items]

    def unassigned_item_ids(self) -> List[str]:
        return [item.item_id for item in self.items if not item.buyer_id]

    def items_owned_by(self, buyer_id: str) -> List[PRItem]:
        return [item for item in self.items if item.buyer_id == buyer_id]

    def buyer_ids(self) -> List[str]:
        """Every buyer holding this PR or one of its items."""
        ids = []
        if self.assignee_id:
            ids.append(self.assignee_id)
        for item in self.items:
            if item.buyer_id and item.buyer_id not in ids:
                ids.append(item.buyer_id)
        return ids

    def visited(self, status: PRStatus) -> bool:
        return any(entry.status == status for entry in self.timeline)

    def append_entry(
        self,
        entry_type: TimelineEntryType,
        status: PRStatus,
        actor_id: str,
        actor_role: Role,
        comment: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> TimelineEntry:
        """Append a timeline entry and move status to the entry's status."""
        entry = TimelineEntry(
            entry_type=entry_type,
            status=status,
            from_status=self.status,
            timestamp=timestamp or datetime.utcnow(),
            actor_id=actor_id,
            actor_role=actor_role,
            comment=comment,
        )
        self.timeline.append(entry)
        self.status = status
        self.updated_at = entry.timestamp
        return entry

    def replay_status(self) -> PRStatus:
        """
        Rebuild the current status from the timeline, checking each status
        change against the registry. Raises InvalidTransition on a broken trail.
        """
        current = PRStatus.DRAFT
        for entry in self.timeline:
            if entry.status != current and entry.status not in allowed_transitions(current):
                raise InvalidTransition(
                    f"Timeline of {self.pr_number} jumps {current.value} -> {entry.status.value}",
                    current_status=current,
                    action="replay",
                    pr_id=self.pr_id,
                )
            current = entry.status
        return current


class PRItemInput(BaseModel):
    description: str
    quantity: float
    unit: Optional[str] = None
    unit_price: float = 0.0

class PRDraftInput(BaseModel):
    """Payload for a new draft. Department and branch default to the requestor's."""
    department: Optional[str] = None
    branch_code: Optional[str] = None
    pr_type: PRType = PRType.COMMERCIAL
    currency: Optional[str] = None
    tax_rate: float = 0.0
    items: List[PRItemInput] = []
    required_date: Optional[datetime] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None

class PRUpdateInput(BaseModel):
    """
    Partial edit of a requestor-owned PR. Omitted fields are left alone, and so
    are pr_type and currency when sent as null.
    """
    pr_type: Optional[PRType] = None
    currency: Optional[str] = None
    tax_rate: Optional[float] = None
    items: Optional[List[PRItemInput]] = None
    required_date: Optional[datetime] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
