from procurement.models.base import MongoModel
from procurement.models.status import PRStatus, Role, StatusKind, StatusMeta, STATUS_META, TRANSITIONS
from procurement.models.purchase_request import (
    PurchaseRequest, PRItem, PRType, TimelineEntry, TimelineEntryType, BudgetException,
    ExceptionResolution, ReassignmentRecord, BuyerAssignment, AssignmentScope, compute_total,
    PRItemInput, PRDraftInput, PRUpdateInput,
)
from procurement.models.user import User, ActingContext, BranchApprovalRule
from procurement.models.audit import AuditEvent, Action, Actor, ActionType
