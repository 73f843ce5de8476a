"""
Status registry for purchase requests.

One enumeration, one canonical metadata table and one adjacency map. Every
consumer (router, SLA clock, dashboards) reads from here instead of keeping its
own list of status strings. Adding a status without a metadata row or an
adjacency entry fails at import time.
"""
from enum import Enum
from typing import Dict, FrozenSet, NamedTuple, Optional, Union

from procurement.errors import InvalidTransition


class PRStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    MANAGER_PENDING = "MANAGER_PENDING"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    MANAGER_REJECTED = "MANAGER_REJECTED"
    MANAGER_RETURNED = "MANAGER_RETURNED"
    BRANCH_MANAGER_PENDING = "BRANCH_MANAGER_PENDING"
    BRANCH_MANAGER_REJECTED = "BRANCH_MANAGER_REJECTED"
    BRANCH_MANAGER_RETURNED = "BRANCH_MANAGER_RETURNED"
    BUYER_LEADER_PENDING = "BUYER_LEADER_PENDING"
    ASSIGNED_TO_BUYER = "ASSIGNED_TO_BUYER"
    READY_FOR_RFQ = "READY_FOR_RFQ"
    RFQ_IN_PROGRESS = "RFQ_IN_PROGRESS"
    QUOTATION_RECEIVED = "QUOTATION_RECEIVED"
    SUPPLIER_SELECTED = "SUPPLIER_SELECTED"
    BUDGET_EXCEPTION = "BUDGET_EXCEPTION"
    BUDGET_APPROVED = "BUDGET_APPROVED"
    BUDGET_REJECTED = "BUDGET_REJECTED"
    NEED_MORE_INFO = "NEED_MORE_INFO"
    PAYMENT_DONE = "PAYMENT_DONE"

    @classmethod
    def _missing_(cls, value):
        # Legacy names stored before the DEPARTMENT_HEAD -> MANAGER rename
        if isinstance(value, str) and value in LEGACY_STATUS_ALIASES:
            return cls(LEGACY_STATUS_ALIASES[value])
        return None


class Role(str, Enum):
    REQUESTOR = "REQUESTOR"
    MANAGER = "MANAGER"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    BUYER_LEADER = "BUYER_LEADER"
    BUYER = "BUYER"
    BUYER_MANAGER = "BUYER_MANAGER"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    SYSTEM = "SYSTEM"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value in LEGACY_ROLE_ALIASES:
            return cls(LEGACY_ROLE_ALIASES[value])
        return None


class StatusKind(str, Enum):
    EDITABLE = "EDITABLE"
    HANDOFF = "HANDOFF"
    PENDING = "PENDING"
    BUYER_PROCESSING = "BUYER_PROCESSING"
    EXCEPTION = "EXCEPTION"
    TERMINAL_SUCCESS = "TERMINAL_SUCCESS"
    TERMINAL_FAILURE = "TERMINAL_FAILURE"


class StatusMeta(NamedTuple):
    label: str
    kind: StatusKind
    owner: Optional[Role]
    stage: Optional[int]  # progress stage index, None when no stage applies
    color: str


# Progress stages, in order. PAYMENT is the last one.
STAGES = (
    "DRAFT",
    "MANAGER",
    "BRANCH_MANAGER",
    "BUYER_LEADER",
    "ASSIGNED",
    "RFQ",
    "QUOTATION",
    "SUPPLIER",
    "PAYMENT",
)

LEGACY_STATUS_ALIASES: Dict[str, str] = {
    "DEPARTMENT_HEAD_PENDING": "MANAGER_PENDING",
    "DEPARTMENT_HEAD_APPROVED": "MANAGER_APPROVED",
    "DEPARTMENT_HEAD_REJECTED": "MANAGER_REJECTED",
    "DEPARTMENT_HEAD_RETURNED": "MANAGER_RETURNED",
    "BRANCH_MANAGER_APPROVED": "BUYER_LEADER_PENDING",
}

LEGACY_ROLE_ALIASES: Dict[str, str] = {
    "DEPARTMENT_HEAD": "MANAGER",
}

S = PRStatus
K = StatusKind

STATUS_META: Dict[PRStatus, StatusMeta] = {
    S.DRAFT: StatusMeta("Draft", K.EDITABLE, Role.REQUESTOR, 0, "slate"),
    S.SUBMITTED: StatusMeta("Submitted", K.HANDOFF, Role.SYSTEM, 1, "blue"),
    S.MANAGER_PENDING: StatusMeta("Waiting for direct manager", K.PENDING, Role.MANAGER, 1, "amber"),
    S.MANAGER_APPROVED: StatusMeta("Approved by direct manager", K.HANDOFF, Role.SYSTEM, 1, "green"),
    S.MANAGER_REJECTED: StatusMeta("Rejected by direct manager", K.TERMINAL_FAILURE, None, None, "red"),
    S.MANAGER_RETURNED: StatusMeta("Returned by direct manager", K.EDITABLE, Role.REQUESTOR, None, "orange"),
    S.BRANCH_MANAGER_PENDING: StatusMeta("Waiting for branch manager", K.PENDING, Role.BRANCH_MANAGER, 2, "amber"),
    S.BRANCH_MANAGER_REJECTED: StatusMeta("Rejected by branch manager", K.TERMINAL_FAILURE, None, None, "red"),
    S.BRANCH_MANAGER_RETURNED: StatusMeta("Returned by branch manager", K.EDITABLE, Role.REQUESTOR, None, "orange"),
    S.BUYER_LEADER_PENDING: StatusMeta("Waiting for buyer assignment", K.PENDING, Role.BUYER_LEADER, 3, "indigo"),
    S.ASSIGNED_TO_BUYER: StatusMeta("Assigned to buyer", K.BUYER_PROCESSING, Role.BUYER, 4, "purple"),
    S.READY_FOR_RFQ: StatusMeta("Ready for RFQ", K.BUYER_PROCESSING, Role.BUYER, 4, "purple"),
    S.RFQ_IN_PROGRESS: StatusMeta("RFQ in progress", K.BUYER_PROCESSING, Role.BUYER, 5, "cyan"),
    S.QUOTATION_RECEIVED: StatusMeta("Quotation received", K.BUYER_PROCESSING, Role.BUYER, 6, "teal"),
    S.SUPPLIER_SELECTED: StatusMeta("Supplier selected", K.BUYER_PROCESSING, Role.BUYER, 7, "emerald"),
    S.BUDGET_EXCEPTION: StatusMeta("Over budget, waiting for branch manager", K.EXCEPTION, Role.BRANCH_MANAGER, 7, "rose"),
    S.BUDGET_APPROVED: StatusMeta("Over budget approved", K.BUYER_PROCESSING, Role.BUYER, 7, "emerald"),
    S.BUDGET_REJECTED: StatusMeta("Over budget rejected", K.TERMINAL_FAILURE, None, None, "red"),
    S.NEED_MORE_INFO: StatusMeta("Need more information", K.EDITABLE, Role.REQUESTOR, None, "orange"),
    S.PAYMENT_DONE: StatusMeta("Payment done", K.TERMINAL_SUCCESS, None, 8, "green"),
}

TRANSITIONS: Dict[PRStatus, FrozenSet[PRStatus]] = {
    S.DRAFT: frozenset({S.MANAGER_PENDING}),
    S.SUBMITTED: frozenset({S.MANAGER_PENDING}),
    S.MANAGER_PENDING: frozenset({
        S.BRANCH_MANAGER_PENDING, S.BUYER_LEADER_PENDING,
        S.MANAGER_REJECTED, S.MANAGER_RETURNED,
    }),
    S.MANAGER_APPROVED: frozenset({S.BRANCH_MANAGER_PENDING, S.BUYER_LEADER_PENDING}),
    S.MANAGER_REJECTED: frozenset(),
    S.MANAGER_RETURNED: frozenset({S.MANAGER_PENDING}),
    S.BRANCH_MANAGER_PENDING: frozenset({
        S.BUYER_LEADER_PENDING, S.BRANCH_MANAGER_REJECTED, S.BRANCH_MANAGER_RETURNED,
    }),
    S.BRANCH_MANAGER_REJECTED: frozenset(),
    S.BRANCH_MANAGER_RETURNED: frozenset({S.MANAGER_PENDING}),
    S.BUYER_LEADER_PENDING: frozenset({S.ASSIGNED_TO_BUYER, S.NEED_MORE_INFO}),
    S.ASSIGNED_TO_BUYER: frozenset({
        S.READY_FOR_RFQ, S.RFQ_IN_PROGRESS, S.NEED_MORE_INFO, S.BUDGET_EXCEPTION,
    }),
    S.READY_FOR_RFQ: frozenset({S.RFQ_IN_PROGRESS, S.NEED_MORE_INFO, S.BUDGET_EXCEPTION}),
    S.RFQ_IN_PROGRESS: frozenset({S.QUOTATION_RECEIVED, S.NEED_MORE_INFO, S.BUDGET_EXCEPTION}),
    S.QUOTATION_RECEIVED: frozenset({S.SUPPLIER_SELECTED, S.RFQ_IN_PROGRESS, S.BUDGET_EXCEPTION}),
    S.SUPPLIER_SELECTED: frozenset({S.PAYMENT_DONE, S.BUDGET_EXCEPTION}),
    S.BUDGET_EXCEPTION: frozenset({S.BUDGET_APPROVED, S.BUDGET_REJECTED, S.QUOTATION_RECEIVED}),
    S.BUDGET_APPROVED: frozenset({S.SUPPLIER_SELECTED, S.PAYMENT_DONE}),
    S.BUDGET_REJECTED: frozenset(),
    S.NEED_MORE_INFO: frozenset({S.MANAGER_PENDING}),
    S.PAYMENT_DONE: frozenset(),
}

# Pending approval stage -> (rejected status, returned status) for reject/return
PENDING_OUTCOMES: Dict[PRStatus, tuple] = {
    S.MANAGER_PENDING: (S.MANAGER_REJECTED, S.MANAGER_RETURNED),
    S.BRANCH_MANAGER_PENDING: (S.BRANCH_MANAGER_REJECTED, S.BRANCH_MANAGER_RETURNED),
    S.BUYER_LEADER_PENDING: (None, S.NEED_MORE_INFO),
}

# The approval stage each approver role acts on
PENDING_STATUS_FOR_ROLE: Dict[Role, PRStatus] = {
    Role.MANAGER: S.MANAGER_PENDING,
    Role.BRANCH_MANAGER: S.BRANCH_MANAGER_PENDING,
    Role.BUYER_LEADER: S.BUYER_LEADER_PENDING,
}


def _check_registry():
    missing_meta = [s.value for s in PRStatus if s not in STATUS_META]
    missing_edges = [s.value for s in PRStatus if s not in TRANSITIONS]
    if missing_meta or missing_edges:
        raise RuntimeError(
            f"Status registry incomplete: metadata missing for {missing_meta}, "
            f"transitions missing for {missing_edges}"
        )
    for source, targets in TRANSITIONS.items():
        if STATUS_META[source].kind in (K.TERMINAL_SUCCESS, K.TERMINAL_FAILURE) and targets:
            raise RuntimeError(f"Terminal status {source.value} must not have outgoing transitions")


_check_registry()


def canonical_status(value: Union[str, PRStatus]) -> PRStatus:
    """Resolve a stored or legacy status name to its canonical member."""
    if isinstance(value, PRStatus):
        return value
    try:
        return PRStatus(value)
    except ValueError:
        raise InvalidTransition(f"Unknown status '{value}'", current_status=value)


def canonical_role(value: Union[str, Role]) -> Role:
    if isinstance(value, Role):
        return value
    return Role(value)


def allowed_transitions(status: Union[str, PRStatus]) -> FrozenSet[PRStatus]:
    return TRANSITIONS[canonical_status(status)]


def owner_role(status: Union[str, PRStatus]) -> Optional[Role]:
    """Role responsible for acting on a PR in this status (None when terminal)."""
    return STATUS_META[canonical_status(status)].owner


def status_kind(status: Union[str, PRStatus]) -> StatusKind:
    return STATUS_META[canonical_status(status)].kind


def is_terminal(status: Union[str, PRStatus]) -> bool:
    return status_kind(status) in (K.TERMINAL_SUCCESS, K.TERMINAL_FAILURE)


def is_terminal_success(status: Union[str, PRStatus]) -> bool:
    return status_kind(status) == K.TERMINAL_SUCCESS


def is_terminal_failure(status: Union[str, PRStatus]) -> bool:
    return status_kind(status) == K.TERMINAL_FAILURE


def is_buyer_owned(status: Union[str, PRStatus]) -> bool:
    return owner_role(status) == Role.BUYER


def is_requestor_editable(status: Union[str, PRStatus]) -> bool:
    return status_kind(status) == K.EDITABLE


def stage_index(status: Union[str, PRStatus]) -> Optional[int]:
    return STATUS_META[canonical_status(status)].stage


def assert_transition(current: Union[str, PRStatus], target: Union[str, PRStatus], action: str) -> None:
    """Raise InvalidTransition unless current -> target is a registry edge."""
    current = canonical_status(current)
    target = canonical_status(target)
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot {action}: {current.value} -> {target.value} is not allowed",
            current_status=current,
            action=action,
        )
