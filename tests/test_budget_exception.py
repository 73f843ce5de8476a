import pytest

from procurement.errors import (
    Blocked, Forbidden, InvalidTransition, ProcurementError, StaleState, ValidationError,
)
from procurement.models.purchase_request import ExceptionResolution, TimelineEntryType
from procurement.models.status import PRStatus
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.buyer_desk import buyer_desk
from procurement.workflow.reassignment import reassignment_coordinator
from procurement.workflow.router import approval_router


@pytest.mark.asyncio
async def test_raise_exception(lifecycle):
    pr = await lifecycle.budget_exception(requested=1_000_000, quoted=1_200_000)

    assert pr.status == PRStatus.BUDGET_EXCEPTION
    exception = pr.pending_exception
    assert exception.resolution == ExceptionResolution.PENDING
    assert exception.variance == 200_000
    assert exception.over_percent == 20.0
    assert exception.raised_by == "U-BUY-1"
    assert pr.timeline[-1].entry_type == TimelineEntryType.BUDGET_EXCEPTION_RAISED
    assert pr.timeline[-1].from_status == PRStatus.QUOTATION_RECEIVED

@pytest.mark.asyncio
async def test_raise_defaults_requested_to_pr_total(lifecycle, users):
    pr = await lifecycle.quotation_received()
    pr = await budget_exception_flow.raise_exception(pr.pr_id, users["U-BUY-1"], 2000)
    assert pr.pending_exception.requested_amount == 1430.0

@pytest.mark.asyncio
@pytest.mark.parametrize("quoted", [1_000_000, 900_000])
async def test_quote_within_estimate_is_rejected(lifecycle, users, quoted):
    pr = await lifecycle.quotation_received()
    with pytest.raises(ValidationError):
        await budget_exception_flow.raise_exception(
            pr.pr_id, users["U-BUY-1"], quoted, requested_amount=1_000_000,
        )
    stored = await lifecycle.reload(pr.pr_id)
    assert stored.status == PRStatus.QUOTATION_RECEIVED
    assert stored.budget_exceptions == []

@pytest.mark.asyncio
async def test_raise_outside_buyer_processing(lifecycle, users):
    pr = await lifecycle.buyer_leader_pending()
    with pytest.raises(InvalidTransition):
        await budget_exception_flow.raise_exception(pr.pr_id, users["U-ADMIN"], 5000)

@pytest.mark.asyncio
async def test_raise_by_buyer_not_holding_pr(lifecycle, users):
    pr = await lifecycle.quotation_received()
    with pytest.raises(Forbidden):
        await budget_exception_flow.raise_exception(pr.pr_id, users["U-BUY-2"], 5000)

@pytest.mark.asyncio
async def test_second_exception_is_blocked(lifecycle, users):
    pr = await lifecycle.budget_exception()
    with pytest.raises(Blocked):
        await budget_exception_flow.raise_exception(pr.pr_id, users["U-BUY-1"], 1_300_000,
                                                    requested_amount=1_000_000)

@pytest.mark.asyncio
async def test_approve_exception(lifecycle, users):
    pr = await lifecycle.budget_exception()
    pr = await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"], "Go ahead")

    assert pr.status == PRStatus.BUDGET_APPROVED
    assert pr.pending_exception is None
    assert pr.budget_exception.resolution == ExceptionResolution.APPROVED
    assert pr.budget_exception.resolved_by == "U-BM"
    assert pr.timeline[-1].entry_type == TimelineEntryType.BUDGET_EXCEPTION_RESOLVED

@pytest.mark.asyncio
async def test_approving_twice_is_stale(lifecycle, users):
    pr = await lifecycle.budget_exception()
    await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])
    with pytest.raises(StaleState):
        await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])

@pytest.mark.asyncio
async def test_reject_exception_is_terminal(lifecycle, users):
    pr = await lifecycle.budget_exception()
    pr = await budget_exception_flow.reject_exception(pr.pr_id, users["U-BM"], "Too expensive")

    assert pr.status == PRStatus.BUDGET_REJECTED
    assert pr.budget_exception.resolution == ExceptionResolution.REJECTED
    assert pr.budget_exception.comment == "Too expensive"
    with pytest.raises(InvalidTransition):
        await buyer_desk.start_rfq(pr.pr_id, users["U-BUY-1"])
    with pytest.raises(ProcurementError):
        await approval_router.return_pr(pr.pr_id, users["U-BL"], "try again")
    with pytest.raises(ProcurementError):
        await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])

@pytest.mark.asyncio
async def test_reject_exception_requires_comment(lifecycle, users):
    pr = await lifecycle.budget_exception()
    with pytest.raises(ValidationError):
        await budget_exception_flow.reject_exception(pr.pr_id, users["U-BM"], "  ")
    stored = await lifecycle.reload(pr.pr_id)
    assert stored.status == PRStatus.BUDGET_EXCEPTION

@pytest.mark.asyncio
async def test_only_branch_manager_decides(lifecycle, users):
    pr = await lifecycle.budget_exception()
    for user_id in ("U-BUY-1", "U-MGR", "U-BL"):
        with pytest.raises(Forbidden):
            await budget_exception_flow.approve_exception(pr.pr_id, users[user_id])

@pytest.mark.asyncio
async def test_branch_manager_of_other_branch(lifecycle, users):
    pr = await lifecycle.budget_exception()
    with pytest.raises(Forbidden):
        await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM-HN"])

@pytest.mark.asyncio
async def test_decide_without_exception(lifecycle, users):
    pr = await lifecycle.quotation_received()
    with pytest.raises(InvalidTransition):
        await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])

@pytest.mark.asyncio
async def test_pending_exception_blocks_everything_else(lifecycle, users):
    pr = await lifecycle.budget_exception()
    calls = [
        lambda: approval_router.approve(pr.pr_id, users["U-BL"], buyer_id="U-BUY-2"),
        lambda: approval_router.return_pr(pr.pr_id, users["U-BL"], "wait"),
        lambda: approval_router.submit(pr.pr_id, users["U-REQ"]),
        lambda: buyer_desk.start_rfq(pr.pr_id, users["U-BUY-1"]),
        lambda: buyer_desk.select_supplier(pr.pr_id, users["U-BUY-1"], 1000, "ACME"),
        lambda: buyer_desk.mark_paid(pr.pr_id, users["U-BUY-1"]),
        lambda: buyer_desk.request_more_info(pr.pr_id, users["U-BUY-1"], "?"),
    ]
    for call in calls:
        with pytest.raises(Blocked):
            await call()

    stored = await lifecycle.reload(pr.pr_id)
    assert stored.status == PRStatus.BUDGET_EXCEPTION
    assert stored.version == pr.version

@pytest.mark.asyncio
async def test_reassignment_is_refused_while_pending(lifecycle, users):
    from procurement.errors import InvalidReassignment
    pr = await lifecycle.budget_exception()
    with pytest.raises(InvalidReassignment):
        await reassignment_coordinator.reassign(pr.pr_id, users["U-BMGR"], "U-BUY-1", "U-BUY-2", "leave")

@pytest.mark.asyncio
async def test_negotiation_round_trip(lifecycle, users):
    pr = await lifecycle.budget_exception(requested=1_000_000, quoted=1_200_000)
    pr = await budget_exception_flow.request_negotiation(pr.pr_id, users["U-BM"], "Ask for 10% off")

    assert pr.status == PRStatus.QUOTATION_RECEIVED
    assert pr.budget_exception.resolution == ExceptionResolution.NEGOTIATION_REQUESTED

    # A fresh exception can be raised on the renegotiated quote
    pr = await budget_exception_flow.raise_exception(
        pr.pr_id, users["U-BUY-1"], 1_100_000, requested_amount=1_000_000,
    )
    assert pr.status == PRStatus.BUDGET_EXCEPTION
    assert len(pr.budget_exceptions) == 2
    assert pr.pending_exception.quoted_amount == 1_100_000

@pytest.mark.asyncio
async def test_negotiation_requires_comment(lifecycle, users):
    pr = await lifecycle.budget_exception()
    with pytest.raises(ValidationError):
        await budget_exception_flow.request_negotiation(pr.pr_id, users["U-BM"], None)

@pytest.mark.asyncio
async def test_expected_version_on_decision(lifecycle, users):
    pr = await lifecycle.budget_exception()
    with pytest.raises(StaleState):
        await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"], expected_version=1)
