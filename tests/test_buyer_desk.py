import pytest

from procurement.errors import Forbidden, InvalidTransition, ValidationError
from procurement.models.status import PRStatus
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.buyer_desk import buyer_desk
from procurement.workflow.router import approval_router


@pytest.mark.asyncio
async def test_buyer_happy_path(lifecycle, users):
    buyer = users["U-BUY-1"]
    pr = await lifecycle.assigned()

    pr = await buyer_desk.mark_ready_for_rfq(pr.pr_id, buyer)
    assert pr.status == PRStatus.READY_FOR_RFQ
    pr = await buyer_desk.start_rfq(pr.pr_id, buyer)
    assert pr.status == PRStatus.RFQ_IN_PROGRESS
    pr = await buyer_desk.record_quotation(pr.pr_id, buyer, "2 quotes in")
    assert pr.status == PRStatus.QUOTATION_RECEIVED
    pr = await buyer_desk.select_supplier(pr.pr_id, buyer, 1400, "ACME Supplies")
    assert pr.status == PRStatus.SUPPLIER_SELECTED
    assert pr.supplier_name == "ACME Supplies"
    assert pr.purchase_amount == 1400
    pr = await buyer_desk.mark_paid(pr.pr_id, buyer)
    assert pr.status == PRStatus.PAYMENT_DONE
    assert pr.replay_status() == PRStatus.PAYMENT_DONE

@pytest.mark.asyncio
async def test_rfq_can_restart_after_quotation(lifecycle, users):
    pr = await lifecycle.quotation_received()
    pr = await buyer_desk.start_rfq(pr.pr_id, users["U-BUY-1"], "quotes expired")
    assert pr.status == PRStatus.RFQ_IN_PROGRESS

@pytest.mark.asyncio
async def test_skipping_steps_is_invalid(lifecycle, users):
    pr = await lifecycle.assigned()
    with pytest.raises(InvalidTransition):
        await buyer_desk.mark_paid(pr.pr_id, users["U-BUY-1"])
    with pytest.raises(InvalidTransition):
        await buyer_desk.record_quotation(pr.pr_id, users["U-BUY-1"])

@pytest.mark.asyncio
async def test_other_buyer_is_forbidden(lifecycle, users):
    pr = await lifecycle.assigned()
    with pytest.raises(Forbidden):
        await buyer_desk.start_rfq(pr.pr_id, users["U-BUY-2"])

@pytest.mark.asyncio
async def test_requestor_cannot_process(lifecycle, users):
    pr = await lifecycle.assigned()
    with pytest.raises(Forbidden):
        await buyer_desk.start_rfq(pr.pr_id, users["U-REQ"])

@pytest.mark.asyncio
async def test_buyer_cannot_act_before_assignment(lifecycle, users):
    pr = await lifecycle.buyer_leader_pending()
    with pytest.raises(Forbidden):
        await buyer_desk.mark_ready_for_rfq(pr.pr_id, users["U-BUY-1"])

@pytest.mark.asyncio
async def test_select_supplier_over_budget_opens_exception(lifecycle, users):
    pr = await lifecycle.quotation_received()
    pr = await buyer_desk.select_supplier(pr.pr_id, users["U-BUY-1"], 2000, "Pricey Ltd")

    assert pr.status == PRStatus.BUDGET_EXCEPTION
    assert pr.pending_exception.requested_amount == 1430.0
    assert pr.pending_exception.quoted_amount == 2000
    assert pr.supplier_name == "Pricey Ltd"

@pytest.mark.asyncio
async def test_select_supplier_after_approved_exception(lifecycle, users):
    buyer = users["U-BUY-1"]
    pr = await lifecycle.quotation_received()
    pr = await buyer_desk.select_supplier(pr.pr_id, buyer, 2000, "Pricey Ltd")
    pr = await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])

    with pytest.raises(ValidationError):
        await buyer_desk.select_supplier(pr.pr_id, buyer, 2100, "Pricey Ltd")

    pr = await buyer_desk.select_supplier(pr.pr_id, buyer, 2000, "Pricey Ltd")
    assert pr.status == PRStatus.SUPPLIER_SELECTED
    pr = await buyer_desk.mark_paid(pr.pr_id, buyer)
    assert pr.status == PRStatus.PAYMENT_DONE

@pytest.mark.asyncio
async def test_payment_straight_after_budget_approval(lifecycle, users):
    pr = await lifecycle.budget_exception()
    pr = await budget_exception_flow.approve_exception(pr.pr_id, users["U-BM"])
    pr = await buyer_desk.mark_paid(pr.pr_id, users["U-BUY-1"])
    assert pr.status == PRStatus.PAYMENT_DONE

@pytest.mark.asyncio
async def test_select_supplier_needs_name_and_amount(lifecycle, users):
    pr = await lifecycle.quotation_received()
    with pytest.raises(ValidationError):
        await buyer_desk.select_supplier(pr.pr_id, users["U-BUY-1"], 1000, " ")
    with pytest.raises(ValidationError):
        await buyer_desk.select_supplier(pr.pr_id, users["U-BUY-1"], 0, "ACME")

@pytest.mark.asyncio
async def test_request_more_info_requires_comment(lifecycle, users):
    pr = await lifecycle.assigned()
    with pytest.raises(ValidationError):
        await buyer_desk.request_more_info(pr.pr_id, users["U-BUY-1"], "")

@pytest.mark.asyncio
async def test_more_info_resubmit_releases_buyer(lifecycle, users):
    pr = await lifecycle.assigned()
    pr = await buyer_desk.request_more_info(pr.pr_id, users["U-BUY-1"], "Which brand?")
    assert pr.status == PRStatus.NEED_MORE_INFO

    pr = await approval_router.submit(pr.pr_id, users["U-REQ"], "Dell please")
    assert pr.status == PRStatus.MANAGER_PENDING
    assert pr.assignee_id is None
    assert all(item.buyer_id is None for item in pr.items)
    # Assignment history is kept
    assert len(pr.assignments) == 1

@pytest.mark.asyncio
async def test_admin_can_process_any_pr(lifecycle, users):
    pr = await lifecycle.assigned()
    pr = await buyer_desk.mark_ready_for_rfq(pr.pr_id, users["U-ADMIN"])
    assert pr.status == PRStatus.READY_FOR_RFQ
    assert pr.timeline[-1].actor_id == "U-ADMIN"
