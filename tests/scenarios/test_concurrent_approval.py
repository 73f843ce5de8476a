import asyncio

import pytest

from procurement.errors import StaleState
from procurement.models.status import PRStatus
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.reassignment import reassignment_coordinator
from procurement.workflow.router import approval_router


@pytest.mark.asyncio
async def test_double_approve_commits_once(lifecycle, users):
    pr = await lifecycle.manager_pending()
    manager = users["U-MGR"]

    results = await asyncio.gather(
        approval_router.approve(pr.pr_id, manager, "first tab"),
        approval_router.approve(pr.pr_id, manager, "second tab"),
        return_exceptions=True,
    )

    committed = [r for r in results if not isinstance(r, Exception)]
    stale = [r for r in results if isinstance(r, StaleState)]
    assert len(committed) == 1
    assert len(stale) == 1

    stored = await lifecycle.reload(pr.pr_id)
    assert stored.status == PRStatus.BRANCH_MANAGER_PENDING
    assert len(stored.timeline) == 3
    assert stored.version == pr.version + 1

@pytest.mark.asyncio
async def test_approve_and_reject_race(lifecycle, users):
    pr = await lifecycle.branch_manager_pending()
    bm = users["U-BM"]

    results = await asyncio.gather(
        approval_router.approve(pr.pr_id, bm),
        approval_router.reject(pr.pr_id, bm, "duplicate"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, StaleState) for r in results) == 1
    stored = await lifecycle.reload(pr.pr_id)
    assert stored.status in (PRStatus.BUYER_LEADER_PENDING, PRStatus.BRANCH_MANAGER_REJECTED)
    assert stored.replay_status() == stored.status

@pytest.mark.asyncio
async def test_budget_decision_race(lifecycle, users):
    pr = await lifecycle.budget_exception()
    bm = users["U-BM"]

    results = await asyncio.gather(
        budget_exception_flow.approve_exception(pr.pr_id, bm),
        budget_exception_flow.reject_exception(pr.pr_id, bm, "no"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, StaleState) for r in results) == 1
    stored = await lifecycle.reload(pr.pr_id)
    assert stored.pending_exception is None
    assert len(stored.budget_exceptions) == 1

@pytest.mark.asyncio
async def test_parallel_reassignments(lifecycle, users):
    pr = await lifecycle.assigned("U-BUY-1")

    results = await asyncio.gather(
        reassignment_coordinator.reassign(pr.pr_id, users["U-BMGR"], "U-BUY-1", "U-BUY-2", "leave"),
        reassignment_coordinator.reassign(pr.pr_id, users["U-BL"], "U-BUY-1", "U-BUY-2", "rebalance"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, StaleState) for r in results) == 1
    stored = await lifecycle.reload(pr.pr_id)
    assert len(stored.reassignments) == 1
    assert stored.assignee_id == "U-BUY-2"

@pytest.mark.asyncio
async def test_parallel_drafts_get_distinct_numbers(fake_db, users, draft_payload):
    results = await asyncio.gather(*[
        approval_router.create_draft(users["U-REQ"], draft_payload) for _ in range(5)
    ])

    numbers = [pr.pr_number for pr in results]
    assert len(set(numbers)) == 5
    assert sorted(n[-4:] for n in numbers) == ["0001", "0002", "0003", "0004", "0005"]
