import asyncio
import argparse
from procurement.database import db
from procurement.models.purchase_request import PRDraftInput, PRItemInput
from procurement.workflow.buyer_desk import buyer_desk
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.router import approval_router
from procurement.workflow.sla_clock import sla_report

# Users from scripts/seed_data.py
REQUESTOR, MANAGER, BRANCH_MANAGER = "U-REQ-1", "U-MGR-1", "U-BM-HCM"
BUYER_LEADER, BUYER = "U-BL-1", "U-BUY-1"

async def ctx_for(user_id: str):
    user = await db.users.get_by_user_id(user_id)
    if not user:
        raise SystemExit(f"User {user_id} missing, run scripts/seed_data.py first")
    return user.to_context()

async def run_scenario(over_budget: bool):
    print(f"--- Running purchase request demo (over budget: {over_budget}) ---")
    requestor = await ctx_for(REQUESTOR)
    pr = await approval_router.create_draft(requestor, PRDraftInput(
        tax_rate=10,
        purpose="Laptops for new joiners",
        items=[
            PRItemInput(description="Laptop", quantity=2, unit="pcs", unit_price=500),
            PRItemInput(description="Docking station", quantity=3, unit="pcs", unit_price=100),
        ],
    ))
    print(f"Created {pr.pr_number}, total {pr.total_amount} {pr.currency}")

    pr = await approval_router.submit(pr.pr_id, requestor)
    pr = await approval_router.approve(pr.pr_id, await ctx_for(MANAGER), "Budget available")
    pr = await approval_router.approve(pr.pr_id, await ctx_for(BRANCH_MANAGER))
    pr = await approval_router.approve(pr.pr_id, await ctx_for(BUYER_LEADER), "Standard IT order", buyer_id=BUYER)

    buyer = await ctx_for(BUYER)
    pr = await buyer_desk.start_rfq(pr.pr_id, buyer)
    pr = await buyer_desk.record_quotation(pr.pr_id, buyer, "Two quotes received")
    quote = pr.total_amount * (1.2 if over_budget else 0.95)
    pr = await buyer_desk.select_supplier(pr.pr_id, buyer, round(quote, 2), "Saigon IT Supply")

    if over_budget:
        print(f"{pr.pr_number} is {pr.status.value}, asking the branch manager")
        pr = await budget_exception_flow.approve_exception(pr.pr_id, await ctx_for(BRANCH_MANAGER), "Urgent need")
        pr = await buyer_desk.select_supplier(pr.pr_id, buyer, round(quote, 2), "Saigon IT Supply")

    pr = await buyer_desk.mark_paid(pr.pr_id, buyer)
    report = sla_report(pr)
    print(f"Result Status: {pr.status.value} ({report.completion_percent}% complete, SLA {report.sla_state.value})")
    for entry in pr.timeline:
        print(f"  {entry.timestamp:%H:%M:%S} {entry.entry_type.value:<28} {entry.status.value:<24} {entry.actor_id}")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Walk one purchase request through its lifecycle")
    parser.add_argument("--over-budget", action="store_true", help="Quote above the estimate")
    args = parser.parse_args()

    db.connect()
    try:
        asyncio.run(run_scenario(args.over_budget))
    finally:
        db.close()
