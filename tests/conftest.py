import asyncio
import copy
import re
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from procurement.database import db
from procurement.models.purchase_request import PRDraftInput, PRItemInput
from procurement.models.status import Role
from procurement.models.user import BranchApprovalRule, User
from procurement.tools.notification_tool import notification_tool
from procurement.workflow.budget_exception import budget_exception_flow
from procurement.workflow.buyer_desk import buyer_desk
from procurement.workflow.router import approval_router


def _values(doc: Any, path: List[str]) -> List[Any]:
    """All values at a dotted path, fanning out through arrays like Mongo does."""
    if not path:
        return doc if isinstance(doc, list) else [doc]
    if isinstance(doc, list):
        found = []
        for element in doc:
            found.extend(_values(element, path))
        return found
    if not isinstance(doc, dict) or path[0] not in doc:
        return [None]
    return _values(doc[path[0]], path[1:])

def _matches(doc: Dict, filter: Dict) -> bool:
    for key, condition in filter.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in condition):
                return False
            continue
        values = _values(doc, key.split("."))
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, arg in condition.items():
                if op == "$in" and not any(v in arg for v in values):
                    return False
                if op == "$ne" and any(v == arg for v in values):
                    return False
                if op == "$regex" and not any(isinstance(v, str) and re.search(arg, v) for v in values):
                    return False
        elif condition not in values:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict]):
        self.docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, keys, direction=None):
        if isinstance(keys, str):
            keys = [(keys, direction or 1)]
        for field, order in reversed(keys):
            self.docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=order < 0)
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _window(self) -> List[Dict]:
        docs = self.docs[self._skip:]
        return docs[:self._limit] if self._limit else docs

    async def to_list(self, length: Optional[int] = None):
        await asyncio.sleep(0)
        docs = self._window()
        return docs[:length] if length else docs

    def __aiter__(self):
        self._iter = iter(self._window())
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """
    In-memory stand-in for a motor collection. Every call yields to the event
    loop once, then reads or writes synchronously, so a single update_one is
    atomic the way a single-document Mongo write is.
    """
    def __init__(self, unique: tuple = ()):
        self.docs: List[Dict] = []
        self.unique = unique
        self.fail_writes: Optional[Exception] = None

    def seed(self, *docs: Dict):
        for doc in docs:
            self.docs.append({"_id": ObjectId(), **copy.deepcopy(doc)})

    async def find_one(self, filter: Dict, projection=None):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    def find(self, filter: Optional[Dict] = None, projection=None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, filter or {})])

    async def insert_one(self, doc: Dict):
        await asyncio.sleep(0)
        if self.fail_writes:
            raise self.fail_writes
        for field in self.unique:
            if any(existing.get(field) == doc.get(field) for existing in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error: {field} {doc.get(field)}")
        stored = {"_id": ObjectId(), **copy.deepcopy(doc)}
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def update_one(self, filter: Dict, update: Dict, upsert: bool = False):
        await asyncio.sleep(0)
        if self.fail_writes:
            raise self.fail_writes
        for doc in self.docs:
            if _matches(doc, filter):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def count_documents(self, filter: Dict):
        await asyncio.sleep(0)
        return sum(1 for doc in self.docs if _matches(doc, filter))

    def aggregate(self, pipeline: List[Dict]):
        """$match and {$group: {_id: "$field", count: {$sum: 1}}} only."""
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$group" in stage:
                field = stage["$group"]["_id"].lstrip("$")
                counts: Dict[Any, int] = {}
                for doc in docs:
                    counts[doc.get(field)] = counts.get(doc.get(field), 0) + 1
                docs = [{"_id": key, "count": count} for key, count in counts.items()]
        return FakeCursor(docs)


class FakeDatabase:
    def __init__(self):
        self.purchase_requests = FakeCollection(unique=("pr_id", "pr_number"))
        self.users = FakeCollection(unique=("user_id",))
        self.branch_approval_rules = FakeCollection(unique=("branch_code",))
        self.audit_log = FakeCollection(unique=("event_id",))


USERS = [
    User(user_id="U-REQ", username="an", role=Role.REQUESTOR, department="IT", branch_code="HCM",
         direct_manager_id="U-MGR"),
    User(user_id="U-REQ-HN", username="binh", role=Role.REQUESTOR, department="OPS", branch_code="HN",
         direct_manager_id="U-MGR-HN"),
    User(user_id="U-MGR", username="chi", role=Role.MANAGER, department="IT", branch_code="HCM"),
    User(user_id="U-MGR-HN", username="dung", role=Role.MANAGER, department="OPS", branch_code="HN"),
    User(user_id="U-MGR-OTHER", username="em", role=Role.MANAGER, department="HR", branch_code="HCM"),
    User(user_id="U-BM", username="giang", role=Role.BRANCH_MANAGER, branch_code="HCM"),
    User(user_id="U-BM-HN", username="hoa", role=Role.BRANCH_MANAGER, branch_code="HN"),
    User(user_id="U-BL", username="khanh", role=Role.BUYER_LEADER),
    User(user_id="U-BUY-1", username="linh", role=Role.BUYER),
    User(user_id="U-BUY-2", username="minh", role=Role.BUYER, purchase_categories=["COMMERCIAL"]),
    User(user_id="U-BUY-OFF", username="nga", role=Role.BUYER, active=False),
    User(user_id="U-BUY-PROD", username="oanh", role=Role.BUYER, purchase_categories=["PRODUCTION"]),
    User(user_id="U-BMGR", username="phuc", role=Role.BUYER_MANAGER),
    User(user_id="U-ADMIN", username="admin", role=Role.SYSTEM_ADMIN),
    User(user_id="U-SYS", username="scheduler", role=Role.SYSTEM),
]

BRANCH_RULES = [
    BranchApprovalRule(branch_code="HCM", need_branch_manager_approval=True),
    BranchApprovalRule(branch_code="HN", need_branch_manager_approval=False),
]


@pytest.fixture
def fake_db():
    fake = FakeDatabase()
    fake.users.seed(*[user.to_mongo() for user in USERS])
    fake.branch_approval_rules.seed(*[rule.to_mongo() for rule in BRANCH_RULES])
    previous = (db.purchase_requests, db.users, db.branch_rules, db.audit)
    db.bind(fake)
    yield fake
    db.purchase_requests, db.users, db.branch_rules, db.audit = previous


@pytest.fixture(autouse=True)
def no_notification_senders():
    senders = notification_tool.senders
    notification_tool.senders = []
    yield
    notification_tool.senders = senders


@pytest.fixture
def users() -> Dict[str, Any]:
    """Acting contexts keyed by user_id."""
    return {user.user_id: user.to_context() for user in USERS}


@pytest.fixture
def draft_payload() -> PRDraftInput:
    return PRDraftInput(
        tax_rate=10,
        purpose="Laptops for new joiners",
        items=[
            PRItemInput(description="Laptop", quantity=2, unit="pcs", unit_price=500),
            PRItemInput(description="Monitor", quantity=1, unit="pcs", unit_price=300),
        ],
    )


class LifecycleDriver:
    """Walks a PR forward through the real engine to a requested status."""

    def __init__(self, users, payload):
        self.users = users
        self.payload = payload

    async def draft(self, requestor: str = "U-REQ"):
        return await approval_router.create_draft(self.users[requestor], self.payload)

    async def manager_pending(self, requestor: str = "U-REQ"):
        pr = await self.draft(requestor)
        return await approval_router.submit(pr.pr_id, self.users[requestor])

    async def branch_manager_pending(self):
        pr = await self.manager_pending()
        return await approval_router.approve(pr.pr_id, self.users["U-MGR"], "ok")

    async def buyer_leader_pending(self):
        pr = await self.branch_manager_pending()
        return await approval_router.approve(pr.pr_id, self.users["U-BM"], "ok")

    async def assigned(self, buyer_id: str = "U-BUY-1"):
        pr = await self.buyer_leader_pending()
        return await approval_router.assign(pr.pr_id, self.users["U-BL"], buyer_id, "please handle")

    async def quotation_received(self, buyer_id: str = "U-BUY-1"):
        pr = await self.assigned(buyer_id)
        pr = await buyer_desk.start_rfq(pr.pr_id, self.users[buyer_id])
        return await buyer_desk.record_quotation(pr.pr_id, self.users[buyer_id], "3 quotes")

    async def budget_exception(self, requested: float = 1_000_000, quoted: float = 1_200_000):
        pr = await self.quotation_received()
        return await budget_exception_flow.raise_exception(
            pr.pr_id, self.users["U-BUY-1"], quoted, requested_amount=requested,
        )

    async def reload(self, pr_id: str):
        return await db.purchase_requests.get_by_pr_id(pr_id)


@pytest.fixture
def lifecycle(fake_db, users, draft_payload) -> LifecycleDriver:
    return LifecycleDriver(users, draft_payload)
