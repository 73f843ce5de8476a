import logging
from datetime import datetime
from typing import List, Optional
from procurement.repositories.base import BaseRepository
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.status import PRStatus, STATUS_META, StatusKind
from procurement.errors import StaleState

logger = logging.getLogger(__name__)

OPEN_STATUSES = [
    status.value for status, meta in STATUS_META.items()
    if meta.kind not in (StatusKind.TERMINAL_SUCCESS, StatusKind.TERMINAL_FAILURE)
]

class PurchaseRequestRepository(BaseRepository[PurchaseRequest]):

    async def get_by_pr_id(self, pr_id: str) -> Optional[PurchaseRequest]:
        return await self.get_by_field("pr_id", pr_id)

    async def get_by_pr_number(self, pr_number: str) -> Optional[PurchaseRequest]:
        return await self.get_by_field("pr_number", pr_number)

    async def insert(self, pr: PurchaseRequest) -> PurchaseRequest:
        """Store a brand-new PR at version 1."""
        pr.version = 1
        return await self.create(pr)

    async def save(self, pr: PurchaseRequest, expected_version: int) -> PurchaseRequest:
        """
        Commit the whole aggregate if nobody else committed since it was loaded.
        Status, timeline, items and sub-records go out in a single document write.
        """
        pr.version = expected_version + 1
        pr.updated_at = datetime.utcnow()
        data = pr.to_mongo()
        result = await self.collection.update_one(
            {"pr_id": pr.pr_id, "version": expected_version},
            {"$set": data},
        )
        if result.matched_count == 0:
            pr.version = expected_version
            logger.warning(f"Concurrent update detected on {pr.pr_id} (expected version {expected_version})")
            raise StaleState(
                f"PR {pr.pr_number} was modified by someone else, reload and try again",
                current_status=pr.status,
                action="save",
                pr_id=pr.pr_id,
            )
        return pr

    async def list_by_status(self, statuses: List[PRStatus], skip: int = 0, limit: int = 100) -> List[PurchaseRequest]:
        values = [PRStatus(s).value for s in statuses]
        return await self.list({"status": {"$in": values}}, skip=skip, limit=limit,
                               sort=[("updated_at", -1)])

    async def list_by_requestor(self, requestor_id: str, skip: int = 0, limit: int = 100) -> List[PurchaseRequest]:
        return await self.list({"requestor_id": requestor_id}, skip=skip, limit=limit,
                               sort=[("created_at", -1)])

    async def list_by_assignee(self, buyer_id: str, open_only: bool = True, limit: int = 500) -> List[PurchaseRequest]:
        """PRs held by a buyer, either as overall assignee or through an item."""
        filter = {"$or": [{"assignee_id": buyer_id}, {"items.buyer_id": buyer_id}]}
        if open_only:
            filter["status"] = {"$in": OPEN_STATUSES}
        return await self.list(filter, limit=limit)

    async def list_open(self, limit: int = 1000) -> List[PurchaseRequest]:
        return await self.list({"status": {"$in": OPEN_STATUSES}}, limit=limit)

    async def pr_numbers_with_prefix(self, prefix: str) -> List[str]:
        cursor = self.collection.find({"pr_number": {"$regex": f"^{prefix}"}}, {"pr_number": 1})
        docs = await cursor.to_list(length=None)
        return [doc["pr_number"] for doc in docs]
