from typing import Optional
from procurement.repositories.base import BaseRepository
from procurement.models.user import BranchApprovalRule

class BranchRuleRepository(BaseRepository[BranchApprovalRule]):
    async def get_by_branch_code(self, branch_code: str) -> Optional[BranchApprovalRule]:
        doc = await self.collection.find_one({"branch_code": branch_code})
        return self.model_cls.from_mongo(doc) if doc else None
