from typing import List
from procurement.repositories.base import BaseRepository
from procurement.models.audit import AuditEvent

class AuditRepository(BaseRepository[AuditEvent]):

    async def get_for_pr(self, pr_id: str) -> List[AuditEvent]:
        """Retrieve all audit events for a specific PR, oldest first."""
        return await self.list({"pr_id": pr_id}, limit=1000, sort=[("timestamp", 1)])
