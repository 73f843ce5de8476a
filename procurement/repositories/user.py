from typing import List, Optional
from procurement.repositories.base import BaseRepository
from procurement.models.user import User
from procurement.models.status import Role

class UserRepository(BaseRepository[User]):

    async def get_by_user_id(self, user_id: str) -> Optional[User]:
        return await self.get_by_field("user_id", user_id)

    async def list_by_role(self, role: Role, active_only: bool = True) -> List[User]:
        filter = {"role": Role(role).value}
        if active_only:
            filter["active"] = True
        return await self.list(filter, limit=1000)
