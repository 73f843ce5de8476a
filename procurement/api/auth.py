import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from procurement.database import db
from procurement.errors import Forbidden
from procurement.models.user import ActingContext, User

logger = logging.getLogger(__name__)

async def get_current_user(x_user_id: Optional[str] = Header(None)) -> User:
    """
    Resolve the caller from the X-User-Id header set by the gateway.
    Authentication itself happens upstream.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = await db.users.get_by_user_id(x_user_id)
    if not user:
        logger.warning(f"Request from unknown user {x_user_id}")
        raise HTTPException(status_code=401, detail="Unknown user")
    return user

async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.active:
        raise Forbidden(f"User {current_user.user_id} is inactive", action="authenticate")
    return current_user

async def get_acting_context(current_user: User = Depends(get_current_active_user)) -> ActingContext:
    return current_user.to_context()
