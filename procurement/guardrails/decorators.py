from fastapi import Depends

from procurement.api.auth import get_acting_context
from procurement.errors import Forbidden
from procurement.guardrails.permissions import permission_checker, Permission
from procurement.models.user import ActingContext

def require_permission(permission: Permission):
    """
    Dependency to check static permission before the engine runs its own
    status-aware checks.
    """
    def check(ctx: ActingContext = Depends(get_acting_context)):
        if not permission_checker.check_permission(ctx, permission):
            raise Forbidden(
                f"Permission denied: {permission.value} required",
                action=permission.value,
            )
        return ctx
    return check
