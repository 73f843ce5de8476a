from enum import Enum
from typing import Optional
import logging

from procurement.errors import Forbidden
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.status import Role, owner_role
from procurement.models.user import ActingContext, User

logger = logging.getLogger(__name__)

class Permission(str, Enum):
    # Requestor
    CREATE_PR = "CREATE_PR"
    VIEW_PR = "VIEW_PR"
    SUBMIT_PR = "SUBMIT_PR"

    # Approval chain
    APPROVE_PR = "APPROVE_PR"
    REJECT_PR = "REJECT_PR"
    RETURN_PR = "RETURN_PR"
    ASSIGN_PR = "ASSIGN_PR"
    ROUTE_PR = "ROUTE_PR"

    # Buying
    PROCESS_PR = "PROCESS_PR"
    RAISE_BUDGET_EXCEPTION = "RAISE_BUDGET_EXCEPTION"
    DECIDE_BUDGET_EXCEPTION = "DECIDE_BUDGET_EXCEPTION"
    REASSIGN_PR = "REASSIGN_PR"

    # Admin
    VIEW_DASHBOARD = "VIEW_DASHBOARD"
    MANAGE_USERS = "MANAGE_USERS"

# Role -> Permissions Mapping
ROLE_PERMISSIONS = {
    Role.SYSTEM_ADMIN: [p for p in Permission], # All
    Role.SYSTEM: [Permission.ROUTE_PR, Permission.RAISE_BUDGET_EXCEPTION, Permission.VIEW_PR],
    Role.REQUESTOR: [
        Permission.CREATE_PR, Permission.VIEW_PR, Permission.SUBMIT_PR
    ],
    Role.MANAGER: [
        Permission.CREATE_PR, Permission.VIEW_PR, Permission.SUBMIT_PR,
        Permission.APPROVE_PR, Permission.REJECT_PR, Permission.RETURN_PR
    ],
    Role.BRANCH_MANAGER: [
        Permission.VIEW_PR, Permission.APPROVE_PR, Permission.REJECT_PR, Permission.RETURN_PR,
        Permission.DECIDE_BUDGET_EXCEPTION, Permission.VIEW_DASHBOARD
    ],
    Role.BUYER_LEADER: [
        Permission.VIEW_PR, Permission.APPROVE_PR, Permission.REJECT_PR, Permission.RETURN_PR, Permission.ASSIGN_PR,
        Permission.REASSIGN_PR, Permission.VIEW_DASHBOARD
    ],
    Role.BUYER: [
        Permission.VIEW_PR, Permission.PROCESS_PR, Permission.RAISE_BUDGET_EXCEPTION
    ],
    Role.BUYER_MANAGER: [
        Permission.VIEW_PR, Permission.REASSIGN_PR, Permission.VIEW_DASHBOARD
    ],
}

class PermissionChecker:

    def check_permission(self, ctx: ActingContext, permission: Permission) -> bool:
        """
        Basic Role-Based Check.
        """
        allowed = ROLE_PERMISSIONS.get(ctx.role, [])
        if permission in allowed:
            return True

        logger.warning(f"User {ctx.user_id} ({ctx.role.value}) denied permission {permission.value}")
        return False

    def require(self, ctx: ActingContext, permission: Permission,
                pr: Optional[PurchaseRequest] = None, action: Optional[str] = None):
        if not self.check_permission(ctx, permission):
            raise Forbidden(
                f"{ctx.role.value} may not {action or permission.value.lower()}",
                current_status=pr.status if pr else None,
                action=action,
                pr_id=pr.pr_id if pr else None,
            )

    def check_owner(self, ctx: ActingContext, pr: PurchaseRequest, action: str):
        """The acting role must be the role implied by the PR's current status."""
        expected = owner_role(pr.status)
        if expected != ctx.role:
            expected_name = expected.value if expected else "nobody"
            raise Forbidden(
                f"{pr.pr_number} is in {pr.status.value}, which is handled by {expected_name}, not {ctx.role.value}",
                current_status=pr.status,
                action=action,
                pr_id=pr.pr_id,
            )

    def check_sod(self, ctx: ActingContext, pr: PurchaseRequest, action: str):
        """
        Segregation of Duties: nobody approves, rejects or returns their own request.
        """
        if ctx.user_id == pr.requestor_id:
            logger.warning(f"SoD Violation: User {ctx.user_id} raised {pr.pr_number} and cannot {action} it.")
            raise Forbidden(
                f"You raised {pr.pr_number} and cannot {action} it",
                current_status=pr.status,
                action=action,
                pr_id=pr.pr_id,
            )

    def check_approver_scope(self, ctx: ActingContext, pr: PurchaseRequest,
                             requestor: Optional[User], action: str):
        """
        Managers act only on their direct reports; branch managers only on their branch.
        Unknown links (no direct manager on file, no branch) are not enforced.
        """
        if ctx.role == Role.MANAGER and requestor and requestor.direct_manager_id:
            if requestor.direct_manager_id != ctx.user_id:
                raise Forbidden(
                    f"Only the requestor's direct manager can {action} {pr.pr_number}",
                    current_status=pr.status,
                    action=action,
                    pr_id=pr.pr_id,
                )
        if ctx.role == Role.BRANCH_MANAGER and ctx.branch_code and pr.branch_code:
            if ctx.branch_code != pr.branch_code:
                raise Forbidden(
                    f"{pr.pr_number} belongs to branch {pr.branch_code}",
                    current_status=pr.status,
                    action=action,
                    pr_id=pr.pr_id,
                )

    def check_buyer(self, ctx: ActingContext, pr: PurchaseRequest, action: str):
        """Buying steps are done by a buyer holding the PR (overall or through an item)."""
        if ctx.role == Role.SYSTEM_ADMIN:
            return
        if ctx.user_id not in pr.buyer_ids():
            raise Forbidden(
                f"{pr.pr_number} is not assigned to you",
                current_status=pr.status,
                action=action,
                pr_id=pr.pr_id,
            )

permission_checker = PermissionChecker()
