from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from procurement.models.base import MongoModel
from procurement.models.status import Role, canonical_role

class User(MongoModel):
    """Directory entry served by the identity collaborator."""
    user_id: str = Field(..., description="Unique user ID")
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Role
    department: Optional[str] = None
    branch_code: Optional[str] = None
    direct_manager_id: Optional[str] = None
    # PR types a buyer may handle; empty means every type
    purchase_categories: List[str] = []
    company_id: Optional[str] = None
    active: bool = True

    @field_validator("role", mode="before")
    @classmethod
    def resolve_legacy_role(cls, v):
        return canonical_role(v)

    def to_context(self) -> "ActingContext":
        return ActingContext(
            user_id=self.user_id,
            role=self.role,
            department=self.department,
            branch_code=self.branch_code,
            company_id=self.company_id,
        )

class ActingContext(BaseModel):
    """Who is performing an engine operation. Passed explicitly into every call."""
    user_id: str
    role: Role
    department: Optional[str] = None
    branch_code: Optional[str] = None
    company_id: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def resolve_legacy_role(cls, v):
        return canonical_role(v)

class BranchApprovalRule(MongoModel):
    """Whether PRs raised in a branch need branch-manager approval after the direct manager."""
    branch_code: str
    need_branch_manager_approval: bool = True
    company_id: Optional[str] = None
