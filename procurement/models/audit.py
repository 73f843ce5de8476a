from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import ConfigDict, Field
from procurement.models.base import MongoModel

class ActionType(str, Enum):
    SYSTEM_EVENT = "SYSTEM_EVENT"
    USER_ACTION = "USER_ACTION"
    STATE_CHANGE = "STATE_CHANGE"
    ASSIGNMENT = "ASSIGNMENT"
    REASSIGNMENT = "REASSIGNMENT"
    BUDGET_EXCEPTION = "BUDGET_EXCEPTION"
    ERROR = "ERROR"

class Actor(MongoModel):
    id: str
    name: Optional[str] = None
    role: Optional[str] = None
    type: str = "USER" # USER, SYSTEM

class Action(MongoModel):
    """Record of a specific action taken."""
    action_type: ActionType
    performed_by: Actor
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    details: str
    success: bool = True
    metadata: Dict[str, Any] = {}

class AuditEvent(MongoModel):
    """
    Complete audit log entry.
    """
    event_id: str = Field(..., description="Unique event ID")
    pr_id: Optional[str] = None
    pr_number: Optional[str] = None
    company_id: Optional[str] = None

    timestamp: datetime = Field(default_factory=datetime.utcnow)

    actor: Actor
    action: Action

    from_status: Optional[str] = None
    to_status: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "event_id": "EVT-123",
            "pr_id": "PR-4f1c2a",
            "pr_number": "IT-20260301-0001",
            "action": {
                "action_type": "STATE_CHANGE",
                "details": "MANAGER_PENDING -> BRANCH_MANAGER_PENDING",
                "success": True
            }
        }
    })
