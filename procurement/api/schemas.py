from typing import List, Optional
from pydantic import BaseModel

class DecisionRequest(BaseModel):
    comment: Optional[str] = None
    expected_version: Optional[int] = None

class ApproveRequest(DecisionRequest):
    # Buyer leader approval assigns the PR
    buyer_id: Optional[str] = None
    item_ids: Optional[List[str]] = None

class AssignRequest(BaseModel):
    buyer_id: str
    note: Optional[str] = None
    item_ids: Optional[List[str]] = None
    expected_version: Optional[int] = None

class RaiseExceptionRequest(BaseModel):
    quoted_amount: float
    requested_amount: Optional[float] = None
    comment: Optional[str] = None
    expected_version: Optional[int] = None

class SelectSupplierRequest(BaseModel):
    supplier_name: str
    quoted_amount: float
    comment: Optional[str] = None
    expected_version: Optional[int] = None

class ReassignRequest(BaseModel):
    from_buyer_id: str
    to_buyer_id: str
    reason: Optional[str] = None
    item_ids: Optional[List[str]] = None
    expected_version: Optional[int] = None
