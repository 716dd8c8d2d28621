"""
Administration Pydantic models for bulk operations and role management.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class BulkError(BaseModel):
    """Failure of one id within a bulk operation."""
    id: str
    error: str


class BulkOperationResult(BaseModel):
    """Aggregate outcome of a bulk operation."""
    total_processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: List[BulkError] = Field(default_factory=list)


class BulkIdsRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1, description="Investor ids to process")


class BulkApproveRequest(BulkIdsRequest):
    notes: Optional[str] = Field(None, max_length=500)


class BulkRejectRequest(BulkIdsRequest):
    reason: str = Field(..., description="Rejection reason sent to every investor")


class BulkSuspendRequest(BulkIdsRequest):
    reason: str = Field(..., description="Suspension reason stored on every account")


class BulkNotificationRequest(BulkIdsRequest):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type: str = Field("GENERAL", description="Notification category")
    priority: str = Field("NORMAL", description="LOW, NORMAL or HIGH")
    link: Optional[str] = None


class RoleAction(Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"


class RoleChangeRequest(BaseModel):
    action: RoleAction
    role: str = Field(..., description="Group name, e.g. Admin or Compliance")
    confirm_dangerous: bool = Field(False, description="Required to remove the SuperAdmin role")


class RoleChangeResult(BaseModel):
    user_id: str
    action: RoleAction
    role: str
    groups: List[str]
    message: str
