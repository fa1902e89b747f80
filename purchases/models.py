"""
Request and response models for the purchase validation function.
"""

from typing import Any, Optional

from pydantic import Field

from campaign.models import AdminAction, AdminStatus, IAStatus
from notifications.models import CamelModel


class ProcessPurchaseRequest(CamelModel):
    """
    Request to validate a purchase and, if approved, issue its tickets.

    adminMode is set when an administrator triggers the run from the review
    screen; adminAction then records an explicit decision.
    """
    purchase_id: str = Field(..., min_length=1)
    admin_mode: bool = Field(default=False)
    admin_action: Optional[AdminAction] = Field(default=None)
    admin_notes: Optional[str] = Field(default=None)
    admin_user_id: Optional[str] = Field(default=None)


class ProcessPurchaseResponse(CamelModel):
    """Summary of one workflow run."""
    success: bool = True
    ia_status: IAStatus
    ia_score: int = 0
    ia_detail: dict[str, Any] = Field(default_factory=dict)
    admin_status: AdminStatus
    tickets_assigned: list[str] = Field(default_factory=list)
    notification_log_ids: list[str] = Field(default_factory=list)
    message: str
