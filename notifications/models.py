"""
Request and response models for the notification dispatch functions.

The JSON contract is camelCase (it is called from the browser client and
from the purchase workflow), so every model uses a camelCase alias while
the Python side keeps snake_case names.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmailRequest(CamelModel):
    """
    Request to send a single email.

    Either an explicit subject/body or a template key must be provided. When
    both are given and an active template exists, the template wins.
    """
    to: str = Field(..., min_length=1, description="Recipient email address")
    subject: Optional[str] = Field(default=None)
    body: Optional[str] = Field(default=None)
    is_html: bool = Field(default=False)
    notification_log_id: Optional[str] = Field(
        default=None,
        description="Notification log entry to update with the outcome"
    )
    template_key: Optional[str] = Field(default=None)
    template_data: dict[str, str] = Field(default_factory=dict)


class WhatsAppRequest(CamelModel):
    """Request to send a single WhatsApp message (free text or template)."""
    to: str = Field(..., min_length=1, description="Recipient phone number")
    message: Optional[str] = Field(default=None)
    notification_log_id: Optional[str] = Field(default=None)
    template_key: Optional[str] = Field(default=None)
    template_data: dict[str, str] = Field(default_factory=dict)


class EmailCheckRequest(CamelModel):
    """Connectivity check: send one test email."""
    test_email: str = Field(..., min_length=1, description="Where to send the test email")


class WhatsAppCheckRequest(CamelModel):
    """Connectivity check: send one test WhatsApp message."""
    test_phone: Optional[str] = Field(
        default=None,
        description="Where to send the test message; a placeholder number is used when empty"
    )


class DispatchPendingRequest(CamelModel):
    purchase_id: Optional[str] = Field(default=None)


class DispatchSummary(CamelModel):
    """What a dispatch-pending run did."""
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    log_ids: list[str] = Field(default_factory=list)


@dataclass
class DispatchOutcome:
    """
    HTTP status plus JSON body of one dispatch.

    Bodies are one of:
    - {"success": true, "emailId" | "messageId": ...}
    - {"success": true, "skipped": true, "reason": ...}
    - {"error": ..., "details": ...}
    """
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))

    @property
    def skipped(self) -> bool:
        return bool(self.body.get("skipped"))
