"""
Domain models for the promotional campaign core.

These mirror the rows of the hosted tables the purchase workflow and the
notification dispatchers read and write:
- Products and the purchases registered against them
- The pre-generated ticket pool and the assignments drawn from it
- Coupons issued to buyers and sellers
- The official serial number registry
- Notification templates, the notification log and the settings rows

Design decisions:
- Using Pydantic for validation and serialization (same as the JSON fixtures)
- Status fields are string enums so fixture values round-trip untouched
- Owner snapshots are copied onto assignment rows, never referenced
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    """Timezone-aware current time, used for every timestamp we write."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class IAStatus(str, Enum):
    """Outcome of the automated invoice classification."""
    PENDING = "PENDING"           # Not classified yet
    VALID = "VALID"               # Looks like a genuine invoice
    INVALID = "INVALID"           # Not a document, or very low confidence
    REVIEW = "REVIEW"             # Needs a human


class AdminStatus(str, Enum):
    """Manual review state of a purchase."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AdminAction(str, Enum):
    """Explicit decision sent by an administrator."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class Channel(str, Enum):
    """Delivery channels known to the notification log."""
    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"


class NotificationStatus(str, Enum):
    """
    Notification log entry states.

    PENDING -> SENT | FAILED | SKIPPED. The three outcomes are terminal.
    """
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self is not NotificationStatus.PENDING


class OwnerType(str, Enum):
    """Who a ticket or coupon was issued to."""
    BUYER = "BUYER"
    SELLER = "SELLER"


class CouponStatus(str, Enum):
    ACTIVE = "ACTIVE"
    VOID = "VOID"
    WON = "WON"


class SerialStatus(str, Enum):
    """Registration state of a TV serial number."""
    AVAILABLE = "AVAILABLE"       # Sold, not registered by a buyer yet
    USED = "USED"                 # Already backs an approved purchase
    BLOCKED = "BLOCKED"           # Withdrawn by an administrator


# =============================================================================
# Catalog and purchases
# =============================================================================

class Product(BaseModel):
    """
    A promoted TV model.

    The tier partitions the ticket pool and the multiplier decides how many
    tickets a single approved purchase draws.
    """
    id: str = Field(..., description="Unique product identifier")
    model_name: str = Field(..., description="Commercial model name")
    tier: str = Field(..., description="Ticket pool partition, e.g. T1/T2/T3")
    ticket_multiplier: int = Field(default=1, ge=1, description="Tickets per approved purchase")
    screen_size: Optional[int] = Field(default=None, description="Screen size in inches")
    is_active: bool = Field(default=True)


class Purchase(BaseModel):
    """
    A submitted proof of purchase.

    Created by the client registration form. The validation workflow fills in
    the ia_* fields, admin review fills in the admin_* fields. Never deleted.
    """
    id: str = Field(..., description="Unique purchase identifier")
    invoice_number: str = Field(..., description="Invoice reference typed by the client")
    invoice_url: Optional[str] = Field(
        default=None,
        description="Storage path of the uploaded invoice image"
    )
    product_id: str = Field(..., description="Reference to product")
    full_name: str
    email: str
    phone: Optional[str] = Field(default=None)
    serial_number: Optional[str] = Field(default=None)
    ia_status: IAStatus = Field(default=IAStatus.PENDING)
    ia_score: int = Field(default=0, ge=0, le=100)
    ia_detail: dict[str, Any] = Field(default_factory=dict)
    admin_status: AdminStatus = Field(default=AdminStatus.PENDING)
    admin_notes: Optional[str] = Field(default=None)
    reviewed_at: Optional[datetime] = Field(default=None)
    reviewed_by: Optional[str] = Field(default=None)
    tickets_count: int = Field(default=0, ge=0)
    tickets_issued_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(use_enum_values=True)


# =============================================================================
# Tickets and coupons
# =============================================================================

class PoolTicket(BaseModel):
    """A pre-generated lottery ticket code waiting in the pool."""
    id: str
    ticket_code: str
    tier: str
    is_assigned: bool = Field(default=False)
    assigned_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)


class TicketAssignment(BaseModel):
    """
    Link between a purchase and one drawn ticket.

    The ticket code is stored on the row so already-ticketed purchases can be
    answered without going back to the pool.
    """
    id: str
    purchase_id: str
    ticket_id: str
    ticket_code: str
    tier: str
    owner_name: str
    owner_email: str
    owner_phone: Optional[str] = Field(default=None)
    owner_type: OwnerType = Field(default=OwnerType.BUYER)
    assigned_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True)


class Coupon(BaseModel):
    """An issued entry credential for a buyer or a seller."""
    code: str
    serial_number: str
    owner_type: OwnerType
    owner_name: Optional[str] = Field(default=None)
    owner_email: Optional[str] = Field(default=None)
    owner_phone: Optional[str] = Field(default=None)
    owner_purchase_id: Optional[str] = Field(default=None)
    owner_sale_id: Optional[str] = Field(default=None)
    product_id: Optional[str] = Field(default=None)
    status: CouponStatus = Field(default=CouponStatus.ACTIVE)
    issued_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True)


class SerialRegistryEntry(BaseModel):
    """
    An official serial number from the manufacturer's sales registry.

    When a purchase's serial is found here, its tier and multiplier take
    precedence over the product's.
    """
    id: str
    serial_number: str = Field(..., description="Upper-case serial as printed on the TV")
    tier: str
    ticket_multiplier: int = Field(default=1, ge=1)
    product_id: Optional[str] = Field(default=None)
    status: SerialStatus = Field(default=SerialStatus.AVAILABLE)
    registered_at: Optional[datetime] = Field(default=None)
    registered_by_purchase_id: Optional[str] = Field(default=None)

    model_config = ConfigDict(use_enum_values=True)


# =============================================================================
# Notifications and settings
# =============================================================================

class NotificationTemplate(BaseModel):
    """
    A stored message template for one channel.

    Placeholders are written as {name}. The declared placeholder list is
    ordered: WhatsApp template messages send their parameters positionally.
    """
    id: str
    template_key: str
    template_name: str
    channel: Channel
    subject: Optional[str] = Field(default=None)
    content_text: str
    content_html: Optional[str] = Field(default=None)
    placeholders: list[str] = Field(default_factory=list)
    is_active: bool = Field(default=True)

    model_config = ConfigDict(use_enum_values=True)


class NotificationLogEntry(BaseModel):
    """Record of one send attempt."""
    id: str
    channel: Channel
    recipient: str
    subject: Optional[str] = Field(default=None)
    content: Optional[str] = Field(default=None)
    template_key: Optional[str] = Field(default=None)
    template_data: dict[str, str] = Field(default_factory=dict)
    status: NotificationStatus = Field(default=NotificationStatus.PENDING)
    error_message: Optional[str] = Field(default=None)
    retry_count: int = Field(default=0, ge=0)
    related_purchase_id: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(use_enum_values=True)


class SettingRow(BaseModel):
    """One row of the key/value settings table."""
    setting_key: str
    setting_value: str
