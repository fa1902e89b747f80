"""
Campaign domain core.

This package contains what both the purchase workflow and the notification
dispatchers share:
- Domain models (Product, Purchase, PoolTicket, NotificationLogEntry, etc.)
- Data store for JSON-backed persistence, atomic ticket assignment and the
  serial registry
- Typed settings built from the settings table and environment secrets
- Notification template resolution
"""

from campaign.models import (
    Product,
    Purchase,
    PoolTicket,
    TicketAssignment,
    Coupon,
    NotificationLogEntry,
    NotificationTemplate,
    IAStatus,
    AdminStatus,
    Channel,
    NotificationStatus,
    SerialRegistryEntry,
    SerialStatus,
)
from campaign.data_store import DataStore
from campaign.settings import CampaignSettings, EnvSecrets, load_settings
from campaign.templates import TemplateResolver, fill_placeholders

__all__ = [
    "Product",
    "Purchase",
    "PoolTicket",
    "TicketAssignment",
    "Coupon",
    "NotificationLogEntry",
    "NotificationTemplate",
    "IAStatus",
    "AdminStatus",
    "Channel",
    "NotificationStatus",
    "SerialRegistryEntry",
    "SerialStatus",
    "DataStore",
    "CampaignSettings",
    "EnvSecrets",
    "load_settings",
    "TemplateResolver",
    "fill_placeholders",
]
