"""
Notification layer: provider channels and the dispatcher that drives them.
"""

from notifications.channels import EmailChannel, WhatsAppChannel, ChannelResult, normalize_phone
from notifications.dispatcher import NotificationDispatcher
from notifications.models import EmailRequest, WhatsAppRequest, DispatchOutcome

__all__ = [
    "EmailChannel",
    "WhatsAppChannel",
    "ChannelResult",
    "normalize_phone",
    "NotificationDispatcher",
    "EmailRequest",
    "WhatsAppRequest",
    "DispatchOutcome",
]
