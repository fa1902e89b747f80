"""
Notification template resolution.

Templates live in the notification_templates table, one row per
(template_key, channel). Placeholders are written as {name}.

Design decisions:
- Substitution is a pure text transform: unknown placeholders become empty
  strings, nothing raises
- A missing template is not an error: the caller falls back to the subject
  and body it was given explicitly
- WhatsApp template messages take positional parameters, ordered by the
  template's declared placeholder list
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional

from campaign.data_store import DataStore
from campaign.models import Channel, NotificationTemplate

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


@dataclass
class RenderedTemplate:
    """A template with its placeholders filled in."""
    template: NotificationTemplate
    subject: Optional[str]
    body: str
    is_html: bool


def fill_placeholders(text: str, values: Mapping[str, str]) -> str:
    """
    Replace every {name} in text with values[name].

    Placeholders without a value are replaced with an empty string.
    """
    if not text:
        return text
    return PLACEHOLDER_PATTERN.sub(lambda m: str(values.get(m.group(1), "")), text)


def positional_parameters(template: NotificationTemplate, values: Mapping[str, str]) -> list[str]:
    """Values in the order the template declares its placeholders."""
    return [str(values.get(name, "")) for name in template.placeholders]


class TemplateResolver:
    """Looks up active templates and renders them."""

    def __init__(self, data_store: DataStore):
        self.data_store = data_store

    def find(self, channel: Channel, template_key: str) -> Optional[NotificationTemplate]:
        return self.data_store.find_template(template_key, channel)

    def resolve(
        self,
        channel: Channel,
        template_key: Optional[str],
        values: Optional[Mapping[str, str]] = None,
    ) -> Optional[RenderedTemplate]:
        """
        Render the active template for key + channel.

        Returns None when there is no key or no matching active template.
        HTML content is preferred over plain text when both exist.
        """
        if not template_key:
            return None

        template = self.find(channel, template_key)
        if template is None:
            return None

        values = values or {}
        content = template.content_html or template.content_text
        return RenderedTemplate(
            template=template,
            subject=fill_placeholders(template.subject, values) if template.subject else None,
            body=fill_placeholders(content, values),
            is_html=bool(template.content_html),
        )
