"""
Provider-backed notification channels.

- Email goes through the Resend HTTP API
- WhatsApp goes through the Meta Graph API (WhatsApp Cloud API)

Design decisions:
- Each send is a single bounded HTTP request; the timeout lives on the
  httpx client handed in by the caller
- Provider failures (non-2xx, transport errors, timeouts) come back as a
  failed ChannelResult, they are never raised
- Channels know nothing about the notification log or settings: the
  dispatcher owns that bookkeeping
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from campaign.models import Channel, utcnow

logger = logging.getLogger("channels")

RESEND_API_URL = "https://api.resend.com/emails"
GRAPH_API_BASE_URL = "https://graph.facebook.com"

NON_DIGITS = re.compile(r"[^0-9]")


@dataclass
class ChannelResult:
    """
    Result of a provider send attempt.

    Captures success/failure plus what the provider told us, for the
    notification log and for the HTTP response.
    """
    success: bool
    channel: Channel
    recipient: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    details: Any = None
    status_code: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} {self.channel.value} to {self.recipient}"


def normalize_phone(number: str, country_code: str = "591") -> str:
    """
    Strip everything but digits and make sure the country code is present.

    >>> normalize_phone("+591 7000-1234")
    '59170001234'
    >>> normalize_phone("70001234")
    '59170001234'
    """
    digits = NON_DIGITS.sub("", number or "")
    if not digits.startswith(country_code):
        digits = country_code + digits
    return digits


def _response_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


class EmailChannel:
    """
    Email channel backed by Resend.

    Sends one message per call with either an HTML or a plain-text body.
    """

    def __init__(
        self,
        api_key: str,
        from_addr: str,
        client: httpx.Client,
        api_url: str = RESEND_API_URL,
    ):
        self.api_key = api_key
        self.from_addr = from_addr
        self.client = client
        self.api_url = api_url

    def send(self, to: str, subject: str, body: str, is_html: bool = False) -> ChannelResult:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Subject line
            body: HTML or plain-text content
            is_html: Which of the two `body` is

        Returns:
            ChannelResult with the Resend email id on success
        """
        payload = {
            "from": self.from_addr,
            "to": [to],
            "subject": subject,
            "html" if is_html else "text": body,
        }

        try:
            response = self.client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException:
            logger.error(f"[EMAIL FAILED] To: {to} | Error: provider timeout")
            return ChannelResult(
                success=False,
                channel=Channel.EMAIL,
                recipient=to,
                error="Tiempo de espera agotado con el proveedor de correo",
            )
        except httpx.HTTPError as e:
            logger.error(f"[EMAIL FAILED] To: {to} | Error: {e}")
            return ChannelResult(
                success=False,
                channel=Channel.EMAIL,
                recipient=to,
                error=str(e),
            )

        data = _response_json(response)
        if response.is_success:
            logger.info(f"[EMAIL] To: {to} | Subject: {subject}")
            return ChannelResult(
                success=True,
                channel=Channel.EMAIL,
                recipient=to,
                message_id=data.get("id") if isinstance(data, dict) else None,
                status_code=response.status_code,
            )

        message = data.get("message") if isinstance(data, dict) else None
        error = message or f"Resend respondió {response.status_code}"
        logger.error(f"[EMAIL FAILED] To: {to} | Status: {response.status_code} | Error: {error}")
        return ChannelResult(
            success=False,
            channel=Channel.EMAIL,
            recipient=to,
            error=error,
            details=data,
            status_code=response.status_code,
        )


class WhatsAppChannel:
    """
    WhatsApp channel backed by the WhatsApp Cloud API.

    Supports free-text messages and approved template messages with
    positional body parameters.
    """

    def __init__(
        self,
        token: str,
        phone_number_id: str,
        client: httpx.Client,
        api_version: str = "v18.0",
        country_code: str = "591",
        base_url: str = GRAPH_API_BASE_URL,
    ):
        self.token = token
        self.phone_number_id = phone_number_id
        self.client = client
        self.api_version = api_version
        self.country_code = country_code
        self.base_url = base_url

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"

    def send_text(self, to: str, message: str) -> ChannelResult:
        """Send a free-text message."""
        phone = normalize_phone(to, self.country_code)
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone,
            "type": "text",
            "text": {"body": message},
        }
        return self._post(phone, payload)

    def send_template(
        self,
        to: str,
        template_name: str,
        parameters: list[str],
        language: str = "es",
    ) -> ChannelResult:
        """Send an approved template message with positional parameters."""
        phone = normalize_phone(to, self.country_code)
        template: dict[str, Any] = {
            "name": template_name,
            "language": {"code": language},
        }
        if parameters:
            template["components"] = [{
                "type": "body",
                "parameters": [{"type": "text", "text": p} for p in parameters],
            }]
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone,
            "type": "template",
            "template": template,
        }
        return self._post(phone, payload)

    def _post(self, phone: str, payload: dict) -> ChannelResult:
        try:
            response = self.client.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.TimeoutException:
            logger.error(f"[WHATSAPP FAILED] To: {phone} | Error: provider timeout")
            return ChannelResult(
                success=False,
                channel=Channel.WHATSAPP,
                recipient=phone,
                error="Tiempo de espera agotado con WhatsApp",
            )
        except httpx.HTTPError as e:
            logger.error(f"[WHATSAPP FAILED] To: {phone} | Error: {e}")
            return ChannelResult(
                success=False,
                channel=Channel.WHATSAPP,
                recipient=phone,
                error=str(e),
            )

        data = _response_json(response)
        if response.is_success:
            messages = data.get("messages") if isinstance(data, dict) else None
            message_id = messages[0].get("id") if messages else None
            logger.info(f"[WHATSAPP] To: {phone} | Type: {payload['type']}")
            return ChannelResult(
                success=True,
                channel=Channel.WHATSAPP,
                recipient=phone,
                message_id=message_id,
                status_code=response.status_code,
            )

        error_body = data.get("error", data) if isinstance(data, dict) else data
        if isinstance(error_body, dict) and error_body.get("message"):
            error = error_body["message"]
        else:
            error = f"WhatsApp respondió {response.status_code}"
        logger.error(f"[WHATSAPP FAILED] To: {phone} | Status: {response.status_code} | Error: {error}")
        return ChannelResult(
            success=False,
            channel=Channel.WHATSAPP,
            recipient=phone,
            error=error,
            details=error_body,
            status_code=response.status_code,
        )
