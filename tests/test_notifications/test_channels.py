"""
Tests for the provider channels.

These tests verify the Resend and WhatsApp Cloud API payloads and how
provider failures are turned into failed results.
"""

import httpx
import pytest

from campaign.models import Channel
from notifications.channels import (
    EmailChannel,
    WhatsAppChannel,
    normalize_phone,
)


@pytest.fixture
def email_channel(http_client) -> EmailChannel:
    return EmailChannel("re_test_key", "Promo <promo@example.com>", http_client)


@pytest.fixture
def whatsapp_channel(http_client) -> WhatsAppChannel:
    return WhatsAppChannel("wa-test-token", "109876543210", http_client)


class TestNormalizePhone:
    """Tests for phone number normalization."""

    @pytest.mark.parametrize("number,expected", [
        ("+591 7001-2345", "59170012345"),
        ("70012345", "59170012345"),
        ("(591) 70012345", "59170012345"),
        ("59170012345", "59170012345"),
    ])
    def test_normalize(self, number, expected):
        assert normalize_phone(number) == expected

    def test_other_country_code(self):
        assert normalize_phone("912345678", country_code="51") == "51912345678"


class TestEmailChannel:
    """Tests for the Resend email channel."""

    def test_send_html(self, email_channel: EmailChannel, providers):
        """Test a successful HTML send posts the Resend payload."""
        result = email_channel.send("ana@example.com", "Hola", "<p>Hola</p>", is_html=True)

        assert result.success is True
        assert result.channel == Channel.EMAIL
        assert str(result) == "✓ EMAIL to ana@example.com"
        assert result.message_id == "email-123"

        request = providers.requests_to("api.resend.com")[0]
        assert request.headers["Authorization"] == "Bearer re_test_key"
        assert providers.json_sent_to("api.resend.com")[0] == {
            "from": "Promo <promo@example.com>",
            "to": ["ana@example.com"],
            "subject": "Hola",
            "html": "<p>Hola</p>",
        }

    def test_send_text(self, email_channel: EmailChannel, providers):
        email_channel.send("ana@example.com", "Hola", "Hola Ana")

        payload = providers.json_sent_to("api.resend.com")[0]
        assert payload["text"] == "Hola Ana"
        assert "html" not in payload

    def test_provider_error(self, email_channel: EmailChannel, providers):
        """Test that a non-2xx answer becomes a failed result with the provider message."""
        providers.email_status = 422
        providers.email_body = {"name": "validation_error", "message": "Invalid `to` field"}

        result = email_channel.send("not-an-email", "Hola", "Hola")

        assert result.success is False
        assert result.error == "Invalid `to` field"
        assert result.status_code == 422
        assert result.details["name"] == "validation_error"

    def test_timeout(self, email_channel: EmailChannel, providers):
        providers.email_error = httpx.ReadTimeout("timed out")

        result = email_channel.send("ana@example.com", "Hola", "Hola")

        assert result.success is False
        assert "Tiempo de espera" in result.error

    def test_transport_error(self, email_channel: EmailChannel, providers):
        providers.email_error = httpx.ConnectError("connection refused")

        result = email_channel.send("ana@example.com", "Hola", "Hola")

        assert result.success is False
        assert "connection refused" in result.error


class TestWhatsAppChannel:
    """Tests for the WhatsApp Cloud API channel."""

    def test_messages_url(self, whatsapp_channel: WhatsAppChannel):
        assert whatsapp_channel.messages_url == "https://graph.facebook.com/v18.0/109876543210/messages"

    def test_send_text(self, whatsapp_channel: WhatsAppChannel, providers):
        result = whatsapp_channel.send_text("+591 70012345", "Hola Ana")

        assert result.success is True
        assert result.message_id == "wamid.ABC123"
        assert result.recipient == "59170012345"
        assert providers.json_sent_to("graph.facebook.com")[0] == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": "59170012345",
            "type": "text",
            "text": {"body": "Hola Ana"},
        }

    def test_send_template(self, whatsapp_channel: WhatsAppChannel, providers):
        """Test that template parameters are sent positionally as body components."""
        whatsapp_channel.send_template("70012345", "purchase_approved", ["Ana", "3", "SKY-T3-0001"])

        payload = providers.json_sent_to("graph.facebook.com")[0]
        assert payload["type"] == "template"
        assert payload["template"]["name"] == "purchase_approved"
        assert payload["template"]["language"] == {"code": "es"}
        assert payload["template"]["components"] == [{
            "type": "body",
            "parameters": [
                {"type": "text", "text": "Ana"},
                {"type": "text", "text": "3"},
                {"type": "text", "text": "SKY-T3-0001"},
            ],
        }]

    def test_template_without_parameters(self, whatsapp_channel: WhatsAppChannel, providers):
        whatsapp_channel.send_template("70012345", "hello_world", [])

        assert "components" not in providers.json_sent_to("graph.facebook.com")[0]["template"]

    def test_provider_error(self, whatsapp_channel: WhatsAppChannel, providers):
        providers.whatsapp_status = 401
        providers.whatsapp_body = {"error": {"message": "Invalid OAuth access token.", "code": 190}}

        result = whatsapp_channel.send_text("70012345", "Hola")

        assert result.success is False
        assert result.error == "Invalid OAuth access token."
        assert result.details == {"message": "Invalid OAuth access token.", "code": 190}

    def test_timeout(self, whatsapp_channel: WhatsAppChannel, providers):
        providers.whatsapp_error = httpx.ConnectTimeout("timed out")

        result = whatsapp_channel.send_text("70012345", "Hola")

        assert result.success is False
        assert result.channel == Channel.WHATSAPP
