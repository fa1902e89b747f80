"""
Shared pytest fixtures for the campaign functions tests.

These fixtures provide fresh stores, environment secrets that ignore the
real process environment, and a fake for every outside provider (AI
gateway, Resend, WhatsApp Cloud API) built on httpx.MockTransport.
"""

import json
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from campaign.data_store import DataStore
from campaign.settings import EnvSecrets
from campaign.storage import SignedUrlSigner


AI_GATEWAY_HOST = "ai.gateway.lovable.dev"
RESEND_HOST = "api.resend.com"
GRAPH_HOST = "graph.facebook.com"


def classification_answer(
    confidence: int,
    is_document: bool = True,
    is_invoice: bool = True,
    details: str = "Factura legible",
) -> str:
    """A model answer wrapping the classification JSON in prose."""
    payload = {
        "is_document": is_document,
        "is_invoice": is_invoice,
        "confidence": confidence,
        "details": details,
    }
    return f"Aquí está el análisis:\n```json\n{json.dumps(payload)}\n```"


class FakeProviders:
    """
    Answers provider HTTP calls and records them.

    Each provider returns a configurable (status, json) pair. Setting
    `*_error` to an httpx exception makes the transport raise it instead.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.ai_status = 200
        self.ai_content: Any = classification_answer(85)
        self.ai_error: Optional[Exception] = None
        self.email_status = 200
        self.email_body: Any = {"id": "email-123"}
        self.email_error: Optional[Exception] = None
        self.whatsapp_status = 200
        self.whatsapp_body: Any = {"messages": [{"id": "wamid.ABC123"}]}
        self.whatsapp_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        if host == AI_GATEWAY_HOST:
            if self.ai_error:
                raise self.ai_error
            body = {"choices": [{"message": {"role": "assistant", "content": self.ai_content}}]}
            return httpx.Response(self.ai_status, json=body)
        if host == RESEND_HOST:
            if self.email_error:
                raise self.email_error
            return httpx.Response(self.email_status, json=self.email_body)
        if host == GRAPH_HOST:
            if self.whatsapp_error:
                raise self.whatsapp_error
            return httpx.Response(self.whatsapp_status, json=self.whatsapp_body)
        return httpx.Response(404, json={"error": f"unexpected host {host}"})

    def requests_to(self, host: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]

    def json_sent_to(self, host: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests_to(host)]


@pytest.fixture
def data_dir() -> Path:
    """Path to the fixture data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON fixtures but creates a new instance
    so tests don't interfere with each other.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def empty_store(tmp_path: Path) -> DataStore:
    """DataStore over an empty directory (every table empty)."""
    return DataStore(data_dir=tmp_path)


@pytest.fixture
def env() -> EnvSecrets:
    """Environment secrets with nothing set, whatever the real env holds."""
    return EnvSecrets(
        _env_file=None,
        resend_api_key=None,
        email_from=None,
        whatsapp_token=None,
        whatsapp_phone_number_id=None,
        whatsapp_country_code=None,
        ai_gateway_api_key=None,
        ai_gateway_url=None,
        ai_model=None,
        http_timeout_seconds=None,
        signed_url_secret="test-secret-for-document-urls-0001",
        storage_base_url="https://storage.test/purchase-documents",
        data_dir=None,
    )


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def http_client(providers: FakeProviders):
    """httpx client whose requests are answered by the fake providers."""
    client = httpx.Client(transport=httpx.MockTransport(providers.handler))
    yield client
    client.close()


@pytest.fixture
def signer() -> SignedUrlSigner:
    return SignedUrlSigner("https://storage.test/purchase-documents", "test-secret-for-document-urls-0001")


# =============================================================================
# Purchase Fixtures
# =============================================================================

@pytest.fixture
def tv55_purchase_id() -> str:
    """Ana's purchase: 55" TV (multiplier 3, tier T3), invoice attached, phone present."""
    return "P1"


@pytest.fixture
def no_invoice_purchase_id() -> str:
    """Bruno's purchase: 55" TV but no invoice uploaded."""
    return "P2"


@pytest.fixture
def no_phone_purchase_id() -> str:
    """Carla's purchase: 43" TV (multiplier 2, tier T2), invoice attached, no phone."""
    return "P3"


@pytest.fixture
def review_purchase_id() -> str:
    """Diego's purchase: 32" TV, already classified REVIEW with score 55."""
    return "P4"
