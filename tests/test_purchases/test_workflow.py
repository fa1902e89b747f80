"""
Tests for the purchase validation workflow.

These tests run whole workflow invocations against the JSON fixtures with
the AI gateway faked, and check the purchase row, the ticket pool and the
queued notification log entries each run leaves behind.
"""

from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from campaign.errors import PurchaseNotFoundError
from campaign.models import (
    AdminAction,
    AdminStatus,
    Channel,
    IAStatus,
    NotificationStatus,
    SerialRegistryEntry,
    SerialStatus,
)
from purchases.models import ProcessPurchaseRequest
from purchases.workflow import PurchaseValidationWorkflow

from conftest import classification_answer


AI_HOST = "ai.gateway.lovable.dev"


@pytest.fixture
def workflow(data_store, env, http_client, signer) -> PurchaseValidationWorkflow:
    return PurchaseValidationWorkflow(
        data_store=data_store,
        env=env,
        client=http_client,
        signer=signer,
    )


def _run(workflow, purchase_id, **fields):
    return workflow.process(ProcessPurchaseRequest(purchase_id=purchase_id, **fields))


class TestValidPurchase:
    """A clear invoice for a 55" TV (tier T3, multiplier 3)."""

    def test_approved_with_three_tickets(self, workflow, data_store, tv55_purchase_id):
        response = _run(workflow, tv55_purchase_id)

        assert response.success is True
        assert response.ia_status == IAStatus.VALID
        assert response.ia_score == 85
        assert response.admin_status == AdminStatus.APPROVED
        assert len(response.tickets_assigned) == 3
        assert all(code.startswith("SKY-T3-") for code in response.tickets_assigned)
        assert "3 cupón(es)" in response.message

    def test_purchase_row_updated(self, workflow, data_store, tv55_purchase_id):
        response = _run(workflow, tv55_purchase_id)

        purchase = data_store.get_purchase(tv55_purchase_id)
        assert purchase.ia_status == "VALID"
        assert purchase.ia_score == 85
        assert purchase.ia_detail["details"] == "Factura legible"
        assert purchase.admin_status == "APPROVED"
        assert purchase.reviewed_at is not None
        assert purchase.tickets_count == 3
        assert purchase.tickets_issued_at is not None

        assigned = [a.ticket_code for a in data_store.get_assignments_for_purchase(tv55_purchase_id)]
        assert assigned == response.tickets_assigned
        assert data_store.count_assigned("T3") == 3

    def test_queues_email_and_whatsapp(self, workflow, data_store, tv55_purchase_id):
        """Test one email and one WhatsApp entry are queued, nothing sent yet."""
        response = _run(workflow, tv55_purchase_id)

        entries = data_store.get_notifications_for_purchase(tv55_purchase_id)
        assert sorted(e.id for e in entries) == sorted(response.notification_log_ids)
        assert {e.channel for e in entries} == {Channel.EMAIL, Channel.WHATSAPP}
        assert all(e.status == NotificationStatus.PENDING for e in entries)
        assert all(e.template_key == "purchase_approved" for e in entries)

        email = next(e for e in entries if e.channel == Channel.EMAIL)
        assert email.recipient == "ana.quispe@example.com"
        assert email.template_data["cantidad"] == "3"
        assert email.template_data["cupones"] == ", ".join(response.tickets_assigned)

        whatsapp = next(e for e in entries if e.channel == Channel.WHATSAPP)
        assert whatsapp.recipient == "+591 70012345"

    def test_classifier_receives_signed_url(self, workflow, tv55_purchase_id, providers):
        _run(workflow, tv55_purchase_id)

        payload = providers.json_sent_to(AI_HOST)[0]
        url = payload["messages"][1]["content"][1]["image_url"]["url"]
        assert url.startswith("https://storage.test/purchase-documents/invoices/P1/factura.jpg?")
        assert "token=" in url

    def test_no_phone_queues_email_only(self, workflow, data_store, no_phone_purchase_id):
        response = _run(workflow, no_phone_purchase_id)

        assert len(response.tickets_assigned) == 2
        entries = data_store.get_notifications_for_purchase(no_phone_purchase_id)
        assert [e.channel for e in entries] == [Channel.EMAIL]


class TestIdempotency:
    """Running the workflow again for an already-ticketed purchase."""

    def test_second_run_returns_same_codes(self, workflow, data_store, tv55_purchase_id, providers):
        first = _run(workflow, tv55_purchase_id)
        second = _run(workflow, tv55_purchase_id)

        assert second.tickets_assigned == first.tickets_assigned
        assert second.admin_status == AdminStatus.APPROVED
        assert data_store.count_assigned("T3") == 3

    def test_second_run_queues_nothing(self, workflow, data_store, tv55_purchase_id):
        _run(workflow, tv55_purchase_id)
        second = _run(workflow, tv55_purchase_id)

        assert second.notification_log_ids == []
        assert len(data_store.get_notifications_for_purchase(tv55_purchase_id)) == 2

    def test_second_run_reuses_classification(self, workflow, tv55_purchase_id, providers):
        _run(workflow, tv55_purchase_id)
        _run(workflow, tv55_purchase_id)

        assert len(providers.requests_to(AI_HOST)) == 1


class TestDegradedClassification:
    """Every classification problem ends in REVIEW, never in an error."""

    def test_no_invoice(self, workflow, data_store, no_invoice_purchase_id, providers):
        """Test a purchase without an invoice goes to review without calling the gateway."""
        response = _run(workflow, no_invoice_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_score == 0
        assert response.ia_detail["message"] == "Sin documento de factura adjunto"
        assert response.ia_detail["serial_validation"]["valid"] is True
        assert response.admin_status == AdminStatus.PENDING
        assert response.tickets_assigned == []
        assert response.notification_log_ids == []
        assert providers.requests_to(AI_HOST) == []
        assert data_store.count_assigned() == 0

    def test_unparseable_answer(self, workflow, data_store, tv55_purchase_id, providers):
        providers.ai_content = "La imagen parece una factura, confianza alta."

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_detail["parseError"] is True
        assert response.ia_detail["raw"] == "La imagen parece una factura, confianza alta."
        assert response.tickets_assigned == []
        assert data_store.get_purchase(tv55_purchase_id).ia_status == "REVIEW"

    @pytest.mark.parametrize("status,category", [
        (429, "rate_limited"),
        (402, "payment_required"),
        (500, "provider_error"),
    ])
    def test_gateway_error(self, workflow, tv55_purchase_id, providers, status, category):
        providers.ai_status = status

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_detail["category"] == category
        assert response.ia_detail["status"] == status
        assert response.tickets_assigned == []

    def test_gateway_timeout(self, workflow, tv55_purchase_id, providers):
        providers.ai_error = httpx.ReadTimeout("timed out")

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_detail["category"] == "timeout"

    def test_classifier_not_configured(self, workflow, data_store, tv55_purchase_id, providers):
        data_store.put_setting("AI_GATEWAY_API_KEY", "")

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert providers.requests_to(AI_HOST) == []

    def test_low_confidence_is_invalid(self, workflow, data_store, tv55_purchase_id, providers):
        providers.ai_content = classification_answer(20, is_invoice=False, details="Foto de una mesa")

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.INVALID
        assert response.admin_status == AdminStatus.PENDING
        assert response.tickets_assigned == []
        assert response.notification_log_ids == []

    def test_medium_confidence_is_review(self, workflow, tv55_purchase_id, providers):
        providers.ai_content = classification_answer(55)

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_score == 55
        assert response.admin_status == AdminStatus.PENDING

    def test_invalid_settings(self, workflow, data_store, tv55_purchase_id, providers):
        """Test a malformed settings row degrades to review instead of failing."""
        data_store.put_setting("HTTP_TIMEOUT_SECONDS", "abc")

        response = _run(workflow, tv55_purchase_id)

        assert response.success is True
        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_detail["message"] == "Configuración de IA inválida"
        assert response.tickets_assigned == []
        assert providers.requests_to(AI_HOST) == []


class TestPoolExhaustion:
    """Approval when the tier has too few tickets left."""

    def test_approved_without_tickets(self, workflow, data_store, tv55_purchase_id):
        data_store.assign_tickets(8, "T3", "other", "Otro Cliente", "otro@example.com")

        response = _run(workflow, tv55_purchase_id)

        assert response.success is True
        assert response.ia_status == IAStatus.VALID
        assert response.admin_status == AdminStatus.APPROVED
        assert response.tickets_assigned == []
        assert response.notification_log_ids == []
        assert data_store.count_available("T3") == 2
        assert data_store.get_assignments_for_purchase(tv55_purchase_id) == []


class TestAdminMode:
    """Runs triggered from the admin review screen."""

    def test_approve_review_purchase(self, workflow, data_store, review_purchase_id, providers):
        """Test approving a REVIEW purchase issues tickets without reclassifying."""
        response = _run(
            workflow,
            review_purchase_id,
            admin_mode=True,
            admin_action=AdminAction.APPROVE,
            admin_user_id="admin-1",
        )

        assert response.ia_status == IAStatus.REVIEW
        assert response.ia_score == 55
        assert response.admin_status == AdminStatus.APPROVED
        assert response.tickets_assigned == ["SKY-T1-0001"]
        assert len(response.notification_log_ids) == 2
        assert providers.requests_to(AI_HOST) == []

        purchase = data_store.get_purchase(review_purchase_id)
        assert purchase.reviewed_by == "admin-1"
        assert purchase.reviewed_at is not None

    def test_admin_mode_without_action_approves(self, workflow, review_purchase_id):
        response = _run(workflow, review_purchase_id, admin_mode=True)

        assert response.admin_status == AdminStatus.APPROVED
        assert len(response.tickets_assigned) == 1

    def test_reject(self, workflow, data_store, review_purchase_id):
        response = _run(
            workflow,
            review_purchase_id,
            admin_mode=True,
            admin_action=AdminAction.REJECT,
            admin_notes="Factura ilegible",
        )

        assert response.admin_status == AdminStatus.REJECTED
        assert response.tickets_assigned == []
        assert data_store.count_assigned() == 0

        purchase = data_store.get_purchase(review_purchase_id)
        assert purchase.admin_status == "REJECTED"
        assert purchase.admin_notes == "Factura ilegible"

        entries = data_store.get_notifications_for_purchase(review_purchase_id)
        assert len(entries) == 1
        assert entries[0].channel == Channel.EMAIL
        assert entries[0].template_key == "purchase_rejected"
        assert entries[0].template_data["motivo"] == "Factura ilegible"

    def test_rejected_purchase_not_auto_approved(self, workflow, data_store, tv55_purchase_id):
        """Test a later automatic run never overrides an admin rejection."""
        data_store.update_purchase(tv55_purchase_id, admin_status=AdminStatus.REJECTED)

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.VALID
        assert response.admin_status == AdminStatus.REJECTED
        assert response.tickets_assigned == []
        assert response.notification_log_ids == []


class TestErrors:

    def test_unknown_purchase(self, workflow):
        with pytest.raises(PurchaseNotFoundError) as exc_info:
            _run(workflow, "does-not-exist")

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Compra no encontrada"

    def test_empty_purchase_id_rejected(self):
        with pytest.raises(ValueError):
            ProcessPurchaseRequest(purchase_id="")


class TestSerialRegistry:
    """The purchase's serial checked against the official registry."""

    def test_available_serial_marked_used(self, workflow, data_store, tv55_purchase_id):
        response = _run(workflow, tv55_purchase_id)

        detail = response.ia_detail["serial_validation"]
        assert detail["valid"] is True
        assert detail["in_registry"] is True
        assert detail["error"] == ""

        entry = data_store.get_serial("SKW55UE0001")
        assert entry.status == SerialStatus.USED
        assert entry.registered_by_purchase_id == tv55_purchase_id
        assert entry.registered_at is not None

    def test_registry_values_take_precedence(self, workflow, data_store, tv55_purchase_id):
        """Test tier and multiplier come from the registry, not the product."""
        data_store.add_serial(SerialRegistryEntry(
            id="sr-0001", serial_number="SKW55UE0001", tier="T2", ticket_multiplier=2
        ))

        response = _run(workflow, tv55_purchase_id)

        assert response.admin_status == AdminStatus.APPROVED
        assert len(response.tickets_assigned) == 2
        assert all(code.startswith("SKY-T2-") for code in response.tickets_assigned)
        assert data_store.count_assigned("T3") == 0

    def test_used_serial_blocks_auto_approval(self, workflow, data_store, tv55_purchase_id):
        data_store.mark_serial_used("SKW55UE0001", "P0")

        response = _run(workflow, tv55_purchase_id)

        assert response.ia_status == IAStatus.VALID
        assert response.admin_status == AdminStatus.PENDING
        assert response.tickets_assigned == []
        assert response.notification_log_ids == []
        assert response.ia_detail["serial_validation"]["valid"] is False
        assert response.ia_detail["serial_validation"]["error"] == "Serial ya registrado (status: USED)"
        assert data_store.get_serial("SKW55UE0001").registered_by_purchase_id == "P0"
        assert data_store.count_assigned() == 0

    def test_blocked_serial_blocks_auto_approval(self, workflow, data_store, tv55_purchase_id):
        data_store.update_purchase(tv55_purchase_id, serial_number="skw43fh0006")

        response = _run(workflow, tv55_purchase_id)

        assert response.admin_status == AdminStatus.PENDING
        assert response.ia_detail["serial_validation"]["error"] == "Serial ya registrado (status: BLOCKED)"

    def test_unknown_serial_uses_product(self, workflow, data_store, tv55_purchase_id):
        """Test a serial missing from the registry still approves, with a warning."""
        data_store.update_purchase(tv55_purchase_id, serial_number="SKW55UE9999")

        response = _run(workflow, tv55_purchase_id)

        assert response.admin_status == AdminStatus.APPROVED
        assert len(response.tickets_assigned) == 3
        detail = response.ia_detail["serial_validation"]
        assert detail["valid"] is True
        assert detail["in_registry"] is False
        assert detail["error"] == "Serial no encontrado en registro oficial"
        assert data_store.get_serial("SKW55UE9999") is None

    def test_rerun_keeps_own_serial(self, workflow, data_store, tv55_purchase_id):
        first = _run(workflow, tv55_purchase_id)
        second = _run(workflow, tv55_purchase_id)

        assert second.ia_detail["serial_validation"]["valid"] is True
        assert second.tickets_assigned == first.tickets_assigned

    def test_admin_can_approve_used_serial(self, workflow, data_store, tv55_purchase_id):
        data_store.mark_serial_used("SKW55UE0001", "P0")

        response = _run(workflow, tv55_purchase_id, admin_mode=True, admin_user_id="admin-1")

        assert response.admin_status == AdminStatus.APPROVED
        assert len(response.tickets_assigned) == 3
        assert data_store.get_serial("SKW55UE0001").registered_by_purchase_id == "P0"


class TestConcurrentRuns:
    """Several invocations for the same purchase arriving together."""

    def test_tickets_drawn_once(self, workflow, data_store, tv55_purchase_id):
        with ThreadPoolExecutor(max_workers=8) as executor:
            responses = list(executor.map(lambda _: _run(workflow, tv55_purchase_id), range(8)))

        assigned = data_store.get_assignments_for_purchase(tv55_purchase_id)
        assert len(assigned) == 3
        assert data_store.count_assigned("T3") == 3
        assert all(r.tickets_assigned == [a.ticket_code for a in assigned] for r in responses)
        assert sum(len(r.notification_log_ids) for r in responses) == 2
        assert len(data_store.get_notifications_for_purchase(tv55_purchase_id)) == 2
