"""
Purchase validation and ticket issuance workflow.

One invocation handles one purchase:
1. Load the purchase and its product, check its serial against the registry
2. Classify the attached invoice through the AI gateway, if there is one
3. Decide IA status from the classification (see purchases.decision)
4. Persist ia_* fields, auto-approve VALID purchases with a usable serial
5. Draw tickets from the pool once per purchase, mark the serial USED
6. Queue PENDING notification log entries for the dispatchers
7. Return a summary with a Spanish message for the client

Design decisions:
- Only a missing purchase (404) and malformed input (400) escape as errors;
  classification and pool failures are logged and degrade the result
- Ticket issuance is idempotent: an already-ticketed purchase gets its
  stored codes back and no new notifications are queued
- The workflow only queues notifications; NotificationDispatcher sends them
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx
from pydantic import ValidationError

from campaign.data_store import DataStore, get_data_store
from campaign.errors import PurchaseNotFoundError
from campaign.models import (
    AdminAction,
    AdminStatus,
    Channel,
    IAStatus,
    Purchase,
    utcnow,
)
from campaign.settings import CampaignSettings, EnvSecrets, get_env_secrets, load_settings
from campaign.storage import SignedUrlSigner
from purchases.classifier import DocumentClassifier, ParseFailure
from purchases.decision import decide_status
from purchases.models import ProcessPurchaseRequest, ProcessPurchaseResponse
from purchases.serials import SerialValidation, validate_serial

logger = logging.getLogger("purchase_workflow")

APPROVED_TEMPLATE_KEY = "purchase_approved"
REJECTED_TEMPLATE_KEY = "purchase_rejected"
APPROVED_SUBJECT = "🎫 ¡Tus cupones para el sorteo Skyworth!"
REJECTED_SUBJECT = "ℹ️ Estado de tu registro - Skyworth"
DEFAULT_REJECTION_REASON = "Los documentos no pudieron ser validados"


class PurchaseValidationWorkflow:
    """
    Validates purchases and issues their tickets.

    Example:
        workflow = PurchaseValidationWorkflow(data_store)
        response = workflow.process(ProcessPurchaseRequest(purchase_id="P1"))
        response.tickets_assigned
    """

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        env: Optional[EnvSecrets] = None,
        client: Optional[httpx.Client] = None,
        classifier: Optional[DocumentClassifier] = None,
        signer: Optional[SignedUrlSigner] = None,
    ):
        """
        Args:
            data_store: Store holding purchases, products and the ticket pool
            env: Environment secrets (defaults to the process environment)
            client: HTTP client for the AI gateway (defaults to a fresh one
                    per invocation)
            classifier: Pre-built classifier; overrides env/settings
            signer: Signed URL generator for invoice documents
        """
        self.data_store = data_store or get_data_store()
        self.env = env or get_env_secrets()
        self.client = client
        self.classifier = classifier
        self.signer = signer or SignedUrlSigner(self.env.storage_base_url, self.env.signed_url_secret)

    # =========================================================================
    # Entry point
    # =========================================================================

    def process(self, request: ProcessPurchaseRequest) -> ProcessPurchaseResponse:
        """
        Run the workflow for one purchase.

        Raises:
            PurchaseNotFoundError: the purchase does not exist
        """
        purchase = self.data_store.get_purchase(request.purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(request.purchase_id)

        product = self.data_store.get_product(purchase.product_id)
        if product is None:
            logger.warning(f"Purchase {purchase.id} references unknown product {purchase.product_id}")

        try:
            settings: Optional[CampaignSettings] = load_settings(self.data_store.get_settings_map(), self.env)
        except ValidationError as e:
            logger.error(f"Invalid campaign settings, classification disabled: {e}")
            settings = None

        if purchase.ia_status == IAStatus.PENDING:
            ia_status, ia_score, ia_detail = self._classify(purchase, settings)
        else:
            # Already classified: reuse instead of paying for another call
            ia_status, ia_score, ia_detail = IAStatus(purchase.ia_status), purchase.ia_score, purchase.ia_detail

        serial = validate_serial(self.data_store, purchase, product)
        if not serial.valid:
            logger.warning(f"Purchase {purchase.id} serial {purchase.serial_number} rejected: {serial.error}")
        ia_detail = {**ia_detail, "serial_validation": serial.as_detail()}

        update: dict[str, Any] = {
            "ia_status": ia_status,
            "ia_score": ia_score,
            "ia_detail": ia_detail,
        }
        admin_status = AdminStatus(purchase.admin_status)
        now = utcnow()

        if request.admin_mode:
            # An admin run without an explicit action counts as approval
            action = request.admin_action or AdminAction.APPROVE
            admin_status = AdminStatus.APPROVED if action == AdminAction.APPROVE else AdminStatus.REJECTED
            update.update({
                "admin_status": admin_status,
                "reviewed_at": now,
                "reviewed_by": request.admin_user_id,
            })
            if request.admin_notes:
                update["admin_notes"] = request.admin_notes
        elif ia_status == IAStatus.VALID and serial.valid and admin_status == AdminStatus.PENDING:
            admin_status = AdminStatus.APPROVED
            update.update({"admin_status": admin_status, "reviewed_at": now})

        tickets: list[str] = []
        newly_assigned = False
        auto_eligible = ia_status == IAStatus.VALID and serial.valid
        if (auto_eligible or request.admin_mode) and admin_status != AdminStatus.REJECTED:
            tickets, newly_assigned = self._issue_tickets(purchase, serial)
            if newly_assigned:
                update.update({"tickets_count": len(tickets), "tickets_issued_at": now})

        if admin_status == AdminStatus.APPROVED and serial.claimable:
            self.data_store.mark_serial_used(purchase.serial_number, purchase.id)

        self.data_store.update_purchase(purchase.id, **update)

        log_ids: list[str] = []
        if newly_assigned:
            log_ids = self._queue_approval_notifications(purchase, tickets)
        elif admin_status == AdminStatus.REJECTED and purchase.admin_status != AdminStatus.REJECTED:
            reason = request.admin_notes or ia_detail.get("details") or DEFAULT_REJECTION_REASON
            log_ids = self._queue_rejection_notification(purchase, str(reason))

        logger.info(
            f"Purchase {purchase.id}: ia_status={ia_status.value} score={ia_score} "
            f"admin_status={admin_status.value} tickets={len(tickets)}"
        )

        return ProcessPurchaseResponse(
            success=True,
            ia_status=ia_status,
            ia_score=ia_score,
            ia_detail=ia_detail,
            admin_status=admin_status,
            tickets_assigned=tickets,
            notification_log_ids=log_ids,
            message=_status_message(ia_status, admin_status, tickets),
        )

    # =========================================================================
    # Classification
    # =========================================================================

    @contextmanager
    def _http_client(self, settings: CampaignSettings) -> Iterator[httpx.Client]:
        if self.client is not None:
            yield self.client
            return
        with httpx.Client(timeout=settings.http_timeout_seconds) as client:
            yield client

    def _classify(
        self,
        purchase: Purchase,
        settings: Optional[CampaignSettings],
    ) -> tuple[IAStatus, int, dict]:
        """Classify the invoice; every failure degrades to REVIEW."""
        if not purchase.invoice_url:
            return IAStatus.REVIEW, 0, {"message": "Sin documento de factura adjunto"}

        if settings is None:
            return IAStatus.REVIEW, 0, {"message": "Configuración de IA inválida"}

        if self.classifier is None and not settings.ai_gateway_api_key:
            return IAStatus.REVIEW, 0, {"message": "Clasificador de IA no configurado"}

        try:
            signed_url = self.signer.create_signed_url(purchase.invoice_url)
            with self._http_client(settings) as client:
                classifier = self.classifier or DocumentClassifier(
                    settings.ai_gateway_api_key,
                    client,
                    url=settings.ai_gateway_url,
                    model=settings.ai_model,
                )
                outcome = classifier.classify(signed_url)
        except Exception as e:
            logger.exception(f"Classification failed for purchase {purchase.id}")
            return IAStatus.REVIEW, 0, {"error": str(e)}

        if outcome.error_category:
            return IAStatus.REVIEW, 0, {
                "error": outcome.error,
                "category": outcome.error_category,
                "status": outcome.status_code,
            }

        if isinstance(outcome.result, ParseFailure):
            return IAStatus.REVIEW, 0, {
                "raw": outcome.result.raw,
                "parseError": True,
                "reason": outcome.result.reason,
            }

        parsed = outcome.parsed
        status = decide_status(parsed.confidence, parsed.is_document, parsed.is_invoice)
        return status, parsed.confidence, dict(parsed.raw)

    # =========================================================================
    # Tickets and notifications
    # =========================================================================

    def _issue_tickets(self, purchase: Purchase, serial: SerialValidation) -> tuple[list[str], bool]:
        """
        Draw tickets for a purchase at most once.

        Tier and count come from the serial check (registry first, product
        otherwise). Returns (codes, newly_assigned). A failed draw is logged
        and yields no codes.
        """
        if serial.tier is None:
            existing = self.data_store.get_assignments_for_purchase(purchase.id)
            if not existing:
                logger.error(f"Cannot assign tickets for purchase {purchase.id}: no tier for product")
            return [a.ticket_code for a in existing], False

        try:
            assignments, newly_assigned = self.data_store.assign_tickets_once(
                count=serial.ticket_multiplier,
                tier=serial.tier,
                purchase_id=purchase.id,
                owner_name=purchase.full_name,
                owner_email=purchase.email,
                owner_phone=purchase.phone,
            )
        except Exception as e:
            logger.error(f"Ticket assignment failed for purchase {purchase.id}: {e}")
            return [], False

        return [a.ticket_code for a in assignments], newly_assigned

    def _queue_approval_notifications(self, purchase: Purchase, tickets: list[str]) -> list[str]:
        codes = ", ".join(tickets)
        template_data = {
            "nombre": purchase.full_name,
            "cupones": codes,
            "cantidad": str(len(tickets)),
        }

        entries = [self.data_store.create_notification_log(
            channel=Channel.EMAIL,
            recipient=purchase.email,
            subject=APPROVED_SUBJECT,
            content=(
                f"¡Felicitaciones {purchase.full_name}! Tu compra ha sido aprobada. "
                f"Has recibido {len(tickets)} cupón(es) para el sorteo: {codes}. ¡Mucha suerte!"
            ),
            template_key=APPROVED_TEMPLATE_KEY,
            template_data=template_data,
            related_purchase_id=purchase.id,
        )]

        if purchase.phone:
            entries.append(self.data_store.create_notification_log(
                channel=Channel.WHATSAPP,
                recipient=purchase.phone,
                content=(
                    f"🎉 ¡Felicitaciones {purchase.full_name}! Tu compra ha sido aprobada. "
                    f"Tus {len(tickets)} cupón(es): {codes}. ¡Buena suerte en el sorteo!"
                ),
                template_key=APPROVED_TEMPLATE_KEY,
                template_data=template_data,
                related_purchase_id=purchase.id,
            ))

        return [e.id for e in entries]

    def _queue_rejection_notification(self, purchase: Purchase, reason: str) -> list[str]:
        entry = self.data_store.create_notification_log(
            channel=Channel.EMAIL,
            recipient=purchase.email,
            subject=REJECTED_SUBJECT,
            content=(
                f"Hola {purchase.full_name}, lamentamos informarte que tu registro no pudo ser "
                f"aprobado. Motivo: {reason}. Puedes intentar registrarte nuevamente con "
                f"documentos válidos."
            ),
            template_key=REJECTED_TEMPLATE_KEY,
            template_data={"nombre": purchase.full_name, "motivo": reason},
            related_purchase_id=purchase.id,
        )
        return [entry.id]


def _status_message(ia_status: IAStatus, admin_status: AdminStatus, tickets: list[str]) -> str:
    if admin_status == AdminStatus.APPROVED:
        if tickets:
            return f"¡Compra aprobada! {len(tickets)} cupón(es) asignados: {', '.join(tickets)}"
        return "Compra aprobada. Tus cupones serán asignados en breve."
    if admin_status == AdminStatus.REJECTED:
        return "Tu registro no pudo ser aprobado. Revisa el motivo en tu correo."
    if ia_status == IAStatus.INVALID:
        return "No pudimos validar tu factura. Revisa el documento e inténtalo nuevamente."
    if ia_status == IAStatus.REVIEW:
        return "Tu compra está en revisión manual. Te notificaremos pronto."
    return "Procesando tu compra..."
