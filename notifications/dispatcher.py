"""
Notification dispatcher: one send per invocation, one log update per send.

For each request the dispatcher:
1. Loads the typed settings for this invocation
2. Skips (never fails) when the channel is disabled
3. Fails with a configuration error when provider credentials are missing
4. Resolves the template, falling back to the explicit subject/body/message
5. Calls the provider and writes the terminal status of the log entry

Design decisions:
- No automatic retry. FAILED entries get retry_count bumped as an audit
  counter; retrying means invoking the dispatcher again with the same
  notificationLogId
- A log entry that is already SENT or SKIPPED is answered as processed and
  never reaches the provider again
- Every outcome, including unexpected errors, is returned as a
  DispatchOutcome; nothing escapes to the caller
- The httpx client is created per invocation with the configured timeout
  unless one is injected (tests inject one backed by a MockTransport)
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import httpx

from campaign.data_store import FINAL_NOTIFICATION_STATUSES, DataStore, get_data_store
from campaign.models import Channel, NotificationLogEntry, NotificationStatus
from campaign.settings import CampaignSettings, EnvSecrets, load_settings
from campaign.templates import TemplateResolver, positional_parameters
from notifications.channels import EmailChannel, WhatsAppChannel
from notifications.models import (
    DispatchOutcome,
    DispatchSummary,
    EmailRequest,
    WhatsAppRequest,
)

logger = logging.getLogger("dispatcher")

EMAIL_DISABLED_REASON = "El envío de correos está deshabilitado"
WHATSAPP_DISABLED_REASON = "El envío de WhatsApp está deshabilitado"
EMAIL_MISSING_CREDENTIALS = "Credenciales de correo no configuradas"
WHATSAPP_MISSING_CREDENTIALS = "Credenciales de WhatsApp no configuradas"


class NotificationDispatcher:
    """
    Sends email and WhatsApp messages and keeps the notification log current.

    Example:
        dispatcher = NotificationDispatcher(data_store)
        outcome = dispatcher.send_email(EmailRequest(to="ana@example.com", ...))
        outcome.status_code, outcome.body
    """

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        env: Optional[EnvSecrets] = None,
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            data_store: Store holding settings, templates and the log
            env: Environment secrets (defaults to the process environment)
            client: HTTP client for provider calls (defaults to a fresh one
                    per invocation)
        """
        self.data_store = data_store or get_data_store()
        self.env = env
        self.client = client
        self.templates = TemplateResolver(self.data_store)

    def load_settings(self) -> CampaignSettings:
        return load_settings(self.data_store.get_settings_map(), self.env)

    @contextmanager
    def _http_client(self, settings: CampaignSettings) -> Iterator[httpx.Client]:
        if self.client is not None:
            yield self.client
            return
        with httpx.Client(timeout=settings.http_timeout_seconds) as client:
            yield client

    def _finish(
        self,
        log_id: Optional[str],
        status: NotificationStatus,
        error: Optional[str] = None,
        content: Optional[str] = None,
    ) -> None:
        if log_id:
            self.data_store.finish_notification(log_id, status, error_message=error, content=content)

    def _already_finished(self, log_id: Optional[str]) -> Optional[DispatchOutcome]:
        """Answer for a log entry that was already SENT or SKIPPED, if it was."""
        if not log_id:
            return None
        entry = self.data_store.get_notification_log(log_id)
        if entry is None or entry.status not in FINAL_NOTIFICATION_STATUSES:
            return None
        logger.info(f"Notification {log_id} already {entry.status}, not sending again")
        return DispatchOutcome(200, {
            "success": True,
            "alreadyProcessed": True,
            "status": entry.status,
        })

    # =========================================================================
    # Email
    # =========================================================================

    def send_email(self, request: EmailRequest) -> DispatchOutcome:
        """Send one email and record the outcome on the log entry."""
        log_id = request.notification_log_id
        try:
            return self._send_email(request)
        except Exception as e:
            logger.exception(f"Email dispatch error for {request.to}")
            self._finish(log_id, NotificationStatus.FAILED, error=str(e))
            return DispatchOutcome(500, {"error": str(e) or "Error interno"})

    def _send_email(self, request: EmailRequest) -> DispatchOutcome:
        log_id = request.notification_log_id
        finished = self._already_finished(log_id)
        if finished is not None:
            return finished

        settings = self.load_settings()

        if not settings.email_enabled:
            logger.info(f"[EMAIL SKIPPED] To: {request.to} | {EMAIL_DISABLED_REASON}")
            self._finish(log_id, NotificationStatus.SKIPPED, error=EMAIL_DISABLED_REASON)
            return DispatchOutcome(200, {
                "success": True,
                "skipped": True,
                "reason": EMAIL_DISABLED_REASON,
            })

        if not settings.email_configured:
            logger.warning(f"[EMAIL FAILED] To: {request.to} | {EMAIL_MISSING_CREDENTIALS}")
            self._finish(log_id, NotificationStatus.FAILED, error=EMAIL_MISSING_CREDENTIALS)
            return DispatchOutcome(400, {
                "error": EMAIL_MISSING_CREDENTIALS,
                "details": "Agrega tu API key de Resend y el remitente en configuración",
            })

        subject, body, is_html = request.subject, request.body, request.is_html
        rendered = self.templates.resolve(Channel.EMAIL, request.template_key, request.template_data)
        if rendered is not None:
            subject = rendered.subject or subject
            body = rendered.body
            is_html = rendered.is_html

        if not subject or not body:
            return DispatchOutcome(400, {"error": "subject y body son requeridos"})

        with self._http_client(settings) as client:
            channel = EmailChannel(settings.resend_api_key, settings.email_from, client)
            result = channel.send(request.to, subject, body, is_html=is_html)

        if result.success:
            self._finish(log_id, NotificationStatus.SENT)
            return DispatchOutcome(200, {"success": True, "emailId": result.message_id})

        self._finish(log_id, NotificationStatus.FAILED, error=result.error)
        return DispatchOutcome(500, {
            "error": "No se pudo enviar el correo",
            "details": result.details if result.details is not None else result.error,
        })

    # =========================================================================
    # WhatsApp
    # =========================================================================

    def send_whatsapp(self, request: WhatsAppRequest) -> DispatchOutcome:
        """Send one WhatsApp message and record the outcome on the log entry."""
        log_id = request.notification_log_id
        try:
            return self._send_whatsapp(request)
        except Exception as e:
            logger.exception(f"WhatsApp dispatch error for {request.to}")
            self._finish(log_id, NotificationStatus.FAILED, error=str(e))
            return DispatchOutcome(500, {"error": str(e) or "Error interno"})

    def _send_whatsapp(self, request: WhatsAppRequest) -> DispatchOutcome:
        log_id = request.notification_log_id
        finished = self._already_finished(log_id)
        if finished is not None:
            return finished

        settings = self.load_settings()

        if not settings.whatsapp_enabled:
            logger.info(f"[WHATSAPP SKIPPED] To: {request.to} | {WHATSAPP_DISABLED_REASON}")
            self._finish(log_id, NotificationStatus.SKIPPED, error=WHATSAPP_DISABLED_REASON)
            return DispatchOutcome(200, {
                "success": True,
                "skipped": True,
                "reason": WHATSAPP_DISABLED_REASON,
            })

        if not settings.whatsapp_configured:
            logger.warning(f"[WHATSAPP FAILED] To: {request.to} | {WHATSAPP_MISSING_CREDENTIALS}")
            self._finish(log_id, NotificationStatus.FAILED, error=WHATSAPP_MISSING_CREDENTIALS)
            return DispatchOutcome(400, {
                "error": WHATSAPP_MISSING_CREDENTIALS,
                "details": "Agrega tu token y el ID de número de WhatsApp en configuración",
            })

        template = None
        if request.template_key:
            template = self.templates.find(Channel.WHATSAPP, request.template_key)

        if template is None and not request.message:
            return DispatchOutcome(400, {"error": "to y message son requeridos"})

        with self._http_client(settings) as client:
            channel = WhatsAppChannel(
                settings.whatsapp_token,
                settings.whatsapp_phone_number_id,
                client,
                api_version=settings.whatsapp_api_version,
                country_code=settings.whatsapp_country_code,
            )
            if template is not None:
                rendered = self.templates.resolve(
                    Channel.WHATSAPP, request.template_key, request.template_data
                )
                content = rendered.body if rendered else request.message
                result = channel.send_template(
                    request.to,
                    template.template_name,
                    positional_parameters(template, request.template_data),
                    language=settings.whatsapp_template_language,
                )
            else:
                content = request.message
                result = channel.send_text(request.to, request.message)

        if result.success:
            self._finish(log_id, NotificationStatus.SENT, content=content)
            return DispatchOutcome(200, {"success": True, "messageId": result.message_id})

        self._finish(log_id, NotificationStatus.FAILED, error=result.error)
        return DispatchOutcome(500, {
            "error": "No se pudo enviar el WhatsApp",
            "details": result.details if result.details is not None else result.error,
        })

    # =========================================================================
    # Queued log entries
    # =========================================================================

    def dispatch_log_entry(self, entry: NotificationLogEntry) -> DispatchOutcome:
        """Send a queued log entry through its channel."""
        if entry.channel == Channel.EMAIL:
            return self.send_email(EmailRequest(
                to=entry.recipient,
                subject=entry.subject,
                body=entry.content,
                notification_log_id=entry.id,
                template_key=entry.template_key,
                template_data=entry.template_data,
            ))
        return self.send_whatsapp(WhatsAppRequest(
            to=entry.recipient,
            message=entry.content,
            notification_log_id=entry.id,
            template_key=entry.template_key,
            template_data=entry.template_data,
        ))

    def dispatch_pending(self, purchase_id: Optional[str] = None) -> DispatchSummary:
        """
        Send every PENDING log entry, optionally only those of one purchase.

        Each entry is attempted once; failures stay FAILED.
        """
        summary = DispatchSummary()
        for entry in self.data_store.get_pending_notifications(purchase_id):
            self.dispatch_log_entry(entry)
            summary.processed += 1
            summary.log_ids.append(entry.id)

            finished = self.data_store.get_notification_log(entry.id)
            status = finished.status if finished else NotificationStatus.PENDING
            if status == NotificationStatus.SENT:
                summary.sent += 1
            elif status == NotificationStatus.SKIPPED:
                summary.skipped += 1
            elif status == NotificationStatus.FAILED:
                summary.failed += 1

        logger.info(
            f"Dispatched {summary.processed} pending notifications: "
            f"{summary.sent} sent, {summary.failed} failed, {summary.skipped} skipped"
        )
        return summary
