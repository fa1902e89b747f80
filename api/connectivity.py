"""
Connectivity checks for the provider credentials in the settings table.

Used from the admin settings screen. Each check sends one real request with
the current settings and reports whether the provider accepted it. A check
that cannot run (channel disabled, credentials missing) or that the provider
refused is still a 200 with {"success": false, "error": ...}: only
unexpected errors become a 500.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import httpx

from campaign.data_store import DataStore, get_data_store
from campaign.settings import CampaignSettings, EnvSecrets, load_settings
from notifications.channels import EmailChannel, WhatsAppChannel
from notifications.models import DispatchOutcome
from purchases.classifier import DocumentClassifier

logger = logging.getLogger("connectivity")

TEST_EMAIL_SUBJECT = "🎉 Prueba de Email - Skyworth Mundial 2026"
TEST_EMAIL_HTML = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
    '<h1 style="color: #001F3F;">¡Conexión Exitosa!</h1>'
    "<p>Este es un correo de prueba del sistema Skyworth Mundial 2026.</p>"
    '<p style="color: #FFD700; font-weight: bold;">'
    "La configuración de email está funcionando correctamente.</p>"
    "</div>"
)
TEST_WHATSAPP_MESSAGE = "🎉 Prueba de conexión Skyworth Mundial 2026 - Configuración exitosa!"
PLACEHOLDER_PHONE = "0000000000"


def _failure(error: str, **extra) -> DispatchOutcome:
    return DispatchOutcome(200, {"success": False, "error": error, **extra})


class ConnectivityChecker:
    """Runs one provider connectivity check per call."""

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        env: Optional[EnvSecrets] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.data_store = data_store or get_data_store()
        self.env = env
        self.client = client

    @contextmanager
    def _http_client(self, settings: CampaignSettings) -> Iterator[httpx.Client]:
        if self.client is not None:
            yield self.client
            return
        with httpx.Client(timeout=settings.http_timeout_seconds) as client:
            yield client

    def _guarded(self, name: str, check: Callable[[CampaignSettings], DispatchOutcome]) -> DispatchOutcome:
        try:
            settings = load_settings(self.data_store.get_settings_map(), self.env)
            return check(settings)
        except Exception as e:
            logger.exception(f"{name} connectivity check error")
            return DispatchOutcome(500, {"success": False, "error": str(e) or "Error desconocido"})

    # =========================================================================
    # Checks
    # =========================================================================

    def check_email(self, test_email: str) -> DispatchOutcome:
        return self._guarded("Email", lambda settings: self._check_email(settings, test_email))

    def _check_email(self, settings: CampaignSettings, test_email: str) -> DispatchOutcome:
        if not settings.email_enabled:
            return _failure("Email no está habilitado en la configuración")
        if not settings.email_configured:
            return _failure("Configuración de correo incompleta. Revisa la API key de Resend y el remitente.")

        with self._http_client(settings) as client:
            channel = EmailChannel(settings.resend_api_key, settings.email_from, client)
            result = channel.send(test_email, TEST_EMAIL_SUBJECT, TEST_EMAIL_HTML, is_html=True)

        if result.success:
            logger.info(f"[CHECK] Test email sent to {test_email}")
            return DispatchOutcome(200, {
                "success": True,
                "message": "Email de prueba enviado correctamente",
                "emailId": result.message_id,
            })
        if result.status_code is None:
            return _failure(f"Error de conexión Resend: {result.error}")
        return _failure(f"Error de Resend: {result.status_code}", details=result.details)

    def check_whatsapp(self, test_phone: Optional[str] = None) -> DispatchOutcome:
        return self._guarded("WhatsApp", lambda settings: self._check_whatsapp(settings, test_phone))

    def _check_whatsapp(self, settings: CampaignSettings, test_phone: Optional[str]) -> DispatchOutcome:
        if not settings.whatsapp_enabled:
            return _failure("WhatsApp no está habilitado en la configuración")
        if not settings.whatsapp_configured:
            return _failure("Configuración de WhatsApp incompleta. Revisa el token y el ID de número.")

        with self._http_client(settings) as client:
            channel = WhatsAppChannel(
                settings.whatsapp_token,
                settings.whatsapp_phone_number_id,
                client,
                api_version=settings.whatsapp_api_version,
                country_code=settings.whatsapp_country_code,
            )
            result = channel.send_text(test_phone or PLACEHOLDER_PHONE, TEST_WHATSAPP_MESSAGE)

        if result.success:
            return DispatchOutcome(200, {
                "success": True,
                "message": "Mensaje de prueba enviado correctamente",
                "messageId": result.message_id,
            })
        # A 400 means the credentials were accepted and only the number was refused
        if result.status_code == 400:
            return DispatchOutcome(200, {
                "success": True,
                "message": "Conexión verificada (error de número de prueba)",
                "details": result.details,
            })
        if result.status_code is None:
            return _failure(f"Error de conexión: {result.error}")
        return _failure(f"Error de API: {result.status_code}", details=result.details)

    def check_ai(self) -> DispatchOutcome:
        return self._guarded("AI", self._check_ai)

    def _check_ai(self, settings: CampaignSettings) -> DispatchOutcome:
        if not settings.ai_gateway_api_key:
            return _failure("La API key del servicio de IA no está configurada")

        with self._http_client(settings) as client:
            classifier = DocumentClassifier(
                settings.ai_gateway_api_key,
                client,
                url=settings.ai_gateway_url,
                model=settings.ai_model,
            )
            check = classifier.check_connection()

        if not check.success:
            return _failure(check.error, details=check.details)
        return DispatchOutcome(200, {
            "success": True,
            "message": "Conexión exitosa con el servicio de IA",
            "response": check.reply,
            "model": settings.ai_model,
        })
