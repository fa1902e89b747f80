"""
Invoice classification through a vision-capable chat completion API.

The model is asked for a small JSON object, but what comes back is free text:
it may be wrapped in prose or code fences, or not be JSON at all. The parser
treats the model as an unreliable producer and returns a tagged result
instead of raising.

Error categories surfaced to the workflow:
- rate_limited      HTTP 429 from the gateway
- payment_required  HTTP 402 from the gateway (credits exhausted)
- timeout           no answer within the configured timeout
- provider_error    any other non-2xx or transport error
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx

logger = logging.getLogger("classifier")

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """Eres un validador de documentos para una promoción de televisores.
Analiza la imagen de una factura, boleta o recibo de compra y determina si es válida.

Criterios:
1. ¿Es un documento real (no una foto de una mesa, persona, paisaje, etc.)?
2. ¿Es una factura, boleta o recibo de compra?
3. ¿Contiene datos típicos de una factura (fecha, monto, detalle de productos)?
4. ¿La imagen es legible?

Responde ÚNICAMENTE con un JSON con esta estructura exacta:
{
  "is_document": true/false,
  "is_invoice": true/false,
  "confidence": 0-100,
  "details": "resumen breve de lo detectado o motivo de rechazo"
}"""

USER_PROMPT = "Analiza esta imagen de un documento de compra y verifica si es una factura válida:"
CONNECTION_CHECK_PROMPT = "Responde solo con 'OK' si puedes leer este mensaje."


@dataclass
class ParsedClassification:
    """A classification the model returned as usable JSON."""
    is_document: bool
    is_invoice: bool
    confidence: int
    details: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ParseFailure:
    """The model answered, but not with something we could read."""
    raw: str
    reason: str


ParseResult = Union[ParsedClassification, ParseFailure]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def parse_classification(text: Optional[str]) -> ParseResult:
    """
    Extract the classification JSON embedded in a model answer.

    Never raises: anything unreadable becomes a ParseFailure carrying the raw
    text for audit.
    """
    text = text or ""
    match = JSON_OBJECT.search(text)
    if not match:
        return ParseFailure(raw=text, reason="no_json_object")

    try:
        data = json.loads(match.group(0))
    except ValueError:
        return ParseFailure(raw=text, reason="invalid_json")

    if not isinstance(data, dict):
        return ParseFailure(raw=text, reason="invalid_json")

    try:
        confidence = int(float(data.get("confidence", 0)))
    except (TypeError, ValueError):
        return ParseFailure(raw=text, reason="invalid_confidence")

    details = data.get("details")
    return ParsedClassification(
        is_document=_as_bool(data.get("is_document")),
        is_invoice=_as_bool(data.get("is_invoice")),
        confidence=max(0, min(100, confidence)),
        details=str(details) if details is not None else None,
        raw=data,
    )


@dataclass
class ClassificationOutcome:
    """
    Everything one classification call produced.

    Exactly one of `result` (the model answered) or `error_category` (the
    call itself failed) is set.
    """
    result: Optional[ParseResult] = None
    error_category: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def parsed(self) -> Optional[ParsedClassification]:
        return self.result if isinstance(self.result, ParsedClassification) else None


@dataclass
class ConnectionCheck:
    """Result of a gateway connectivity check."""
    success: bool
    reply: str = ""
    error: Optional[str] = None
    status_code: Optional[int] = None
    details: Any = None


class DocumentClassifier:
    """Client for the AI gateway's chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        client: httpx.Client,
        url: str = "https://ai.gateway.lovable.dev/v1/chat/completions",
        model: str = "google/gemini-2.5-flash",
    ):
        self.api_key = api_key
        self.client = client
        self.url = url
        self.model = model

    def build_payload(self, image_url: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
            "max_tokens": 500,
            "temperature": 0.1,
        }

    def classify(self, image_url: str) -> ClassificationOutcome:
        """Classify one invoice image. Never raises."""
        try:
            response = self.client.post(
                self.url,
                json=self.build_payload(image_url),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException:
            logger.error("[AI] Classification timed out")
            return ClassificationOutcome(error_category="timeout", error="AI service timeout")
        except httpx.HTTPError as e:
            logger.error(f"[AI] Classification transport error: {e}")
            return ClassificationOutcome(error_category="provider_error", error=str(e))

        if response.status_code == 429:
            logger.warning("[AI] Rate limited by gateway")
            return ClassificationOutcome(
                error_category="rate_limited",
                error="Límite de solicitudes excedido, intenta más tarde",
                status_code=429,
            )
        if response.status_code == 402:
            logger.warning("[AI] Gateway credits exhausted")
            return ClassificationOutcome(
                error_category="payment_required",
                error="Créditos de IA agotados",
                status_code=402,
            )
        if not response.is_success:
            logger.error(f"[AI] Gateway error: {response.status_code}")
            return ClassificationOutcome(
                error_category="provider_error",
                error="AI service unavailable",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError):
            content = response.text

        result = parse_classification(content)
        if isinstance(result, ParseFailure):
            logger.warning(f"[AI] Could not parse classification ({result.reason})")
        return ClassificationOutcome(result=result, status_code=response.status_code)

    def check_connection(self) -> ConnectionCheck:
        """Ask the model for a one-word answer to confirm key and endpoint work."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": CONNECTION_CHECK_PROMPT}],
            "max_tokens": 10,
        }
        try:
            response = self.client.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"[AI] Connection check failed: {e}")
            return ConnectionCheck(success=False, error=f"Error de conexión: {e}")

        if not response.is_success:
            logger.warning(f"[AI] Connection check answered {response.status_code}")
            return ConnectionCheck(
                success=False,
                error=f"Error de API: {response.status_code}",
                status_code=response.status_code,
                details=response.text,
            )

        try:
            reply = response.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError):
            reply = ""
        return ConnectionCheck(success=True, reply=reply, status_code=response.status_code)
