"""
FastAPI application exposing the campaign functions.

Endpoints:
1. POST /functions/process-client-purchase - validate a purchase, issue tickets
2. POST /functions/send-email - send one email, update its log entry
3. POST /functions/send-whatsapp - send one WhatsApp message, update its log entry
4. POST /functions/dispatch-pending - send queued log entries
5. POST /functions/test-email, test-whatsapp, test-ai - provider connectivity checks

Every function answers JSON. Errors are {"error": ..., "details"?: ...} with
400 for bad input or configuration, 404 for unknown purchases and 500 for
provider or internal failures.

Run with:
    uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

from api.connectivity import ConnectivityChecker
from campaign.data_store import DataStore, get_data_store
from campaign.errors import CampaignError
from campaign.settings import EnvSecrets, get_env_secrets
from notifications.dispatcher import NotificationDispatcher
from notifications.models import (
    DispatchPendingRequest,
    EmailCheckRequest,
    EmailRequest,
    WhatsAppCheckRequest,
    WhatsAppRequest,
)
from purchases.models import ProcessPurchaseRequest
from purchases.workflow import PurchaseValidationWorkflow

logger = logging.getLogger("api")

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logging.info("Starting campaign functions API")
    yield
    logging.info("Shutting down")


app = FastAPI(
    title="Campaign Functions",
    description="Purchase validation, ticket issuance and notification dispatch.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=CORS_HEADERS,
)


# =============================================================================
# Dependencies
# =============================================================================

# Module-level overrides (tests swap these in)
_data_store: Optional[DataStore] = None
_env: Optional[EnvSecrets] = None
_http_client: Optional[httpx.Client] = None


def get_store() -> DataStore:
    return _data_store or get_data_store()


def get_env() -> EnvSecrets:
    return _env or get_env_secrets()


def get_http_client() -> Optional[httpx.Client]:
    return _http_client


def reset_api_state(
    data_store: Optional[DataStore] = None,
    env: Optional[EnvSecrets] = None,
    http_client: Optional[httpx.Client] = None,
) -> None:
    """Reset API state (for testing)."""
    global _data_store, _env, _http_client
    _data_store = data_store
    _env = env
    _http_client = http_client


def get_dispatcher(
    data_store: DataStore = Depends(get_store),
    env: EnvSecrets = Depends(get_env),
    client: Optional[httpx.Client] = Depends(get_http_client),
) -> NotificationDispatcher:
    return NotificationDispatcher(data_store=data_store, env=env, client=client)


def get_checker(
    data_store: DataStore = Depends(get_store),
    env: EnvSecrets = Depends(get_env),
    client: Optional[httpx.Client] = Depends(get_http_client),
) -> ConnectivityChecker:
    return ConnectivityChecker(data_store=data_store, env=env, client=client)


def get_workflow(
    data_store: DataStore = Depends(get_store),
    env: EnvSecrets = Depends(get_env),
    client: Optional[httpx.Client] = Depends(get_http_client),
) -> PurchaseValidationWorkflow:
    return PurchaseValidationWorkflow(data_store=data_store, env=env, client=client)


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Solicitud inválida"
    if errors and errors[0].get("type") == "missing" and errors[0].get("loc"):
        message = f"{errors[0]['loc'][-1]} es requerido"
    return JSONResponse(
        status_code=400,
        content={"error": message, "details": jsonable_encoder(errors)},
    )


@app.exception_handler(CampaignError)
async def campaign_error_handler(request: Request, exc: CampaignError):
    content = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "campaign-functions"}


# =============================================================================
# Functions
# =============================================================================

@app.post("/functions/process-client-purchase", tags=["Purchases"])
def process_client_purchase(
    request: ProcessPurchaseRequest,
    workflow: PurchaseValidationWorkflow = Depends(get_workflow),
):
    """
    Validate a purchase and issue its tickets when approved.

    Returns {success, iaStatus, iaScore, iaDetail, adminStatus,
    ticketsAssigned, message}.
    """
    try:
        response = workflow.process(request)
    except CampaignError:
        raise
    except Exception as e:
        logger.exception(f"Process purchase error for {request.purchase_id}")
        return JSONResponse(status_code=500, content={"error": str(e) or "Error interno"})

    return JSONResponse(content=response.model_dump(mode="json", by_alias=True))


@app.post("/functions/send-email", tags=["Notifications"])
def send_email(
    request: EmailRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send one email. Returns {success, emailId} or {success, skipped, reason}."""
    outcome = dispatcher.send_email(request)
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(outcome.body))


@app.post("/functions/send-whatsapp", tags=["Notifications"])
def send_whatsapp(
    request: WhatsAppRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send one WhatsApp message. Returns {success, messageId} or {success, skipped, reason}."""
    outcome = dispatcher.send_whatsapp(request)
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(outcome.body))


@app.post("/functions/dispatch-pending", tags=["Notifications"])
def dispatch_pending(
    request: Optional[DispatchPendingRequest] = None,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send every PENDING notification log entry (optionally for one purchase)."""
    purchase_id = request.purchase_id if request else None
    summary = dispatcher.dispatch_pending(purchase_id)
    return JSONResponse(content=summary.model_dump(mode="json", by_alias=True))


# =============================================================================
# Connectivity checks
# =============================================================================

@app.post("/functions/test-email", tags=["Settings"])
def check_email_connection(
    request: EmailCheckRequest,
    checker: ConnectivityChecker = Depends(get_checker),
):
    """Send a test email with the current settings. Returns {success, message|error}."""
    outcome = checker.check_email(request.test_email)
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(outcome.body))


@app.post("/functions/test-whatsapp", tags=["Settings"])
def check_whatsapp_connection(
    request: Optional[WhatsAppCheckRequest] = None,
    checker: ConnectivityChecker = Depends(get_checker),
):
    """Send a test WhatsApp message with the current settings."""
    outcome = checker.check_whatsapp(request.test_phone if request else None)
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(outcome.body))


@app.post("/functions/test-ai", tags=["Settings"])
def check_ai_connection(checker: ConnectivityChecker = Depends(get_checker)):
    """Ask the AI gateway for a one-word answer with the current settings."""
    outcome = checker.check_ai()
    return JSONResponse(status_code=outcome.status_code, content=jsonable_encoder(outcome.body))


@app.options("/functions/{function_name}", include_in_schema=False)
def function_options(function_name: str):
    """Answer OPTIONS without preflight headers (those are handled by CORSMiddleware)."""
    return Response(
        status_code=200,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Headers": ", ".join(CORS_HEADERS),
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        },
    )
