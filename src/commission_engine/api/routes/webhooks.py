"""Payment processor webhook endpoint."""

import logging

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from commission_engine.api.dependencies import AppSettings, DbSession
from commission_engine.api.schemas import ErrorResponse, WebhookResponse
from commission_engine.config import Settings
from commission_engine.ingestion.gateway import (
    EventProcessingError,
    MalformedEventError,
    WebhookGateway,
)
from commission_engine.ingestion.signature import SignatureVerificationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "Stripe-Signature"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": f"authorization, content-type, {SIGNATURE_HEADER.lower()}",
}


def _ingest(db: Session, settings: Settings, body: bytes, signature: str | None) -> JSONResponse:
    gateway = WebhookGateway(db, settings)
    try:
        result = gateway.ingest(body, signature)
    except (SignatureVerificationError, MalformedEventError) as e:
        db.rollback()
        logger.warning("Rejected webhook delivery: %s", e)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(e)},
        )
    except EventProcessingError as e:
        # Keep the stored event so redelivery or reprocessing can retry it
        db.commit()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e)},
        )

    db.commit()
    logger.debug("Webhook %s -> %s", result.event_id, result.status.value)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=WebhookResponse().model_dump(),
    )


@router.options("/payments", include_in_schema=False)
async def payments_webhook_preflight() -> Response:
    """Answer CORS preflight without touching the database."""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post(
    "/payments",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def payments_webhook(
    request: Request,
    db: DbSession,
    settings: AppSettings,
) -> JSONResponse:
    """Receive a payment processor event.

    The raw body is verified against the signature header before it is
    parsed. Duplicate deliveries are acknowledged with 200.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    return await run_in_threadpool(_ingest, db, settings, body, signature)
