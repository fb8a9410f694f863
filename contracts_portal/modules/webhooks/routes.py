import logging
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from supabase import Client

from contracts_portal.config import Settings, get_settings
from contracts_portal.core.dependencies import build_webhook_verifier, get_idempotency_store
from contracts_portal.core.idempotency import IdempotencyStore
from contracts_portal.core.webhooks import (
    IDEMPOTENCY_HEADER, SIGNATURE_HEADER, TIMESTAMP_HEADER,
    VerificationOutcome, WebhookRequest,
)
from contracts_portal.database.supabase_client import get_supabase_service
from contracts_portal.modules.webhooks.schemas import WebhookAck, WebhookErrorResponse
from contracts_portal.modules.webhooks.service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_ERROR_LABELS = {
    status.HTTP_400_BAD_REQUEST: "Bad Request",
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    status.HTTP_404_NOT_FOUND: "Not Found",
    status.HTTP_503_SERVICE_UNAVAILABLE: "Service Unavailable",
}


def get_webhook_service(supabase: Client = Depends(get_supabase_service)) -> WebhookService:
    return WebhookService(supabase)


def _error(status_code: int, code: str) -> JSONResponse:
    body = WebhookErrorResponse(error=_ERROR_LABELS[status_code], code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.post(
    "/{source}",
    response_model=WebhookAck,
    responses={
        400: {"model": WebhookErrorResponse},
        401: {"model": WebhookErrorResponse},
        404: {"model": WebhookErrorResponse},
        503: {"model": WebhookErrorResponse},
    },
)
async def receive_webhook(
    source: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    store: IdempotencyStore = Depends(get_idempotency_store),
    service: WebhookService = Depends(get_webhook_service)
):
    """Verify signature, freshness and idempotency of a delivery, then process it once"""
    source = source.lower()
    if source not in settings.get_webhook_sources():
        return _error(status.HTTP_404_NOT_FOUND, "unknown_source")

    verifier = build_webhook_verifier(settings, source, store)
    if verifier is None:
        logger.error(f"No webhook secret configured for source {source}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "webhook_not_configured")

    # Raw bytes: the signature covers exactly what was sent
    body = await request.body()
    result = await verifier.verify(WebhookRequest(
        body=body,
        signature=request.headers.get(SIGNATURE_HEADER),
        timestamp=request.headers.get(TIMESTAMP_HEADER),
        idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
        source=source,
    ))

    if result.outcome == VerificationOutcome.ACCEPTED:
        try:
            service.handle(source, result.payload, result.idempotency_key)
        except Exception:
            # Let the sender's retry through instead of acknowledging it as a duplicate
            await verifier.release(result.idempotency_key, result.owner)
            raise
        return WebhookAck(idempotent=False, idempotency_key=result.idempotency_key)

    if result.outcome == VerificationOutcome.DUPLICATE:
        return WebhookAck(idempotent=True, idempotency_key=result.idempotency_key)

    return _error(result.status_code, result.error_code)
