"""
Billing Router - payment-provider webhook endpoint
"""

import logging
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.webhook_service import SIGNATURE_HEADERS, WebhookService

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def get_webhook_service(db: AsyncSession = Depends(get_db)) -> WebhookService:
    return WebhookService(db)


@billing_router.post("/webhook")
async def polar_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Handle payment-provider webhook events with signature verification.

    Status codes tell the provider whether to redeliver:
    - 200: accepted (including unknown event types and unknown customers)
    - 401: bad signature or malformed body, nothing was changed
    - 500: internal failure, the provider should retry
    """
    # Raw body is required for signature verification
    payload = await request.body()
    signature = next(
        (request.headers.get(name) for name in SIGNATURE_HEADERS if request.headers.get(name)),
        None,
    )

    try:
        result = await service.ingest(payload, signature)
    except Exception as e:
        logger.error(f"Polar webhook processing failed: {e}", exc_info=True)
        await service.db.rollback()
        return JSONResponse(
            status_code=500,
            content={"error": "Webhook processing failed"}
        )

    if not result.accepted:
        return JSONResponse(
            status_code=result.status_code,
            content={"error": result.detail or "Invalid signature"}
        )

    return JSONResponse(
        status_code=200,
        content={
            "received": True,
            "event_type": result.event_type,
            "outcome": result.outcome,
        }
    )
