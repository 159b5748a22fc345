"""Payment provider webhook."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.db.session import get_db
from mizan.services.payment_service import (
    CheckoutLink,
    WebhookSignatureError,
    apply_event,
    link_subscription,
    parse_provider_event,
    payload_digest,
    verify_signature,
)

router: APIRouter = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> dict[str, str | bool]:
    body: bytes = await request.body()

    if settings.payment_webhook_secret:
        try:
            verify_signature(
                body,
                request.headers.get("stripe-signature"),
                settings.payment_webhook_secret,
                tolerance_seconds=settings.payment_webhook_tolerance_seconds,
            )
        except WebhookSignatureError as exc:
            logger.warning("[PAYMENTS] Rejected webhook: %s", exc)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from exc
    elif settings.app_env != "dev":
        logger.error("[PAYMENTS] PAYMENT_WEBHOOK_SECRET not set; rejecting webhook.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook verification is not configured")

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    event = parse_provider_event(payload)
    if event is None:
        logger.info("[PAYMENTS] Unhandled event type: %s", payload.get("type"))
        return {"received": True, "status": "ignored"}
    if isinstance(event, CheckoutLink):
        link_subscription(db, event.subscription_id, event.user_id)
        return {"received": True, "status": "linked"}

    result = apply_event(db, event, payload_hash=payload_digest(body))
    return {"received": True, "status": "applied" if result.processed else (result.skipped_reason or "skipped")}
