"""
Payment provider event handling with idempotency support.

Applies terminal subscription events to the entitlement ledger as the
provider source:
- Event deduplication using the provider event id
- Subscription id to user mapping recorded at checkout
- Cancellation keeps already paid time
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from mizan.models import PaymentEvent, SubscriptionLink
from mizan.models.entitlement import PROVIDER_SUBSCRIPTION
from mizan.services.entitlement_service import (
    PAYMENTS_WRITER,
    append_record,
    claim_ledger,
    latest_records_by_source,
    load_user,
    utcnow,
)
from mizan.services.errors import ValidationError
from mizan.services.transaction import run_atomic

logger = logging.getLogger(__name__)

SUBSCRIPTION_CREATED = "subscription_created"
SUBSCRIPTION_RENEWED = "subscription_renewed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"

PAYMENT_EVENT_TYPES = (SUBSCRIPTION_CREATED, SUBSCRIPTION_RENEWED, SUBSCRIPTION_CANCELLED)

# Provider notification types that map onto the closed set above.
PROVIDER_EVENT_TYPES: dict[str, str] = {
    "customer.subscription.created": SUBSCRIPTION_CREATED,
    "invoice.payment_succeeded": SUBSCRIPTION_RENEWED,
    "customer.subscription.deleted": SUBSCRIPTION_CANCELLED,
}
CHECKOUT_COMPLETED = "checkout.session.completed"


class WebhookSignatureError(Exception):
    """Raised when a webhook body does not carry a valid provider signature."""


@dataclass(frozen=True)
class SubscriptionEvent:
    """Terminal provider notification reduced to what the ledger needs."""

    event_id: str
    event_type: str
    subscription_id: str
    period_end: datetime | None = None


@dataclass(frozen=True)
class CheckoutLink:
    """Checkout completion tying a new subscription to an internal user."""

    event_id: str
    subscription_id: str
    user_id: int


@dataclass
class PaymentProcessingResult:
    """Result of applying one provider event."""

    processed: bool
    message: str
    user_id: int | None = None
    until: datetime | None = None
    skipped_reason: str | None = None


def verify_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance_seconds: int,
    now_ts: int | None = None,
) -> None:
    """
    Verify a ``t=<timestamp>,v1=<hex digest>`` signature header.

    The digest is HMAC-SHA256 over ``"<timestamp>.<raw body>"`` keyed with the
    webhook secret. Timestamps outside the tolerance window are rejected so a
    captured request cannot be replayed much later.
    """
    if not signature_header or not secret:
        raise WebhookSignatureError("Missing signature or secret")

    timestamp: str | None = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise WebhookSignatureError("Malformed signature timestamp") from exc
    current = int(time.time()) if now_ts is None else now_ts
    if abs(current - signed_at) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    expected = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("Signature mismatch")


def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    """Build the signature header a provider would send for ``payload``."""
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("Invalid period end timestamp") from exc


def _invoice_period_end(invoice: dict[str, Any]) -> Any:
    lines = invoice.get("lines") or {}
    if not isinstance(lines, dict) or not isinstance(lines.get("data") or [], list):
        raise ValidationError("Invoice lines must be a list object")
    for line in lines.get("data") or []:
        period = line.get("period") if isinstance(line, dict) else None
        if isinstance(period, dict) and period.get("end") is not None:
            return period["end"]
    return invoice.get("period_end")


def parse_provider_event(body: dict[str, Any]) -> SubscriptionEvent | CheckoutLink | None:
    """Translate a provider webhook body; ``None`` for types this service ignores."""
    event_id = body.get("id")
    provider_type = body.get("type")
    if not event_id or not provider_type:
        raise ValidationError("Webhook body needs an id and a type")
    if not isinstance(event_id, str) or not isinstance(provider_type, str):
        raise ValidationError("Webhook id and type must be strings")
    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("Webhook data must be an object")
    obj = data.get("object") or {}
    if not isinstance(obj, dict):
        raise ValidationError("Webhook data.object must be an object")

    if provider_type == CHECKOUT_COMPLETED:
        subscription_id = obj.get("subscription")
        reference = obj.get("client_reference_id")
        if not subscription_id or reference is None:
            return None
        try:
            user_id = int(reference)
        except (TypeError, ValueError) as exc:
            raise ValidationError("client_reference_id must be an internal user id") from exc
        return CheckoutLink(event_id=event_id, subscription_id=subscription_id, user_id=user_id)

    event_type = PROVIDER_EVENT_TYPES.get(provider_type)
    if event_type is None:
        return None
    if event_type == SUBSCRIPTION_RENEWED:
        subscription_id = obj.get("subscription")
        period_end = _timestamp(_invoice_period_end(obj))
    else:
        subscription_id = obj.get("id")
        period_end = _timestamp(obj.get("current_period_end"))
    if not subscription_id:
        raise ValidationError("Webhook body is missing the subscription id")
    return SubscriptionEvent(
        event_id=event_id,
        event_type=event_type,
        subscription_id=subscription_id,
        period_end=period_end,
    )


def link_subscription(db: Session, subscription_id: str, user_id: int) -> SubscriptionLink:
    """Record which user owns ``subscription_id``; repeating the call is a no-op."""
    existing = db.scalar(select(SubscriptionLink).where(SubscriptionLink.subscription_id == subscription_id).limit(1))
    if existing is not None:
        if existing.user_id != user_id:
            raise ValidationError("Subscription is already linked to another user")
        return existing
    load_user(db, user_id)
    link = SubscriptionLink(subscription_id=subscription_id, user_id=user_id)
    db.add(link)
    db.commit()
    db.refresh(link)
    logger.info("[PAYMENTS] Linked subscription to user_id=%s", user_id)
    return link


def _is_duplicate(db: Session, event_id: str) -> bool:
    return db.scalar(select(PaymentEvent.id).where(PaymentEvent.provider_event_id == event_id).limit(1)) is not None


def apply_event(
    db: Session,
    event: SubscriptionEvent,
    *,
    payload_hash: str | None = None,
    now: datetime | None = None,
) -> PaymentProcessingResult:
    """Apply one terminal subscription event to the ledger exactly once."""
    if event.event_type not in PAYMENT_EVENT_TYPES:
        raise ValidationError(f"Unsupported payment event type: {event.event_type}")
    if event.event_type != SUBSCRIPTION_CANCELLED and event.period_end is None:
        raise ValidationError("Created and renewed events need a period end")
    moment = now or utcnow()

    def _apply() -> PaymentProcessingResult:
        if _is_duplicate(db, event.event_id):
            return PaymentProcessingResult(
                processed=False,
                message="Duplicate event - already processed",
                skipped_reason="duplicate",
            )
        link = db.scalar(
            select(SubscriptionLink).where(SubscriptionLink.subscription_id == event.subscription_id).limit(1)
        )
        if link is None:
            # Not recorded as processed, so a redelivery after checkout links it still applies.
            return PaymentProcessingResult(
                processed=False,
                message="No user is linked to this subscription",
                skipped_reason="unknown_subscription",
            )

        user = load_user(db, link.user_id)
        expected_version = user.entitlement_version
        current = latest_records_by_source(db, user.id).get(PROVIDER_SUBSCRIPTION)
        paid_until = current.valid_until if current is not None else None

        if event.event_type == SUBSCRIPTION_CANCELLED:
            until = max(moment, paid_until) if paid_until is not None else moment
        else:
            until = max(event.period_end, paid_until) if paid_until is not None else event.period_end

        claim_ledger(db, user.id, expected_version)
        record = append_record(
            db,
            writer=PAYMENTS_WRITER,
            user_id=user.id,
            source=PROVIDER_SUBSCRIPTION,
            valid_until=until,
            now=moment,
            external_reference=event.subscription_id,
        )
        db.add(
            PaymentEvent(
                provider_event_id=event.event_id,
                event_type=event.event_type,
                subscription_id=event.subscription_id,
                user_id=user.id,
                entitlement_record_id=record.id,
                payload_hash=payload_hash,
                processed_at=moment,
            )
        )
        return PaymentProcessingResult(processed=True, message="Event applied", user_id=user.id, until=until)

    result = run_atomic(db, _apply, label="payment_event")
    if result.processed:
        logger.info("[PAYMENTS] Applied %s for user_id=%s", event.event_type, result.user_id)
    else:
        logger.info("[PAYMENTS] Skipped event (%s)", result.skipped_reason)
    return result


def payload_digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()
