"""Payment provider events: signature checks, parsing and idempotent application."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from mizan.db.base import Base
from mizan.db.migrations import ensure_sqlite_schema
from mizan.models import EntitlementRecord, PaymentEvent, User
from mizan.models.entitlement import PROVIDER_SUBSCRIPTION
from mizan.services import payment_service
from mizan.services.entitlement_service import resolve_entitlement
from mizan.services.errors import ValidationError
from mizan.services.payment_service import (
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_RENEWED,
    CheckoutLink,
    SubscriptionEvent,
    WebhookSignatureError,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
SECRET = "whsec_test"


def _build_session_local(db_file: Path) -> sessionmaker:
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    ensure_sqlite_schema(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _seed_subscriber(session_local: sessionmaker, subscription_id: str = "sub_1") -> int:
    with session_local() as db:
        user = User(external_subject_id="payer", display_name="payer")
        db.add(user)
        db.commit()
        payment_service.link_subscription(db, subscription_id, user.id)
        return user.id


def _count(session_local: sessionmaker, model) -> int:
    with session_local() as db:
        return db.scalar(select(func.count(model.id)))


def test_signature_round_trip_and_tamper_detection() -> None:
    body = b'{"id": "evt_1"}'
    header = payment_service.sign_payload(body, SECRET, 1_700_000_000)

    payment_service.verify_signature(body, header, SECRET, tolerance_seconds=300, now_ts=1_700_000_100)
    with pytest.raises(WebhookSignatureError):
        payment_service.verify_signature(body + b" ", header, SECRET, tolerance_seconds=300, now_ts=1_700_000_100)
    with pytest.raises(WebhookSignatureError):
        payment_service.verify_signature(body, header, "other", tolerance_seconds=300, now_ts=1_700_000_100)


@pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1700000000"])
def test_malformed_signature_headers_are_rejected(header: str | None) -> None:
    with pytest.raises(WebhookSignatureError):
        payment_service.verify_signature(b"{}", header, SECRET, tolerance_seconds=300, now_ts=1_700_000_000)


def test_stale_signature_is_rejected() -> None:
    body = b"{}"
    header = payment_service.sign_payload(body, SECRET, 1_700_000_000)

    with pytest.raises(WebhookSignatureError):
        payment_service.verify_signature(body, header, SECRET, tolerance_seconds=300, now_ts=1_700_000_301)


def test_parse_maps_provider_types() -> None:
    period_end = int((NOW + timedelta(days=30)).timestamp())
    created = payment_service.parse_provider_event(
        {
            "id": "evt_c",
            "type": "customer.subscription.created",
            "data": {"object": {"id": "sub_9", "current_period_end": period_end}},
        }
    )
    renewed = payment_service.parse_provider_event(
        {
            "id": "evt_r",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"subscription": "sub_9", "lines": {"data": [{"period": {"end": period_end}}]}}},
        }
    )
    checkout = payment_service.parse_provider_event(
        {
            "id": "evt_k",
            "type": "checkout.session.completed",
            "data": {"object": {"subscription": "sub_9", "client_reference_id": "42"}},
        }
    )

    assert created == SubscriptionEvent("evt_c", SUBSCRIPTION_CREATED, "sub_9", NOW + timedelta(days=30))
    assert renewed.event_type == SUBSCRIPTION_RENEWED
    assert renewed.period_end == NOW + timedelta(days=30)
    assert checkout == CheckoutLink(event_id="evt_k", subscription_id="sub_9", user_id=42)
    assert payment_service.parse_provider_event({"id": "evt_x", "type": "charge.refunded", "data": {}}) is None
    with pytest.raises(ValidationError):
        payment_service.parse_provider_event({"type": "invoice.payment_succeeded"})


@pytest.mark.parametrize(
    "body",
    [
        {"id": "evt_1", "type": "customer.subscription.created", "data": "oops"},
        {"id": "evt_1", "type": "customer.subscription.created", "data": {"object": ["sub_1"]}},
        {"id": "evt_1", "type": "invoice.payment_succeeded", "data": {"object": {"subscription": "s", "lines": "x"}}},
        {"id": 7, "type": "customer.subscription.created", "data": {}},
    ],
)
def test_parse_rejects_malformed_bodies(body: dict) -> None:
    with pytest.raises(ValidationError):
        payment_service.parse_provider_event(body)


def test_created_then_duplicate_renewal_is_applied_once(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "renewal.db")
    user_id = _seed_subscriber(session_local)
    first_period = NOW + timedelta(days=30)
    second_period = NOW + timedelta(days=60)

    with session_local() as db:
        created = payment_service.apply_event(
            db, SubscriptionEvent("evt_1", SUBSCRIPTION_CREATED, "sub_1", first_period), now=NOW
        )
        renewal = SubscriptionEvent("evt_2", SUBSCRIPTION_RENEWED, "sub_1", second_period)
        applied = payment_service.apply_event(db, renewal, now=NOW + timedelta(days=30))
        duplicate = payment_service.apply_event(db, renewal, now=NOW + timedelta(days=30))

    assert created.processed is True
    assert applied.processed is True
    assert applied.until == second_period
    assert duplicate.processed is False
    assert duplicate.skipped_reason == "duplicate"
    assert _count(session_local, EntitlementRecord) == 2
    assert _count(session_local, PaymentEvent) == 2
    with session_local() as db:
        status = resolve_entitlement(db, user_id, NOW + timedelta(days=45))
    assert status.source == PROVIDER_SUBSCRIPTION
    assert status.until == second_period


def test_out_of_order_renewal_never_shortens_paid_time(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "ordering.db")
    _seed_subscriber(session_local)

    with session_local() as db:
        payment_service.apply_event(
            db, SubscriptionEvent("evt_late", SUBSCRIPTION_RENEWED, "sub_1", NOW + timedelta(days=60)), now=NOW
        )
        result = payment_service.apply_event(
            db, SubscriptionEvent("evt_early", SUBSCRIPTION_CREATED, "sub_1", NOW + timedelta(days=30)), now=NOW
        )

    assert result.until == NOW + timedelta(days=60)


def test_cancellation_keeps_paid_time(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "cancel.db")
    user_id = _seed_subscriber(session_local)
    paid_until = NOW + timedelta(days=30)

    with session_local() as db:
        payment_service.apply_event(db, SubscriptionEvent("evt_1", SUBSCRIPTION_CREATED, "sub_1", paid_until), now=NOW)
        cancelled = payment_service.apply_event(
            db, SubscriptionEvent("evt_2", SUBSCRIPTION_CANCELLED, "sub_1"), now=NOW + timedelta(days=10)
        )
        assert resolve_entitlement(db, user_id, NOW + timedelta(days=29)).active is True
        assert resolve_entitlement(db, user_id, NOW + timedelta(days=31)).active is False

    assert cancelled.until == paid_until


def test_event_for_unknown_subscription_is_not_recorded(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "unknown.db")
    _seed_subscriber(session_local)

    with session_local() as db:
        result = payment_service.apply_event(
            db, SubscriptionEvent("evt_9", SUBSCRIPTION_CREATED, "sub_unknown", NOW + timedelta(days=30)), now=NOW
        )

    assert result.processed is False
    assert result.skipped_reason == "unknown_subscription"
    assert _count(session_local, PaymentEvent) == 0
    assert _count(session_local, EntitlementRecord) == 0


def test_created_event_without_period_end_is_invalid(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "no_period.db")
    _seed_subscriber(session_local)

    with session_local() as db:
        with pytest.raises(ValidationError):
            payment_service.apply_event(db, SubscriptionEvent("evt_x", SUBSCRIPTION_CREATED, "sub_1"), now=NOW)


def test_subscription_cannot_be_relinked_to_another_user(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "relink.db")
    user_id = _seed_subscriber(session_local)

    with session_local() as db:
        other = User(external_subject_id="other", display_name="other")
        db.add(other)
        db.commit()
        assert payment_service.link_subscription(db, "sub_1", user_id).user_id == user_id
        with pytest.raises(ValidationError):
            payment_service.link_subscription(db, "sub_1", other.id)


def test_payload_digest_is_stable() -> None:
    body = json.dumps({"id": "evt"}).encode("utf-8")
    assert payment_service.payload_digest(body) == payment_service.payload_digest(body)
    assert len(payment_service.payload_digest(body)) == 64
