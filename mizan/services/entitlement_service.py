"""Entitlement ledger writes and the read-side status resolver.

The ledger is append-only: a grant, renewal or revocation is always a new
``EntitlementRecord``. Current status is never stored; it is computed on read
from the most recent record of each source, so many concurrent readers never
race each other with write-backs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mizan.models import EntitlementRecord, User
from mizan.models.entitlement import ENTITLEMENT_SOURCES, MANUAL_OVERRIDE, PROVIDER_SUBSCRIPTION, REDEEMABLE_CODE
from mizan.services.errors import ConflictError, NotFound, ValidationError

logger = logging.getLogger(__name__)

PAYMENTS_WRITER: str = "payments"
MODERATION_WRITER: str = "moderation"

# The only component allowed to append records of each source.
LEDGER_WRITERS: dict[str, str] = {
    PROVIDER_SUBSCRIPTION: PAYMENTS_WRITER,
    MANUAL_OVERRIDE: MODERATION_WRITER,
    REDEEMABLE_CODE: MODERATION_WRITER,
}


class LedgerWriterError(RuntimeError):
    """Raised when a component appends a record for a source it does not own."""


@dataclass(frozen=True)
class EntitlementStatus:
    """Resolved premium status for one user at one instant."""

    active: bool
    source: str | None
    until: datetime | None

    def snapshot(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "source": self.source,
            "until": self.until.isoformat() if self.until is not None else None,
        }


INACTIVE: EntitlementStatus = EntitlementStatus(active=False, source=None, until=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_live(record: EntitlementRecord, now: datetime) -> bool:
    """A record is live when it is unbounded or expires strictly after ``now``."""
    return record.valid_until is None or record.valid_until > now


def current_records(records: Iterable[EntitlementRecord]) -> dict[str, EntitlementRecord]:
    """Pick the most recent record per source; later ids supersede earlier ones."""
    latest: dict[str, EntitlementRecord] = {}
    for record in records:
        existing = latest.get(record.source)
        if existing is None or record.id > existing.id:
            latest[record.source] = record
    return latest


def resolve_status(records: Iterable[EntitlementRecord], now: datetime) -> EntitlementStatus:
    """Compute the effective status from ledger records without touching storage.

    Precedence is provider subscription, then manual override, then redeemable
    code. The winning source reports its own ``until`` even when a lower
    precedence source would last longer.
    """
    latest = current_records(records)
    for source in ENTITLEMENT_SOURCES:
        record = latest.get(source)
        if record is not None and is_live(record, now):
            return EntitlementStatus(active=True, source=source, until=record.valid_until)
    return INACTIVE


def latest_records_by_source(db: Session, user_id: int) -> dict[str, EntitlementRecord]:
    """Fetch only the current record of each source for ``user_id``."""
    newest_ids = (
        select(func.max(EntitlementRecord.id))
        .where(EntitlementRecord.user_id == user_id)
        .group_by(EntitlementRecord.source)
    )
    rows = db.scalars(select(EntitlementRecord).where(EntitlementRecord.id.in_(newest_ids))).all()
    return {row.source: row for row in rows}


def resolve_entitlement(db: Session, user_id: int, now: datetime | None = None) -> EntitlementStatus:
    """Resolve a user's status from storage; storage errors propagate."""
    moment = now or utcnow()
    return resolve_status(latest_records_by_source(db, user_id).values(), moment)


def get_current_entitlement(db: Session, user_id: int, now: datetime | None = None) -> EntitlementStatus:
    """Resolve status for feature gating, failing safe to inactive on storage errors."""
    try:
        return resolve_entitlement(db, user_id, now)
    except SQLAlchemyError:
        logger.exception("[LEDGER] Entitlement resolution failed for user_id=%s; reporting inactive.", user_id)
        return INACTIVE


def list_records(db: Session, user_id: int, limit: int | None = None) -> list[EntitlementRecord]:
    """Return the full ledger history for a user, newest first."""
    query = select(EntitlementRecord).where(EntitlementRecord.user_id == user_id).order_by(EntitlementRecord.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return list(db.scalars(query).all())


def load_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def claim_ledger(db: Session, user_id: int, expected_version: int) -> int:
    """Bump the user's ledger version if nobody else did since it was read.

    Returns the new version; raises ``ConflictError`` when another writer won.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.entitlement_version == expected_version)
        .values(entitlement_version=expected_version + 1)
    )
    if result.rowcount != 1:
        logger.info("[LEDGER] Version conflict for user_id=%s at version=%s", user_id, expected_version)
        raise ConflictError("Entitlements for this user changed concurrently; retry with fresh state.")
    return expected_version + 1


def append_record(
    db: Session,
    *,
    writer: str,
    user_id: int,
    source: str,
    valid_until: datetime | None,
    now: datetime,
    granted_by_user_id: int | None = None,
    reason: str | None = None,
    external_reference: str | None = None,
) -> EntitlementRecord:
    """Append one ledger record; the caller owns the surrounding transaction."""
    if source not in LEDGER_WRITERS:
        raise ValidationError(f"Unknown entitlement source: {source}")
    if LEDGER_WRITERS[source] != writer:
        raise LedgerWriterError(f"{writer} may not write {source} records")
    if granted_by_user_id is not None and not (reason or "").strip():
        raise ValidationError("A reason is required for moderator-granted entitlements")

    record = EntitlementRecord(
        user_id=user_id,
        source=source,
        valid_until=valid_until,
        granted_by_user_id=granted_by_user_id,
        reason=reason,
        external_reference=external_reference,
        created_at=now,
    )
    db.add(record)
    db.flush()
    logger.info("[LEDGER] Appended %s record id=%s for user_id=%s", source, record.id, user_id)
    return record
