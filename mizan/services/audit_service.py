"""Audit log helpers.

Entries are only ever inserted. Nothing in this module (or anywhere else)
updates or deletes an ``AuditLogEntry``; the mapper events on the model and
the SQLite triggers installed at startup reject such writes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mizan.models import AuditLogEntry
from mizan.models.audit_log import (
    AUDIT_ACTIONS,
    GRANT_MOD_ROLE,
    GRANT_PREMIUM,
    ISSUE_PREMIUM_CODE,
    REVOKE_MOD_ROLE,
    REVOKE_PREMIUM,
)
from mizan.services.errors import ValidationError

REASON_REQUIRED: frozenset[str] = frozenset(
    {GRANT_PREMIUM, REVOKE_PREMIUM, ISSUE_PREMIUM_CODE, GRANT_MOD_ROLE, REVOKE_MOD_ROLE}
)
PREMIUM_ACTIONS: tuple[str, ...] = (GRANT_PREMIUM, REVOKE_PREMIUM, ISSUE_PREMIUM_CODE)


@dataclass
class AuditFilter:
    actor_user_id: int | None = None
    target_user_id: int | None = None
    action_type: str | None = None
    since: datetime | None = None
    until: datetime | None = None


@dataclass
class AuditPage:
    entries: list[AuditLogEntry] = field(default_factory=list)
    page: int = 1
    limit: int = 50
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def log_action(
    db: Session,
    *,
    actor_user_id: int,
    action_type: str,
    now: datetime,
    target_user_id: int | None = None,
    before_snapshot: dict[str, Any] | None = None,
    after_snapshot: dict[str, Any] | None = None,
    reason: str | None = None,
    network_origin: str | None = None,
) -> AuditLogEntry:
    """Append one audit entry inside the caller's transaction.

    Timestamps never go backwards for a single actor: if the clock reads
    earlier than the actor's latest entry, the latest timestamp is reused.
    """
    if action_type not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action: {action_type}")
    if action_type in REASON_REQUIRED and not (reason or "").strip():
        raise ValidationError("A reason is required for this action")

    latest: datetime | None = db.scalar(
        select(AuditLogEntry.timestamp)
        .where(AuditLogEntry.actor_user_id == actor_user_id)
        .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        .limit(1)
    )
    timestamp = now if latest is None or now >= latest else latest

    entry = AuditLogEntry(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        action_type=action_type,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        reason=reason,
        network_origin=network_origin,
        timestamp=timestamp,
    )
    db.add(entry)
    db.flush()
    return entry


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _apply_filter(query, audit_filter: AuditFilter):
    if audit_filter.actor_user_id is not None:
        query = query.where(AuditLogEntry.actor_user_id == audit_filter.actor_user_id)
    if audit_filter.target_user_id is not None:
        query = query.where(AuditLogEntry.target_user_id == audit_filter.target_user_id)
    if audit_filter.action_type is not None:
        query = query.where(AuditLogEntry.action_type == audit_filter.action_type)
    if audit_filter.since is not None:
        query = query.where(AuditLogEntry.timestamp >= _as_utc(audit_filter.since))
    if audit_filter.until is not None:
        query = query.where(AuditLogEntry.timestamp < _as_utc(audit_filter.until))
    return query


def list_entries(db: Session, audit_filter: AuditFilter, *, page: int, limit: int) -> AuditPage:
    """Return one page of entries matching ``audit_filter``, newest first."""
    if audit_filter.action_type is not None and audit_filter.action_type not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action: {audit_filter.action_type}")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    total = db.scalar(_apply_filter(select(func.count(AuditLogEntry.id)), audit_filter)) or 0
    entries = db.scalars(
        _apply_filter(select(AuditLogEntry), audit_filter)
        .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    return AuditPage(entries=list(entries), page=page, limit=limit, total=int(total))


def premium_entries_for(db: Session, target_user_id: int) -> list[AuditLogEntry]:
    """Grant, revoke and code-issue entries targeting one user, newest first."""
    return list(
        db.scalars(
            select(AuditLogEntry)
            .where(AuditLogEntry.target_user_id == target_user_id, AuditLogEntry.action_type.in_(PREMIUM_ACTIONS))
            .order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        ).all()
    )
