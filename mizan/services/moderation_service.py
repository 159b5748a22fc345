"""Moderator-initiated entitlement changes and the sensitive reads around them.

Every entry point re-checks the caller's role through the privilege gate
before touching anything, and every mutation writes its ledger record and
its audit entry in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.models import EntitlementRecord, GrantNotice, ModRole, PaymentEvent, PremiumCode, User
from mizan.models.audit_log import (
    GRANT_PREMIUM,
    ISSUE_PREMIUM_CODE,
    REVOKE_PREMIUM,
    VIEW_PREMIUM_HISTORY,
    VIEW_USER_ACTIVITY,
)
from mizan.models.entitlement import MANUAL_OVERRIDE, PROVIDER_SUBSCRIPTION, REDEEMABLE_CODE
from mizan.models.mod_role import READ_ONLY
from mizan.services import privilege_gate
from mizan.services.audit_service import AuditFilter, AuditPage, list_entries, log_action, premium_entries_for
from mizan.services.code_service import (
    ISSUED_CODE_DAYS,
    MAX_ISSUED_CODE_DAYS,
    already_redeemed_shared_code,
    code_reference,
    find_issued_code,
    is_recognized_code,
    issue_user_code,
    mark_redeemed,
    normalize_code,
)
from mizan.services.entitlement_service import (
    MODERATION_WRITER,
    EntitlementStatus,
    append_record,
    claim_ledger,
    list_records,
    load_user,
    resolve_entitlement,
    utcnow,
)
from mizan.services.errors import ConflictError, ForbiddenRevocation, ValidationError
from mizan.services.transaction import run_atomic
from mizan.services.user_service import search_users

logger = logging.getLogger(__name__)

MAX_GRANT_DAYS: int = 36500
DEFAULT_ACTIVITY_LIMIT: int = 30
REASON_MAX_LENGTH: int = 2000


@dataclass(frozen=True)
class GrantResult:
    until: datetime | None
    status: EntitlementStatus


@dataclass(frozen=True)
class RedeemResult:
    accepted: bool
    until: datetime | None = None


@dataclass
class AuditListing:
    page: AuditPage
    reveal_origin: bool


@dataclass
class PremiumHistory:
    status: EntitlementStatus
    records: list[EntitlementRecord] = field(default_factory=list)
    audit_entries: list = field(default_factory=list)
    reveal_origin: bool = False


@dataclass
class UserActivity:
    records: list[EntitlementRecord] = field(default_factory=list)
    payment_events: list[PaymentEvent] = field(default_factory=list)


@dataclass
class UserDetail:
    user: User
    status: EntitlementStatus
    mod_role: ModRole | None


def require_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A reason is required")
    if len(cleaned) > REASON_MAX_LENGTH:
        raise ValidationError("Reason is too long")
    return cleaned


def _validate_duration(duration_days: int | None) -> None:
    if duration_days is None:
        return
    if isinstance(duration_days, bool) or not isinstance(duration_days, int):
        raise ValidationError("duration_days must be a whole number of days")
    if duration_days < 1 or duration_days > MAX_GRANT_DAYS:
        raise ValidationError(f"duration_days must be between 1 and {MAX_GRANT_DAYS}")


def _reveals_origin(mod_role: ModRole) -> bool:
    return mod_role.role != READ_ONLY


def remaining_access_notice(status: EntitlementStatus) -> str | None:
    """Explain why a user is still premium after a revoke, if they are."""
    if not status.active:
        return None
    if status.source == PROVIDER_SUBSCRIPTION:
        return "User is still premium through a paid subscription, which only the payment provider can end."
    return f"User is still premium through {status.source}; revoke again to expire that source as well."


def grant_premium(
    db: Session,
    *,
    mod_id: int,
    target_user_id: int,
    duration_days: int | None,
    reason: str | None,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Grant a manual override for ``duration_days`` (``None`` = lifetime)."""
    moment = now or utcnow()

    def _grant() -> GrantResult:
        privilege_gate.require_capability(db, mod_id, privilege_gate.GRANT_PREMIUM)
        cleaned_reason = require_reason(reason)
        _validate_duration(duration_days)
        target = load_user(db, target_user_id)
        expected_version = target.entitlement_version

        before = resolve_entitlement(db, target.id, moment)
        until = moment + timedelta(days=duration_days) if duration_days is not None else None
        claim_ledger(db, target.id, expected_version)
        record = append_record(
            db,
            writer=MODERATION_WRITER,
            user_id=target.id,
            source=MANUAL_OVERRIDE,
            valid_until=until,
            now=moment,
            granted_by_user_id=mod_id,
            reason=cleaned_reason,
        )
        after = resolve_entitlement(db, target.id, moment)
        log_action(
            db,
            actor_user_id=mod_id,
            action_type=GRANT_PREMIUM,
            now=moment,
            target_user_id=target.id,
            before_snapshot=before.snapshot(),
            after_snapshot={**after.snapshot(), "record_id": record.id, "duration_days": duration_days},
            reason=cleaned_reason,
            network_origin=network_origin,
        )
        db.add(
            GrantNotice(
                user_id=target.id,
                entitlement_record_id=record.id,
                duration_days=duration_days,
                note=cleaned_reason,
                granted_at=moment,
            )
        )
        return GrantResult(until=until, status=after)

    result = run_atomic(db, _grant, label="grant_premium")
    logger.info("[MODERATION] user_id=%s granted premium to user_id=%s", mod_id, target_user_id)
    return result


def revoke_premium(
    db: Session,
    *,
    mod_id: int,
    target_user_id: int,
    reason: str | None,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> EntitlementStatus:
    """Expire the target's moderator-controlled entitlement immediately.

    A live provider subscription always wins: the call fails with
    ``ForbiddenRevocation`` and nothing is written.
    """
    moment = now or utcnow()

    def _revoke() -> EntitlementStatus:
        privilege_gate.require_capability(db, mod_id, privilege_gate.REVOKE_PREMIUM)
        cleaned_reason = require_reason(reason)
        target = load_user(db, target_user_id)
        expected_version = target.entitlement_version

        before = resolve_entitlement(db, target.id, moment)
        if before.source == PROVIDER_SUBSCRIPTION:
            raise ForbiddenRevocation(
                "This user has an active paid subscription. It can only be ended by cancelling with the payment provider."
            )

        # The live moderator-writable source is expired; with nothing live the override is closed.
        source = before.source if before.source is not None else MANUAL_OVERRIDE
        claim_ledger(db, target.id, expected_version)
        record = append_record(
            db,
            writer=MODERATION_WRITER,
            user_id=target.id,
            source=source,
            valid_until=moment,
            now=moment,
            granted_by_user_id=mod_id,
            reason=cleaned_reason,
        )
        after = resolve_entitlement(db, target.id, moment)
        log_action(
            db,
            actor_user_id=mod_id,
            action_type=REVOKE_PREMIUM,
            now=moment,
            target_user_id=target.id,
            before_snapshot=before.snapshot(),
            after_snapshot={**after.snapshot(), "record_id": record.id, "revoked_source": source},
            reason=cleaned_reason,
            network_origin=network_origin,
        )
        return after

    result = run_atomic(db, _revoke, label="revoke_premium")
    logger.info("[MODERATION] user_id=%s revoked premium of user_id=%s", mod_id, target_user_id)
    if result.active:
        logger.warning(
            "[MODERATION] user_id=%s is still premium through %s after revoke", target_user_id, result.source
        )
    return result


def redeem_code(db: Session, *, user_id: int, code: str | None, now: datetime | None = None) -> RedeemResult:
    """Redeem a shared or personally issued code for a fixed validity window.

    A wrong code is a declined result, not an error. Only malformed input
    raises. Self-service, so no audit entry is written; the ledger record
    already carries the history.
    """
    moment = now or utcnow()
    normalized = normalize_code(code)
    load_user(db, user_id)

    def _redeem() -> RedeemResult:
        user = load_user(db, user_id)
        expected_version = user.entitlement_version

        issued = None
        if is_recognized_code(normalized):
            if already_redeemed_shared_code(db, user_id, normalized):
                return RedeemResult(accepted=False)
            reference = code_reference(normalized)
        else:
            issued = find_issued_code(db, user_id, normalized, moment)
            if issued is None:
                return RedeemResult(accepted=False)
            reference = f"issued:{issued.id}"

        claim_ledger(db, user_id, expected_version)
        if issued is not None and not mark_redeemed(db, issued, user_id, moment):
            raise ConflictError("Code was redeemed concurrently")
        until = moment + timedelta(days=settings.redeemable_code_days)
        append_record(
            db,
            writer=MODERATION_WRITER,
            user_id=user_id,
            source=REDEEMABLE_CODE,
            valid_until=until,
            now=moment,
            external_reference=reference,
        )
        return RedeemResult(accepted=True, until=until)

    result = run_atomic(db, _redeem, label="redeem_code")
    if result.accepted:
        logger.info("[LEDGER] user_id=%s redeemed a premium code", user_id)
    else:
        logger.info("[LEDGER] user_id=%s submitted a declined premium code", user_id)
    return result


def issue_premium_code(
    db: Session,
    *,
    mod_id: int,
    target_user_id: int,
    reason: str | None,
    valid_days: int | None = None,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> PremiumCode:
    """Issue a single-use code bound to the target; it still has to be redeemed."""
    moment = now or utcnow()
    days = ISSUED_CODE_DAYS if valid_days is None else valid_days

    def _issue() -> PremiumCode:
        privilege_gate.require_capability(db, mod_id, privilege_gate.GRANT_PREMIUM)
        cleaned_reason = require_reason(reason)
        if isinstance(days, bool) or not isinstance(days, int) or days < 1 or days > MAX_ISSUED_CODE_DAYS:
            raise ValidationError(f"valid_days must be between 1 and {MAX_ISSUED_CODE_DAYS}")
        target = load_user(db, target_user_id)
        premium_code = issue_user_code(db, target.id, moment, valid_days=days)
        # The code itself stays out of the audit trail; the id is enough to trace it.
        log_action(
            db,
            actor_user_id=mod_id,
            action_type=ISSUE_PREMIUM_CODE,
            now=moment,
            target_user_id=target.id,
            after_snapshot={"code_id": premium_code.id, "expires_at": premium_code.expires_at.isoformat()},
            reason=cleaned_reason,
            network_origin=network_origin,
        )
        return premium_code

    result = run_atomic(db, _issue, label="issue_premium_code")
    logger.info("[MODERATION] user_id=%s issued a premium code to user_id=%s", mod_id, target_user_id)
    return result


def list_audit_log(
    db: Session,
    *,
    mod_id: int,
    audit_filter: AuditFilter,
    page: int = 1,
    limit: int = 50,
) -> AuditListing:
    """Page through the audit trail; read-only moderators do not see network origins."""
    mod_role = privilege_gate.require_capability(db, mod_id, privilege_gate.VIEW_AUDIT_LOG)
    limit = min(limit, settings.audit_page_size_max)
    return AuditListing(
        page=list_entries(db, audit_filter, page=page, limit=limit),
        reveal_origin=_reveals_origin(mod_role),
    )


def get_premium_history(
    db: Session,
    *,
    mod_id: int,
    target_user_id: int,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> PremiumHistory:
    """Return a target's ledger and grant/revoke trail, recording the view itself."""
    moment = now or utcnow()

    def _view() -> PremiumHistory:
        mod_role = privilege_gate.require_capability(db, mod_id, privilege_gate.VIEW_USERS)
        target = load_user(db, target_user_id)
        log_action(
            db,
            actor_user_id=mod_id,
            action_type=VIEW_PREMIUM_HISTORY,
            now=moment,
            target_user_id=target.id,
            network_origin=network_origin,
        )
        return PremiumHistory(
            status=resolve_entitlement(db, target.id, moment),
            records=list_records(db, target.id),
            audit_entries=premium_entries_for(db, target.id),
            reveal_origin=_reveals_origin(mod_role),
        )

    return run_atomic(db, _view, label="view_premium_history")


def get_user_activity(
    db: Session,
    *,
    mod_id: int,
    target_user_id: int,
    limit: int = DEFAULT_ACTIVITY_LIMIT,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> UserActivity:
    """Return a target's entitlement activity, recording the view itself."""
    moment = now or utcnow()
    if limit < 1:
        raise ValidationError("limit must be positive")

    def _view() -> UserActivity:
        privilege_gate.require_capability(db, mod_id, privilege_gate.VIEW_USERS)
        target = load_user(db, target_user_id)
        log_action(
            db,
            actor_user_id=mod_id,
            action_type=VIEW_USER_ACTIVITY,
            now=moment,
            target_user_id=target.id,
            network_origin=network_origin,
        )
        payment_events = db.scalars(
            select(PaymentEvent)
            .where(PaymentEvent.user_id == target.id)
            .order_by(PaymentEvent.id.desc())
            .limit(limit)
        ).all()
        return UserActivity(records=list_records(db, target.id, limit=limit), payment_events=list(payment_events))

    return run_atomic(db, _view, label="view_user_activity")


def list_users(db: Session, *, mod_id: int, search: str | None, page: int = 1, limit: int = 50) -> tuple[list[User], int]:
    privilege_gate.require_capability(db, mod_id, privilege_gate.VIEW_USERS)
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    return search_users(db, search=search, page=page, limit=min(limit, settings.audit_page_size_max))


def get_user_detail(db: Session, *, mod_id: int, target_user_id: int, now: datetime | None = None) -> UserDetail:
    privilege_gate.require_capability(db, mod_id, privilege_gate.VIEW_USERS)
    target = load_user(db, target_user_id)
    return UserDetail(
        user=target,
        status=resolve_entitlement(db, target.id, now or utcnow()),
        mod_role=privilege_gate.get_mod_role(db, target.id),
    )


def take_grant_notice(db: Session, user_id: int, now: datetime | None = None) -> GrantNotice | None:
    """Return the oldest undelivered grant notice for ``user_id`` and mark it delivered."""
    moment = now or utcnow()
    notice = db.scalar(
        select(GrantNotice)
        .where(GrantNotice.user_id == user_id, GrantNotice.delivered_at.is_(None))
        .order_by(GrantNotice.id.asc())
        .limit(1)
    )
    if notice is None:
        return None
    result = db.execute(
        update(GrantNotice)
        .where(GrantNotice.id == notice.id, GrantNotice.delivered_at.is_(None))
        .values(delivered_at=moment)
    )
    db.commit()
    if result.rowcount != 1:
        return None
    db.refresh(notice)
    return notice
