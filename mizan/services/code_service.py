"""Redeemable premium codes: normalisation, issuing and lookup."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.models import EntitlementRecord, PremiumCode
from mizan.models.entitlement import REDEEMABLE_CODE
from mizan.services.errors import ValidationError

CODE_MAX_LENGTH: int = 64
ISSUED_CODE_DAYS: int = 30
MAX_ISSUED_CODE_DAYS: int = 365


def normalize_code(code: str | None) -> str:
    """Strip and upper-case a submitted code; reject empty or oversized input."""
    if not isinstance(code, str):
        raise ValidationError("Code must be a string")
    cleaned = code.strip().upper()
    if not cleaned:
        raise ValidationError("Code is required")
    if len(cleaned) > CODE_MAX_LENGTH:
        raise ValidationError("Code is too long")
    return cleaned


def is_recognized_code(code: str) -> bool:
    return code in settings.premium_codes


def code_reference(code: str) -> str:
    return f"code:{code}"


def already_redeemed_shared_code(db: Session, user_id: int, code: str) -> bool:
    """Shared codes count once per user."""
    return (
        db.scalar(
            select(EntitlementRecord.id)
            .where(
                EntitlementRecord.user_id == user_id,
                EntitlementRecord.source == REDEEMABLE_CODE,
                EntitlementRecord.external_reference == code_reference(code),
            )
            .limit(1)
        )
        is not None
    )


def find_issued_code(db: Session, user_id: int, code: str, now: datetime) -> PremiumCode | None:
    """Return the unexpired, unredeemed code issued to ``user_id`` matching ``code``."""
    return db.scalar(
        select(PremiumCode)
        .where(
            PremiumCode.code == code,
            PremiumCode.created_for_user_id == user_id,
            PremiumCode.redeemed_at.is_(None),
            PremiumCode.expires_at > now,
        )
        .limit(1)
    )


def mark_redeemed(db: Session, premium_code: PremiumCode, user_id: int, now: datetime) -> bool:
    """Claim a single-use code; False when another request redeemed it first."""
    result = db.execute(
        update(PremiumCode)
        .where(PremiumCode.id == premium_code.id, PremiumCode.redeemed_at.is_(None))
        .values(redeemed_at=now, redeemed_by_user_id=user_id)
    )
    return result.rowcount == 1


def issue_user_code(db: Session, user_id: int, now: datetime, *, valid_days: int = ISSUED_CODE_DAYS) -> PremiumCode:
    """Stage a single-use code only ``user_id`` can redeem; the caller commits."""
    premium_code = PremiumCode(
        code=secrets.token_hex(6).upper(),
        created_for_user_id=user_id,
        expires_at=now + timedelta(days=valid_days),
        created_at=now,
    )
    db.add(premium_code)
    db.flush()
    return premium_code
