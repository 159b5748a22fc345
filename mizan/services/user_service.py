"""User lookup and identity resolution."""

from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mizan.models import User, UserSetting
from mizan.models.user import DEFAULT_USER_SETTINGS
from mizan.services.errors import ValidationError

logger = logging.getLogger(__name__)

DISPLAY_NAME_MAX_LENGTH: int = 128


def get_user_by_id(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_subject(db: Session, external_subject_id: str) -> User | None:
    return db.scalar(select(User).where(User.external_subject_id == external_subject_id).limit(1))


def normalize_email(email: str | None) -> str | None:
    cleaned = (email or "").strip().lower()
    return cleaned or None


def derive_display_name(display_name_hint: str | None, email: str | None) -> str:
    """Pick a display name: the hint, else the email local part, else a placeholder."""
    hint = (display_name_hint or "").strip()
    if hint:
        return hint[:DISPLAY_NAME_MAX_LENGTH]
    local_part = (email or "").split("@", 1)[0].strip()
    if local_part:
        return local_part[:DISPLAY_NAME_MAX_LENGTH]
    return f"user_{uuid4().hex[:8]}"


def _sync_email(db: Session, user: User, email: str | None) -> User:
    if email is not None and user.email != email:
        user.email = email
        db.commit()
        db.refresh(user)
    return user


def resolve_identity(
    db: Session,
    external_subject_id: str,
    email: str | None,
    display_name_hint: str | None = None,
) -> User:
    """Map an external identity to exactly one internal user, creating it on first sight.

    Safe under concurrent first sign-ins for the same subject: the unique
    constraint on ``external_subject_id`` decides the winner and the loser
    re-reads the winner's row instead of failing.
    """
    subject = (external_subject_id or "").strip()
    if not subject:
        raise ValidationError("External subject id is required")
    email = normalize_email(email)

    existing = get_user_by_subject(db, subject)
    if existing is not None:
        return _sync_email(db, existing, email)

    user = User(
        external_subject_id=subject,
        email=email,
        display_name=derive_display_name(display_name_hint, email),
        entitlement_version=0,
    )
    try:
        db.add(user)
        db.flush()
        db.add(UserSetting(user_id=user.id, settings=dict(DEFAULT_USER_SETTINGS)))
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = get_user_by_subject(db, subject)
        if winner is None:
            raise
        logger.info("[IDENTITY] Concurrent first sign-in for subject resolved to user_id=%s", winner.id)
        return _sync_email(db, winner, email)

    db.refresh(user)
    logger.info("[IDENTITY] Created user_id=%s for new external subject", user.id)
    return user


def search_users(db: Session, *, search: str | None, page: int, limit: int) -> tuple[list[User], int]:
    """Page through users newest first, optionally matching name, email or subject."""
    query = select(User)
    count_query = select(func.count(User.id))
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        condition = or_(
            User.display_name.ilike(pattern),
            User.email.ilike(pattern),
            User.external_subject_id.ilike(pattern),
        )
        query = query.where(condition)
        count_query = count_query.where(condition)

    total = int(db.scalar(count_query) or 0)
    users = db.scalars(
        query.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset((page - 1) * limit)
    ).all()
    return list(users), total
