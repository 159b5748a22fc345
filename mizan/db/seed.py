"""Startup bootstrap of the first super admin."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.services.mod_role_service import bootstrap_super_admin
from mizan.services.user_service import get_user_by_subject

logger = logging.getLogger(__name__)

BOOTSTRAP_REASON: str = "Initial super admin from BOOTSTRAP_SUPER_ADMIN_SUBJECT"


def ensure_bootstrap_super_admin(db: Session, subject: str | None = None) -> bool:
    """Promote the configured subject to super admin on an empty moderator table.

    Returns True when a role was granted by this call.
    """
    subject = subject if subject is not None else settings.bootstrap_super_admin_subject
    if not subject:
        return False
    user = get_user_by_subject(db, subject)
    if user is None:
        logger.info("[BOOTSTRAP] Super admin subject has not signed in yet; skipping.")
        return False
    granted = bootstrap_super_admin(db, user.id, reason=BOOTSTRAP_REASON)
    if granted:
        logger.warning("[SECURITY] Bootstrapped super admin role for user_id=%s", user.id)
    return granted
