"""Moderator capability matrix and the server-side gate every privileged call passes."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from mizan.models import ModRole
from mizan.models.mod_role import FULL, READ_ONLY, SUPER_ADMIN
from mizan.services.errors import AuthorizationError

logger = logging.getLogger(__name__)

VIEW_USERS = "view_users"
VIEW_AUDIT_LOG = "view_audit_log"
GRANT_PREMIUM = "grant_premium"
REVOKE_PREMIUM = "revoke_premium"
MANAGE_MOD_ROLES = "manage_mod_roles"
DELETE_AUDIT_ENTRY = "delete_audit_entry"

CAPABILITIES = (VIEW_USERS, VIEW_AUDIT_LOG, GRANT_PREMIUM, REVOKE_PREMIUM, MANAGE_MOD_ROLES, DELETE_AUDIT_ENTRY)

# No role holds DELETE_AUDIT_ENTRY: the audit trail is append-only for everyone.
CAPABILITY_MATRIX: dict[str, frozenset[str]] = {
    READ_ONLY: frozenset({VIEW_USERS, VIEW_AUDIT_LOG}),
    FULL: frozenset({VIEW_USERS, VIEW_AUDIT_LOG, GRANT_PREMIUM, REVOKE_PREMIUM}),
    SUPER_ADMIN: frozenset({VIEW_USERS, VIEW_AUDIT_LOG, GRANT_PREMIUM, REVOKE_PREMIUM, MANAGE_MOD_ROLES}),
}


def get_mod_role(db: Session, user_id: int) -> ModRole | None:
    """Read the caller's role from storage; never trust a client-cached value."""
    return db.scalar(select(ModRole).where(ModRole.user_id == user_id).limit(1))


def role_allows(role: str | None, capability: str) -> bool:
    if role is None:
        return False
    return capability in CAPABILITY_MATRIX.get(role, frozenset())


def capability(db: Session, user_id: int, action: str) -> bool:
    """Return whether ``user_id`` may perform ``action`` right now."""
    mod_role = get_mod_role(db, user_id)
    return role_allows(mod_role.role if mod_role is not None else None, action)


def require_capability(db: Session, user_id: int, action: str) -> ModRole:
    """Re-evaluate the caller's role and raise unless ``action`` is permitted."""
    if action not in CAPABILITIES:
        raise AuthorizationError()
    mod_role = get_mod_role(db, user_id)
    if mod_role is None or not role_allows(mod_role.role, action):
        logger.warning(
            "[SECURITY] Denied %s for user_id=%s (role=%s)",
            action,
            user_id,
            mod_role.role if mod_role is not None else None,
        )
        raise AuthorizationError()
    return mod_role
