"""Moderator role assignment; every change is itself an audited privileged action."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from mizan.models import ModRole
from mizan.models.audit_log import GRANT_MOD_ROLE, REVOKE_MOD_ROLE
from mizan.models.mod_role import MOD_ROLES, SUPER_ADMIN
from mizan.services import privilege_gate
from mizan.services.audit_service import log_action
from mizan.services.entitlement_service import load_user, utcnow
from mizan.services.errors import NotFound, ValidationError
from mizan.services.moderation_service import require_reason
from mizan.services.transaction import run_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModStatus:
    """Advisory view of the caller's role for UI decisions; never used to authorize."""

    authorized: bool
    mod_level: str | None
    granted_at: datetime | None


def check_status(db: Session, user_id: int) -> ModStatus:
    mod_role = privilege_gate.get_mod_role(db, user_id)
    if mod_role is None:
        return ModStatus(authorized=False, mod_level=None, granted_at=None)
    return ModStatus(authorized=True, mod_level=mod_role.role, granted_at=mod_role.granted_at)


def _role_snapshot(mod_role: ModRole | None) -> dict[str, str | None]:
    return {"role": mod_role.role if mod_role is not None else None}


def set_mod_role(
    db: Session,
    *,
    actor_id: int,
    target_user_id: int,
    role: str,
    reason: str | None,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> ModRole:
    """Grant ``role`` to the target, or change the role it already holds."""
    moment = now or utcnow()

    def _assign() -> ModRole:
        privilege_gate.require_capability(db, actor_id, privilege_gate.MANAGE_MOD_ROLES)
        cleaned_reason = require_reason(reason)
        if role not in MOD_ROLES:
            raise ValidationError(f"Unknown moderator role: {role}")
        if target_user_id == actor_id:
            raise ValidationError("Moderators cannot change their own role")
        target = load_user(db, target_user_id)

        mod_role = privilege_gate.get_mod_role(db, target.id)
        before = _role_snapshot(mod_role)
        if mod_role is None:
            mod_role = ModRole(user_id=target.id, role=role, granted_by_user_id=actor_id, granted_at=moment)
            db.add(mod_role)
        else:
            mod_role.role = role
            mod_role.granted_by_user_id = actor_id
            mod_role.granted_at = moment
        db.flush()
        log_action(
            db,
            actor_user_id=actor_id,
            action_type=GRANT_MOD_ROLE,
            now=moment,
            target_user_id=target.id,
            before_snapshot=before,
            after_snapshot=_role_snapshot(mod_role),
            reason=cleaned_reason,
            network_origin=network_origin,
        )
        return mod_role

    result = run_atomic(db, _assign, label="grant_mod_role")
    logger.info("[SECURITY] user_id=%s set moderator role %s for user_id=%s", actor_id, role, target_user_id)
    return result


def remove_mod_role(
    db: Session,
    *,
    actor_id: int,
    target_user_id: int,
    reason: str | None,
    network_origin: str | None = None,
    now: datetime | None = None,
) -> None:
    """Take away every moderation capability from the target."""
    moment = now or utcnow()

    def _remove() -> None:
        privilege_gate.require_capability(db, actor_id, privilege_gate.MANAGE_MOD_ROLES)
        cleaned_reason = require_reason(reason)
        if target_user_id == actor_id:
            raise ValidationError("Moderators cannot change their own role")
        target = load_user(db, target_user_id)
        mod_role = privilege_gate.get_mod_role(db, target.id)
        if mod_role is None:
            raise NotFound("User holds no moderator role")

        before = _role_snapshot(mod_role)
        db.delete(mod_role)
        db.flush()
        log_action(
            db,
            actor_user_id=actor_id,
            action_type=REVOKE_MOD_ROLE,
            now=moment,
            target_user_id=target.id,
            before_snapshot=before,
            after_snapshot=_role_snapshot(None),
            reason=cleaned_reason,
            network_origin=network_origin,
        )

    run_atomic(db, _remove, label="revoke_mod_role")
    logger.info("[SECURITY] user_id=%s removed moderator role of user_id=%s", actor_id, target_user_id)


def bootstrap_super_admin(db: Session, user_id: int, *, reason: str, now: datetime | None = None) -> bool:
    """Give the very first super admin its role when no super admin exists yet.

    The grant is recorded as a self-targeted ``grant_mod_role`` entry.
    Returns False when a super admin already exists or the user holds a role.
    """
    moment = now or utcnow()

    def _bootstrap() -> bool:
        existing_super = db.query(ModRole).filter(ModRole.role == SUPER_ADMIN).first()
        if existing_super is not None or privilege_gate.get_mod_role(db, user_id) is not None:
            return False
        db.add(ModRole(user_id=user_id, role=SUPER_ADMIN, granted_by_user_id=None, granted_at=moment))
        db.flush()
        log_action(
            db,
            actor_user_id=user_id,
            action_type=GRANT_MOD_ROLE,
            now=moment,
            target_user_id=user_id,
            before_snapshot=_role_snapshot(None),
            after_snapshot={"role": SUPER_ADMIN},
            reason=reason,
        )
        return True

    return run_atomic(db, _bootstrap, label="bootstrap_super_admin")
