"""Moderator role management and the first super admin bootstrap."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from mizan.db.base import Base
from mizan.db.seed import ensure_bootstrap_super_admin
from mizan.models import AuditLogEntry, ModRole, User
from mizan.models.audit_log import GRANT_MOD_ROLE, REVOKE_MOD_ROLE
from mizan.models.mod_role import FULL, READ_ONLY, SUPER_ADMIN
from mizan.services import mod_role_service
from mizan.services.errors import AuthorizationError, NotFound, ValidationError

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _build_session_local(db_file: Path) -> sessionmaker:
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _seed(session_local: sessionmaker, actor_role: str = SUPER_ADMIN) -> tuple[int, int]:
    with session_local() as db:
        actor = User(external_subject_id="admin-sub", display_name="admin")
        target = User(external_subject_id="helper-sub", display_name="helper")
        db.add_all([actor, target])
        db.flush()
        db.add(ModRole(user_id=actor.id, role=actor_role, granted_at=NOW))
        db.commit()
        return actor.id, target.id


def test_super_admin_grants_and_changes_role(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "roles.db")
    actor_id, target_id = _seed(session_local)

    with session_local() as db:
        mod_role_service.set_mod_role(
            db, actor_id=actor_id, target_user_id=target_id, role=READ_ONLY, reason="New helper", now=NOW
        )
        mod_role_service.set_mod_role(
            db, actor_id=actor_id, target_user_id=target_id, role=FULL, reason="Promoted", now=NOW
        )

    with session_local() as db:
        assert db.scalar(select(ModRole.role).where(ModRole.user_id == target_id)) == FULL
        entries = db.scalars(select(AuditLogEntry).order_by(AuditLogEntry.id)).all()
        assert [entry.action_type for entry in entries] == [GRANT_MOD_ROLE, GRANT_MOD_ROLE]
        assert entries[0].before_snapshot == {"role": None}
        assert entries[1].before_snapshot == {"role": READ_ONLY}
        assert entries[1].after_snapshot == {"role": FULL}


def test_full_moderator_cannot_manage_roles(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "full.db")
    actor_id, target_id = _seed(session_local, actor_role=FULL)

    with session_local() as db:
        with pytest.raises(AuthorizationError):
            mod_role_service.set_mod_role(
                db, actor_id=actor_id, target_user_id=target_id, role=FULL, reason="self-serve", now=NOW
            )
        assert db.scalar(select(AuditLogEntry)) is None


def test_super_admin_cannot_change_own_role(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "self.db")
    actor_id, _ = _seed(session_local)

    with session_local() as db:
        with pytest.raises(ValidationError):
            mod_role_service.remove_mod_role(db, actor_id=actor_id, target_user_id=actor_id, reason="oops", now=NOW)


def test_unknown_role_is_rejected(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "unknown.db")
    actor_id, target_id = _seed(session_local)

    with session_local() as db:
        with pytest.raises(ValidationError):
            mod_role_service.set_mod_role(
                db, actor_id=actor_id, target_user_id=target_id, role="owner", reason="x", now=NOW
            )


def test_remove_role_is_audited(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "remove.db")
    actor_id, target_id = _seed(session_local)

    with session_local() as db:
        with pytest.raises(NotFound):
            mod_role_service.remove_mod_role(db, actor_id=actor_id, target_user_id=target_id, reason="x", now=NOW)
        mod_role_service.set_mod_role(
            db, actor_id=actor_id, target_user_id=target_id, role=READ_ONLY, reason="temp", now=NOW
        )
        mod_role_service.remove_mod_role(
            db, actor_id=actor_id, target_user_id=target_id, reason="Left the team", now=NOW
        )

    with session_local() as db:
        assert mod_role_service.check_status(db, target_id).authorized is False
        last = db.scalar(select(AuditLogEntry).order_by(AuditLogEntry.id.desc()).limit(1))
        assert last.action_type == REVOKE_MOD_ROLE
        assert last.after_snapshot == {"role": None}
        assert last.reason == "Left the team"


def test_bootstrap_only_promotes_when_no_super_admin_exists(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "bootstrap.db")
    with session_local() as db:
        first = User(external_subject_id="owner-sub", display_name="owner")
        second = User(external_subject_id="second-sub", display_name="second")
        db.add_all([first, second])
        db.commit()

        assert ensure_bootstrap_super_admin(db, "missing-sub") is False
        assert ensure_bootstrap_super_admin(db, "owner-sub") is True
        assert ensure_bootstrap_super_admin(db, "owner-sub") is False
        assert ensure_bootstrap_super_admin(db, "second-sub") is False

        status = mod_role_service.check_status(db, first.id)
        assert status.authorized is True
        assert status.mod_level == SUPER_ADMIN
        entry = db.scalar(select(AuditLogEntry))
        assert entry.actor_user_id == first.id
        assert entry.target_user_id == first.id
        assert entry.action_type == GRANT_MOD_ROLE
