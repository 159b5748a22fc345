"""Capability matrix and the per-call role re-check."""

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mizan.db.base import Base
from mizan.models import ModRole, User
from mizan.models.mod_role import FULL, MOD_ROLES, READ_ONLY, SUPER_ADMIN
from mizan.services import privilege_gate
from mizan.services.errors import AuthorizationError


def _build_session_local(db_file: Path) -> sessionmaker:
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.mark.parametrize(
    ("role", "allowed"),
    [
        (READ_ONLY, {privilege_gate.VIEW_USERS, privilege_gate.VIEW_AUDIT_LOG}),
        (
            FULL,
            {
                privilege_gate.VIEW_USERS,
                privilege_gate.VIEW_AUDIT_LOG,
                privilege_gate.GRANT_PREMIUM,
                privilege_gate.REVOKE_PREMIUM,
            },
        ),
        (
            SUPER_ADMIN,
            {
                privilege_gate.VIEW_USERS,
                privilege_gate.VIEW_AUDIT_LOG,
                privilege_gate.GRANT_PREMIUM,
                privilege_gate.REVOKE_PREMIUM,
                privilege_gate.MANAGE_MOD_ROLES,
            },
        ),
        (None, set()),
    ],
)
def test_capability_matrix(role: str | None, allowed: set[str]) -> None:
    granted = {action for action in privilege_gate.CAPABILITIES if privilege_gate.role_allows(role, action)}
    assert granted == allowed


@pytest.mark.parametrize("role", MOD_ROLES)
def test_no_role_may_delete_audit_entries(tmp_path: Path, role: str) -> None:
    session_local = _build_session_local(tmp_path / "delete_audit.db")
    with session_local() as db:
        user = User(external_subject_id=f"sub-{role}", display_name=role)
        db.add(user)
        db.flush()
        db.add(ModRole(user_id=user.id, role=role))
        db.commit()

        assert privilege_gate.capability(db, user.id, privilege_gate.DELETE_AUDIT_ENTRY) is False
        with pytest.raises(AuthorizationError):
            privilege_gate.require_capability(db, user.id, privilege_gate.DELETE_AUDIT_ENTRY)


def test_unknown_action_is_denied(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "unknown.db")
    with session_local() as db:
        user = User(external_subject_id="boss", display_name="boss")
        db.add(user)
        db.flush()
        db.add(ModRole(user_id=user.id, role=SUPER_ADMIN))
        db.commit()

        with pytest.raises(AuthorizationError):
            privilege_gate.require_capability(db, user.id, "drop_database")


def test_role_is_read_from_storage_on_every_check(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "recheck.db")
    with session_local() as db:
        user = User(external_subject_id="fading", display_name="fading")
        db.add(user)
        db.flush()
        db.add(ModRole(user_id=user.id, role=FULL))
        db.commit()
        user_id = user.id

        assert privilege_gate.require_capability(db, user_id, privilege_gate.GRANT_PREMIUM).role == FULL

    with session_local() as other:
        other.delete(other.get(ModRole, 1))
        other.commit()

    with session_local() as db:
        with pytest.raises(AuthorizationError):
            privilege_gate.require_capability(db, user_id, privilege_gate.GRANT_PREMIUM)
