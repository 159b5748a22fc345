"""External identity to internal user mapping."""

from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from mizan.db.base import Base
from mizan.models import User, UserSetting
from mizan.models.user import DEFAULT_USER_SETTINGS
from mizan.services import user_service
from mizan.services.errors import ValidationError


def _build_session_local(db_file: Path) -> sessionmaker:
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def test_first_sign_in_creates_user_and_default_settings(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "first.db")

    with session_local() as db:
        user = user_service.resolve_identity(db, "auth0|abc", "Reader@Example.com")

        assert user.email == "reader@example.com"
        assert user.display_name == "reader"
        assert user.entitlement_version == 0
        settings_row = db.scalar(select(UserSetting).where(UserSetting.user_id == user.id))
        assert settings_row.settings == DEFAULT_USER_SETTINGS


def test_repeat_sign_in_returns_same_user_and_refreshes_email(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "repeat.db")

    with session_local() as db:
        first = user_service.resolve_identity(db, "sub-1", "old@example.com", display_name_hint="Amina")
        again = user_service.resolve_identity(db, "sub-1", "new@example.com")

        assert again.id == first.id
        assert again.email == "new@example.com"
        assert again.display_name == "Amina"
        assert db.scalar(select(func.count(User.id))) == 1


def test_placeholder_name_without_email(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "placeholder.db")

    with session_local() as db:
        user = user_service.resolve_identity(db, "sub-anon", None)

    assert user.display_name.startswith("user_")


def test_blank_subject_is_rejected(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "blank.db")

    with session_local() as db:
        with pytest.raises(ValidationError):
            user_service.resolve_identity(db, "  ", "a@example.com")


def test_external_subject_cannot_be_reassigned(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "frozen.db")

    with session_local() as db:
        user = user_service.resolve_identity(db, "sub-frozen", None)
        with pytest.raises(ValueError):
            user.external_subject_id = "someone-else"


def test_concurrent_first_sign_in_converges_on_one_user(tmp_path: Path, monkeypatch) -> None:
    """The losing request re-reads the winner instead of creating a duplicate."""
    session_local = _build_session_local(tmp_path / "race.db")

    with session_local() as winner_db:
        winner = user_service.resolve_identity(winner_db, "sub-race", "race@example.com")
        winner_id = winner.id

    real_lookup = user_service.get_user_by_subject
    calls = {"count": 0}

    def _lookup_missing_once(db, external_subject_id):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return real_lookup(db, external_subject_id)

    monkeypatch.setattr(user_service, "get_user_by_subject", _lookup_missing_once)

    with session_local() as loser_db:
        resolved = user_service.resolve_identity(loser_db, "sub-race", "race@example.com")

    assert resolved.id == winner_id
    with session_local() as db:
        assert db.scalar(select(func.count(User.id))) == 1
        assert db.scalar(select(func.count(UserSetting.id))) == 1


def test_search_users_matches_email_name_and_subject(tmp_path: Path) -> None:
    session_local = _build_session_local(tmp_path / "search.db")

    with session_local() as db:
        user_service.resolve_identity(db, "google|1", "amina@example.com", display_name_hint="Amina")
        user_service.resolve_identity(db, "google|2", "yusuf@example.com", display_name_hint="Yusuf")
        user_service.resolve_identity(db, "apple|3", "zaid@example.org")

        users, total = user_service.search_users(db, search="example.com", page=1, limit=10)
        assert total == 2
        assert {u.display_name for u in users} == {"Amina", "Yusuf"}

        users, total = user_service.search_users(db, search="apple|", page=1, limit=10)
        assert total == 1

        users, total = user_service.search_users(db, search=None, page=2, limit=2)
        assert total == 3
        assert len(users) == 1
