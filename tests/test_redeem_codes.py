"""Self-service premium code redemption."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from mizan.core.config import _split_codes, settings
from mizan.db.base import Base
from mizan.db.migrations import ensure_sqlite_schema
from mizan.models import AuditLogEntry, EntitlementRecord, PremiumCode, User
from mizan.models.entitlement import REDEEMABLE_CODE
from mizan.services import moderation_service
from mizan.services.code_service import issue_user_code
from mizan.services.entitlement_service import resolve_entitlement
from mizan.services.errors import ValidationError

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _build_session_local(db_file: Path) -> sessionmaker:
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    ensure_sqlite_schema(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _seed_user(session_local: sessionmaker, subject: str = "reader") -> int:
    with session_local() as db:
        user = User(external_subject_id=subject, display_name=subject)
        db.add(user)
        db.commit()
        return user.id


def test_split_codes_normalises_configuration() -> None:
    assert _split_codes(" launch , Ramadan2026,,") == frozenset({"LAUNCH", "RAMADAN2026"})
    assert _split_codes("") == frozenset()


def test_shared_code_grants_fixed_window_once_per_user(tmp_path: Path, monkeypatch) -> None:
    session_local = _build_session_local(tmp_path / "shared.db")
    user_id = _seed_user(session_local)
    monkeypatch.setattr(settings, "premium_codes", frozenset({"LAUNCH"}))
    monkeypatch.setattr(settings, "redeemable_code_days", 365)

    with session_local() as db:
        first = moderation_service.redeem_code(db, user_id=user_id, code="  launch ", now=NOW)
        second = moderation_service.redeem_code(db, user_id=user_id, code="LAUNCH", now=NOW)
        status = resolve_entitlement(db, user_id, NOW)

    assert first.accepted is True
    assert first.until == NOW + timedelta(days=365)
    assert second.accepted is False
    assert status.source == REDEEMABLE_CODE
    with session_local() as db:
        assert db.scalar(select(func.count(EntitlementRecord.id))) == 1
        assert db.scalar(select(func.count(AuditLogEntry.id))) == 0


def test_unknown_code_is_declined_without_writing(tmp_path: Path, monkeypatch) -> None:
    session_local = _build_session_local(tmp_path / "unknown.db")
    user_id = _seed_user(session_local)
    monkeypatch.setattr(settings, "premium_codes", frozenset())

    with session_local() as db:
        result = moderation_service.redeem_code(db, user_id=user_id, code="GUESS", now=NOW)
        assert result.accepted is False
        assert db.scalar(select(func.count(EntitlementRecord.id))) == 0


@pytest.mark.parametrize("code", ["", "   ", "X" * 65, None])
def test_malformed_code_is_a_validation_error(tmp_path: Path, code: str | None) -> None:
    session_local = _build_session_local(tmp_path / "malformed.db")
    user_id = _seed_user(session_local)

    with session_local() as db:
        with pytest.raises(ValidationError):
            moderation_service.redeem_code(db, user_id=user_id, code=code, now=NOW)


def test_issued_code_is_single_use_and_bound_to_its_user(tmp_path: Path, monkeypatch) -> None:
    session_local = _build_session_local(tmp_path / "issued.db")
    owner_id = _seed_user(session_local, "owner")
    stranger_id = _seed_user(session_local, "stranger")
    monkeypatch.setattr(settings, "premium_codes", frozenset())

    with session_local() as db:
        issued = issue_user_code(db, owner_id, NOW)
        code = issued.code

        assert moderation_service.redeem_code(db, user_id=stranger_id, code=code, now=NOW).accepted is False
        assert moderation_service.redeem_code(db, user_id=owner_id, code=code.lower(), now=NOW).accepted is True
        assert moderation_service.redeem_code(db, user_id=owner_id, code=code, now=NOW).accepted is False

        redeemed = db.scalar(select(PremiumCode).where(PremiumCode.code == code))
        assert redeemed.redeemed_by_user_id == owner_id
        record = db.scalar(select(EntitlementRecord).where(EntitlementRecord.user_id == owner_id))
        assert record.external_reference == f"issued:{redeemed.id}"


def test_expired_issued_code_is_declined(tmp_path: Path, monkeypatch) -> None:
    session_local = _build_session_local(tmp_path / "expired.db")
    owner_id = _seed_user(session_local)
    monkeypatch.setattr(settings, "premium_codes", frozenset())

    with session_local() as db:
        code = issue_user_code(db, owner_id, NOW, valid_days=1).code
        result = moderation_service.redeem_code(db, user_id=owner_id, code=code, now=NOW + timedelta(days=2))

    assert result.accepted is False
