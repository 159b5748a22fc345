"""Tests for lightweight SQLite schema migrations."""

from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from mizan.db import session as db_session
from mizan.db.migrations import APPEND_ONLY_TABLES, ensure_sqlite_schema
from mizan.main import app


def _build_test_engine(db_file: Path) -> Engine:
    return create_engine(
        f"sqlite:///{db_file}",
        connect_args={"check_same_thread": False},
    )


def _trigger_names(engine: Engine) -> set[str]:
    with engine.connect() as connection:
        rows = connection.execute(text("SELECT name FROM sqlite_master WHERE type='trigger'")).all()
    return {str(row[0]) for row in rows}


def test_legacy_users_table_gets_version_column(tmp_path: Path) -> None:
    engine = _build_test_engine(tmp_path / "legacy.db")
    with engine.begin() as connection:
        connection.execute(
            text(
                """
                CREATE TABLE users (
                    id INTEGER PRIMARY KEY,
                    external_subject_id VARCHAR(255) NOT NULL UNIQUE,
                    email VARCHAR(255),
                    display_name VARCHAR(128) NOT NULL,
                    created_at DATETIME NOT NULL
                )
                """
            )
        )
        connection.execute(
            text(
                "INSERT INTO users (external_subject_id, display_name, created_at) "
                "VALUES ('old-sub', 'old', '2025-01-01 00:00:00')"
            )
        )

    ensure_sqlite_schema(engine)
    ensure_sqlite_schema(engine)

    with engine.connect() as connection:
        version = connection.execute(text("SELECT entitlement_version FROM users")).scalar_one()
    assert version == 0


def test_startup_installs_append_only_triggers(tmp_path: Path, monkeypatch) -> None:
    engine = _build_test_engine(tmp_path / "startup.db")
    monkeypatch.setattr(db_session, "engine", engine)
    monkeypatch.setattr(db_session, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}

    expected = {
        f"trg_{table}_no_{operation}" for table in APPEND_ONLY_TABLES for operation in ("update", "delete")
    }
    assert expected <= _trigger_names(engine)


def test_non_sqlite_engines_are_left_alone() -> None:
    class _FakeDialect:
        name = "postgresql"

    class _FakeEngine:
        dialect = _FakeDialect()

        def begin(self):
            raise AssertionError("should not connect")

    ensure_sqlite_schema(_FakeEngine())
