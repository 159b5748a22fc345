"""Lightweight schema migrations for SQLite databases."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

# Tables whose rows are written once and never changed.
APPEND_ONLY_TABLES: tuple[str, ...] = ("entitlement_records", "audit_log")


def _sqlite_column_names(connection: Connection, table_name: str) -> set[str]:
    """Return column names for a SQLite table using PRAGMA table_info."""
    rows = connection.execute(text(f"PRAGMA table_info({table_name});")).mappings().all()
    return {str(row["name"]) for row in rows}


def _sqlite_trigger_names(connection: Connection) -> set[str]:
    rows = connection.execute(text("SELECT name FROM sqlite_master WHERE type='trigger';")).all()
    return {str(row[0]) for row in rows}


def append_only_trigger_sql(table_name: str) -> list[tuple[str, str]]:
    """Return ``(trigger name, DDL)`` pairs rejecting UPDATE and DELETE on ``table_name``."""
    statements: list[tuple[str, str]] = []
    for operation in ("UPDATE", "DELETE"):
        name = f"trg_{table_name}_no_{operation.lower()}"
        statements.append(
            (
                name,
                f"""
                CREATE TRIGGER IF NOT EXISTS {name}
                BEFORE {operation} ON {table_name}
                BEGIN
                    SELECT RAISE(ABORT, '{table_name} is append-only');
                END
                """,
            )
        )
    return statements


def ensure_sqlite_schema(engine: Engine) -> None:
    """Apply lightweight schema updates and append-only guards for SQLite databases."""
    if engine.dialect.name != "sqlite":
        return

    with engine.begin() as connection:
        table_rows = connection.execute(text("SELECT name FROM sqlite_master WHERE type='table';")).all()
        table_names: set[str] = {str(row[0]) for row in table_rows}

        if "users" in table_names:
            user_columns = _sqlite_column_names(connection, "users")
            if "entitlement_version" not in user_columns:
                connection.execute(
                    text("ALTER TABLE users ADD COLUMN entitlement_version INTEGER NOT NULL DEFAULT 0")
                )

        existing_triggers = _sqlite_trigger_names(connection)
        for table_name in APPEND_ONLY_TABLES:
            if table_name not in table_names:
                continue
            for trigger_name, ddl in append_only_trigger_sql(table_name):
                if trigger_name not in existing_triggers:
                    connection.execute(text(ddl))
