"""Database engine and session management."""

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mizan.core.config import settings

SQLITE_BUSY_TIMEOUT_MS: int = 5000


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections enforce foreign keys and wait on locks."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    sqlite_engine = create_engine(database_url, connect_args={"check_same_thread": False})

    @event.listens_for(sqlite_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    return sqlite_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session; uncommitted work is rolled back on close."""
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
