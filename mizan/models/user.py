"""User and per-user settings ORM models."""

from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from mizan.db.base import Base
from mizan.db.types import UTCDateTime

DEFAULT_USER_SETTINGS: dict[str, bool] = {"requireThreeOfFive": True}


class User(Base):
    """Internal identity bound to exactly one external authenticated subject."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_subject_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Bumped by every ledger write for this user; conditional updates on it serialise writers.
    entitlement_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))

    settings: Mapped["UserSetting | None"] = relationship(back_populates="user", uselist=False)

    @validates("external_subject_id")
    def _freeze_external_subject(self, key: str, value: str) -> str:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError("external_subject_id cannot change once set")
        return value


class UserSetting(Base):
    """Application settings seeded for a user on first sign-in."""

    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, unique=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped["User"] = relationship(back_populates="settings")
