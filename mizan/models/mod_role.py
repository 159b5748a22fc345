"""Moderator role ORM model."""

from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from mizan.db.base import Base
from mizan.db.types import UTCDateTime

READ_ONLY = "read_only"
FULL = "full"
SUPER_ADMIN = "super_admin"

MOD_ROLES = (READ_ONLY, FULL, SUPER_ADMIN)


class ModRole(Base):
    """Moderation capability level held by a user; no row means no capability."""

    __tablename__ = "mod_roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(Enum(*MOD_ROLES, name="mod_role"), nullable=False)
    granted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))
