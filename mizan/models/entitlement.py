"""Append-only entitlement ledger models."""

from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from mizan.db.base import Base
from mizan.db.types import UTCDateTime

PROVIDER_SUBSCRIPTION = "provider_subscription"
MANUAL_OVERRIDE = "manual_override"
REDEEMABLE_CODE = "redeemable_code"

# Highest precedence first.
ENTITLEMENT_SOURCES = (PROVIDER_SUBSCRIPTION, MANUAL_OVERRIDE, REDEEMABLE_CODE)


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""


class EntitlementRecord(Base):
    """One grant of premium access; never edited, never deleted."""

    __tablename__ = "entitlement_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    source: Mapped[str] = mapped_column(Enum(*ENTITLEMENT_SOURCES, name="entitlement_source"), nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    granted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))


class GrantNotice(Base):
    """One-shot notice shown to a user after a moderator grants premium."""

    __tablename__ = "grant_notices"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    entitlement_record_id: Mapped[int] = mapped_column(ForeignKey("entitlement_records.id"), nullable=False)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


@event.listens_for(EntitlementRecord, "before_update")
@event.listens_for(EntitlementRecord, "before_delete")
def _reject_ledger_mutation(mapper, connection, target: EntitlementRecord) -> None:
    raise ImmutableRecordError(f"entitlement record {target.id} is append-only")
