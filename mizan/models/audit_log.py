"""Append-only audit trail for privileged actions."""

from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, JSON, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from mizan.db.base import Base
from mizan.db.types import UTCDateTime
from mizan.models.entitlement import ImmutableRecordError

GRANT_PREMIUM = "grant_premium"
REVOKE_PREMIUM = "revoke_premium"
VIEW_PREMIUM_HISTORY = "view_premium_history"
VIEW_USER_ACTIVITY = "view_user_activity"
GRANT_MOD_ROLE = "grant_mod_role"
REVOKE_MOD_ROLE = "revoke_mod_role"
ISSUE_PREMIUM_CODE = "issue_premium_code"

AUDIT_ACTIONS = (
    GRANT_PREMIUM,
    REVOKE_PREMIUM,
    VIEW_PREMIUM_HISTORY,
    VIEW_USER_ACTIVITY,
    GRANT_MOD_ROLE,
    REVOKE_MOD_ROLE,
    ISSUE_PREMIUM_CODE,
)


class AuditLogEntry(Base):
    """Stores an immutable trail of moderator mutations and sensitive reads."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    actor_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    target_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    action_type: Mapped[str] = mapped_column(Enum(*AUDIT_ACTIONS, name="audit_action"), nullable=False)
    before_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    network_origin: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=lambda: datetime.now(timezone.utc))


@event.listens_for(AuditLogEntry, "before_update")
@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_mutation(mapper, connection, target: AuditLogEntry) -> None:
    raise ImmutableRecordError(f"audit log entry {target.id} is append-only")
