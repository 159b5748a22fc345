"""Entitlement status and self-service schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class EntitlementStatusResponse(BaseModel):
    """Resolved premium status used for feature gating."""

    active: bool
    source: str | None = None
    until: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EntitlementRecordRead(BaseModel):
    id: int
    user_id: int
    source: str
    valid_until: datetime | None = None
    granted_by_user_id: int | None = None
    reason: str | None = None
    external_reference: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RedeemCodeRequest(BaseModel):
    code: str


class RedeemCodeResponse(BaseModel):
    accepted: bool
    until: datetime | None = None


class GrantNoticeResponse(BaseModel):
    """One-shot notice after a moderator grant; ``has_grant`` is False when none is pending."""

    has_grant: bool
    duration_days: int | None = None
    note: str | None = None
    granted_at: datetime | None = None
