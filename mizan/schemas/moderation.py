"""Moderation request and response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mizan.schemas.entitlement import EntitlementRecordRead, EntitlementStatusResponse


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ModStatusResponse(BaseModel):
    """Advisory only; the server re-checks the role on every privileged call."""

    authorized: bool
    mod_level: str | None = None
    granted_at: datetime | None = None


class GrantPremiumRequest(BaseModel):
    duration_days: int | None = Field(default=None, description="Omit or null for a lifetime grant")
    reason: str | None = None


class GrantPremiumResponse(BaseModel):
    until: datetime | None = None
    status: EntitlementStatusResponse


class RevokePremiumRequest(BaseModel):
    reason: str | None = None


class RevokePremiumResponse(BaseModel):
    ok: bool = True
    status: EntitlementStatusResponse
    warning: str | None = None


class IssueCodeRequest(BaseModel):
    valid_days: int | None = Field(default=None, description="Omit for the default validity window")
    reason: str | None = None


class IssuedCodeResponse(BaseModel):
    id: int
    code: str
    created_for_user_id: int
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SetModRoleRequest(BaseModel):
    role: str
    reason: str | None = None


class RemoveModRoleRequest(BaseModel):
    reason: str | None = None


class ModRoleRead(BaseModel):
    user_id: int
    role: str
    granted_by_user_id: int | None = None
    granted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    external_subject_id: str
    email: str | None = None
    display_name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    users: list[UserSummary]
    pagination: Pagination


class UserDetailResponse(BaseModel):
    user: UserSummary
    entitlement: EntitlementStatusResponse
    mod_role: ModRoleRead | None = None


class AuditEntryRead(BaseModel):
    id: int
    actor_user_id: int
    target_user_id: int | None = None
    action_type: str
    before_snapshot: dict[str, Any] | None = None
    after_snapshot: dict[str, Any] | None = None
    reason: str | None = None
    network_origin: str | None = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    entries: list[AuditEntryRead]
    pagination: Pagination


class PaymentEventRead(BaseModel):
    id: int
    provider_event_id: str
    event_type: str
    subscription_id: str
    entitlement_record_id: int | None = None
    processed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserActivityResponse(BaseModel):
    records: list[EntitlementRecordRead]
    payment_events: list[PaymentEventRead]


class PremiumHistoryResponse(BaseModel):
    entitlement: EntitlementStatusResponse
    records: list[EntitlementRecordRead]
    audit_entries: list[AuditEntryRead]
