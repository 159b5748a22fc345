"""Schema exports."""

from mizan.schemas.auth import AuthUserResponse, IdentityExchangeRequest, TokenResponse
from mizan.schemas.entitlement import (
    EntitlementRecordRead,
    EntitlementStatusResponse,
    GrantNoticeResponse,
    RedeemCodeRequest,
    RedeemCodeResponse,
)
from mizan.schemas.moderation import (
    AuditEntryRead,
    AuditLogResponse,
    GrantPremiumRequest,
    GrantPremiumResponse,
    ModRoleRead,
    ModStatusResponse,
    Pagination,
    PremiumHistoryResponse,
    RevokePremiumRequest,
    RevokePremiumResponse,
    UserActivityResponse,
    UserDetailResponse,
    UserListResponse,
)

__all__ = [
    "AuthUserResponse",
    "IdentityExchangeRequest",
    "TokenResponse",
    "EntitlementRecordRead",
    "EntitlementStatusResponse",
    "GrantNoticeResponse",
    "RedeemCodeRequest",
    "RedeemCodeResponse",
    "AuditEntryRead",
    "AuditLogResponse",
    "GrantPremiumRequest",
    "GrantPremiumResponse",
    "ModRoleRead",
    "ModStatusResponse",
    "Pagination",
    "PremiumHistoryResponse",
    "RevokePremiumRequest",
    "RevokePremiumResponse",
    "UserActivityResponse",
    "UserDetailResponse",
    "UserListResponse",
]
