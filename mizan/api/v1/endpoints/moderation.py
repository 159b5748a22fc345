"""Moderator console API.

Every route re-checks the caller's role in the services layer; the
check-status route is advisory and only drives what the console shows.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.core.security import client_origin, get_current_user
from mizan.db.session import get_db
from mizan.models import AuditLogEntry
from mizan.models.user import User
from mizan.schemas.entitlement import EntitlementRecordRead, EntitlementStatusResponse
from mizan.schemas.moderation import (
    AuditEntryRead,
    AuditLogResponse,
    GrantPremiumRequest,
    GrantPremiumResponse,
    IssueCodeRequest,
    IssuedCodeResponse,
    ModRoleRead,
    ModStatusResponse,
    Pagination,
    PaymentEventRead,
    PremiumHistoryResponse,
    RemoveModRoleRequest,
    RevokePremiumRequest,
    RevokePremiumResponse,
    SetModRoleRequest,
    UserActivityResponse,
    UserDetailResponse,
    UserListResponse,
    UserSummary,
)
from mizan.services import mod_role_service, moderation_service
from mizan.services.audit_service import AuditFilter

router: APIRouter = APIRouter()


def _pagination(page: int, limit: int, total: int) -> Pagination:
    total_pages = (total + limit - 1) // limit if limit else 0
    return Pagination(page=page, limit=limit, total=total, total_pages=total_pages)


def _audit_entries(entries: list[AuditLogEntry], reveal_origin: bool) -> list[AuditEntryRead]:
    rows = [AuditEntryRead.model_validate(entry) for entry in entries]
    if not reveal_origin:
        rows = [row.model_copy(update={"network_origin": None}) for row in rows]
    return rows


@router.get("/check-status", response_model=ModStatusResponse)
def check_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModStatusResponse:
    status = mod_role_service.check_status(db, current_user.id)
    return ModStatusResponse(authorized=status.authorized, mod_level=status.mod_level, granted_at=status.granted_at)


@router.get("/users", response_model=UserListResponse)
def list_users(
    search: str | None = Query(default=None, max_length=128),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserListResponse:
    limit = min(limit, settings.audit_page_size_max)
    users, total = moderation_service.list_users(db, mod_id=current_user.id, search=search, page=page, limit=limit)
    return UserListResponse(
        users=[UserSummary.model_validate(user) for user in users],
        pagination=_pagination(page, limit, total),
    )


@router.get("/users/{user_id}", response_model=UserDetailResponse)
def user_detail(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserDetailResponse:
    detail = moderation_service.get_user_detail(db, mod_id=current_user.id, target_user_id=user_id)
    return UserDetailResponse(
        user=UserSummary.model_validate(detail.user),
        entitlement=EntitlementStatusResponse.model_validate(detail.status),
        mod_role=ModRoleRead.model_validate(detail.mod_role) if detail.mod_role else None,
    )


@router.get("/users/{user_id}/activity", response_model=UserActivityResponse)
def user_activity(
    user_id: int,
    request: Request,
    limit: int = Query(default=moderation_service.DEFAULT_ACTIVITY_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserActivityResponse:
    activity = moderation_service.get_user_activity(
        db,
        mod_id=current_user.id,
        target_user_id=user_id,
        limit=limit,
        network_origin=client_origin(request),
    )
    return UserActivityResponse(
        records=[EntitlementRecordRead.model_validate(record) for record in activity.records],
        payment_events=[PaymentEventRead.model_validate(event) for event in activity.payment_events],
    )


@router.get("/users/{user_id}/premium-history", response_model=PremiumHistoryResponse)
def premium_history(
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> PremiumHistoryResponse:
    history = moderation_service.get_premium_history(
        db,
        mod_id=current_user.id,
        target_user_id=user_id,
        network_origin=client_origin(request),
    )
    return PremiumHistoryResponse(
        entitlement=EntitlementStatusResponse.model_validate(history.status),
        records=[EntitlementRecordRead.model_validate(record) for record in history.records],
        audit_entries=_audit_entries(history.audit_entries, history.reveal_origin),
    )


@router.post("/users/{user_id}/grant-premium", response_model=GrantPremiumResponse)
def grant_premium(
    user_id: int,
    payload: GrantPremiumRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantPremiumResponse:
    result = moderation_service.grant_premium(
        db,
        mod_id=current_user.id,
        target_user_id=user_id,
        duration_days=payload.duration_days,
        reason=payload.reason,
        network_origin=client_origin(request),
    )
    return GrantPremiumResponse(until=result.until, status=EntitlementStatusResponse.model_validate(result.status))


@router.post("/users/{user_id}/revoke-premium", response_model=RevokePremiumResponse)
def revoke_premium(
    user_id: int,
    payload: RevokePremiumRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RevokePremiumResponse:
    status = moderation_service.revoke_premium(
        db,
        mod_id=current_user.id,
        target_user_id=user_id,
        reason=payload.reason,
        network_origin=client_origin(request),
    )
    return RevokePremiumResponse(
        ok=True,
        status=EntitlementStatusResponse.model_validate(status),
        warning=moderation_service.remaining_access_notice(status),
    )


@router.post("/users/{user_id}/codes", response_model=IssuedCodeResponse, status_code=201)
def issue_code(
    user_id: int,
    payload: IssueCodeRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> IssuedCodeResponse:
    premium_code = moderation_service.issue_premium_code(
        db,
        mod_id=current_user.id,
        target_user_id=user_id,
        valid_days=payload.valid_days,
        reason=payload.reason,
        network_origin=client_origin(request),
    )
    return IssuedCodeResponse.model_validate(premium_code)


@router.get("/audit-log", response_model=AuditLogResponse)
def audit_log(
    actor_user_id: int | None = None,
    target_user_id: int | None = None,
    action_type: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AuditLogResponse:
    listing = moderation_service.list_audit_log(
        db,
        mod_id=current_user.id,
        audit_filter=AuditFilter(
            actor_user_id=actor_user_id,
            target_user_id=target_user_id,
            action_type=action_type,
            since=since,
            until=until,
        ),
        page=page,
        limit=limit,
    )
    return AuditLogResponse(
        entries=_audit_entries(listing.page.entries, listing.reveal_origin),
        pagination=Pagination(
            page=listing.page.page,
            limit=listing.page.limit,
            total=listing.page.total,
            total_pages=listing.page.total_pages,
        ),
    )


@router.put("/roles/{user_id}", response_model=ModRoleRead)
def set_role(
    user_id: int,
    payload: SetModRoleRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ModRoleRead:
    mod_role = mod_role_service.set_mod_role(
        db,
        actor_id=current_user.id,
        target_user_id=user_id,
        role=payload.role,
        reason=payload.reason,
        network_origin=client_origin(request),
    )
    return ModRoleRead.model_validate(mod_role)


@router.delete("/roles/{user_id}")
def remove_role(
    user_id: int,
    payload: RemoveModRoleRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, bool]:
    mod_role_service.remove_mod_role(
        db,
        actor_id=current_user.id,
        target_user_id=user_id,
        reason=payload.reason,
        network_origin=client_origin(request),
    )
    return {"ok": True}
