"""Entitlement read paths and self-service code redemption."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mizan.core.security import get_current_user
from mizan.db.session import get_db
from mizan.models.user import User
from mizan.schemas.entitlement import (
    EntitlementStatusResponse,
    GrantNoticeResponse,
    RedeemCodeRequest,
    RedeemCodeResponse,
)
from mizan.services import privilege_gate
from mizan.services.entitlement_service import get_current_entitlement, load_user
from mizan.services.moderation_service import redeem_code, take_grant_notice

router: APIRouter = APIRouter()


@router.get("/me", response_model=EntitlementStatusResponse)
def my_entitlement(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EntitlementStatusResponse:
    """Resolved premium status of the caller; inactive if resolution fails."""
    return EntitlementStatusResponse.model_validate(get_current_entitlement(db, current_user.id))


@router.get("/me/grant-notice", response_model=GrantNoticeResponse)
def my_grant_notice(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GrantNoticeResponse:
    notice = take_grant_notice(db, current_user.id)
    if notice is None:
        return GrantNoticeResponse(has_grant=False)
    return GrantNoticeResponse(
        has_grant=True,
        duration_days=notice.duration_days,
        note=notice.note,
        granted_at=notice.granted_at,
    )


@router.post("/redeem", response_model=RedeemCodeResponse)
def redeem(
    payload: RedeemCodeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RedeemCodeResponse:
    result = redeem_code(db, user_id=current_user.id, code=payload.code)
    return RedeemCodeResponse(accepted=result.accepted, until=result.until)


@router.get("/{user_id}", response_model=EntitlementStatusResponse)
def user_entitlement(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EntitlementStatusResponse:
    """Status of any user; callers other than the user need the view capability."""
    if user_id != current_user.id:
        privilege_gate.require_capability(db, current_user.id, privilege_gate.VIEW_USERS)
        load_user(db, user_id)
    return EntitlementStatusResponse.model_validate(get_current_entitlement(db, user_id))
