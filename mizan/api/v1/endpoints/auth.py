"""Authentication endpoints: identity exchange and current user."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.core.security import create_access_token, get_current_user, verify_identity_token
from mizan.db.seed import ensure_bootstrap_super_admin
from mizan.db.session import get_db
from mizan.models.user import User
from mizan.schemas.auth import AuthUserResponse, IdentityExchangeRequest, TokenResponse
from mizan.services.user_service import resolve_identity

router: APIRouter = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/identity", response_model=TokenResponse)
def exchange_identity(payload: IdentityExchangeRequest, db: Session = Depends(get_db)) -> TokenResponse:
    """Trade a verified identity provider token for an internal access token."""
    claims = verify_identity_token(payload.identity_token)
    user = resolve_identity(
        db,
        external_subject_id=str(claims["sub"]),
        email=claims.get("email"),
        display_name_hint=claims.get("username") or claims.get("name"),
    )
    if settings.bootstrap_super_admin_subject and user.external_subject_id == settings.bootstrap_super_admin_subject:
        ensure_bootstrap_super_admin(db, user.external_subject_id)
    logger.info("[AUTH] Issued access token for user_id=%s", user.id)
    return TokenResponse(access_token=create_access_token(data={"sub": str(user.id)}), user_id=user.id)


@router.get("/me", response_model=AuthUserResponse)
def me(current_user: User = Depends(get_current_user)) -> AuthUserResponse:
    return AuthUserResponse.model_validate(current_user)
