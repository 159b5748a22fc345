"""Token utilities: external identity verification and internal bearer auth."""

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from mizan.core.config import settings
from mizan.db.session import get_db
from mizan.models.user import User
from mizan.services.user_service import get_user_by_id

bearer_scheme: HTTPBearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict[str, Any]) -> str:
    """Create a signed JWT access token from payload data."""
    to_encode: dict[str, Any] = data.copy()
    expire: datetime = datetime.now(timezone.utc) + timedelta(
        minutes=settings.jwt_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def verify_token(token: str) -> dict[str, Any]:
    """Decode and validate an internal access token payload."""
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        raise _unauthorized("Could not validate credentials") from exc

    return payload


def verify_identity_token(token: str) -> dict[str, Any]:
    """Verify the identity provider's token and return its claims.

    Requires ``sub``; the issuer is checked when one is configured.
    """
    options: dict[str, bool] = {"verify_aud": False}
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.identity_token_key,
            algorithms=[settings.identity_token_algorithm],
            issuer=settings.identity_token_issuer,
            options=options,
        )
    except JWTError as exc:
        raise _unauthorized("Invalid identity token") from exc

    if not claims.get("sub"):
        raise _unauthorized("Invalid identity token: no subject")
    return claims


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the authenticated user from the Authorization header."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("No token provided")

    payload: dict[str, Any] = verify_token(credentials.credentials)
    user_id: Any = payload.get("sub")
    if user_id is None:
        raise _unauthorized("Invalid authentication token")

    try:
        parsed_user_id: int = int(user_id)
    except (TypeError, ValueError) as exc:
        raise _unauthorized("Invalid authentication token") from exc

    user: User | None = get_user_by_id(db=db, user_id=parsed_user_id)
    if user is None:
        raise _unauthorized("User not found")

    return user


def client_origin(request: Request) -> str | None:
    """Best-effort caller address: first ``X-Forwarded-For`` hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop[:64]
    if request.client is not None:
        return request.client.host[:64]
    return None
