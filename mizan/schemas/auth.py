"""Authentication-related request and response schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class IdentityExchangeRequest(BaseModel):
    """Identity provider token to trade for an internal access token."""

    identity_token: str


class TokenResponse(BaseModel):
    """JWT response payload."""

    access_token: str
    token_type: str = "bearer"
    user_id: int


class AuthUserResponse(BaseModel):
    """User response for auth endpoints."""

    id: int
    external_subject_id: str
    email: str | None = None
    display_name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
