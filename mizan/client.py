"""HTTP client for the Mizan API.

Used by the Streamlit pages and any other caller outside the server
process. The entitlement cache here is read-through only: the server
answer always replaces what is cached, and the cached value is used only
while the server cannot be reached.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any

import httpx

from mizan.core.config import settings
from mizan.schemas.entitlement import EntitlementStatusResponse, GrantNoticeResponse, RedeemCodeResponse
from mizan.schemas.moderation import (
    AuditLogResponse,
    GrantPremiumResponse,
    IssuedCodeResponse,
    ModRoleRead,
    ModStatusResponse,
    PremiumHistoryResponse,
    RevokePremiumResponse,
    UserActivityResponse,
    UserDetailResponse,
    UserListResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: float = 10.0
INACTIVE_STATUS = EntitlementStatusResponse(active=False, source=None, until=None)


class MizanAPIError(Exception):
    """Non-2xx answer from the API."""

    def __init__(self, status_code: int, kind: str | None, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.kind = kind
        self.detail = detail


class EntitlementCache:
    """Last server-resolved status per user, for use while offline."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[int, EntitlementStatusResponse] = {}

    def get(self, user_id: int) -> EntitlementStatusResponse | None:
        with self._lock:
            return self._entries.get(user_id)

    def store(self, user_id: int, status: EntitlementStatusResponse) -> None:
        with self._lock:
            self._entries[user_id] = status

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class MizanClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        user_id: int | None = None,
        cache: EntitlementCache | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token
        self.user_id = user_id
        self.cache = cache or EntitlementCache()
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> MizanClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self._http.request(method, path, headers=headers, **kwargs)
        if response.is_error:
            kind: str | None = None
            detail = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                kind = body.get("error")
                detail = str(body.get("detail", detail))
            raise MizanAPIError(response.status_code, kind, detail)
        return response.json()

    # Session

    def exchange_identity(self, identity_token: str) -> int:
        """Sign in with an identity provider token; returns the internal user id."""
        body = self._request("POST", "/auth/identity", json={"identity_token": identity_token})
        self.token = body["access_token"]
        self.user_id = int(body["user_id"])
        return self.user_id

    def logout(self) -> None:
        self.token = None
        self.user_id = None
        self.cache.clear()

    # Entitlements

    def get_entitlement(self) -> EntitlementStatusResponse:
        """Ask the server; fall back to the cache only when the server is unreachable."""
        try:
            status = EntitlementStatusResponse.model_validate(self._request("GET", "/entitlements/me"))
        except httpx.TransportError as exc:
            cached = self.cache.get(self.user_id) if self.user_id is not None else None
            logger.warning("[CLIENT] Entitlement server unreachable (%s); using %s", exc, "cache" if cached else "inactive")
            return cached or INACTIVE_STATUS
        if self.user_id is not None:
            self.cache.store(self.user_id, status)
        return status

    def redeem_code(self, code: str) -> RedeemCodeResponse:
        result = RedeemCodeResponse.model_validate(self._request("POST", "/entitlements/redeem", json={"code": code}))
        if result.accepted:
            # Refresh so the cache never keeps a pre-redemption status.
            self.get_entitlement()
        return result

    def grant_notice(self) -> GrantNoticeResponse:
        return GrantNoticeResponse.model_validate(self._request("GET", "/entitlements/me/grant-notice"))

    # Moderation

    def check_status(self) -> ModStatusResponse:
        return ModStatusResponse.model_validate(self._request("GET", "/mod/check-status"))

    def list_users(self, search: str | None = None, page: int = 1, limit: int = 50) -> UserListResponse:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        return UserListResponse.model_validate(self._request("GET", "/mod/users", params=params))

    def user_detail(self, user_id: int) -> UserDetailResponse:
        return UserDetailResponse.model_validate(self._request("GET", f"/mod/users/{user_id}"))

    def user_activity(self, user_id: int, limit: int = 30) -> UserActivityResponse:
        return UserActivityResponse.model_validate(
            self._request("GET", f"/mod/users/{user_id}/activity", params={"limit": limit})
        )

    def premium_history(self, user_id: int) -> PremiumHistoryResponse:
        return PremiumHistoryResponse.model_validate(self._request("GET", f"/mod/users/{user_id}/premium-history"))

    def grant_premium(self, user_id: int, duration_days: int | None, reason: str) -> GrantPremiumResponse:
        return GrantPremiumResponse.model_validate(
            self._request(
                "POST",
                f"/mod/users/{user_id}/grant-premium",
                json={"duration_days": duration_days, "reason": reason},
            )
        )

    def revoke_premium(self, user_id: int, reason: str) -> RevokePremiumResponse:
        return RevokePremiumResponse.model_validate(
            self._request("POST", f"/mod/users/{user_id}/revoke-premium", json={"reason": reason})
        )

    def issue_code(self, user_id: int, reason: str, valid_days: int | None = None) -> IssuedCodeResponse:
        return IssuedCodeResponse.model_validate(
            self._request("POST", f"/mod/users/{user_id}/codes", json={"valid_days": valid_days, "reason": reason})
        )

    def audit_log(
        self,
        *,
        actor_user_id: int | None = None,
        target_user_id: int | None = None,
        action_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> AuditLogResponse:
        params: dict[str, Any] = {"page": page, "limit": limit}
        for key, value in (
            ("actor_user_id", actor_user_id),
            ("target_user_id", target_user_id),
            ("action_type", action_type),
            ("since", since.isoformat() if since else None),
            ("until", until.isoformat() if until else None),
        ):
            if value is not None:
                params[key] = value
        return AuditLogResponse.model_validate(self._request("GET", "/mod/audit-log", params=params))

    def set_mod_role(self, user_id: int, role: str, reason: str) -> ModRoleRead:
        return ModRoleRead.model_validate(
            self._request("PUT", f"/mod/roles/{user_id}", json={"role": role, "reason": reason})
        )

    def remove_mod_role(self, user_id: int, reason: str) -> None:
        self._request("DELETE", f"/mod/roles/{user_id}", json={"reason": reason})
