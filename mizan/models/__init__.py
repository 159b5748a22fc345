"""Application models package."""

from mizan.models.audit_log import AuditLogEntry
from mizan.models.entitlement import EntitlementRecord, GrantNotice, ImmutableRecordError
from mizan.models.mod_role import ModRole
from mizan.models.payment import PaymentEvent, SubscriptionLink
from mizan.models.premium_code import PremiumCode
from mizan.models.user import User, UserSetting

__all__ = [
    "User", "UserSetting", "EntitlementRecord", "GrantNotice", "ImmutableRecordError", "ModRole",
    "AuditLogEntry", "SubscriptionLink", "PaymentEvent", "PremiumCode",
]
