"""Shared SQLAlchemy base declarative class and model imports."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for ORM models."""


# Import model modules so metadata is populated before create_all.
from mizan.models import audit_log as _audit_log  # noqa: E402,F401
from mizan.models import entitlement as _entitlement  # noqa: E402,F401
from mizan.models import mod_role as _mod_role  # noqa: E402,F401
from mizan.models import payment as _payment  # noqa: E402,F401
from mizan.models import premium_code as _premium_code  # noqa: E402,F401
from mizan.models import user as _user  # noqa: E402,F401
