"""Run a multi-row write as one unit, mapping storage failures to typed errors."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from mizan.services.errors import ConflictError, MizanError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_atomic(db: Session, operation: Callable[[], T], *, label: str, retries: int = 1) -> T:
    """Execute ``operation`` and commit, or roll everything back.

    Either every row the operation added becomes visible or none does. A
    ``ConflictError`` (or a storage-level race) is retried ``retries`` times;
    the operation must re-read any state it depends on because the rollback
    expires everything loaded in the session.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            result = operation()
            db.commit()
            return result
        except ConflictError:
            db.rollback()
            if attempt > retries:
                raise
            logger.info("[MODERATION] %s hit a concurrent write; retrying with fresh state.", label)
        except (IntegrityError, OperationalError) as exc:
            db.rollback()
            if attempt > retries:
                raise ConflictError("Concurrent write detected; retry with fresh state.") from exc
            logger.info("[MODERATION] %s hit a storage conflict; retrying with fresh state.", label)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("[MODERATION] %s failed in storage.", label)
            raise MizanError("Storage failure; no changes were applied.") from exc
        except Exception:
            db.rollback()
            raise
