"""FastAPI entrypoint for the Mizan entitlement service."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from mizan.api.v1.api import api_router
from mizan.core.config import settings
from mizan.db import session as db_session
from mizan.db.base import Base
from mizan.db.migrations import ensure_sqlite_schema
from mizan.db.seed import ensure_bootstrap_super_admin
from mizan.services.errors import MizanError

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(MizanError)
async def mizan_error_handler(request: Request, exc: MizanError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message})


@app.on_event("startup")
def startup() -> None:
    if settings.app_env != "dev" and not settings.payment_webhook_secret:
        logger.warning("PAYMENT_WEBHOOK_SECRET not set; payment webhooks will be rejected.")
    Base.metadata.create_all(bind=db_session.engine)
    ensure_sqlite_schema(db_session.engine)
    with db_session.SessionLocal() as session:
        try:
            granted = ensure_bootstrap_super_admin(session)
            logger.info("[BOOTSTRAP] super admin granted at startup: %s", "yes" if granted else "no")
        except (MizanError, SQLAlchemyError):
            logger.exception("[BOOTSTRAP] Super admin bootstrap failed; continuing startup.")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
