"""API v1 router composition."""

from fastapi import APIRouter

from mizan.api.v1.endpoints import auth, entitlements, moderation, payments

api_router: APIRouter = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(entitlements.router, prefix="/entitlements", tags=["entitlements"])
api_router.include_router(moderation.router, prefix="/mod", tags=["moderation"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
