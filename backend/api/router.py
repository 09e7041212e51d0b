from __future__ import annotations

from fastapi import APIRouter

from api.routes import drafts, projections


api_router = APIRouter()
api_router.include_router(projections.router, prefix="/projections", tags=["projections"])
api_router.include_router(drafts.router, prefix="/drafts", tags=["drafts"])
