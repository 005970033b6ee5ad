"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import consensus, health, workspaces

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(consensus.router, prefix="/consensus", tags=["consensus"])
router.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])
