"""
Routers API pour weirdstats.

Ce module regroupe tous les sous-routers et expose un router principal
a inclure dans l'application FastAPI.
"""
from fastapi import APIRouter

from weirdstats.api.routers.status_router import router as status_router
from weirdstats.api.routers.webhook_router import router as webhook_router

router = APIRouter()

router.include_router(status_router)
router.include_router(webhook_router)

__all__ = ["router"]
