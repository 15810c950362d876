from fastapi import APIRouter

from .endpoints import calendar, health

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(calendar.router)
