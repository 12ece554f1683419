from fastapi import APIRouter

from .endpoints import (
    events,
    health,
    moderation,
    observability,
    points,
    rewards,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(points.router)
router.include_router(rewards.router)
router.include_router(events.router)
router.include_router(moderation.router)
router.include_router(observability.router)
