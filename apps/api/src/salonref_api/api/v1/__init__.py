from fastapi import APIRouter

from .endpoints import admin, health, referrals, webhooks

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(webhooks.router)
router.include_router(referrals.router)
router.include_router(admin.router)
