from fastapi import APIRouter

from .endpoints import (
    admin_budget,
    admin_businesses,
    admin_coupons,
    admin_mileage,
    admin_settlements,
    businesses,
    coupons,
    health,
    mileage,
    observability,
    settlements,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(mileage.router)
router.include_router(coupons.router)
router.include_router(settlements.router)
router.include_router(businesses.router)
router.include_router(admin_mileage.router)
router.include_router(admin_coupons.router)
router.include_router(admin_settlements.router)
router.include_router(admin_businesses.router)
router.include_router(admin_budget.router)
router.include_router(observability.router)
