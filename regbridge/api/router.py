from fastapi import APIRouter

from regbridge.api.endpoints.health import router as health_router
from regbridge.api.endpoints.register import router as register_router
from regbridge.api.endpoints.site_ids import router as site_ids_router


router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(register_router, tags=["register"])
router.include_router(site_ids_router, tags=["site-ids"])
