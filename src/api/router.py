from fastapi import APIRouter

from src.api.endpoints import elements, health, pipeline, uploads

router = APIRouter()
router.include_router(health.router, tags=["health"])
router.include_router(elements.router, tags=["elements"])
router.include_router(pipeline.router, tags=["pipelines"])
router.include_router(uploads.router, tags=["uploads"])
