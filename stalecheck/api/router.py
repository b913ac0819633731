from fastapi import APIRouter

from stalecheck.api.analysis.routes import router as analysis_router

router = APIRouter()
router.include_router(analysis_router)
