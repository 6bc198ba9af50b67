from fastapi import APIRouter

from .tournaments import router as tournaments_router
from .results import router as results_router
from .participants import router as participants_router

router = APIRouter()
router.include_router(tournaments_router)
router.include_router(results_router)
router.include_router(participants_router)
