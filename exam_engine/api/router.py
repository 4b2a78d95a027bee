from fastapi import APIRouter

from exam_engine.api.attempts import router as attempts_router

router = APIRouter()
router.include_router(attempts_router)
