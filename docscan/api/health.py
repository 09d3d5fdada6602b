from typing import Optional

from fastapi import APIRouter, Depends

from docscan.api.scan import get_pool
from docscan.config import OCR_ENGINE, OCR_LANGUAGE
from docscan.services.recognizer import RecognizerPool

router = APIRouter()

@router.get(
    "",
    status_code=200,
    summary="Health check",
    description="Health check for the document scan service, with recognizer pool usage"
)
def health_check(pool: Optional[RecognizerPool] = Depends(get_pool)):
    pool_state = None
    if pool is not None:
        pool_state = {"size": pool.size, "created": pool.created, "idle": pool.idle}

    return {
        "status": "ok",
        "engine": OCR_ENGINE,
        "language": OCR_LANGUAGE,
        "pool": pool_state,
    }
