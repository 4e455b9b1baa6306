from fastapi import APIRouter

from regbridge.schemas.common import HealthOut


router = APIRouter()


@router.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
    return HealthOut(status="ok")
