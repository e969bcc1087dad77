from fastapi import APIRouter, Depends

from refund_agents.core.config import Settings, get_settings

router = APIRouter()


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict:
    return {"status": "ok", "environment": settings.environment}
