"""Health check endpoint."""
import logging

from fastapi import APIRouter, Depends, Request

from voice_server.core.dependencies import get_runtime
from voice_server.core.runtime import VoiceRuntime

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request, runtime: VoiceRuntime = Depends(get_runtime)):
    """Active sessions and which provider credentials are configured."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "healthy",
        "active_sessions": runtime.registry.count(),
        "providers": runtime.provider_factory.credentials(),
    }
