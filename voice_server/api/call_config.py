"""Endpoint the configuration owner uses to hand a call its agent settings."""
import logging
import secrets
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from voice_server.core.dependencies import get_runtime
from voice_server.core.errors import ConfigurationMissing
from voice_server.core.runtime import VoiceRuntime
from voice_server.services.call_config.models import AgentConfiguration

router = APIRouter()
logger = logging.getLogger(__name__)


async def require_internal_key(request: Request) -> bool:
    """Dependency that requires ``Authorization: Bearer <internal_api_key>``."""
    expected = get_runtime(request).settings.internal_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Internal API is disabled")
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Authentication required")
    return True


@router.post("/api/voice/call-config/{call_sid}", dependencies=[Depends(require_internal_key)])
async def store_call_config(
    call_sid: str,
    payload: Dict[str, Any],
    runtime: VoiceRuntime = Depends(get_runtime),
):
    """Store the configuration a call resolves before its session starts."""
    try:
        config = AgentConfiguration.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"[CALL CONFIG] Rejected configuration for call {call_sid}: {str(e)}")
        raise HTTPException(status_code=422, detail="Invalid agent configuration")

    try:
        await runtime.config_resolver.store(call_sid, payload)
    except ConfigurationMissing as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(
        f"[CALL CONFIG] Stored configuration for call {call_sid} - Agent: {config.agent_id}"
    )
    return {"success": True, "call_sid": call_sid, "agent_id": config.agent_id}
