"""Web room endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from voice_server.core.dependencies import get_runtime
from voice_server.core.errors import RoomCreationError
from voice_server.core.runtime import VoiceRuntime

router = APIRouter()
logger = logging.getLogger(__name__)


class RoomRequest(BaseModel):
    """Room creation request model."""
    agent_id: str
    identity: str | None = None


class RoomResponse(BaseModel):
    """Room creation response model."""
    room_name: str
    identity: str
    token: str | None = None
    url: str | None = None


@router.post("/api/voice/rooms", response_model=RoomResponse)
async def create_room(body: RoomRequest, runtime: VoiceRuntime = Depends(get_runtime)):
    """Open a room for a browser client and start its agent."""
    try:
        session = await runtime.signaling.create_web_session(body.agent_id, body.identity)
    except RoomCreationError as e:
        logger.error(f"[ROOMS] Web room creation failed - Agent: {body.agent_id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Could not create room")
    return RoomResponse(
        room_name=session.room_name,
        identity=session.identity,
        token=session.token,
        url=session.url,
    )
