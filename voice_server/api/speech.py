"""Speech processing API for non-telephony clients."""
import logging
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel

from voice_server.audio.codec import pcm16_to_wav
from voice_server.core.dependencies import get_base_url, get_runtime
from voice_server.core.errors import ProviderUnavailable, SessionBusy, SessionNotFound
from voice_server.core.runtime import VoiceRuntime

router = APIRouter()
logger = logging.getLogger(__name__)


class ProcessRequest(BaseModel):
    """Speech processing request model."""
    room_id: str
    transcript: str
    user_id: str | None = None


class ProcessResponse(BaseModel):
    """Speech processing response model."""
    reply: str
    audio_url: str | None = None
    processing_ms: int


class SessionResponse(BaseModel):
    """Active session model."""
    session_id: str
    call_sid: str
    room_name: str
    channel: str
    state: str
    created_at: str
    turns: int
    agent_id: str | None = None


@router.post("/api/voice/process", response_model=ProcessResponse)
async def process_speech(
    body: ProcessRequest,
    request: Request,
    runtime: VoiceRuntime = Depends(get_runtime),
):
    """Run one conversational turn from a client transcript."""
    started = time.perf_counter()
    agent = runtime.registry.get(body.room_id)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Session {body.room_id} not found")

    logger.info(
        f"[SPEECH] Processing transcript - Room: {body.room_id}, "
        f"User: {body.user_id or 'anonymous'}, Length: {len(body.transcript)}"
    )
    try:
        reply = await agent.respond_to_text(body.transcript, body.user_id)
    except SessionBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    audio_url = None
    if reply.audio:
        audio_id = runtime.audio_cache.put(pcm16_to_wav(reply.audio), "audio/wav")
        audio_url = f"{get_base_url(request)}/api/voice/audio/{audio_id}"

    processing_ms = int((time.perf_counter() - started) * 1000)
    logger.info(f"[SPEECH] Reply ready - Room: {body.room_id}, Latency: {processing_ms}ms")
    return ProcessResponse(reply=reply.text, audio_url=audio_url, processing_ms=processing_ms)


@router.get("/api/voice/audio/{audio_id}")
async def get_audio(audio_id: str, runtime: VoiceRuntime = Depends(get_runtime)):
    """Stream back cached synthesized audio until it expires."""
    entry = runtime.audio_cache.get(audio_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Audio not found or expired")
    return Response(content=entry.data, media_type=entry.content_type)


@router.get("/api/voice/sessions", response_model=List[SessionResponse])
async def list_sessions(runtime: VoiceRuntime = Depends(get_runtime)):
    """List active sessions."""
    return [SessionResponse(**agent.session.describe()) for agent in runtime.registry.list()]
