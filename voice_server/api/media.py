"""Twilio Media Streams WebSocket endpoint."""
import logging

from fastapi import APIRouter, WebSocket

from voice_server.core.dependencies import get_runtime
from voice_server.services.bridge.audio_bridge import AudioBridge

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    """Bidirectional audio for one call."""
    runtime = get_runtime(websocket)
    await websocket.accept()
    logger.info("[MEDIA STREAM] Connection accepted")

    bridge = AudioBridge(websocket, runtime.registry, runtime.settings)
    await bridge.run()
    logger.info(
        f"[MEDIA STREAM] Connection finished - CallSid: {bridge.call_sid}, "
        f"Frames in: {bridge.frames_received}, Frames out: {bridge.frames_sent}"
    )
