"""Bridge between a Twilio media stream and a session's conversation agent."""
import asyncio
import binascii
import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voice_server.audio.codec import (
    base64_decode,
    base64_encode,
    chunk_frames,
    frame_size,
    mulaw_to_pcm16,
    pcm16_to_mulaw,
    pcm_duration,
)
from voice_server.core.config import Settings
from voice_server.core.errors import MalformedMessage, SessionNotFound, TransportError
from voice_server.services.agent.constants import REASON_STOP, REASON_TRANSPORT
from voice_server.services.call_session.models import room_name_for_call
from voice_server.services.call_session.registry import SessionRegistry

logger = logging.getLogger(__name__)

# WebSocket close code for a policy violation (unknown session)
POLICY_VIOLATION = 1008


class AudioBridge:
    """
    Relays audio for exactly one session.

    Inbound ``media`` payloads are decoded from μ-law to PCM16 and fed to the
    agent; outbound PCM16 from the agent is re-encoded, framed and paced.
    """

    def __init__(self, websocket: WebSocket, registry: SessionRegistry, settings: Settings):
        self.websocket = websocket
        self.registry = registry
        self.settings = settings
        self.agent = None
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.frames_received = 0
        self.frames_sent = 0
        self._malformed = 0
        self._closed = False
        self._send_lock = asyncio.Lock()

    async def run(self) -> None:
        """Consume the stream until ``stop``, disconnect or repeated bad frames."""
        try:
            while True:
                try:
                    message = await self._receive()
                    done = await self._handle_message(message)
                except MalformedMessage as e:
                    self._malformed += 1
                    logger.warning(
                        f"[BRIDGE] Dropping malformed frame ({self._malformed}/"
                        f"{self.settings.max_malformed_frames}): {str(e)}"
                    )
                    if self._malformed >= self.settings.max_malformed_frames:
                        logger.error("[BRIDGE] Too many malformed frames, closing stream")
                        await self._teardown(REASON_TRANSPORT)
                        return
                    continue
                self._malformed = 0
                if done:
                    return
        except SessionNotFound as e:
            logger.error(f"[BRIDGE] {str(e)}")
            await self._close_socket(POLICY_VIOLATION)
        except TransportError as e:
            logger.warning(f"[BRIDGE] {str(e)}")
            self._closed = True
            await self._teardown(REASON_TRANSPORT)
        except Exception as e:
            logger.error(
                f"[BRIDGE] Unexpected error on stream {self.stream_sid}: "
                f"{type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            await self._teardown(REASON_TRANSPORT)

    async def _receive(self) -> str:
        try:
            message = await self.websocket.receive_text()
        except WebSocketDisconnect as e:
            raise TransportError(
                f"Media stream disconnected (code {e.code})",
                self.agent.session_id if self.agent else None,
            ) from e
        except KeyError as e:
            # Starlette raises KeyError when a binary frame is read as text
            raise MalformedMessage("Binary frame on a text stream") from e
        if not isinstance(message, str):
            raise MalformedMessage("Binary frame on a text stream")
        return message

    async def _handle_message(self, message: str) -> bool:
        """Fold one frame. Returns True once the stream is finished."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            raise MalformedMessage(f"Invalid JSON: {str(e)}") from e
        if not isinstance(data, dict) or "event" not in data:
            raise MalformedMessage("Frame has no event type")

        event = data["event"]
        if event == "connected":
            logger.info("[BRIDGE] Media stream connected")
        elif event == "start":
            await self._on_start(data)
        elif event == "media":
            self._on_media(data)
        elif event == "mark":
            mark = data.get("mark")
            name = mark.get("name") if isinstance(mark, dict) else mark
            logger.debug(f"[BRIDGE] Mark received: {name}")
        elif event == "stop":
            logger.info(f"[BRIDGE] Stream stopped - CallSid: {self.call_sid}")
            await self._teardown(REASON_STOP)
            return True
        else:
            logger.debug(f"[BRIDGE] Ignoring event '{event}'")
        return False

    async def _on_start(self, data: Dict[str, Any]) -> None:
        start = data.get("start")
        if not isinstance(start, dict):
            raise MalformedMessage("start event without metadata")
        self.stream_sid = start.get("streamSid") or data.get("streamSid")
        self.call_sid = start.get("callSid")
        parameters = start.get("customParameters")
        if not isinstance(parameters, dict):
            parameters = {}
        session_id = parameters.get("sessionId")
        if not session_id and self.call_sid:
            session_id = room_name_for_call(self.call_sid)
        if not self.stream_sid or not session_id:
            raise MalformedMessage("start event without stream or session id")

        agent = self.registry.get(session_id)
        if agent is None:
            raise SessionNotFound(f"No active session {session_id}", session_id)

        logger.info(
            f"[BRIDGE] Stream started - StreamSid: {self.stream_sid}, Session: {session_id}"
        )
        self.agent = agent
        agent.session.stream_sid = self.stream_sid
        # Drop anything Twilio buffered before we attached
        await self._send({"event": "clear", "streamSid": self.stream_sid})
        agent.attach_transport(self)

    def _on_media(self, data: Dict[str, Any]) -> None:
        if self.agent is None:
            raise MalformedMessage("media before start")
        media = data.get("media")
        if not isinstance(media, dict) or "payload" not in media:
            raise MalformedMessage("media event without payload")
        if media.get("track", "inbound") != "inbound":
            return
        try:
            mulaw = base64_decode(media["payload"])
        except (binascii.Error, ValueError, TypeError) as e:
            raise MalformedMessage(f"Invalid media payload: {str(e)}") from e

        self.frames_received += 1
        pcm = mulaw_to_pcm16(mulaw)
        if pcm:
            self.agent.feed_audio(pcm)

    async def play(self, pcm: bytes) -> float:
        """
        Stream PCM16 8 kHz audio to the caller.

        Returns:
            Playback duration in seconds
        """
        if self._closed or self.stream_sid is None:
            raise TransportError("Media stream is not open")

        size = frame_size(self.settings.playback_frame_ms)
        for frame in chunk_frames(pcm, size):
            if self._closed:
                raise TransportError("Media stream closed during playback")
            payload = base64_encode(pcm16_to_mulaw(frame))
            await self._send(
                {"event": "media", "streamSid": self.stream_sid, "media": {"payload": payload}}
            )
            self.frames_sent += 1
            await asyncio.sleep(self.settings.playback_frame_delay)
        return pcm_duration(pcm)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._close_socket()

    async def _send(self, message: Dict[str, Any]) -> None:
        async with self._send_lock:
            try:
                await self.websocket.send_text(json.dumps(message))
            except (WebSocketDisconnect, RuntimeError) as e:
                self._closed = True
                raise TransportError(f"Failed to send to media stream: {str(e)}") from e

    async def _teardown(self, reason: str) -> None:
        agent = self.agent
        if agent is not None and agent.session.awaiting_stream:
            # The call was updated to speak for the agent; a new stream reattaches
            logger.info(f"[BRIDGE] Stream ended for a call update, keeping {agent.session_id}")
            agent.detach_transport(self)
        elif agent is not None:
            await agent.close(reason)
        await self.close()

    async def _close_socket(self, code: int = 1000) -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except RuntimeError as e:
            logger.debug(f"[BRIDGE] Socket already closed: {str(e)}")
