"""Call signaling: sessions, rooms and access grants for new calls."""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from voice_server.core.config import Settings
from voice_server.core.errors import RoomCreationError
from voice_server.services.call_session.models import CallSession, room_name_for_call
from voice_server.services.call_session.registry import SessionRegistry
from voice_server.services.rooms import RoomService
from voice_server.services.telephony import say_and_hangup_twiml, stream_twiml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundCall:
    call_sid: str
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    direction: Optional[str] = None


@dataclass(frozen=True)
class WebSession:
    room_name: str
    identity: str
    token: Optional[str]
    url: Optional[str]


class SignalingService:
    """Turns inbound calls into running sessions."""

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        rooms: RoomService,
        agent_factory: Callable[..., object],
    ):
        self.settings = settings
        self.registry = registry
        self.rooms = rooms
        self.agent_factory = agent_factory

    async def handle_inbound_call(self, call: InboundCall, stream_url: str) -> str:
        """
        Allocate (or reuse) the session for a call and return its TwiML.

        A repeated webhook for the same call gets the same stream document
        without creating a second room. Room failures answer with a spoken
        apology and a hangup.
        """
        session_id = room_name_for_call(call.call_sid)

        async def create():
            return await self._create_call_session(call, session_id, stream_url)

        try:
            agent, created = await self.registry.get_or_create(session_id, create)
        except RoomCreationError as e:
            logger.error(f"[SIGNALING] Room creation failed - CallSid: {call.call_sid}: {str(e)}")
            return say_and_hangup_twiml(self.settings.apology_message)

        if created:
            agent.start()
            logger.info(f"[SIGNALING] Session {session_id} started - CallSid: {call.call_sid}")
        else:
            logger.info(f"[SIGNALING] Reusing session {session_id} - CallSid: {call.call_sid}")
        return stream_twiml(stream_url, session_id, self.settings.hold_announcement)

    async def _create_call_session(self, call: InboundCall, session_id: str, stream_url: str):
        await self.rooms.create_room(session_id)
        session = CallSession(
            session_id=session_id,
            call_sid=call.call_sid,
            channel="voice",
            from_number=call.from_number,
            to_number=call.to_number,
            direction=call.direction,
        )
        session.stream_url = stream_url
        session.access_grants = self._issue_grants(
            session_id,
            {"caller": f"caller-{call.call_sid}", "agent": f"agent-{call.call_sid}"},
        )
        return self.agent_factory(session)

    def _issue_grants(self, room_name: str, identities: Dict[str, str]) -> Dict[str, str]:
        grants = {}
        for leg, identity in identities.items():
            token = self.rooms.issue_token(room_name, identity)
            if token is not None:
                grants[identity] = token
        return grants

    async def create_web_session(self, agent_id: str, identity: Optional[str] = None) -> WebSession:
        """
        Open a room for a browser client and start its agent.

        Raises:
            RoomCreationError: If the room cannot be created
        """
        room_name = f"web-{uuid.uuid4().hex[:12]}"
        identity = identity or f"user-{uuid.uuid4().hex[:8]}"
        await self.rooms.create_room(room_name)

        session = CallSession(session_id=room_name, call_sid=room_name, channel="web")
        session.access_grants = self._issue_grants(
            room_name, {"caller": identity, "agent": f"agent-{room_name}"}
        )
        agent = self.agent_factory(session, agent_id=agent_id)
        await self.registry.add(agent)
        agent.start()
        logger.info(f"[SIGNALING] Web session {room_name} started - Agent: {agent_id}")
        return WebSession(
            room_name=room_name,
            identity=identity,
            token=session.access_grants.get(identity),
            url=self.settings.livekit_url,
        )
