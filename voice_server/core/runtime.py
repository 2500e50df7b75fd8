"""Constructed-once service objects shared by the HTTP and WebSocket routes."""
import asyncio
import logging
from typing import List, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from voice_server.core.config import Settings
from voice_server.services.agent.conversation import ConversationAgent
from voice_server.services.audio_cache import AudioCache
from voice_server.services.call_config.resolver import CallConfigResolver
from voice_server.services.call_session.models import CallSession
from voice_server.services.call_session.registry import SessionRegistry
from voice_server.services.persistence.conversation_log import ConversationLog
from voice_server.services.providers.factory import ProviderFactory
from voice_server.services.rooms import RoomService
from voice_server.services.signaling import SignalingService
from voice_server.services.telephony import TelephonyControl

logger = logging.getLogger(__name__)


class VoiceRuntime:
    """Owns the registry, caches, vendor clients and background loops."""

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        audio_cache: AudioCache,
        provider_factory: ProviderFactory,
        rooms: RoomService,
        telephony: TelephonyControl,
        config_resolver: CallConfigResolver,
        conversation_log: Optional[ConversationLog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.audio_cache = audio_cache
        self.provider_factory = provider_factory
        self.rooms = rooms
        self.telephony = telephony
        self.config_resolver = config_resolver
        self.conversation_log = conversation_log
        self.http_client = http_client
        self.signaling = SignalingService(settings, registry, rooms, self.new_agent)
        self._loops: List[asyncio.Task] = []

    def new_agent(self, session: CallSession, agent_id: Optional[str] = None) -> ConversationAgent:
        return ConversationAgent(
            session=session,
            settings=self.settings,
            registry=self.registry,
            provider_factory=self.provider_factory,
            config_resolver=self.config_resolver,
            telephony=self.telephony,
            conversation_log=self.conversation_log,
            agent_id=agent_id,
        )

    def start(self) -> None:
        """Start the session sweeper and the audio cache purger."""
        if self._loops:
            return
        self._loops = [
            asyncio.create_task(self.registry.run_sweeper(self.settings.sweep_interval)),
            asyncio.create_task(self.audio_cache.run_purger()),
        ]
        logger.info("[RUNTIME] Background loops started")

    async def shutdown(self) -> None:
        for task in self._loops:
            task.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        await self.registry.close_all("shutdown")
        await self.provider_factory.aclose()
        if self.http_client is not None:
            await self.http_client.aclose()
        logger.info("[RUNTIME] Shut down")


def build_runtime(settings: Settings, session_factory: Optional[async_sessionmaker] = None) -> VoiceRuntime:
    """Wire the production object graph."""
    conversation_log = ConversationLog(session_factory) if session_factory is not None else None
    http_client = httpx.AsyncClient(timeout=settings.config_request_timeout)
    registry = SessionRegistry(
        idle_timeout=settings.session_idle_timeout,
        max_duration=settings.session_max_duration,
    )
    return VoiceRuntime(
        settings=settings,
        registry=registry,
        audio_cache=AudioCache(ttl=settings.audio_cache_ttl),
        provider_factory=ProviderFactory(settings),
        rooms=RoomService(settings),
        telephony=TelephonyControl(settings),
        config_resolver=CallConfigResolver(settings, conversation_log, http_client),
        conversation_log=conversation_log,
        http_client=http_client,
    )
