"""Shared test fixtures and configuration."""
import asyncio
import json
import os
import time
from typing import List, Optional

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState

# Set test environment variables before importing the app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from voice_server.audio.codec import pcm_duration
from voice_server.core.config import Settings
from voice_server.core.errors import ConfigurationMissing, RoomCreationError
from voice_server.core.runtime import VoiceRuntime
from voice_server.db.models import Base
from voice_server.services.agent.conversation import ConversationAgent
from voice_server.services.audio_cache import AudioCache
from voice_server.services.call_config.models import AgentConfiguration
from voice_server.services.call_session.models import CallSession
from voice_server.services.call_session.registry import SessionRegistry
from voice_server.services.providers.base import (
    ReplyProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
)
from voice_server.services.providers.factory import VoiceProviderSet

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 0.1 s of PCM16 8 kHz silence
SILENCE_100MS = b"\x00\x00" * 800

STREAM_URL = "wss://voice.example.com/media-stream"


@pytest.fixture
def test_settings():
    """Settings with short timings so state changes happen quickly."""
    return Settings(
        openai_api_key="test-key",
        google_ai_api_key=None,
        twilio_account_sid=None,
        twilio_auth_token=None,
        livekit_url=None,
        livekit_api_key=None,
        livekit_api_secret=None,
        database_url=TEST_DATABASE_URL,
        config_api_url=None,
        silence_timeout=0.1,
        cooldown_base=0.05,
        cooldown_divisor=5.0,
        cooldown_max_extra=0.05,
        provider_timeout=0.5,
        playback_frame_delay=0.0,
        max_malformed_frames=3,
        sweep_interval=60.0,
    )


@pytest.fixture
def agent_config():
    return AgentConfiguration(
        agent_id="agent-1",
        model="gpt-4o-mini",
        instructions="You are the front desk of Acme Dental.",
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session


# ----------------------------------------------------------------------
# Fake collaborators


class FakeSpeechToText(SpeechToTextProvider):
    vendor = "fake"

    def __init__(self, transcripts: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.transcripts = list(transcripts or [])
        self.error = error
        self.calls: List[bytes] = []

    async def transcribe(self, audio, language="en"):
        self.calls.append(audio)
        if self.error is not None:
            raise self.error
        return self.transcripts.pop(0) if self.transcripts else ""


class FakeReply(ReplyProvider):
    vendor = "fake"

    def __init__(self, replies: Optional[List[str]] = None, delay: float = 0.0):
        self.replies = list(replies or [])
        self.delay = delay
        self.calls = []

    async def generate_reply(self, history, system_prompt, params):
        self.calls.append((history, system_prompt, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.replies.pop(0) if self.replies else "Sure, I can help with that."


class FakeTextToSpeech(TextToSpeechProvider):
    vendor = "fake"

    def __init__(self, fail: bool = False, audio: bytes = SILENCE_100MS):
        self.fail = fail
        self.audio = audio
        self.texts: List[str] = []

    async def synthesize(self, text, voice):
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("speech service down")
        return self.audio


class FakeProviderFactory:
    """Stands in for ProviderFactory; every session gets the same fakes."""

    def __init__(self, settings, stt=None, llm=None, tts=None):
        self.settings = settings
        self.stt = stt or FakeSpeechToText()
        self.llm = llm or FakeReply()
        self.tts = tts or FakeTextToSpeech()
        self.models: List[str] = []

    def for_model(self, model, language="en"):
        self.models.append(model)
        return VoiceProviderSet(
            vendor="fake",
            stt=self.stt,
            llm=self.llm,
            tts=self.tts,
            timeout=self.settings.provider_timeout,
            history_window=self.settings.history_window,
        )

    def credentials(self):
        return {"openai": True, "google": False, "twilio": False, "livekit": False}

    async def aclose(self):
        pass


class FakeResolver:
    def __init__(self, config: Optional[AgentConfiguration] = None):
        self.config = config
        self.calls: List[str] = []
        self.stored = {}

    async def resolve(self, call_sid):
        self.calls.append(call_sid)
        if self.config is None:
            raise ConfigurationMissing(f"No configuration for call {call_sid}")
        return self.config

    async def resolve_agent(self, agent_id):
        self.calls.append(agent_id)
        if self.config is None:
            raise ConfigurationMissing(f"No configuration for agent {agent_id}")
        return self.config

    async def store(self, call_sid, payload):
        self.stored[call_sid] = payload


class FakeTelephony:
    def __init__(self):
        self.hangups = []
        self.reconnects = []
        self.accept = True

    async def say_and_hangup(self, call_sid, text):
        self.hangups.append((call_sid, text))
        return True

    async def say_and_reconnect(self, call_sid, text, stream_url, session_id):
        self.reconnects.append((call_sid, text, stream_url, session_id))
        return self.accept

    def validate_request(self, url, params, signature):
        return True


class FakeRooms:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created: List[str] = []

    async def create_room(self, room_name):
        await asyncio.sleep(0.01)
        if self.fail:
            raise RoomCreationError(f"Could not create room {room_name}", room_name)
        self.created.append(room_name)
        return room_name

    def issue_token(self, room_name, identity, name=None, ttl_seconds=None):
        return f"token:{room_name}:{identity}"


class FakeSink:
    """Outbound media leg that records what it plays."""

    def __init__(self, hold: Optional[asyncio.Event] = None):
        self.hold = hold
        self.played: List[bytes] = []
        self.finished_at: Optional[float] = None
        self.closed = False

    async def play(self, pcm):
        self.played.append(pcm)
        if self.hold is not None:
            await self.hold.wait()
        self.finished_at = time.monotonic()
        return pcm_duration(pcm)

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Scripted media stream socket."""

    def __init__(self, messages=None):
        self.incoming = [
            m if isinstance(m, (str, bytes)) else json.dumps(m) for m in (messages or [])
        ]
        self.sent = []
        self.closed_code: Optional[int] = None
        self.application_state = WebSocketState.CONNECTED

    async def receive_text(self):
        await asyncio.sleep(0)
        if self.incoming:
            message = self.incoming.pop(0)
            if isinstance(message, bytes):
                # What Starlette does when a binary frame is read as text
                raise KeyError("text")
            return message
        raise WebSocketDisconnect(code=1006)

    async def send_text(self, data):
        if self.application_state == WebSocketState.DISCONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self, code=1000):
        self.closed_code = code
        self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def fake_stt():
    return FakeSpeechToText()


@pytest.fixture
def fake_llm():
    return FakeReply()


@pytest.fixture
def fake_tts():
    return FakeTextToSpeech()


@pytest.fixture
def fake_factory(test_settings, fake_stt, fake_llm, fake_tts):
    return FakeProviderFactory(test_settings, fake_stt, fake_llm, fake_tts)


@pytest.fixture
def fake_telephony():
    return FakeTelephony()


@pytest.fixture
def registry():
    return SessionRegistry(idle_timeout=300.0, max_duration=3600.0)


@pytest.fixture
async def make_agent(test_settings, registry, fake_factory, fake_telephony, agent_config):
    """Build, register and (optionally) start agents; closes them after the test."""
    agents = []

    async def _make(
        call_sid="CA1",
        config=agent_config,
        channel="voice",
        settings=None,
        conversation_log=None,
        agent_id=None,
        start=True,
    ):
        session_id = f"call-{call_sid}" if channel == "voice" else call_sid
        session = CallSession(session_id=session_id, call_sid=call_sid, channel=channel)
        if channel == "voice":
            session.stream_url = STREAM_URL
        agent = ConversationAgent(
            session=session,
            settings=settings or test_settings,
            registry=registry,
            provider_factory=fake_factory,
            config_resolver=FakeResolver(config),
            telephony=fake_telephony,
            conversation_log=conversation_log,
            agent_id=agent_id,
        )
        await registry.add(agent)
        if start:
            agent.start()
        agents.append(agent)
        return agent

    yield _make

    for agent in agents:
        await agent.close("test_teardown")
        await agent.wait_closed()


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or the timeout passes."""

    async def _wait(condition, timeout=2.0, interval=0.005):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return True
            await asyncio.sleep(interval)
        return condition()

    return _wait


@pytest.fixture
def make_sink():
    """Factory for recording media sinks."""
    return FakeSink


@pytest.fixture
def make_websocket():
    """Factory for scripted media stream sockets."""
    return FakeWebSocket


@pytest.fixture
def fake_rooms():
    return FakeRooms()


@pytest.fixture
def runtime(test_settings, fake_factory, fake_rooms, fake_telephony, agent_config):
    """Runtime wired with fakes for API tests."""
    return VoiceRuntime(
        settings=test_settings,
        registry=SessionRegistry(),
        audio_cache=AudioCache(ttl=30.0),
        provider_factory=fake_factory,
        rooms=fake_rooms,
        telephony=fake_telephony,
        config_resolver=FakeResolver(agent_config),
    )


@pytest.fixture
def test_client(runtime):
    """Create FastAPI test client around the fake runtime."""
    from fastapi.testclient import TestClient

    from voice_server.main import create_app

    with TestClient(create_app(runtime)) as client:
        yield client


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line("markers", "asyncio: mark test as an asyncio test")
