"""Events folded by a conversation agent, in arrival order."""
import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol


class AudioSink(Protocol):
    """Outbound leg of the media transport."""

    async def play(self, pcm: bytes) -> float:
        """Play PCM16 8 kHz audio; returns its duration in seconds."""
        ...

    async def close(self) -> None: ...


@dataclass
class TransportReady:
    sink: AudioSink


@dataclass
class TransportLost:
    sink: AudioSink


@dataclass
class AudioReceived:
    pcm: bytes
    at: float


@dataclass
class SilenceElapsed:
    generation: int


@dataclass
class TextRequest:
    transcript: str
    user_id: Optional[str]
    future: asyncio.Future


@dataclass
class ProcessingResult:
    outcome: str
    transcript: Optional[str] = None
    reply: Optional[str] = None
    audio: Optional[bytes] = None
    error: Optional[Exception] = None
    user_id: Optional[str] = None
    future: Optional[asyncio.Future] = None


@dataclass
class PlaybackFinished:
    generation: int
    duration: float


@dataclass
class CooldownElapsed:
    generation: int


@dataclass(frozen=True)
class TextReply:
    """Reply to a text request from a non-telephony client."""

    text: str
    audio: Optional[bytes] = None
