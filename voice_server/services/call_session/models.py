"""Call session models."""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from voice_server.services.agent.states import CallState
from voice_server.services.call_config.models import AgentConfiguration

USER = "user"
ASSISTANT = "assistant"


def room_name_for_call(call_sid: str) -> str:
    """Room (and session) name for a telephony call."""
    return f"call-{call_sid}"


def thread_id_for_call(call_sid: str) -> str:
    """Conversation log thread for a telephony call."""
    return f"voice_{call_sid}"


@dataclass(frozen=True)
class Turn:
    """One recorded utterance."""

    role: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    modality: str = "voice"

    def as_message(self) -> Dict[str, str]:
        """Chat message shape used by the reply providers."""
        return {"role": self.role, "content": self.text}


class AudioFrameBuffer:
    """PCM frames accumulated for the caller's current utterance."""

    def __init__(self):
        self._frames: List[bytes] = []
        self.started_at: Optional[float] = None
        self.last_at: Optional[float] = None

    def append(self, frame: bytes, at: float) -> None:
        if self.started_at is None:
            self.started_at = at
        self._frames.append(frame)
        self.last_at = at

    def flush(self) -> bytes:
        """Return the whole utterance and clear the buffer."""
        data = b"".join(self._frames)
        self._frames = []
        self.started_at = None
        self.last_at = None
        return data

    @property
    def is_empty(self) -> bool:
        return not self._frames

    def __len__(self) -> int:
        return len(self._frames)


class CallSession:
    """Live state for one call, from connect to hangup."""

    def __init__(
        self,
        session_id: str,
        call_sid: str,
        channel: str = "voice",
        from_number: Optional[str] = None,
        to_number: Optional[str] = None,
        direction: Optional[str] = None,
        clock=time.monotonic,
    ):
        self.session_id = session_id
        self.room_name = session_id
        self.call_sid = call_sid
        self.channel = channel
        self.from_number = from_number
        self.to_number = to_number
        self.direction = direction
        self.state = CallState.IDLE
        self.created_at = datetime.now(timezone.utc)
        self.started_at = clock()
        self.last_activity = self.started_at
        self.history: List[Turn] = []
        self.config: Optional[AgentConfiguration] = None
        self.access_grants: Dict[str, str] = {}
        self.buffer = AudioFrameBuffer()
        self.stream_sid: Optional[str] = None
        self.stream_url: Optional[str] = None
        # Set while the network speaks for the agent and the stream is reopened
        self.awaiting_stream = False

    @property
    def thread_id(self) -> str:
        return thread_id_for_call(self.call_sid)

    def touch(self, now: float) -> None:
        """Record activity at ``now`` (monotonic seconds)."""
        if now > self.last_activity:
            self.last_activity = now

    def append_turn(self, turn: Turn) -> Turn:
        """Append a turn; history is append-only and time-ordered."""
        if self.history and turn.timestamp < self.history[-1].timestamp:
            raise ValueError("turns must be appended in time order")
        self.history.append(turn)
        return turn

    def transcript_text(self) -> str:
        """Full transcript as text."""
        return "\n".join(f"{turn.role}: {turn.text}" for turn in self.history)

    def describe(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "call_sid": self.call_sid,
            "room_name": self.room_name,
            "channel": self.channel,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "turns": len(self.history),
            "agent_id": self.config.agent_id if self.config else None,
        }
