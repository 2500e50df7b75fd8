"""Call state enumeration."""
from enum import Enum
from typing import Dict, FrozenSet


class CallState(str, Enum):
    """Lifecycle states of a conversation agent."""

    IDLE = "idle"  # Created, or torn down after hangup
    CONNECTING = "connecting"  # Resolving agent configuration and providers
    WAITING = "waiting"  # Ready, waiting for the media transport
    LISTENING = "listening"  # Accumulating caller audio
    PROCESSING = "processing"  # Transcribing and generating a reply
    SPEAKING = "speaking"  # Playing a reply, including the post-speech cooldown
    ERROR = "error"  # Unrecoverable provider or transport failure

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value


# ERROR and IDLE are reachable from every state and are not listed here.
ALLOWED_TRANSITIONS: Dict[CallState, FrozenSet[CallState]] = {
    CallState.IDLE: frozenset({CallState.CONNECTING}),
    CallState.CONNECTING: frozenset({CallState.WAITING}),
    CallState.WAITING: frozenset({CallState.SPEAKING, CallState.LISTENING}),
    CallState.LISTENING: frozenset({CallState.PROCESSING}),
    CallState.PROCESSING: frozenset({CallState.SPEAKING, CallState.LISTENING}),
    CallState.SPEAKING: frozenset({CallState.LISTENING}),
    CallState.ERROR: frozenset(),
}


def can_transition(current: CallState, target: CallState) -> bool:
    """Whether ``current -> target`` is a legal transition."""
    if target in (CallState.ERROR, CallState.IDLE):
        return current != target
    return target in ALLOWED_TRANSITIONS[current]
