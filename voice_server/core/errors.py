"""Error taxonomy for the voice pipeline.

Vendor and transport failures are caught at the adapter and bridge
boundaries and re-raised as one of these types. Only ``SessionNotFound``
and ``TransportError`` end a session outright; everything else degrades to
spoken speech so the caller never hears dead air.
"""
from typing import Optional


class VoiceServerError(Exception):
    """Base class for voice pipeline errors."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class ProviderUnavailable(VoiceServerError):
    """A speech-to-text, reply or text-to-speech vendor failed or timed out."""

    def __init__(
        self,
        message: str,
        capability: str = "",
        vendor: str = "",
        session_id: Optional[str] = None,
    ):
        super().__init__(message, session_id)
        self.capability = capability
        self.vendor = vendor


class SessionNotFound(VoiceServerError):
    """An event or request references an unknown or expired session."""


class ConfigurationMissing(VoiceServerError):
    """No agent configuration could be resolved for the call."""


class TransportError(VoiceServerError):
    """The media transport disconnected or failed mid-call."""


class MalformedMessage(VoiceServerError):
    """An inbound media stream frame could not be parsed."""


class RoomCreationError(VoiceServerError):
    """The real-time media room could not be created."""


class InvalidTransition(VoiceServerError):
    """A state machine transition that is not allowed was requested."""


class SessionBusy(VoiceServerError):
    """A processing pass is already in flight for the session."""
