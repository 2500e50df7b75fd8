"""Vendor-agnostic provider contracts."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

from voice_server.services.call_config.models import VoiceProfile


@dataclass(frozen=True)
class ModelParams:
    """Generation parameters for a reply."""

    model: str = ""
    temperature: float = 0.8
    max_tokens: int = 150


class SpeechToTextProvider(ABC):
    """Converts caller audio to text."""

    vendor: str = ""

    @abstractmethod
    async def transcribe(self, audio: bytes, language: str = "en") -> str:
        """
        Transcribe an utterance.

        Args:
            audio: PCM16 8 kHz mono bytes
            language: ISO language code

        Returns:
            Transcript text (empty when nothing was recognized)
        """


class ReplyProvider(ABC):
    """Generates the agent's next utterance."""

    vendor: str = ""

    @abstractmethod
    async def generate_reply(
        self,
        history: List[Dict[str, str]],
        system_prompt: str,
        params: ModelParams,
    ) -> str:
        """
        Generate a reply to the conversation so far.

        Args:
            history: Chat messages (``role``/``content``), oldest first
            system_prompt: Agent instructions
            params: Model parameters

        Returns:
            Reply text
        """


class TextToSpeechProvider(ABC):
    """Converts reply text to audio."""

    vendor: str = ""

    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceProfile) -> bytes:
        """
        Synthesize speech.

        Returns:
            PCM16 8 kHz mono bytes
        """
