"""Vendor selection and the per-session provider set."""
import asyncio
import logging
from typing import Awaitable, Dict, List, Optional, Sequence, TypeVar

import httpx
from openai import AsyncOpenAI

from voice_server.core.config import Settings
from voice_server.core.errors import ProviderUnavailable
from voice_server.services.call_config.models import VoiceProfile
from voice_server.services.call_session.models import Turn
from voice_server.services.providers.base import (
    ModelParams,
    ReplyProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
)
from voice_server.services.providers.google_provider import (
    GeminiReply,
    GoogleSpeechToText,
    GoogleTextToSpeech,
)
from voice_server.services.providers.openai_provider import (
    OpenAIReply,
    OpenAISpeechToText,
    OpenAITextToSpeech,
)

logger = logging.getLogger(__name__)

OPENAI = "openai"
GOOGLE = "google"

T = TypeVar("T")


class VoiceProviderSet:
    """
    The three capabilities for one session, resolved once at session start.

    Every call is bounded by ``timeout`` and every failure surfaces as
    ``ProviderUnavailable`` so callers never see raw vendor errors.
    """

    def __init__(
        self,
        vendor: str,
        stt: SpeechToTextProvider,
        llm: ReplyProvider,
        tts: TextToSpeechProvider,
        timeout: float = 30.0,
        history_window: int = 10,
    ):
        self.vendor = vendor
        self.stt = stt
        self.llm = llm
        self.tts = tts
        self.timeout = timeout
        self.history_window = history_window

    async def _call(self, capability: str, vendor: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except ProviderUnavailable:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(f"[PROVIDER] {vendor} {capability} timed out after {self.timeout}s")
            raise ProviderUnavailable(
                f"{capability} timed out", capability=capability, vendor=vendor
            ) from e
        except Exception as e:
            logger.error(f"[PROVIDER] {vendor} {capability} failed: {type(e).__name__}: {str(e)}")
            raise ProviderUnavailable(
                f"{capability} failed: {str(e)}", capability=capability, vendor=vendor
            ) from e

    async def transcribe(self, audio: bytes, language: str = "en") -> str:
        return await self._call("stt", self.stt.vendor, self.stt.transcribe(audio, language))

    async def generate_reply(
        self,
        history: Sequence[Turn],
        system_prompt: str,
        params: ModelParams,
    ) -> str:
        window = list(history)[-self.history_window:] if self.history_window > 0 else []
        messages = [turn.as_message() for turn in window]
        return await self._call(
            "llm", self.llm.vendor, self.llm.generate_reply(messages, system_prompt, params)
        )

    async def synthesize(self, text: str, voice: VoiceProfile) -> bytes:
        return await self._call("tts", self.tts.vendor, self.tts.synthesize(text, voice))


class ProviderFactory:
    """Builds provider sets from configured credentials. Clients are shared across sessions."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._openai_client: Optional[AsyncOpenAI] = None
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def openai_client(self) -> AsyncOpenAI:
        if self._openai_client is None:
            self._openai_client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._openai_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.provider_timeout)
        return self._http_client

    def credentials(self) -> Dict[str, bool]:
        """Whether credentials are configured, per vendor and platform."""
        s = self.settings
        return {
            OPENAI: bool(s.openai_api_key),
            GOOGLE: bool(s.google_ai_api_key),
            "twilio": bool(s.twilio_account_sid and s.twilio_auth_token),
            "livekit": bool(s.livekit_url and s.livekit_api_key and s.livekit_api_secret),
        }

    def available_vendors(self) -> List[str]:
        creds = self.credentials()
        return [vendor for vendor in (OPENAI, GOOGLE) if creds[vendor]]

    def select_vendor(self, model: Optional[str]) -> str:
        """
        Pick the vendor family for a model identifier.

        Raises:
            ProviderUnavailable: If no vendor has credentials
        """
        available = self.available_vendors()
        if not available:
            raise ProviderUnavailable("No speech provider credentials configured")

        model = (model or "").lower()
        if not model:
            preferred = self.settings.default_vendor.lower()
            return preferred if preferred in available else available[0]
        if "gemini" in model and GOOGLE in available:
            return GOOGLE
        return OPENAI if OPENAI in available else GOOGLE

    def for_model(self, model: Optional[str], language: str = "en") -> VoiceProviderSet:
        vendor = self.select_vendor(model)
        logger.info(f"[PROVIDER] Using {vendor} for model '{model or 'default'}'")

        if vendor == GOOGLE:
            key = self.settings.google_ai_api_key
            stt = GoogleSpeechToText(self.http_client, key)
            llm = GeminiReply(self.http_client, key)
            tts = GoogleTextToSpeech(self.http_client, key, language=language)
        else:
            stt = OpenAISpeechToText(self.openai_client)
            llm = OpenAIReply(self.openai_client)
            tts = OpenAITextToSpeech(self.openai_client)

        return VoiceProviderSet(
            vendor=vendor,
            stt=stt,
            llm=llm,
            tts=tts,
            timeout=self.settings.provider_timeout,
            history_window=self.settings.history_window,
        )

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._openai_client is not None:
            await self._openai_client.close()
            self._openai_client = None
