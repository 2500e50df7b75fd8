"""OpenAI speech-to-text, reply and text-to-speech adapters."""
import logging
from typing import Dict, List

from openai import AsyncOpenAI

from voice_server.audio.codec import TELEPHONY_SAMPLE_RATE, pcm16_to_wav, resample_pcm16
from voice_server.services.call_config.models import DEFAULT_VOICE, OPENAI_VOICES, VoiceProfile
from voice_server.services.providers.base import (
    ModelParams,
    ReplyProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
TRANSCRIPTION_MODEL = "whisper-1"
SPEECH_MODEL = "tts-1"
# The speech endpoint's raw pcm output is 24 kHz 16-bit mono
SPEECH_PCM_SAMPLE_RATE = 24000


class OpenAISpeechToText(SpeechToTextProvider):
    """Transcription with OpenAI Whisper."""

    vendor = "openai"

    def __init__(self, client: AsyncOpenAI, model: str = TRANSCRIPTION_MODEL):
        self.client = client
        self.model = model

    async def transcribe(self, audio: bytes, language: str = "en") -> str:
        if not audio:
            return ""
        # Whisper expects a file-like upload, so wrap the PCM in a WAV container
        transcript = await self.client.audio.transcriptions.create(
            model=self.model,
            file=("audio.wav", pcm16_to_wav(audio, TELEPHONY_SAMPLE_RATE), "audio/wav"),
            language=language.split("-")[0],
        )
        return (transcript.text or "").strip()


class OpenAIReply(ReplyProvider):
    """Replies from OpenAI chat completions."""

    vendor = "openai"

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    async def generate_reply(
        self,
        history: List[Dict[str, str]],
        system_prompt: str,
        params: ModelParams,
    ) -> str:
        response = await self.client.chat.completions.create(
            model=params.model or DEFAULT_CHAT_MODEL,
            messages=[{"role": "system", "content": system_prompt}, *history],
            temperature=params.temperature,
            max_tokens=params.max_tokens,
        )
        content = response.choices[0].message.content
        return (content or "").strip()


class OpenAITextToSpeech(TextToSpeechProvider):
    """Speech synthesis with OpenAI TTS."""

    vendor = "openai"

    def __init__(self, client: AsyncOpenAI, model: str = SPEECH_MODEL):
        self.client = client
        self.model = model

    async def synthesize(self, text: str, voice: VoiceProfile) -> bytes:
        voice_id = voice.voice_id if voice.voice_id in OPENAI_VOICES else DEFAULT_VOICE
        kwargs = {}
        if voice.speed:
            # The API accepts 0.25 - 4.0
            kwargs["speed"] = min(max(voice.speed, 0.25), 4.0)

        response = await self.client.audio.speech.create(
            model=self.model,
            voice=voice_id,
            input=text,
            response_format="pcm",
            **kwargs,
        )
        return resample_pcm16(response.content, SPEECH_PCM_SAMPLE_RATE, TELEPHONY_SAMPLE_RATE)
