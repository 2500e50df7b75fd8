"""Google speech-to-text, Gemini reply and text-to-speech adapters (REST over httpx)."""
import logging
from typing import Any, Dict, List

import httpx

from voice_server.audio.codec import (
    TELEPHONY_SAMPLE_RATE,
    base64_decode,
    base64_encode,
    resample_pcm16,
    wav_to_pcm16,
)
from voice_server.services.call_config.models import VoiceProfile
from voice_server.services.providers.base import (
    ModelParams,
    ReplyProvider,
    SpeechToTextProvider,
    TextToSpeechProvider,
)

logger = logging.getLogger(__name__)

SPEECH_URL = "https://speech.googleapis.com/v1/speech:recognize"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
TEXT_TO_SPEECH_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"

DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"

# OpenAI voice names mapped onto comparable Google voices, per language
GOOGLE_VOICE_MAP: Dict[str, Dict[str, str]] = {
    "en-US": {
        "alloy": "en-US-Standard-A",
        "echo": "en-US-Standard-B",
        "fable": "en-US-Standard-C",
        "onyx": "en-US-Standard-D",
        "nova": "en-US-Wavenet-A",
        "shimmer": "en-US-Wavenet-B",
    },
    "en-GB": {
        "alloy": "en-GB-Standard-A",
        "echo": "en-GB-Standard-B",
        "fable": "en-GB-Standard-C",
        "onyx": "en-GB-Standard-D",
        "nova": "en-GB-Wavenet-A",
        "shimmer": "en-GB-Wavenet-B",
    },
}

DEFAULT_GOOGLE_VOICES: Dict[str, str] = {
    "en-US": "en-US-Standard-A",
    "en-GB": "en-GB-Standard-A",
    "es-ES": "es-ES-Standard-A",
    "fr-FR": "fr-FR-Standard-A",
    "de-DE": "de-DE-Standard-A",
}


def language_code(language: str) -> str:
    """Expand a bare language (``en``) to the regional code Google expects."""
    if not language:
        return "en-US"
    if "-" in language:
        return language
    return {"en": "en-US", "es": "es-ES", "fr": "fr-FR", "de": "de-DE"}.get(
        language.lower(), language
    )


def google_voice_name(voice_id: str, language: str = "en-US") -> str:
    """Map a voice id onto a Google voice name."""
    code = language_code(language)
    if "-" in voice_id and voice_id.count("-") >= 2:
        # Already a Google voice name such as en-US-Wavenet-D
        return voice_id
    voices = GOOGLE_VOICE_MAP.get(code, {})
    if voice_id in voices:
        return voices[voice_id]
    return DEFAULT_GOOGLE_VOICES.get(code, "en-US-Standard-A")


def gemini_model_name(model: str) -> str:
    """Map a configured model identifier onto a Gemini model name."""
    if "gemini-2.5-flash" in model:
        return "gemini-2.0-flash-exp"
    if "gemini" in model:
        return model if model.startswith("gemini-") else DEFAULT_GEMINI_MODEL
    return DEFAULT_GEMINI_MODEL


class _GoogleClient:
    """Shared request plumbing for the Google REST endpoints."""

    vendor = "google"

    def __init__(self, client: httpx.AsyncClient, api_key: str):
        self.client = client
        self.api_key = api_key

    async def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(url, params={"key": self.api_key}, json=body)
        response.raise_for_status()
        return response.json()


class GoogleSpeechToText(_GoogleClient, SpeechToTextProvider):
    """Transcription with Google Cloud Speech-to-Text."""

    async def transcribe(self, audio: bytes, language: str = "en") -> str:
        if not audio:
            return ""
        result = await self._post(
            SPEECH_URL,
            {
                "config": {
                    "encoding": "LINEAR16",
                    "sampleRateHertz": TELEPHONY_SAMPLE_RATE,
                    "languageCode": language_code(language),
                    "enableAutomaticPunctuation": True,
                },
                "audio": {"content": base64_encode(audio)},
            },
        )
        results = result.get("results") or []
        if not results:
            return ""
        alternatives = results[0].get("alternatives") or [{}]
        return (alternatives[0].get("transcript") or "").strip()


class GeminiReply(_GoogleClient, ReplyProvider):
    """Replies from Gemini ``generateContent``."""

    async def generate_reply(
        self,
        history: List[Dict[str, str]],
        system_prompt: str,
        params: ModelParams,
    ) -> str:
        contents = [
            {
                "role": "model" if message["role"] == "assistant" else "user",
                "parts": [{"text": message["content"]}],
            }
            for message in history
            if message["role"] != "system"
        ]
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": params.temperature,
                "maxOutputTokens": params.max_tokens,
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        result = await self._post(GEMINI_URL.format(model=gemini_model_name(params.model)), body)
        candidates = result.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts") or [{}]
        return (parts[0].get("text") or "").strip()


class GoogleTextToSpeech(_GoogleClient, TextToSpeechProvider):
    """Speech synthesis with Google Cloud Text-to-Speech."""

    def __init__(self, client: httpx.AsyncClient, api_key: str, language: str = "en-US"):
        super().__init__(client, api_key)
        self.language = language

    async def synthesize(self, text: str, voice: VoiceProfile) -> bytes:
        code = language_code(self.language)
        audio_config: Dict[str, Any] = {
            "audioEncoding": "LINEAR16",
            "sampleRateHertz": TELEPHONY_SAMPLE_RATE,
        }
        if voice.speed:
            audio_config["speakingRate"] = min(max(voice.speed, 0.25), 4.0)
        if voice.pitch is not None:
            audio_config["pitch"] = voice.pitch

        result = await self._post(
            TEXT_TO_SPEECH_URL,
            {
                "input": {"text": text},
                "voice": {"languageCode": code, "name": google_voice_name(voice.voice_id, code)},
                "audioConfig": audio_config,
            },
        )
        audio = base64_decode(result.get("audioContent", ""))
        # LINEAR16 responses carry a WAV header
        if audio[:4] == b"RIFF":
            pcm, rate = wav_to_pcm16(audio)
            return resample_pcm16(pcm, rate, TELEPHONY_SAMPLE_RATE)
        return audio
