"""Agent configuration models."""
import re
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_VOICE = "alloy"
DEFAULT_INSTRUCTIONS = (
    "You are a helpful voice assistant on a phone call. "
    "Keep responses concise and conversational."
)

# Voices the OpenAI speech endpoint accepts directly
OPENAI_VOICES = frozenset(
    {"alloy", "ash", "ballad", "coral", "echo", "fable", "nova", "onyx", "sage", "shimmer", "verse"}
)

_DESCRIPTION_SETTING = re.compile(r"(\w+):\s*([^,]+)")


class VoiceProfile(BaseModel):
    """Vendor voice plus optional attributes that shape prompt and speech."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    voice_id: str = Field(
        default=DEFAULT_VOICE,
        validation_alias=AliasChoices("voice_id", "voiceId", "openAIVoice"),
    )
    personality: Optional[str] = None
    accent: Optional[str] = None
    speed: Optional[float] = None
    pitch: Optional[float] = None

    @classmethod
    def from_value(cls, value: Any) -> "VoiceProfile":
        """
        Build a profile from the shapes the configuration owner sends.

        Accepts a bare voice id, a settings dict, or a description string
        such as ``"personality: friendly, accent: british, speed: 1.2"``.
        """
        if value is None or value == "":
            return cls()
        if isinstance(value, VoiceProfile):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        if isinstance(value, str) and ":" in value:
            return cls.from_description(value)
        return cls(voice_id=str(value))

    @classmethod
    def from_description(cls, description: str, voice_id: str = DEFAULT_VOICE) -> "VoiceProfile":
        """Parse ``key: value`` pairs out of a free-text voice description."""
        fields: Dict[str, Any] = {"voice_id": voice_id}
        for key, raw in _DESCRIPTION_SETTING.findall(description):
            key = key.lower()
            raw = raw.strip()
            if key in ("personality", "accent"):
                fields[key] = raw
            elif key in ("speed", "pitch"):
                try:
                    fields[key] = float(raw)
                except ValueError:
                    continue
            elif key == "voice":
                fields["voice_id"] = raw
        return cls(**fields)

    def shape_instructions(self, instructions: str) -> str:
        """Append personality and accent guidance to a system prompt."""
        shaped = instructions
        if self.personality:
            shaped = f"{shaped}\n\nVoice Personality: {self.personality}"
        if self.accent:
            shaped = f"{shaped}\n\nSpeak with a {self.accent} accent."
        return shaped


class AgentConfiguration(BaseModel):
    """Per-call agent settings, resolved once at session start."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    agent_id: str = Field(validation_alias=AliasChoices("agent_id", "agentId"))
    model: str = ""
    instructions: str = Field(
        default=DEFAULT_INSTRUCTIONS,
        validation_alias=AliasChoices("instructions", "prompt", "systemPrompt"),
    )
    temperature: float = 0.8
    max_tokens: int = Field(default=150, validation_alias=AliasChoices("max_tokens", "maxTokens"))
    voice: VoiceProfile = Field(
        default_factory=VoiceProfile,
        validation_alias=AliasChoices("voice", "voiceSettings"),
    )
    language: str = "en"
    welcome_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("welcome_message", "welcomeMessage")
    )
    error_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("error_message", "chatbotErrorMessage", "errorMessage"),
    )
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    knowledge_refs: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("knowledge_refs", "vectorStoreIds", "knowledgeRefs"),
    )

    @field_validator("voice", mode="before")
    @classmethod
    def _coerce_voice(cls, value: Any) -> VoiceProfile:
        return VoiceProfile.from_value(value)

    @field_validator("instructions", mode="before")
    @classmethod
    def _default_instructions(cls, value: Any) -> str:
        return value or DEFAULT_INSTRUCTIONS

    @property
    def system_prompt(self) -> str:
        """Instructions shaped by the voice profile."""
        return self.voice.shape_instructions(self.instructions)
