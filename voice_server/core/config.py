"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Vendors
    openai_api_key: Optional[str] = None
    google_ai_api_key: Optional[str] = None
    default_vendor: str = "openai"  # openai or google

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    validate_twilio_signature: bool = False

    # LiveKit
    livekit_url: Optional[str] = None
    livekit_api_key: Optional[str] = None
    livekit_api_secret: Optional[str] = None
    token_ttl_seconds: int = 3600
    room_empty_timeout: int = 300

    # Database
    database_url: str = "sqlite+aiosqlite:///./voice_server.db"

    # Public URLs (e.g. an ngrok tunnel in development)
    base_url: Optional[str] = None
    public_ws_url: Optional[str] = None

    # Configuration owner
    config_api_url: Optional[str] = None
    internal_api_key: Optional[str] = None
    config_request_timeout: float = 5.0

    # Turn-taking and playback (seconds)
    silence_timeout: float = 1.5
    cooldown_base: float = 2.0
    cooldown_divisor: float = 5.0
    cooldown_max_extra: float = 2.0
    provider_timeout: float = 30.0
    playback_frame_ms: int = 20
    playback_frame_delay: float = 0.02

    # Limits
    history_window: int = 10
    max_malformed_frames: int = 5
    session_idle_timeout: float = 300.0
    session_max_duration: float = 3600.0
    sweep_interval: float = 15.0
    audio_cache_ttl: float = 30.0

    # Scripted speech
    hold_announcement: str = "Please hold while we connect you."
    apology_message: str = (
        "I apologize, but I'm having trouble processing your request right now. "
        "Could you please say that again?"
    )
    generic_failure_message: str = (
        "Sorry, we're unable to take your call right now. Please try again later. Goodbye."
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
