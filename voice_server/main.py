"""Main FastAPI application."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from voice_server.api import call_config, health, media, rooms, speech
from voice_server.api.webhooks import voice
from voice_server.core.config import settings
from voice_server.core.logging import setup_logging
from voice_server.core.runtime import VoiceRuntime, build_runtime
from voice_server.db.database import AsyncSessionLocal, init_db


def create_app(runtime: Optional[VoiceRuntime] = None) -> FastAPI:
    """Build the application, optionally around an already wired runtime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        setup_logging()
        if getattr(app.state, "runtime", None) is None:
            await init_db()
            app.state.runtime = build_runtime(settings, AsyncSessionLocal)
        app.state.runtime.start()
        yield
        # Shutdown
        await app.state.runtime.shutdown()

    app = FastAPI(
        title="Voice Server",
        description="Real-time voice call bridge between telephony and conversational AI",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    app.include_router(health.router, tags=["health"])
    app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(media.router, tags=["media"])
    app.include_router(rooms.router, tags=["rooms"])
    app.include_router(speech.router, tags=["speech"])
    app.include_router(call_config.router, tags=["call-config"])
    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "voice_server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
