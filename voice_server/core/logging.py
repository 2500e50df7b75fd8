"""Logging configuration."""
import logging
import sys

from voice_server.core.config import settings


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    for name in ("httpx", "openai", "twilio", "livekit"):
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)
