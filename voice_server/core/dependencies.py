"""FastAPI dependencies."""
from fastapi import Request
from starlette.requests import HTTPConnection

from voice_server.core.runtime import VoiceRuntime


def get_runtime(connection: HTTPConnection) -> VoiceRuntime:
    """Get the runtime the application was built with."""
    return connection.app.state.runtime


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL if set (e.g. an ngrok tunnel), otherwise the request's own.
    """
    runtime = get_runtime(request)
    if runtime.settings.base_url:
        return runtime.settings.base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


def get_stream_url(request: Request) -> str:
    """wss:// URL Twilio should open the media stream against."""
    runtime = get_runtime(request)
    if runtime.settings.public_ws_url:
        return runtime.settings.public_ws_url.rstrip("/")
    base_url = get_base_url(request)
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}/media-stream"
