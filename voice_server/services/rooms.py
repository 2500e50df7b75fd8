"""Real-time media rooms and participant access tokens (LiveKit)."""
import logging
from datetime import timedelta
from typing import Optional

from livekit import api

from voice_server.core.config import Settings
from voice_server.core.errors import RoomCreationError

logger = logging.getLogger(__name__)


class RoomService:
    """Creates rooms and mints per-participant access tokens."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.livekit_url and s.livekit_api_key and s.livekit_api_secret)

    async def create_room(self, room_name: str) -> str:
        """
        Create ``room_name`` on the media server.

        Without LiveKit credentials the room only exists inside this service.

        Raises:
            RoomCreationError: If the media server rejects or cannot be reached
        """
        if not self.configured:
            logger.debug(f"[ROOMS] LiveKit not configured, using local room {room_name}")
            return room_name

        lkapi = api.LiveKitAPI(
            self.settings.livekit_url,
            self.settings.livekit_api_key,
            self.settings.livekit_api_secret,
        )
        try:
            room = await lkapi.room.create_room(
                api.CreateRoomRequest(
                    name=room_name,
                    empty_timeout=self.settings.room_empty_timeout,
                )
            )
            logger.info(f"[ROOMS] Created room {room.name}")
            return room.name
        except Exception as e:
            logger.error(f"[ROOMS] Failed to create room {room_name}: {str(e)}")
            raise RoomCreationError(f"Could not create room {room_name}: {str(e)}", room_name) from e
        finally:
            await lkapi.aclose()

    def issue_token(
        self,
        room_name: str,
        identity: str,
        name: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """Signed join grant for ``identity`` with publish and subscribe rights."""
        if not self.configured:
            return None
        ttl = ttl_seconds or self.settings.token_ttl_seconds
        token = (
            api.AccessToken(self.settings.livekit_api_key, self.settings.livekit_api_secret)
            .with_identity(identity)
            .with_name(name or identity)
            .with_grants(
                api.VideoGrants(
                    room_join=True,
                    room=room_name,
                    can_publish=True,
                    can_subscribe=True,
                )
            )
            .with_ttl(timedelta(seconds=ttl))
        )
        return token.to_jwt()
