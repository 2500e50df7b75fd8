"""Registry of active call sessions."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from voice_server.services.call_session.models import CallSession

logger = logging.getLogger(__name__)


class SessionHandle(Protocol):
    """What the registry stores: the owner of a session and its teardown."""

    session: CallSession

    async def close(self, reason: str = "hangup") -> None: ...


class SessionRegistry:
    """
    Concurrency-safe map of session id to session handle.

    Mutations go through an asyncio lock; lookups are plain dict reads, so a
    lookup racing with removal sees either the live handle or ``None``.
    """

    def __init__(
        self,
        idle_timeout: float = 300.0,
        max_duration: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self.max_duration = max_duration
        self.clock = clock
        self._handles: Dict[str, SessionHandle] = {}
        self._lock = asyncio.Lock()
        self._creation_locks: Dict[str, asyncio.Lock] = {}
        # Callers holding or waiting on each creation lock
        self._creation_users: Dict[str, int] = {}

    async def add(self, handle: SessionHandle) -> bool:
        """Register a handle. Returns False if the id is already taken."""
        session_id = handle.session.session_id
        async with self._lock:
            if session_id in self._handles:
                return False
            self._handles[session_id] = handle
        logger.info(f"[REGISTRY] Added session {session_id} ({len(self._handles)} active)")
        return True

    def get(self, session_id: str) -> Optional[SessionHandle]:
        return self._handles.get(session_id)

    def contains(self, session_id: str) -> bool:
        return session_id in self._handles

    async def get_or_create(
        self,
        session_id: str,
        factory: Callable[[], Awaitable[SessionHandle]],
    ) -> Tuple[SessionHandle, bool]:
        """
        Return the existing handle for ``session_id`` or build one.

        Concurrent callers for the same id are serialized so the factory runs
        at most once; callers for other ids are not blocked.

        Returns:
            (handle, created)
        """
        existing = self.get(session_id)
        if existing is not None:
            return existing, False

        async with self._lock:
            creation_lock = self._creation_locks.setdefault(session_id, asyncio.Lock())
            self._creation_users[session_id] = self._creation_users.get(session_id, 0) + 1

        try:
            async with creation_lock:
                existing = self.get(session_id)
                if existing is not None:
                    return existing, False
                handle = await factory()
                await self.add(handle)
                return handle, True
        finally:
            async with self._lock:
                remaining = self._creation_users[session_id] - 1
                if remaining:
                    self._creation_users[session_id] = remaining
                else:
                    del self._creation_users[session_id]
                    self._creation_locks.pop(session_id, None)

    async def remove(self, session_id: str) -> Optional[SessionHandle]:
        async with self._lock:
            handle = self._handles.pop(session_id, None)
        if handle is not None:
            logger.info(
                f"[REGISTRY] Removed session {session_id} ({len(self._handles)} active)"
            )
        return handle

    def list(self) -> List[SessionHandle]:
        return list(self._handles.values())

    def count(self) -> int:
        return len(self._handles)

    def expired(self, now: Optional[float] = None) -> List[Tuple[SessionHandle, str]]:
        """Sessions past the idle threshold or the hard duration cap."""
        now = self.clock() if now is None else now
        expired = []
        for handle in self.list():
            session = handle.session
            if now - session.started_at >= self.max_duration:
                expired.append((handle, "max_duration"))
            elif now - session.last_activity >= self.idle_timeout:
                expired.append((handle, "idle_timeout"))
        return expired

    async def sweep(self, now: Optional[float] = None) -> int:
        """Close expired sessions through their normal teardown. Returns the count."""
        expired = self.expired(now)
        for handle, reason in expired:
            logger.info(
                f"[REGISTRY] Sweeping session {handle.session.session_id} - Reason: {reason}"
            )
            try:
                await handle.close(reason)
            except Exception as e:
                logger.error(
                    f"[REGISTRY] Error closing swept session {handle.session.session_id}: "
                    f"{type(e).__name__}: {str(e)}",
                    exc_info=True,
                )
            # close() normally removes the entry; make sure it is gone either way
            await self.remove(handle.session.session_id)
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep forever every ``interval`` seconds."""
        while True:
            await asyncio.sleep(interval)
            await self.sweep()

    async def close_all(self, reason: str = "shutdown") -> None:
        for handle in self.list():
            try:
                await handle.close(reason)
            except Exception as e:
                logger.error(
                    f"[REGISTRY] Error closing session {handle.session.session_id}: {str(e)}",
                    exc_info=True,
                )
            await self.remove(handle.session.session_id)
