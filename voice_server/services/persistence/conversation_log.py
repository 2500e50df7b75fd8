"""Conversation log sink and call configuration records."""
import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from voice_server.db.models import ConversationSummary, Message
from voice_server.services.call_session.models import CallSession, Turn
from voice_server.services.persistence.calls import CallPersistenceService

logger = logging.getLogger(__name__)

CALL_CONFIG_MARKER = "CALL_CONFIG"


def call_config_thread(call_sid: str) -> str:
    return f"call-config-{call_sid}"


def agent_config_thread(agent_id: str) -> str:
    return f"agent-config-{agent_id}"


class ConversationLog:
    """
    Append-only store for turns, call records and summaries.

    Write failures are logged and swallowed: persistence must never break a
    live call. Writes are serialized so turns land in the order they were
    spoken.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory
        self._write_lock = asyncio.Lock()

    async def record_call(self, session: CallSession, agent_id: Optional[str] = None) -> None:
        try:
            async with self._write_lock, self.session_factory() as db:
                await CallPersistenceService(db).create_call(
                    session.call_sid,
                    room_name=session.room_name,
                    agent_id=agent_id,
                    channel=session.channel,
                    from_number=session.from_number,
                    to_number=session.to_number,
                    direction=session.direction,
                )
        except Exception as e:
            logger.error(f"[PERSISTENCE] Failed to record call {session.call_sid}: {str(e)}")

    async def append_turn(
        self, session: CallSession, turn: Turn, user_id: Optional[str] = None
    ) -> None:
        try:
            async with self._write_lock, self.session_factory() as db:
                db.add(
                    Message(
                        thread_id=session.thread_id,
                        role=turn.role,
                        content=turn.text,
                        channel=session.channel,
                        chatbot_id=session.config.agent_id if session.config else None,
                        user_id=user_id,
                        meta={"modality": turn.modality, "call_sid": session.call_sid},
                        created_at=turn.timestamp.replace(tzinfo=None),
                    )
                )
                await db.commit()
        except Exception as e:
            logger.error(f"[PERSISTENCE] Failed to log turn for {session.call_sid}: {str(e)}")

    async def finalize_call(
        self, session: CallSession, status: str, summary: Optional[str] = None
    ) -> None:
        """Write the end status, transcript and optional summary of a call."""
        try:
            async with self._write_lock, self.session_factory() as db:
                calls = CallPersistenceService(db)
                await calls.update_call_status(session.call_sid, status, datetime.utcnow())
                if session.history:
                    await calls.update_call_transcript(session.call_sid, session.transcript_text())
                if summary:
                    db.add(
                        ConversationSummary(
                            thread_id=session.thread_id,
                            call_sid=session.call_sid,
                            chatbot_id=session.config.agent_id if session.config else None,
                            summary=summary,
                            turn_count=len(session.history),
                        )
                    )
                    await db.commit()
            logger.info(f"[PERSISTENCE] Finalized call {session.call_sid} - Status: {status}")
        except Exception as e:
            logger.error(f"[PERSISTENCE] Failed to finalize call {session.call_sid}: {str(e)}")

    async def get_thread(self, thread_id: str) -> List[Message]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Message).where(Message.thread_id == thread_id).order_by(Message.id)
            )
            return list(result.scalars().all())

    async def latest_config(self, thread_id: str) -> Optional[Dict[str, Any]]:
        """Most recent ``CALL_CONFIG`` payload stored under ``thread_id``."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Message)
                .where(Message.thread_id == thread_id, Message.content == CALL_CONFIG_MARKER)
                .order_by(Message.id.desc())
                .limit(1)
            )
            record = result.scalar_one_or_none()
        if record is None or not record.response:
            return None
        try:
            return json.loads(record.response)
        except json.JSONDecodeError:
            logger.warning(f"[PERSISTENCE] Unreadable config record in {thread_id}")
            return None

    async def store_config(self, thread_id: str, payload: Dict[str, Any]) -> None:
        async with self._write_lock, self.session_factory() as db:
            db.add(
                Message(
                    thread_id=thread_id,
                    role="system",
                    content=CALL_CONFIG_MARKER,
                    response=json.dumps(payload),
                    channel="voice",
                    chatbot_id=payload.get("agentId") or payload.get("agent_id"),
                )
            )
            await db.commit()
