"""Database models."""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Call(Base):
    """Call metadata model."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    room_name = Column(String, nullable=True)
    agent_id = Column(String, nullable=True, index=True)
    channel = Column(String, default="voice", nullable=False)  # voice, web
    from_number = Column(String, nullable=True)
    to_number = Column(String, nullable=True)
    direction = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(String, default="in_progress", nullable=False)  # in_progress, completed, failed, ...
    transcript = Column(Text, nullable=True)


class Message(Base):
    """
    Conversation log entry.

    Holds one turn per row for call threads (``voice_{CallSid}``) and the
    ``CALL_CONFIG`` records the configuration resolver reads.
    """

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    thread_id = Column(String, index=True, nullable=False)
    role = Column(String, nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False)
    response = Column(Text, nullable=True)
    channel = Column(String, default="voice", nullable=False)
    chatbot_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ConversationSummary(Base):
    """Summary written when a call ends."""

    __tablename__ = "conversation_summaries"

    id = Column(Integer, primary_key=True, index=True)
    thread_id = Column(String, index=True, nullable=False)
    call_sid = Column(String, index=True, nullable=False)
    chatbot_id = Column(String, nullable=True)
    summary = Column(Text, nullable=False)
    turn_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
