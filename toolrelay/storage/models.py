# toolrelay/storage/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Thread(Base):
    __tablename__ = "threads"

    id = Column(String(64), primary_key=True)
    title = Column(String(256), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    messages = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    __tablename__ = "messages"

    # Integer key keeps insertion order stable when timestamps collide
    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(64), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32))  # system|user|assistant|tool
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    thread = relationship("Thread", back_populates="messages")

    __table_args__ = (
        CheckConstraint("role in ('system','user','assistant','tool')", name="ck_messages_role"),
    )
