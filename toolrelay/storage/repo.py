# toolrelay/storage/repo.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from toolrelay.core.settings import get_settings
from toolrelay.storage.models import Base, Message, Thread


def _prepare_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


settings = get_settings()
_prepare_sqlite_dir(settings.db_url)
engine = create_engine(settings.db_url, echo=False, future=True)
Base.metadata.create_all(engine)


@contextmanager
def session_scope() -> Session:
    with Session(engine, future=True, expire_on_commit=False) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def create_thread(title: Optional[str] = None, thread_id: Optional[str] = None) -> Thread:
    th = Thread(id=thread_id or uuid.uuid4().hex, title=title)
    with session_scope() as s:
        s.add(th)
    return th


def get_thread(thread_id: str) -> Optional[Thread]:
    with session_scope() as s:
        return s.get(Thread, thread_id)


def append_message(thread_id: str, role: str, content: str) -> Message:
    msg = Message(thread_id=thread_id, role=role, content=content)
    with session_scope() as s:
        s.add(msg)
    return msg


def get_thread_messages(thread_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
    """Messages of a thread, oldest first. ``limit`` keeps only the newest N."""
    with session_scope() as s:
        q = s.query(Message).filter(Message.thread_id == thread_id).order_by(Message.id.desc())
        if limit is not None:
            q = q.limit(limit)
        rows = list(reversed(q.all()))
        return [
            {"role": m.role, "content": m.content, "created_at": m.created_at.isoformat() if m.created_at else None}
            for m in rows
        ]
