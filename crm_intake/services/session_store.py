"""Durable per-(chat, user) session storage.

Every event for a session is a read-modify-write of the whole SessionState.
Writers for the same key are serialized through SessionLockManager; different
keys never share a lock.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session as DbSession

from crm_intake.logging_config import get_logger
from crm_intake.models.chat_session import ChatSession
from crm_intake.schemas.session import SessionKey, SessionState, new_session, utc_now

logger = get_logger("session_store")


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class SessionLockManager:
    """Per-key re-entrant locks for one process.

    An entry lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[SessionKey, _LockEntry] = {}

    @contextmanager
    def lock(self, key: SessionKey) -> Iterator[None]:
        """Context manager for session lock."""
        key = SessionKey(*key)
        with self._guard:
            entry = self._locks.setdefault(key, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]


class SessionStore(ABC):
    def __init__(self, locks: Optional[SessionLockManager] = None):
        self.locks = locks or SessionLockManager()

    @abstractmethod
    def get(self, key: SessionKey) -> Optional[SessionState]:
        pass

    @abstractmethod
    def _write(self, session: SessionState) -> None:
        pass

    @abstractmethod
    def delete(self, key: SessionKey) -> None:
        pass

    @abstractmethod
    def find_by_bot_message(self, chat_id: int, message_id: int) -> Optional[SessionState]:
        """Session whose last bot message (the one carrying the keyboard) is message_id."""
        pass

    def lock(self, key: SessionKey):
        return self.locks.lock(key)

    def set(self, key: SessionKey, session: SessionState) -> SessionState:
        session = session.model_copy(
            update={"chat_id": key.chat_id, "user_id": key.user_id, "updated_at": utc_now()}
        )
        with self.lock(key):
            self._write(session)
        return session

    def get_or_create(self, key: SessionKey) -> SessionState:
        with self.lock(key):
            session = self.get(key)
            if session is None:
                logger.info(f"Creating session {key.chat_id}:{key.user_id}")
                session = self.set(key, new_session(key))
            return session

    def update(self, key: SessionKey, **changes: Any) -> SessionState:
        with self.lock(key):
            session = self.get_or_create(key)
            return self.set(key, session.model_copy(update=changes))

    def reset(self, key: SessionKey) -> SessionState:
        """Back to idle with an empty queue. Keeps the cached schema and created_at."""
        with self.lock(key):
            previous = self.get(key)
            fresh = new_session(key)
            if previous is not None:
                fresh = fresh.model_copy(
                    update={"schema_cache": previous.schema_cache, "created_at": previous.created_at}
                )
            return self.set(key, fresh)


class InMemorySessionStore(SessionStore):
    """Keeps serialized sessions in a dict; readers never share objects with writers."""

    def __init__(self, locks: Optional[SessionLockManager] = None):
        super().__init__(locks)
        self._data: dict[SessionKey, str] = {}

    def get(self, key: SessionKey) -> Optional[SessionState]:
        raw = self._data.get(SessionKey(*key))
        return SessionState.model_validate_json(raw) if raw else None

    def _write(self, session: SessionState) -> None:
        self._data[session.key] = session.model_dump_json()

    def delete(self, key: SessionKey) -> None:
        with self.lock(key):
            self._data.pop(SessionKey(*key), None)

    def find_by_bot_message(self, chat_id: int, message_id: int) -> Optional[SessionState]:
        for key in list(self._data):
            if key.chat_id != chat_id:
                continue
            session = self.get(key)
            if session and session.last_bot_message_id == message_id:
                return session
        return None


class SqlSessionStore(SessionStore):
    """chat_sessions table, one row per (chat_id, user_id) with the session as JSON."""

    def __init__(self, session_factory: Callable[[], DbSession], locks: Optional[SessionLockManager] = None):
        super().__init__(locks)
        self._session_factory = session_factory

    def get(self, key: SessionKey) -> Optional[SessionState]:
        with self._session_factory() as db:
            row = db.get(ChatSession, (key.chat_id, key.user_id))
            return self._to_state(row) if row else None

    def _write(self, session: SessionState) -> None:
        with self._session_factory() as db:
            row = (
                db.query(ChatSession)
                .filter(ChatSession.chat_id == session.chat_id, ChatSession.user_id == session.user_id)
                .with_for_update()
                .first()
            )
            if row is None:
                row = ChatSession(chat_id=session.chat_id, user_id=session.user_id, created_at=session.created_at)
                db.add(row)
            row.state = session.state_type
            row.data = session.model_dump(mode="json")
            row.last_bot_message_id = session.last_bot_message_id
            row.updated_at = session.updated_at
            db.commit()

    def delete(self, key: SessionKey) -> None:
        with self.lock(key), self._session_factory() as db:
            db.query(ChatSession).filter(
                ChatSession.chat_id == key.chat_id, ChatSession.user_id == key.user_id
            ).delete()
            db.commit()

    def find_by_bot_message(self, chat_id: int, message_id: int) -> Optional[SessionState]:
        with self._session_factory() as db:
            row = (
                db.query(ChatSession)
                .filter(ChatSession.chat_id == chat_id, ChatSession.last_bot_message_id == message_id)
                .first()
            )
            return self._to_state(row) if row else None

    @staticmethod
    def _to_state(row: ChatSession) -> SessionState:
        return SessionState.model_validate(row.data)
