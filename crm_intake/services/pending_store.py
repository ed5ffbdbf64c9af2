"""Short-lived pending instructions, kept apart from sessions.

Each entry carries an explicit expiry in epoch milliseconds which is checked on
read; nothing runs in the background to clear them.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy.orm import Session as DbSession

from crm_intake.config import settings
from crm_intake.logging_config import get_logger
from crm_intake.models.pending_instruction import PendingInstructionRow
from crm_intake.schemas.session import PendingInstruction, SessionKey

logger = get_logger("pending_store")

Clock = Callable[[], float]  # epoch seconds


class PendingInstructionStore(ABC):
    def __init__(self, ttl_ms: Optional[int] = None, clock: Clock = time.time):
        self.ttl_ms = settings.pending_instruction_ttl_ms if ttl_ms is None else ttl_ms
        self.clock = clock

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def is_live(self, expires_at_ms: int) -> bool:
        return self.now_ms() < expires_at_ms

    @abstractmethod
    def put(self, key: SessionKey, instruction: PendingInstruction) -> None:
        """Store (or replace) the instruction for key with a fresh TTL."""

    @abstractmethod
    def take(self, key: SessionKey) -> Optional[PendingInstruction]:
        """Atomically read and delete. Returns None when absent or expired."""

    @abstractmethod
    def peek(self, key: SessionKey) -> Optional[PendingInstruction]:
        pass


class InMemoryPendingStore(PendingInstructionStore):
    def __init__(self, ttl_ms: Optional[int] = None, clock: Clock = time.time):
        super().__init__(ttl_ms, clock)
        self._lock = threading.Lock()
        self._entries: dict[SessionKey, tuple[str, int]] = {}

    def put(self, key: SessionKey, instruction: PendingInstruction) -> None:
        with self._lock:
            self._entries[SessionKey(*key)] = (instruction.model_dump_json(), self.now_ms() + self.ttl_ms)

    def take(self, key: SessionKey) -> Optional[PendingInstruction]:
        with self._lock:
            entry = self._entries.pop(SessionKey(*key), None)
        if entry is None:
            return None
        raw, expires_at_ms = entry
        if not self.is_live(expires_at_ms):
            logger.debug(f"Pending instruction for {key[0]}:{key[1]} expired")
            return None
        return PendingInstruction.model_validate_json(raw)

    def peek(self, key: SessionKey) -> Optional[PendingInstruction]:
        entry = self._entries.get(SessionKey(*key))
        if entry is None or not self.is_live(entry[1]):
            return None
        return PendingInstruction.model_validate_json(entry[0])


class SqlPendingStore(PendingInstructionStore):
    def __init__(
        self,
        session_factory: Callable[[], DbSession],
        ttl_ms: Optional[int] = None,
        clock: Clock = time.time,
    ):
        super().__init__(ttl_ms, clock)
        self._session_factory = session_factory

    def _query(self, db: DbSession, key: SessionKey):
        return db.query(PendingInstructionRow).filter(
            PendingInstructionRow.chat_id == key[0], PendingInstructionRow.user_id == key[1]
        )

    def put(self, key: SessionKey, instruction: PendingInstruction) -> None:
        with self._session_factory() as db:
            row = self._query(db, key).with_for_update().first()
            if row is None:
                row = PendingInstructionRow(chat_id=key[0], user_id=key[1])
                db.add(row)
            row.payload = instruction.model_dump(mode="json")
            row.expires_at_ms = self.now_ms() + self.ttl_ms
            db.commit()

    def take(self, key: SessionKey) -> Optional[PendingInstruction]:
        with self._session_factory() as db:
            row = self._query(db, key).with_for_update().first()
            if row is None:
                return None
            payload, expires_at_ms = row.payload, row.expires_at_ms
            db.delete(row)
            db.commit()
        if not self.is_live(expires_at_ms):
            logger.debug(f"Pending instruction for {key[0]}:{key[1]} expired")
            return None
        return PendingInstruction.model_validate(payload)

    def peek(self, key: SessionKey) -> Optional[PendingInstruction]:
        with self._session_factory() as db:
            row = self._query(db, key).first()
            if row is None or not self.is_live(row.expires_at_ms):
                return None
            return PendingInstruction.model_validate(row.payload)
