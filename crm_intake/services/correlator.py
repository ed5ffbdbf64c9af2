"""Pairs a typed instruction with the forward that follows it.

Telegram does not guarantee that an instruction sent just before a forward is
delivered first, or that both arrive within the window. This is a best-effort
heuristic: an instruction that misses the window is simply not paired and the
user can still run /done <instruction>.
"""

from datetime import datetime, timezone
from typing import Optional

from crm_intake.logging_config import get_logger
from crm_intake.schemas.session import CallerInfo, PendingInstruction, SessionKey
from crm_intake.services.pending_store import PendingInstructionStore

logger = get_logger("correlator")


class Correlator:
    def __init__(self, pending: PendingInstructionStore):
        self.pending = pending

    @property
    def window_ms(self) -> int:
        return self.pending.ttl_ms

    def remember_instruction(
        self,
        key: SessionKey,
        text: str,
        message_id: int,
        caller: Optional[CallerInfo] = None,
    ) -> PendingInstruction:
        created_at = datetime.fromtimestamp(self.pending.now_ms() / 1000, timezone.utc)
        instruction = PendingInstruction(
            text=text,
            message_id=message_id,
            caller_info=caller or CallerInfo(),
            created_at=created_at,
        )
        self.pending.put(key, instruction)
        logger.debug(f"Pending instruction stored for {key[0]}:{key[1]} ({self.window_ms} ms)")
        return instruction

    def claim(self, key: SessionKey) -> Optional[PendingInstruction]:
        """Consume the live instruction for key, if any. Expired entries are dropped."""
        instruction = self.pending.take(key)
        if instruction is not None:
            logger.info(
                f"Forward paired with instruction for {key[0]}:{key[1]}",
                extra={"context": {"instruction_message_id": instruction.message_id}},
            )
        return instruction
