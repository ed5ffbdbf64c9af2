from crm_intake.models.chat_session import ChatSession
from crm_intake.models.pending_instruction import PendingInstructionRow

__all__ = ["ChatSession", "PendingInstructionRow"]
