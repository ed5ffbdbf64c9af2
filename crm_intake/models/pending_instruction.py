from sqlalchemy import BigInteger, Column

from crm_intake.database import Base
from crm_intake.models.chat_session import JSONDocument


class PendingInstructionRow(Base):
    __tablename__ = "pending_instructions"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    payload = Column(JSONDocument, nullable=False)
    expires_at_ms = Column(BigInteger, nullable=False)  # epoch milliseconds
