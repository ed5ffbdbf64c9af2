from sqlalchemy import JSON, BigInteger, Column, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB

from crm_intake.database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    chat_id = Column(BigInteger, primary_key=True, autoincrement=False)
    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    state = Column(Text, nullable=False, default="idle")  # mirrors data["state"]["type"]
    data = Column(JSONDocument, nullable=False, default=dict)
    last_bot_message_id = Column(BigInteger, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
