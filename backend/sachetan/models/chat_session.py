"""
Chat session model: durable per-phone conversation state.

One row per WhatsApp number. The stage drives the conversation engine;
`context` is a JSON document serialized as text (order drafts, pending lead
fields, option lists shown to the user, last quoted rate, ...).
"""
from sqlalchemy import Column, Integer, String, DateTime, Text

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class ChatSession(Base):
    """
    Schema:
        phone: WhatsApp sender id, e.g. "whatsapp:+9198xxxxxxx" (unique)
        stage: Current conversation stage, never null ("menu" by default)
        previous_stage: Stage to resume after an interrupt is declined
        user_type: Customer classification used for MOQ/GST and RAG filtering
        context: JSON text, opaque to the database
        last_message_at: Refreshed on every save

    Lifecycle:
        1. Created on first inbound message
        2. Updated at the end of every turn
        3. Never deleted; reset (context cleared, stage=menu) on greetings
    """
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(64), unique=True, nullable=False, index=True)
    stage = Column(String(64), nullable=False, default="menu")
    previous_stage = Column(String(64), nullable=True)
    user_type = Column(String(64), nullable=True)
    context = Column(Text, nullable=False, default="{}")
    last_message_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<ChatSession phone={self.phone} stage={self.stage}>"
