from sqlalchemy import Column, Integer, String, DateTime, Text

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class ChatHistoryEntry(Base):
    """Append-only message log. Only `status` changes, via delivery callbacks."""
    __tablename__ = "chat_history"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(64), nullable=False, index=True)
    sender = Column(String(16), nullable=False)  # user, bot, admin, admin_bulk
    message = Column(Text, nullable=False, default="")
    media_url = Column(String(1024), nullable=True)
    provider_message_id = Column(String(64), nullable=True, index=True)
    status = Column(String(16), nullable=True)  # sent, delivered, read, failed
    created_at = Column(DateTime, nullable=False, default=utcnow)
