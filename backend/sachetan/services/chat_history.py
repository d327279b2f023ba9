"""Append-only chat history with delivery-status updates."""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sachetan.models.chat_history import ChatHistoryEntry

logger = logging.getLogger(__name__)

SENDERS = ("user", "bot", "admin", "admin_bulk")
DELIVERY_STATUSES = ("queued", "sent", "delivered", "read", "failed", "undelivered")


class ChatHistory:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def record(
        self,
        phone: str,
        sender: str,
        message: str,
        media_url: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        """Write one log row. Logging must never break a conversation turn."""
        if sender not in SENDERS:
            raise ValueError(f"Unknown sender: {sender}")
        db = self._session_factory()
        try:
            db.add(ChatHistoryEntry(
                phone=phone,
                sender=sender,
                message=message or "",
                media_url=media_url,
                provider_message_id=provider_message_id,
                status=status,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[ChatHistory] Failed to log {sender} message for {phone}: {e}")
        finally:
            db.close()

    def update_status(self, provider_message_id: str, status: str) -> int:
        """Delivery callback. Returns the number of rows updated."""
        if not provider_message_id:
            return 0
        db = self._session_factory()
        try:
            updated = (
                db.query(ChatHistoryEntry)
                .filter(ChatHistoryEntry.provider_message_id == provider_message_id)
                .update({ChatHistoryEntry.status: status}, synchronize_session=False)
            )
            db.commit()
            return updated
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[ChatHistory] Status update failed for {provider_message_id}: {e}")
            return 0
        finally:
            db.close()

    def recent(self, phone: str, limit: int = 50) -> List[ChatHistoryEntry]:
        db = self._session_factory()
        try:
            rows = (
                db.query(ChatHistoryEntry)
                .filter(ChatHistoryEntry.phone == phone)
                .order_by(ChatHistoryEntry.id.desc())
                .limit(limit)
                .all()
            )
            for row in rows:
                db.expunge(row)
            return list(reversed(rows))
        finally:
            db.close()
