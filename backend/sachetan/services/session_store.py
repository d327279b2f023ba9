"""
Session store: durable per-phone conversation state.

Backed by the `chat_sessions` table, with an in-memory cache owned by the
store instance (not a module global). Callers always receive copies, so a
handler can mutate a session freely and only `save` makes changes visible.

Concurrency: turns for the same phone are not serialized. Saves are
last-write-wins, which is acceptable for WhatsApp's rarely-concurrent,
at-least-once delivery.
"""
import copy
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from sachetan.agent.conversation_state import Stage
from sachetan.core.exceptions import PersistenceError
from sachetan.core.timeutils import utcnow
from sachetan.models.chat_session import ChatSession

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class SessionState:
    phone: str
    stage: str = Stage.MENU
    previous_stage: Optional[str] = None
    user_type: Optional[str] = None
    context: dict = field(default_factory=dict)
    last_message_at: Optional[datetime] = None

    @property
    def is_manual(self) -> bool:
        return self.stage == Stage.MANUAL

    def copy(self) -> "SessionState":
        return copy.deepcopy(self)


def _json_default(obj):
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def serialize_context(context: dict) -> str:
    return json.dumps(context or {}, ensure_ascii=False, default=_json_default)


def deserialize_context(raw: Optional[str], phone: str = "") -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"[SessionStore] Corrupted context for {phone}, starting fresh")
        return {}
    return data if isinstance(data, dict) else {}


def _to_state(record: ChatSession) -> SessionState:
    return SessionState(
        phone=record.phone,
        stage=record.stage or Stage.MENU,
        previous_stage=record.previous_stage,
        user_type=record.user_type,
        context=deserialize_context(record.context, record.phone),
        last_message_at=record.last_message_at,
    )


class SessionStore:
    def __init__(self, session_factory, use_cache: bool = True):
        self._session_factory = session_factory
        self._use_cache = use_cache
        self._cache: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def _cache_put(self, state: SessionState) -> None:
        if self._use_cache:
            with self._lock:
                self._cache[state.phone] = state.copy()

    def _cache_get(self, phone: str) -> Optional[SessionState]:
        if not self._use_cache:
            return None
        with self._lock:
            cached = self._cache.get(phone)
            return cached.copy() if cached else None

    def invalidate(self, phone: str) -> None:
        with self._lock:
            self._cache.pop(phone, None)

    def load(self, phone: str) -> SessionState:
        """Return the session for `phone`, creating a default row if absent."""
        cached = self._cache_get(phone)
        if cached is not None:
            return cached

        db = self._session_factory()
        try:
            record = db.query(ChatSession).filter(ChatSession.phone == phone).first()
            if record is None:
                record = ChatSession(phone=phone, stage=Stage.MENU, context="{}", last_message_at=utcnow())
                db.add(record)
                db.commit()
                db.refresh(record)
                logger.info(f"[SessionStore] New session for {phone}")
            state = _to_state(record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[SessionStore] Load failed for {phone}: {e}")
            raise PersistenceError(f"Session load failed: {e}") from e
        finally:
            db.close()

        self._cache_put(state)
        return state.copy()

    def save(
        self,
        phone: str,
        stage=_UNSET,
        previous_stage=_UNSET,
        user_type=_UNSET,
        context=_UNSET,
    ) -> SessionState:
        """
        Upsert the given fields. Omitted fields keep their stored value.
        `last_message_at` is refreshed on every call.
        """
        db = self._session_factory()
        try:
            record = db.query(ChatSession).filter(ChatSession.phone == phone).first()
            if record is None:
                record = ChatSession(phone=phone, stage=Stage.MENU, context="{}")
                db.add(record)

            if stage is not _UNSET:
                record.stage = stage or Stage.MENU
            if previous_stage is not _UNSET:
                record.previous_stage = previous_stage
            if user_type is not _UNSET:
                record.user_type = user_type
            if context is not _UNSET:
                record.context = serialize_context(context)
            record.last_message_at = utcnow()

            db.commit()
            db.refresh(record)
            state = _to_state(record)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            db.rollback()
            logger.error(f"[SessionStore] Save failed for {phone}: {e}")
            raise PersistenceError(f"Session save failed: {e}") from e
        finally:
            db.close()

        self._cache_put(state)
        logger.debug(f"[SessionStore] phone={phone} stage={state.stage}")
        return state.copy()

    def save_state(self, state: SessionState) -> SessionState:
        """Persist every field of a working copy."""
        return self.save(
            state.phone,
            stage=state.stage,
            previous_stage=state.previous_stage,
            user_type=state.user_type,
            context=state.context,
        )

    def touch(self, phone: str) -> SessionState:
        return self.save(phone)

    def is_manual(self, phone: str) -> bool:
        return self.load(phone).is_manual

    def set_manual(self, phone: str, enabled: bool) -> SessionState:
        """Admin takeover (stage=manual) or release (back to a clean menu)."""
        if enabled:
            current = self.load(phone)
            previous = current.previous_stage if current.is_manual else current.stage
            return self.save(phone, stage=Stage.MANUAL, previous_stage=previous)
        return self.save(phone, stage=Stage.MENU, previous_stage=None, context={})

    def inactive_since(self, cutoff: datetime, limit: int = 20) -> List[SessionState]:
        """Sessions stuck mid-flow since before `cutoff`, oldest first (read only)."""
        db = self._session_factory()
        try:
            records = (
                db.query(ChatSession)
                .filter(ChatSession.last_message_at < cutoff)
                .filter(ChatSession.stage.notin_((Stage.MANUAL, Stage.MENU)))
                .order_by(ChatSession.last_message_at.asc())
                .limit(limit)
                .all()
            )
            return [_to_state(record) for record in records]
        finally:
            db.close()
