"""
Per-turn values passed to stage handlers.

A Turn wraps the inbound message, its classification and a working copy of
the session. Handlers mutate `turn.session` freely; the engine decides at
the end of the turn whether the copy is persisted.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, TypeVar

from sachetan.agent.conversation_state import Classified
from sachetan.core.exceptions import ValidationError
from sachetan.services.session_store import SessionState

T = TypeVar("T")

INVALID_SELECTION = "❌ Invalid selection."


@dataclass
class InboundMessage:
    phone: str
    body: str = ""
    media: List[Tuple[str, Optional[str]]] = field(default_factory=list)  # (url, content type)
    message_sid: Optional[str] = None

    @property
    def has_media(self) -> bool:
        return bool(self.media)

    @property
    def has_text(self) -> bool:
        return bool((self.body or "").strip())


@dataclass
class Turn:
    message: InboundMessage
    session: SessionState
    classified: Classified

    @property
    def phone(self) -> str:
        return self.session.phone

    @property
    def text(self) -> str:
        """Raw body, stripped but not lower-cased."""
        return (self.message.body or "").strip()

    @property
    def ctx(self) -> dict:
        return self.session.context

    def goto(self, stage: str) -> None:
        self.session.stage = stage


def numbered(lines: Sequence[str]) -> str:
    return "\n".join(f"{index}. {line}" for index, line in enumerate(lines, start=1))


def pick(number: Optional[int], options: Sequence[T], prompt: str) -> T:
    """
    1-based selection from `options`.

    Raises:
        ValidationError: carrying the same prompt so the user sees the options again
    """
    if number is None or not 1 <= number <= len(options):
        raise ValidationError(
            f"Selection {number!r} outside 1..{len(options)}",
            user_message=f"{INVALID_SELECTION} Please reply with a number from 1 to {len(options)}.\n\n{prompt}",
        )
    return options[number - 1]


def require_text(value: str, field_name: str, prompt: str, max_length: int = 200) -> str:
    value = " ".join((value or "").split())
    if not value or len(value) > max_length:
        raise ValidationError(f"Invalid {field_name}", user_message=f"❌ {prompt}")
    return value
