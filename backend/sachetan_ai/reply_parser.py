"""
Pure parsing of LLM replies. No I/O, no session access.

The model may embed two kinds of control data in an otherwise natural
language reply:

    [MEDIA:https://...]                    image to send alongside the text
    <order_state>{"quantity": 500}</order_state>   order-context update

Both are treated as untrusted. A state block that is malformed, not a JSON
object, or fails schema validation yields `None` (fail closed), so the
caller keeps its prior context untouched. Blocks are always stripped from
the display text, valid or not.
"""

import json
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

MEDIA_MARKER = re.compile(r"\[MEDIA:\s*(https?://[^\]\s]+)\s*\]", re.IGNORECASE)
STATE_BLOCK = re.compile(r"<order_state>(.*?)</order_state>", re.IGNORECASE | re.DOTALL)
UNTERMINATED_STATE_BLOCK = re.compile(r"<order_state>.*\Z", re.IGNORECASE | re.DOTALL)
CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class OrderStateUpdate(BaseModel):
    """Fields the model is allowed to set in the order context."""

    model_config = ConfigDict(extra="ignore")

    product: Optional[str] = Field(default=None, max_length=100)
    category: Optional[str] = Field(default=None, max_length=100)
    size: Optional[str] = Field(default=None, max_length=50)
    quantity: Optional[int] = Field(default=None, ge=0)
    paper: Optional[str] = Field(default=None, max_length=100)
    gsm: Optional[int] = Field(default=None, ge=0)
    printing: Optional[str] = Field(default=None, max_length=100)
    design_ready: Optional[bool] = None
    quoted_rate: Optional[float] = Field(default=None, ge=0)
    quotation_ready: Optional[bool] = None

    @field_validator("product", "category", "size", "paper", "printing")
    @classmethod
    def strip_strings(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


def _tidy(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_media_markers(text: str) -> Tuple[str, List[str]]:
    """Return (text without markers, marker URLs in order of appearance, deduplicated)."""
    urls: List[str] = []
    for url in MEDIA_MARKER.findall(text or ""):
        if url not in urls:
            urls.append(url)
    return _tidy(MEDIA_MARKER.sub("", text or "")), urls


def extract_state_block(text: str) -> Tuple[str, Optional[dict]]:
    """
    Return (display text, validated update dict or None).

    When several blocks are present the last one wins. Only fields that were
    actually set are returned.
    """
    text = text or ""
    blocks = STATE_BLOCK.findall(text)
    clean = STATE_BLOCK.sub("", text)
    clean = UNTERMINATED_STATE_BLOCK.sub("", clean)
    clean = _tidy(clean)

    if not blocks:
        return clean, None

    raw = CODE_FENCE.sub("", blocks[-1].strip())
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return clean, None
    if not isinstance(payload, dict):
        return clean, None

    try:
        update = OrderStateUpdate.model_validate(payload)
    except ValidationError:
        return clean, None
    return clean, update.model_dump(exclude_none=True)


def parse_reply(text: str) -> Tuple[str, Optional[dict], List[str]]:
    """Strip both kinds of control data. Returns (display text, state update, media urls)."""
    clean, update = extract_state_block(text)
    clean, urls = extract_media_markers(clean)
    return clean, update, urls
