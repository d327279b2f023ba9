"""Sentence-based text chunking for uploaded knowledge files."""

import re
from typing import List

MAX_CHUNK_CHARS = 1000

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+|\n{2,}")


def chunk_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """
    Group whole sentences into chunks of at most `max_chars`.

    A single sentence longer than `max_chars` is hard-split on whitespace
    (or mid-word as a last resort) so no chunk exceeds the limit.
    """
    sentences = [s.strip() for s in _SENTENCE_END.split(text or "") if s and s.strip()]
    chunks: List[str] = []
    current = ""

    for sentence in sentences:
        for piece in _split_long(sentence, max_chars):
            candidate = f"{current} {piece}".strip() if current else piece
            if len(candidate) <= max_chars:
                current = candidate
            else:
                chunks.append(current)
                current = piece
    if current:
        chunks.append(current)
    return chunks


def _split_long(sentence: str, max_chars: int) -> List[str]:
    if len(sentence) <= max_chars:
        return [sentence]
    pieces = []
    remaining = sentence
    while len(remaining) > max_chars:
        cut = remaining.rfind(" ", 0, max_chars + 1)
        if cut <= 0:
            cut = max_chars
        pieces.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        pieces.append(remaining)
    return pieces
