"""Retrieval and generation for the Sachetan assistant.

Embeddings (sentence-transformers), a LanceDB vector store, Groq generation
and scoped web search, orchestrated by `RagEngine.query_rag`.
"""

from .rag_engine import RagEngine, RagResult
from .vector_store import RagDocument, VectorMatch, VectorStore
from .reply_parser import extract_media_markers, extract_state_block

__all__ = [
    "RagEngine", "RagResult", "RagDocument", "VectorMatch", "VectorStore",
    "extract_media_markers", "extract_state_block",
]
