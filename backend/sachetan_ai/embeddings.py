"""
Text embeddings for retrieval.

Uses sentence-transformers (all-MiniLM-L6-v2, 384 dims) loaded lazily on
first use. If the model cannot be loaded or encoding fails, a deterministic
hash vector of the same dimension is returned instead: retrieval quality
drops, but the conversation turn never fails because of embeddings.
"""

import asyncio
import logging
import threading
from typing import List, Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from sachetan.core.config import settings

logger = logging.getLogger(__name__)

HASH_MODEL_NAMES = ("", "hash")


def hash_embedding(text: str, dimension: int) -> List[float]:
    """Character-bucket vector, L2 normalised. Same text, same vector."""
    vec = np.zeros(dimension, dtype=np.float32)
    for position, char in enumerate(text or ""):
        vec[(ord(char) + position) % dimension] += 1.0
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        # Cosine distance is undefined for the zero vector
        vec[0] = 1.0
        return vec.tolist()
    return (vec / norm).tolist()


def _fit_dimension(values, dimension: int) -> List[float]:
    vec = np.asarray(values, dtype=np.float32).ravel()
    if vec.shape[0] > dimension:
        vec = vec[:dimension]
    elif vec.shape[0] < dimension:
        vec = np.pad(vec, (0, dimension - vec.shape[0]))
    norm = float(np.linalg.norm(vec))
    return (vec / norm).tolist() if norm else hash_embedding("", dimension)


class EmbeddingClient:
    """Sentence-transformers embeddings with a hash fallback. Never raises."""

    def __init__(self, model_name: Optional[str] = None, dimension: Optional[int] = None):
        self.model_name = settings.EMBEDDING_MODEL if model_name is None else model_name
        self.dimension = dimension or settings.EMBEDDING_DIM
        self._model = None
        self._load_failed = self.model_name.strip().lower() in HASH_MODEL_NAMES
        self._lock = threading.Lock()

    def _get_model(self):
        if self._model is not None or self._load_failed:
            return self._model
        with self._lock:
            if self._model is None and not self._load_failed:
                try:
                    self._model = SentenceTransformer(self.model_name)
                    logger.info(f"✅ Embedding model loaded: {self.model_name}")
                except Exception as e:
                    logger.warning(f"⚠️ Embedding model unavailable ({e}). Using hash embeddings.")
                    self._load_failed = True
        return self._model

    def is_available(self) -> bool:
        """True when real (semantic) embeddings are being produced."""
        return self._get_model() is not None

    def embed(self, text: str) -> List[float]:
        model = self._get_model()
        if model is None:
            return hash_embedding(text, self.dimension)
        try:
            vector = model.encode(text, normalize_embeddings=True)
            return _fit_dimension(vector, self.dimension)
        except Exception as e:
            logger.warning(f"⚠️ Embedding failed, using hash vector: {e}")
            return hash_embedding(text, self.dimension)

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        model = self._get_model()
        if model is None:
            return [hash_embedding(text, self.dimension) for text in texts]
        try:
            vectors = model.encode(list(texts), normalize_embeddings=True)
            return [_fit_dimension(vector, self.dimension) for vector in vectors]
        except Exception as e:
            logger.warning(f"⚠️ Batch embedding failed, using hash vectors: {e}")
            return [hash_embedding(text, self.dimension) for text in texts]

    async def aembed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed, text)

    async def aembed_batch(self, texts: List[str]) -> List[List[float]]:
        return await asyncio.to_thread(self.embed_batch, texts)
