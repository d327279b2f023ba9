"""
LanceDB vector store for RAG documents.

Each namespace is its own LanceDB table with a strict PyArrow schema. A few
metadata keys are promoted to real columns (`type`, `source`, `phone`) so
metadata filters on them run inside LanceDB as a prefilter; the full
metadata map is kept as JSON text and returned with every match.

Guarantees:
    * Upsert by id replaces vector, text and metadata (merge-insert on `id`).
    * Query results are ordered by descending cosine similarity; equal scores
      keep insertion order (monotonic `seq` column).
    * Any failure while querying raises RetrievalError.
"""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import lancedb
import pyarrow as pa

from sachetan.core.config import settings
from sachetan.core.exceptions import RetrievalError

logger = logging.getLogger(__name__)

FILTERABLE_COLUMNS = ("type", "source", "phone")
FULL_SCAN_ROWS = 2000
OVERFETCH_FACTOR = 5

_DB_LOCK = threading.Lock()
_db_connection_cache: Dict[str, Any] = {}


def _get_connection(db_path: str):
    """Shared LanceDB connection per directory."""
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info(f"Opening LanceDB connection: {db_path}")
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def rag_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("seq", pa.int64()),
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("text", pa.utf8()),
        pa.field("type", pa.utf8()),
        pa.field("source", pa.utf8()),
        pa.field("phone", pa.utf8()),
        pa.field("metadata", pa.utf8()),
    ])


@dataclass
class RagDocument:
    id: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any]
    text: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "score": self.score, "metadata": self.metadata}


def _quote(value: Any) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _table_name(namespace: str) -> str:
    name = re.sub(r"[^A-Za-z0-9_\-]", "_", namespace.strip())
    if not name:
        raise ValueError("Namespace must not be empty")
    return name


def split_filter(metadata_filter: Optional[Dict[str, Any]]) -> Tuple[str, Dict[str, Any]]:
    """
    Split a metadata filter into a LanceDB WHERE clause (promoted columns)
    and a remainder applied to the JSON metadata in Python.

    Scalar values mean equality, list/tuple/set values mean inclusion.
    """
    clauses = []
    remainder = {}
    for key, value in (metadata_filter or {}).items():
        if key not in FILTERABLE_COLUMNS:
            remainder[key] = value
            continue
        if isinstance(value, (list, tuple, set)):
            values = list(value)
            if not values:
                clauses.append("1 = 0")
            else:
                clauses.append(f"{key} IN ({', '.join(_quote(v) for v in values)})")
        else:
            clauses.append(f"{key} = {_quote(value)}")
    return " AND ".join(clauses), remainder


def _matches_remainder(metadata: Dict[str, Any], remainder: Dict[str, Any]) -> bool:
    for key, expected in remainder.items():
        actual = metadata.get(key)
        if isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class VectorStore:
    """Namespace-partitioned LanceDB store. Blocking; call from a worker thread in async code."""

    def __init__(self, db_path: Optional[str] = None, dimension: Optional[int] = None):
        self._db_path = str(db_path or settings.VECTOR_DB_PATH)
        self.dimension = dimension or settings.EMBEDDING_DIM
        self._schema = rag_schema(self.dimension)
        self._tables: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._seq_lock = threading.Lock()
        self._last_seq = 0

    @property
    def db(self):
        return _get_connection(self._db_path)

    def _next_seq(self) -> int:
        with self._seq_lock:
            self._last_seq = max(self._last_seq + 1, time.time_ns())
            return self._last_seq

    def _table(self, namespace: str, create: bool = False):
        name = _table_name(namespace)
        table = self._tables.get(name)
        if table is not None:
            return table
        with self._lock:
            if name in self._tables:
                return self._tables[name]
            if name in self.db.table_names():
                table = self.db.open_table(name)
            elif create:
                table = self.db.create_table(name, schema=self._schema, exist_ok=True)
                logger.info(f"[VectorStore] Created namespace table '{name}'")
            else:
                return None
            self._tables[name] = table
            return table

    def upsert(self, documents: Sequence[Tuple[RagDocument, List[float]]], namespace: str) -> int:
        """Insert or fully replace documents by id. Returns number of rows written."""
        latest: Dict[str, dict] = {}
        for doc, vector in documents:
            if len(vector) != self.dimension:
                raise ValueError(f"Vector for '{doc.id}' has {len(vector)} dims, expected {self.dimension}")
            metadata = dict(doc.metadata or {})
            latest[doc.id] = {
                "id": doc.id,
                "seq": self._next_seq(),
                "vector": [float(v) for v in vector],
                "text": doc.text or "",
                "type": str(metadata.get("type", "")),
                "source": str(metadata.get("source", "")),
                "phone": str(metadata.get("phone", "")),
                "metadata": json.dumps(metadata, default=str),
            }
        if not latest:
            return 0

        table = self._table(namespace, create=True)
        data = pa.Table.from_pylist(list(latest.values()), schema=self._schema)
        (
            table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(data)
        )
        logger.info(f"[VectorStore] Upserted {len(latest)} document(s) into '{namespace}'")
        return len(latest)

    def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """Nearest neighbours by cosine similarity, best first."""
        try:
            table = self._table(namespace)
            if table is None:
                return []

            where, remainder = split_filter(metadata_filter)
            # ties at the cut-off are broken by insertion order, so fetch past top_k
            total = table.count_rows()
            if total == 0:
                return []
            limit = total if total <= FULL_SCAN_ROWS else top_k * OVERFETCH_FACTOR
            search = table.search(vector).distance_type("cosine").limit(limit)
            if where:
                search = search.where(where, prefilter=True)
            rows = search.to_list()
        except Exception as e:
            logger.error(f"[VectorStore] Query failed on '{namespace}': {e}")
            raise RetrievalError(f"Vector query failed: {e}") from e

        matches = []
        for row in rows:
            try:
                metadata = json.loads(row.get("metadata") or "{}")
            except json.JSONDecodeError:
                metadata = {}
            if remainder and not _matches_remainder(metadata, remainder):
                continue
            matches.append((row.get("seq", 0), VectorMatch(
                id=row["id"],
                score=1.0 - float(row["_distance"]),
                metadata=metadata,
                text=row.get("text") or "",
            )))

        matches.sort(key=lambda item: (-item[1].score, item[0]))
        return [match for _, match in matches[:top_k]]

    def delete(self, ids: Sequence[str], namespace: str) -> None:
        """Remove documents by id. Missing ids and namespaces are ignored."""
        ids = [doc_id for doc_id in ids if doc_id]
        if not ids:
            return
        table = self._table(namespace)
        if table is None:
            return
        table.delete(f"id IN ({', '.join(_quote(doc_id) for doc_id in ids)})")
        logger.info(f"[VectorStore] Deleted {len(ids)} id(s) from '{namespace}'")

    def count(self, namespace: str) -> int:
        table = self._table(namespace)
        return table.count_rows() if table is not None else 0

    def ping(self) -> bool:
        try:
            self.db.table_names()
            return True
        except Exception as e:
            logger.warning(f"[VectorStore] Ping failed: {e}")
            return False

    def __repr__(self) -> str:
        return f"VectorStore(db='{self._db_path}', dim={self.dimension})"
