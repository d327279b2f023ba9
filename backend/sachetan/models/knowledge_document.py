from sqlalchemy import Column, Integer, String, DateTime, Text

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class KnowledgeDocument(Base):
    """
    Admin-managed RAG document.

    The vector store holds the embeddings; this row remembers how many chunks
    were written under `doc_id` and which image files belong to it so that
    updates and deletes can reach all of them.
    """
    __tablename__ = "knowledge_documents"

    id = Column(Integer, primary_key=True, index=True)
    doc_id = Column(String(128), unique=True, nullable=False, index=True)
    title = Column(String(256), nullable=False)
    content = Column(Text, nullable=False)
    source = Column(String(16), nullable=False, default="manual")  # manual, file, product
    user_type = Column(String(64), nullable=False, default="all")
    chunk_count = Column(Integer, nullable=False, default=1)
    image_paths = Column(Text, nullable=True)  # JSON list of stored file names
    price = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
