"""
Admin-managed knowledge documents.

A document is one row in `knowledge_documents` plus `chunk_count` vectors
with ids `<doc_id>_chunk_<n>` in the main namespace. Writes keep the two
in step:

- add: row flushed, chunks indexed, then committed. Indexing failure rolls
  the row back and removes any stored images.
- update: new chunks upserted first, surplus old chunks deleted, then the
  row is updated.
- delete: vectors removed first; if that fails the row (and images) stay
  so the delete can be retried.
"""
import csv
import io
import json
import logging
import uuid
import zipfile
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.orm import Session

from sachetan.core.exceptions import PersistenceError, ValidationError
from sachetan.models.knowledge_document import KnowledgeDocument
from sachetan_ai.chunking import chunk_text
from sachetan_ai.vector_store import RagDocument

logger = logging.getLogger(__name__)

SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")
ALLOWED_UPLOAD_EXTENSIONS = (".txt", ".md", ".csv") + SPREADSHEET_EXTENSIONS
MAX_UPLOAD_BYTES = 2 * 1024 * 1024


def chunk_ids(doc_id: str, count: int) -> List[str]:
    return [f"{doc_id}_chunk_{index}" for index in range(count)]


def image_paths(document: KnowledgeDocument) -> List[str]:
    if not document.image_paths:
        return []
    try:
        paths = json.loads(document.image_paths)
    except json.JSONDecodeError:
        return []
    return [p for p in paths if isinstance(p, str)]


def _chunk_documents(document: KnowledgeDocument, media_store=None) -> List[RagDocument]:
    chunks = chunk_text(document.content)
    if not chunks:
        raise ValidationError("Document has no text", user_message="Document content is empty")
    images = image_paths(document)
    metadata = {
        "type": document.user_type or "all",
        "source": document.source,
        "title": document.title,
        "doc_id": document.doc_id,
    }
    if document.price:
        metadata["price"] = document.price
    if images and media_store is not None:
        metadata["imageUrl"] = media_store.public_url(images[0])
    return [
        RagDocument(id=chunk_id, text=f"{document.title}\n{chunk}", metadata=dict(metadata))
        for chunk_id, chunk in zip(chunk_ids(document.doc_id, len(chunks)), chunks)
    ]


def list_documents(db: Session) -> List[KnowledgeDocument]:
    return db.query(KnowledgeDocument).order_by(KnowledgeDocument.created_at.desc()).all()


def get_document(db: Session, doc_id: str) -> Optional[KnowledgeDocument]:
    return db.query(KnowledgeDocument).filter(KnowledgeDocument.doc_id == doc_id).first()


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ValidationError("Upload is not UTF-8", user_message="File must be UTF-8 text") from e


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _csv_rows_text(text: str) -> str:
    """One line per data row, values joined by spaces. The header row names columns only."""
    rows = list(csv.reader(io.StringIO(text)))
    lines = []
    for row in rows[1:]:
        values = [cell.strip() for cell in row if cell.strip()]
        if values:
            lines.append(" ".join(values))
    return "\n".join(lines)


def _sheet_rows(name: str, data: bytes) -> List[tuple]:
    """Rows of the first worksheet. .xls goes through xlrd, .xlsx through openpyxl."""
    try:
        if name.endswith(".xls"):
            book = xlrd.open_workbook(file_contents=data)
            sheet = book.sheet_by_index(0)
            return [tuple(sheet.row_values(index)) for index in range(sheet.nrows)]
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            return list(workbook.worksheets[0].iter_rows(values_only=True))
        finally:
            workbook.close()
    except (InvalidFileException, zipfile.BadZipFile, xlrd.XLRDError, IndexError, KeyError) as e:
        raise ValidationError(f"Unreadable spreadsheet: {e}", user_message="Could not read the spreadsheet") from e


def _spreadsheet_text(name: str, data: bytes) -> str:
    """First sheet as comma-joined lines, header row included."""
    lines = []
    for row in _sheet_rows(name, data):
        cells = [_cell_text(value) for value in row]
        while cells and not cells[-1]:
            cells.pop()
        if any(cells):
            lines.append(",".join(cells))
    return "\n".join(lines)


def decode_upload(filename: str, data: bytes) -> str:
    """Validate an uploaded knowledge file and return its text.

    Spreadsheets become one line per row; CSV data rows have their values joined.
    """
    name = (filename or "").lower()
    if not name.endswith(ALLOWED_UPLOAD_EXTENSIONS):
        raise ValidationError(
            f"Unsupported upload {filename!r}",
            user_message=f"Only {', '.join(ALLOWED_UPLOAD_EXTENSIONS)} files are supported",
        )
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("Upload too large", user_message="File is larger than 2 MB")
    if name.endswith(SPREADSHEET_EXTENSIONS):
        text = _spreadsheet_text(name, data)
    elif name.endswith(".csv"):
        text = _csv_rows_text(_decode_text(data))
    else:
        text = _decode_text(data)
    if not text.strip():
        raise ValidationError("Empty upload", user_message="File is empty")
    return text


def normalize_price(price) -> Optional[str]:
    if price in (None, ""):
        return None
    try:
        value = Decimal(str(price))
    except InvalidOperation as e:
        raise ValidationError(f"Bad price {price!r}", user_message="Price must be a number") from e
    if value < 0:
        raise ValidationError("Negative price", user_message="Price must not be negative")
    return str(value)


async def add_document(
    db: Session,
    rag,
    title: str,
    content: str,
    source: str = "manual",
    user_type: str = "all",
    images: Optional[List[str]] = None,
    price: Optional[str] = None,
    media_store=None,
) -> KnowledgeDocument:
    title = (title or "").strip()
    if not title or not (content or "").strip():
        raise ValidationError("Title and content required", user_message="Title and content are required")

    document = KnowledgeDocument(
        doc_id=f"doc_{uuid.uuid4().hex[:12]}",
        title=title,
        content=content.strip(),
        source=source,
        user_type=user_type or "all",
        image_paths=json.dumps(images or []),
        price=price,
    )
    rag_docs = _chunk_documents(document, media_store)
    document.chunk_count = len(rag_docs)
    db.add(document)
    db.flush()
    try:
        await rag.index_documents(rag_docs)
    except Exception as e:
        db.rollback()
        for path in images or []:
            if media_store is not None:
                media_store.delete(path)
        logger.error(f"[Knowledge] Indexing failed for '{title}', row rolled back: {e}")
        raise PersistenceError(f"Indexing failed: {e}") from e
    db.commit()
    db.refresh(document)
    logger.info(f"[Knowledge] Added {document.doc_id} '{title}' ({source}, {document.chunk_count} chunk(s))")
    return document


async def update_document(
    db: Session,
    rag,
    document: KnowledgeDocument,
    title: Optional[str] = None,
    content: Optional[str] = None,
    user_type: Optional[str] = None,
    price: Optional[str] = None,
    media_store=None,
) -> KnowledgeDocument:
    if title is not None:
        if not title.strip():
            raise ValidationError("Empty title", user_message="Title must not be empty")
        document.title = title.strip()
    if content is not None:
        document.content = content.strip()
    if user_type is not None:
        document.user_type = user_type
    if price is not None:
        document.price = price

    old_count = document.chunk_count or 0
    try:
        rag_docs = _chunk_documents(document, media_store)
    except ValidationError:
        db.rollback()
        raise
    try:
        await rag.index_documents(rag_docs)
        stale = chunk_ids(document.doc_id, old_count)[len(rag_docs):]
        if stale:
            await rag.delete_documents(stale)
    except Exception as e:
        db.rollback()
        logger.error(f"[Knowledge] Re-index failed for {document.doc_id}: {e}")
        raise PersistenceError(f"Re-index failed: {e}") from e

    document.chunk_count = len(rag_docs)
    db.commit()
    db.refresh(document)
    logger.info(f"[Knowledge] Updated {document.doc_id} ({old_count} -> {document.chunk_count} chunk(s))")
    return document


async def delete_document(db: Session, rag, document: KnowledgeDocument, media_store=None) -> int:
    """Returns the number of image files removed."""
    try:
        await rag.delete_documents(chunk_ids(document.doc_id, document.chunk_count or 0))
    except Exception as e:
        logger.error(f"[Knowledge] Vector delete failed for {document.doc_id}, row kept: {e}")
        raise PersistenceError(f"Vector delete failed: {e}") from e

    removed = 0
    if media_store is not None:
        removed = sum(1 for path in image_paths(document) if media_store.delete(path))
    db.delete(document)
    db.commit()
    logger.info(f"[Knowledge] Deleted {document.doc_id} and {removed} image(s)")
    return removed
