"""RAG admin: knowledge documents, website and catalog ingestion, raw queries, health. Bearer token required."""
import asyncio
import logging
from typing import List, Optional

import requests
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy import text
from sqlalchemy.orm import Session

from sachetan.agent.proactive_scheduler import catalog_sync_job
from sachetan.api.deps import get_db, get_services, require_admin
from sachetan.bootstrap import Services
from sachetan.core.exceptions import BusinessError, ChatbotError, PersistenceError, ValidationError
from sachetan.models.knowledge_document import KnowledgeDocument
from sachetan.schemas.rag import (
    CatalogSyncResponse,
    DocumentResponse,
    DocumentUpdate,
    ManualDocumentCreate,
    RagQueryRequest,
    RagQueryResponse,
    ScrapeRequest,
    ScrapeResponse,
)
from sachetan.services import knowledge_service
from sachetan_ai import web_scraper

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])

MAX_PRODUCT_IMAGES = 5
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")


def _to_response(document: KnowledgeDocument, services: Services) -> DocumentResponse:
    return DocumentResponse(
        doc_id=document.doc_id,
        title=document.title,
        source=document.source,
        user_type=document.user_type,
        chunk_count=document.chunk_count,
        price=document.price,
        image_urls=[services.media_store.public_url(p) for p in knowledge_service.image_paths(document)],
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


def _raise_http(e: ChatbotError):
    if isinstance(e, ValidationError):
        raise BusinessError.bad_request(e.user_message)
    raise BusinessError.server_error(e)


def _get_or_404(db: Session, doc_id: str) -> KnowledgeDocument:
    document = knowledge_service.get_document(db, doc_id)
    if document is None:
        raise BusinessError.not_found("Document", doc_id)
    return document


@router.get("/documents", response_model=List[DocumentResponse])
def list_documents(db: Session = Depends(get_db), services: Services = Depends(get_services)):
    return [_to_response(doc, services) for doc in knowledge_service.list_documents(db)]


@router.post("/documents/manual", response_model=DocumentResponse, status_code=201)
async def add_manual_document(
    payload: ManualDocumentCreate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    try:
        document = await knowledge_service.add_document(
            db, services.rag, payload.title, payload.content, source="manual", user_type=payload.user_type,
        )
    except (ValidationError, PersistenceError) as e:
        _raise_http(e)
    return _to_response(document, services)


@router.post("/documents/upload", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    user_type: str = Form("all"),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    data = await file.read()
    try:
        content = knowledge_service.decode_upload(file.filename, data)
        document = await knowledge_service.add_document(
            db, services.rag, title or file.filename, content, source="file", user_type=user_type,
        )
    except (ValidationError, PersistenceError) as e:
        _raise_http(e)
    return _to_response(document, services)


@router.post("/documents/product", response_model=DocumentResponse, status_code=201)
async def add_product_document(
    name: str = Form(...),
    description: str = Form(""),
    price: Optional[str] = Form(None),
    user_type: str = Form("all"),
    images: List[UploadFile] = File(default=[]),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    if len(images) > MAX_PRODUCT_IMAGES:
        raise BusinessError.bad_request(f"At most {MAX_PRODUCT_IMAGES} images per product")
    for image in images:
        if image.content_type not in ALLOWED_IMAGE_TYPES:
            raise BusinessError.bad_request("Images must be JPEG, PNG or WebP")

    try:
        normalized_price = knowledge_service.normalize_price(price)
    except ValidationError as e:
        _raise_http(e)

    stored = []
    for image in images:
        data = await image.read()
        stored.append(await asyncio.to_thread(services.media_store.save_upload, data, image.filename))

    lines = [f"Product: {name.strip()}"]
    if normalized_price:
        lines.append(f"Price: ₹{normalized_price}")
    if description.strip():
        lines.append(description.strip())
    try:
        document = await knowledge_service.add_document(
            db,
            services.rag,
            name,
            "\n".join(lines),
            source="product",
            user_type=user_type,
            images=stored,
            price=normalized_price,
            media_store=services.media_store,
        )
    except (ValidationError, PersistenceError) as e:
        for path in stored:
            services.media_store.delete(path)
        _raise_http(e)
    return _to_response(document, services)


@router.put("/documents/{doc_id}", response_model=DocumentResponse)
async def update_document(
    doc_id: str,
    payload: DocumentUpdate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    document = _get_or_404(db, doc_id)
    try:
        price = knowledge_service.normalize_price(payload.price)
        document = await knowledge_service.update_document(
            db,
            services.rag,
            document,
            title=payload.title,
            content=payload.content,
            user_type=payload.user_type,
            price=price,
            media_store=services.media_store,
        )
    except (ValidationError, PersistenceError) as e:
        _raise_http(e)
    return _to_response(document, services)


@router.delete("/documents/{doc_id}")
async def delete_document(
    doc_id: str,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    document = _get_or_404(db, doc_id)
    try:
        removed = await knowledge_service.delete_document(db, services.rag, document, services.media_store)
    except PersistenceError as e:
        _raise_http(e)
    return {"status": "deleted", "doc_id": doc_id, "images_removed": removed}


@router.post("/query", response_model=RagQueryResponse)
async def query(payload: RagQueryRequest, services: Services = Depends(get_services)):
    try:
        result = await services.rag.query_rag(
            payload.query,
            top_k=payload.top_k,
            namespace=payload.namespace,
            metadata_filter=payload.metadata_filter,
            strict=payload.strict,
        )
    except ChatbotError as e:
        _raise_http(e)
    return RagQueryResponse(
        answer=result.answer,
        context=result.context,
        matches=result.matches,
        media_urls=result.media_urls,
    )


@router.post("/scrape", response_model=ScrapeResponse)
async def scrape_page(payload: ScrapeRequest, services: Services = Depends(get_services)):
    try:
        page = await asyncio.to_thread(web_scraper.scrape_url, payload.url)
        chunks = await services.rag.index_documents(web_scraper.page_documents(page))
    except requests.RequestException as e:
        logger.warning(f"[Admin] Scrape of {payload.url} failed: {e}")
        raise BusinessError.bad_request(f"Could not fetch {payload.url}")
    except ChatbotError as e:
        _raise_http(e)
    return ScrapeResponse(url=page.url, title=page.title, chunks=chunks)


@router.post("/sync-products", response_model=CatalogSyncResponse)
async def sync_products(services: Services = Depends(get_services)):
    try:
        indexed = await catalog_sync_job(services)
    except ChatbotError as e:
        _raise_http(e)
    return CatalogSyncResponse(indexed=indexed)


async def _probe(name: str, check) -> bool:
    try:
        return bool(await asyncio.to_thread(check))
    except Exception as e:
        logger.warning(f"[Health] {name} check failed: {e}")
        return False


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    def database():
        db = services.session_factory()
        try:
            db.execute(text("SELECT 1"))
            return True
        finally:
            db.close()

    checks = {
        "database": database,
        "vector_store": services.vector_store.ping,
        "embeddings": services.embeddings.is_available,
        "llm": services.generator.ping,
        "web_search": services.web_search.ping,
        "whatsapp": services.transport.ping,
    }
    results = {}
    for name, check in checks.items():
        results[name] = await _probe(name, check)
    return {"status": "ok" if all(results.values()) else "degraded", "checks": results}
