from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ManualDocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    content: str = Field(min_length=1)
    user_type: str = "all"


class DocumentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=256)
    content: Optional[str] = None
    user_type: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    doc_id: str
    title: str
    source: str
    user_type: str
    chunk_count: int
    price: Optional[str] = None
    image_urls: List[str] = []
    created_at: datetime
    updated_at: datetime


class RagQueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)
    namespace: Optional[str] = None
    metadata_filter: Optional[Dict[str, Any]] = None
    strict: bool = False


class RagQueryResponse(BaseModel):
    answer: str
    context: str
    matches: List[Dict[str, Any]]
    media_urls: List[str]


class ScrapeRequest(BaseModel):
    url: str = Field(min_length=1, max_length=2048, pattern=r"^https?://\S+$")


class ScrapeResponse(BaseModel):
    url: str
    title: str
    chunks: int


class CatalogSyncResponse(BaseModel):
    indexed: int
