"""
Retrieval-augmented query engine.

Single entry point used by every conversational stage:

    result = await engine.query_rag(query, top_k, namespace=None,
                                    metadata_filter=None, strict=False,
                                    system_prompt_override=None)

Pipeline:
    1. Embed the query (hash fallback, never raises)
    2. Nearest-neighbour search in the namespace with the metadata filter
       (RetrievalError propagates to the caller)
    3. Context = match texts best first; media = imageUrl metadata
    4. Strict + nothing found -> canned answer, empty context, no web search
    5. Non-strict + weak results -> scoped web search appended to context
    6. Generate (GenerationError -> fixed apology)
    7. [MEDIA:url] markers moved from the answer into media_urls
    8. <order_state> blocks are left in the answer for the caller

Blocking clients (embeddings, LanceDB, Groq, requests) run in worker
threads so the event loop keeps serving other phone numbers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sachetan.core.config import settings
from sachetan_ai.prompts import (
    GENERATION_APOLOGY,
    STRICT_FALLBACK_ANSWER,
    build_system_prompt,
    build_user_prompt,
)
from sachetan_ai.reply_parser import extract_media_markers
from sachetan_ai.vector_store import RagDocument, VectorMatch

logger = logging.getLogger(__name__)


@dataclass
class RagResult:
    answer: str
    context: str
    matches: List[Dict[str, Any]] = field(default_factory=list)
    media_urls: List[str] = field(default_factory=list)


def _dedupe(urls: List[str]) -> List[str]:
    seen: List[str] = []
    for url in urls:
        if url and url not in seen:
            seen.append(url)
    return seen


class RagEngine:
    def __init__(
        self,
        embeddings,
        vector_store,
        generator,
        web_search=None,
        namespace: Optional[str] = None,
        memory_namespace: Optional[str] = None,
        min_score: Optional[float] = None,
        default_top_k: Optional[int] = None,
        business_name: Optional[str] = None,
    ):
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.generator = generator
        self.web_search = web_search
        self.namespace = namespace or settings.RAG_NAMESPACE
        self.memory_namespace = memory_namespace or settings.RAG_MEMORY_NAMESPACE
        self.min_score = settings.RAG_MIN_SCORE if min_score is None else min_score
        self.default_top_k = default_top_k or settings.RAG_TOP_K
        self.business_name = business_name or settings.BUSINESS_NAME

    async def query_rag(
        self,
        query: str,
        top_k: Optional[int] = None,
        namespace: Optional[str] = None,
        metadata_filter: Optional[Dict[str, Any]] = None,
        strict: bool = False,
        system_prompt_override: Optional[str] = None,
    ) -> RagResult:
        namespace = namespace or self.namespace
        top_k = top_k or self.default_top_k

        vector = await self.embeddings.aembed(query)
        matches: List[VectorMatch] = await asyncio.to_thread(
            self.vector_store.query, vector, top_k, namespace, metadata_filter
        )
        logger.info(
            f"[RAG] '{query[:60]}' ns={namespace} filter={metadata_filter} strict={strict} "
            f"-> {len(matches)} match(es)"
        )

        docs = [match.text for match in matches if match.text and match.text.strip()]
        media_urls = _dedupe([str(match.metadata.get("imageUrl") or "") for match in matches])
        match_dicts = [match.to_dict() for match in matches]

        if strict and not docs:
            logger.info("[RAG] Strict mode, no curated knowledge found. Returning fallback.")
            return RagResult(answer=STRICT_FALLBACK_ANSWER, context="", matches=match_dicts, media_urls=[])

        if not strict and self.web_search is not None:
            best = matches[0].score if matches else None
            if best is None or best < self.min_score:
                web_results = await asyncio.to_thread(self.web_search.search, query)
                docs.extend(web_results)

        context = "\n\n".join(docs)
        system_prompt = system_prompt_override or build_system_prompt(self.business_name)
        answer = await self._generate(system_prompt, build_user_prompt(context, query))

        answer, marker_urls = extract_media_markers(answer)
        return RagResult(
            answer=answer,
            context=context,
            matches=match_dicts,
            media_urls=_dedupe(media_urls + marker_urls),
        )

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        try:
            return await asyncio.to_thread(self.generator.generate, system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"[RAG] Generation failed: {e}")
            return GENERATION_APOLOGY

    async def index_documents(self, documents: List[RagDocument], namespace: Optional[str] = None) -> int:
        """Embed and upsert documents (idempotent by id)."""
        if not documents:
            return 0
        vectors = await self.embeddings.aembed_batch([doc.text for doc in documents])
        return await asyncio.to_thread(
            self.vector_store.upsert, list(zip(documents, vectors)), namespace or self.namespace
        )

    async def delete_documents(self, ids: List[str], namespace: Optional[str] = None) -> None:
        await asyncio.to_thread(self.vector_store.delete, ids, namespace or self.namespace)

    async def remember_exchange(self, phone: str, question: str, answer: str, doc_id: str) -> None:
        """Store a Q/A pair in the customer-memory namespace. Best effort."""
        doc = RagDocument(
            id=doc_id,
            text=f"Customer asked: {question}\nWe answered: {answer}",
            metadata={"phone": phone, "type": "memory", "source": "conversation"},
        )
        try:
            await self.index_documents([doc], namespace=self.memory_namespace)
        except Exception as e:
            logger.warning(f"[RAG] Could not store conversation memory for {phone}: {e}")

