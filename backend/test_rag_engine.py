"""RAG pipeline: strict mode, web fallback, media extraction, generation failures."""
import asyncio

import pytest

from sachetan.core.exceptions import GenerationError, RetrievalError
from sachetan_ai.prompts import GENERATION_APOLOGY, STRICT_FALLBACK_ANSWER
from sachetan_ai.rag_engine import RagEngine
from sachetan_ai.vector_store import RagDocument


def _engine(embeddings, vector_store, generator, web_search, min_score=0.35):
    return RagEngine(
        embeddings, vector_store, generator, web_search=web_search,
        namespace="docs", memory_namespace="memory", min_score=min_score, default_top_k=3,
        business_name="Sachetan Packaging",
    )


def _index(rag, docs):
    return asyncio.run(rag.index_documents(docs))


def test_strict_with_nothing_found_returns_fallback_without_llm(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search)
    result = asyncio.run(rag.query_rag("price of gold boxes", strict=True))
    assert result.answer == STRICT_FALLBACK_ANSWER
    assert result.context == ""
    assert generator.calls == []
    assert web_search.queries == []


def test_strict_filter_excludes_other_user_types(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search)
    _index(rag, [RagDocument("s1", "Sweet box 500g", {"type": "SweetShopOwner"})])
    result = asyncio.run(rag.query_rag(
        "Sweet box 500g", strict=True, metadata_filter={"type": ["Homebakers", "all"]}
    ))
    assert result.answer == STRICT_FALLBACK_ANSWER


def test_context_and_media_come_from_matches(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search, min_score=0.0)
    _index(rag, [RagDocument(
        "cake", "Cake box 8x8x5 with window", {"type": "all", "imageUrl": "https://cdn.example.com/cake.jpg"}
    )])
    generator.answers = ["Here you go! [MEDIA:https://cdn.example.com/extra.jpg]"]
    result = asyncio.run(rag.query_rag("Cake box 8x8x5 with window"))
    assert "Cake box 8x8x5" in result.context
    assert result.answer == "Here you go!"
    assert result.media_urls == ["https://cdn.example.com/cake.jpg", "https://cdn.example.com/extra.jpg"]
    assert result.matches[0]["id"] == "cake"
    assert "Cake box 8x8x5" in generator.calls[0]["user"]
    assert web_search.queries == []


def test_weak_matches_trigger_web_search_when_not_strict(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search, min_score=1.1)
    _index(rag, [RagDocument("a", "anything")])
    asyncio.run(rag.query_rag("delivery time to Nagpur"))
    assert web_search.queries == ["delivery time to Nagpur"]


def test_system_prompt_override_is_used(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search)
    asyncio.run(rag.query_rag("hello", system_prompt_override="CUSTOM PROMPT"))
    assert generator.calls[0]["system"] == "CUSTOM PROMPT"


def test_generation_failure_becomes_apology(embeddings, vector_store, web_search):
    class Broken:
        def generate(self, system_prompt, user_prompt):
            raise GenerationError("provider down")

    rag = _engine(embeddings, vector_store, Broken(), web_search)
    result = asyncio.run(rag.query_rag("anything"))
    assert result.answer == GENERATION_APOLOGY


def test_retrieval_failure_propagates(embeddings, generator, web_search):
    class BrokenStore:
        def query(self, *args):
            raise RetrievalError("lancedb unreachable")

    rag = _engine(embeddings, BrokenStore(), generator, web_search)
    with pytest.raises(RetrievalError):
        asyncio.run(rag.query_rag("anything"))


def test_index_is_idempotent_by_id(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search)
    doc = RagDocument("same", "Pizza box 10 inch", {"type": "all"})
    _index(rag, [doc])
    _index(rag, [doc])
    assert vector_store.count("docs") == 1


def test_remember_exchange_goes_to_memory_namespace(embeddings, vector_store, generator, web_search):
    rag = _engine(embeddings, vector_store, generator, web_search)
    asyncio.run(rag.remember_exchange("whatsapp:+91999", "Need boxes", "Sure!", doc_id="mem_1"))
    assert vector_store.count("memory") == 1
    assert vector_store.count("docs") == 0
