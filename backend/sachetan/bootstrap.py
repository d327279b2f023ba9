"""Wires the long-lived clients and services the app and jobs share."""
import logging
from dataclasses import dataclass
from typing import Optional

from sachetan.agent.flow_config import SACHETAN_FLOW, FlowConfig
from sachetan.agent.state_machine import ConversationEngine
from sachetan.core.config import settings
from sachetan.core.rate_limiter import RateLimiter
from sachetan.db.session import SessionLocal
from sachetan.messaging.whatsapp import Messenger, TwilioTransport
from sachetan.services.chat_history import ChatHistory
from sachetan.services.media_service import MediaStore
from sachetan.services.session_store import SessionStore
from sachetan_ai.embeddings import EmbeddingClient
from sachetan_ai.groq_client import get_groq_client
from sachetan_ai.rag_engine import RagEngine
from sachetan_ai.vector_store import VectorStore
from sachetan_ai.web_search import WebSearchClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_factory: object
    flow: FlowConfig
    store: SessionStore
    history: ChatHistory
    transport: object
    messenger: Messenger
    embeddings: object
    vector_store: object
    generator: object
    web_search: object
    rag: RagEngine
    media_store: MediaStore
    engine: ConversationEngine


def build_services(
    session_factory=SessionLocal,
    flow: FlowConfig = SACHETAN_FLOW,
    transport=None,
    embeddings=None,
    vector_store=None,
    generator=None,
    web_search=None,
    media_store: Optional[MediaStore] = None,
    rate_limiter: Optional[RateLimiter] = None,
    clock=None,
) -> Services:
    """Production defaults for everything not passed in (tests pass fakes)."""
    store = SessionStore(session_factory)
    history = ChatHistory(session_factory)
    transport = transport or TwilioTransport()
    messenger = Messenger(transport, history)
    embeddings = embeddings or EmbeddingClient()
    vector_store = vector_store or VectorStore()
    generator = generator or get_groq_client()
    if web_search is None:
        web_search = WebSearchClient()
    rag = RagEngine(embeddings, vector_store, generator, web_search=web_search, business_name=flow.business_name)
    media_store = media_store or MediaStore()

    engine_kwargs = {}
    if clock is not None:
        engine_kwargs["clock"] = clock
    engine = ConversationEngine(
        store=store,
        messenger=messenger,
        rag=rag,
        session_factory=session_factory,
        history=history,
        media_store=media_store,
        flow=flow,
        rate_limiter=rate_limiter,
        base_url=settings.BASE_URL,
        **engine_kwargs,
    )
    logger.info(f"Services ready for {flow.business_name} (vector store: {vector_store!r})")
    return Services(
        session_factory=session_factory,
        flow=flow,
        store=store,
        history=history,
        transport=transport,
        messenger=messenger,
        embeddings=embeddings,
        vector_store=vector_store,
        generator=generator,
        web_search=web_search,
        rag=rag,
        media_store=media_store,
        engine=engine,
    )
