from sachetan.models.chat_session import ChatSession
from sachetan.models.chat_history import ChatHistoryEntry
from sachetan.models.order import Order, OrderItem, OrderStatus
from sachetan.models.booking import Booking, BookingStatus, Court, Slot
from sachetan.models.catalog import TopCategory, MidCategory, Product
from sachetan.models.knowledge_document import KnowledgeDocument
from sachetan.models.lead import Lead, LeadArtifact

__all__ = [
    "ChatSession", "ChatHistoryEntry", "Order", "OrderItem", "OrderStatus",
    "Booking", "BookingStatus", "Court", "Slot", "TopCategory", "MidCategory",
    "Product", "KnowledgeDocument", "Lead", "LeadArtifact",
]
