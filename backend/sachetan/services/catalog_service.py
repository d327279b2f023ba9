"""Read access to the product catalog and its projection into the RAG index."""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from sachetan.agent.flow_config import FlowConfig
from sachetan.models.catalog import MidCategory, Product, TopCategory
from sachetan_ai.vector_store import RagDocument

logger = logging.getLogger(__name__)

DESCRIPTION_PREVIEW_CHARS = 150


def list_top_categories(db: Session) -> List[TopCategory]:
    return db.query(TopCategory).order_by(TopCategory.position, TopCategory.id).all()


def list_mid_categories(db: Session, top_category_id: int) -> List[MidCategory]:
    return (
        db.query(MidCategory)
        .filter(MidCategory.top_category_id == top_category_id)
        .order_by(MidCategory.position, MidCategory.id)
        .all()
    )


def list_products(db: Session, mid_category_id: int) -> List[Product]:
    return (
        db.query(Product)
        .filter(Product.mid_category_id == mid_category_id)
        .filter(Product.is_active.is_(True))
        .order_by(Product.id)
        .all()
    )


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.query(Product).filter(Product.id == product_id).first()


def split_options(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def describe_product(product: Product) -> str:
    """WhatsApp product card."""
    lines = [f"🛍️ *{product.name}*"]
    if product.old_price and product.old_price > product.price:
        lines.append(f"💰 Price: ₹{product.price} ~₹{product.old_price}~")
    else:
        lines.append(f"💰 Price: ₹{product.price}")
    sizes = split_options(product.sizes)
    if sizes:
        lines.append(f"📏 Sizes: {', '.join(sizes)}")
    colors = split_options(product.colors)
    if colors:
        lines.append(f"🎨 Colors: {', '.join(colors)}")
    if product.description:
        text = product.description.strip()
        if len(text) > DESCRIPTION_PREVIEW_CHARS:
            text = text[:DESCRIPTION_PREVIEW_CHARS].rstrip() + "..."
        lines.append(f"\n{text}")
    return "\n".join(lines)


def user_type_for_category(config: FlowConfig, category_name: str) -> str:
    name = (category_name or "").lower()
    for keyword, user_type in config.category_user_types.items():
        if keyword in name:
            return user_type
    return "all"


def product_documents(db: Session, config: FlowConfig) -> List[RagDocument]:
    """One RAG document per active product, tagged with the user type of its top category."""
    documents = []
    products = db.query(Product).filter(Product.is_active.is_(True)).all()
    for product in products:
        mid = product.mid_category
        top = mid.top_category if mid else None
        text_parts = [
            f"Product: {product.name}",
            f"Category: {top.name if top else ''} / {mid.name if mid else ''}",
            f"Price: ₹{product.price}",
        ]
        if product.sizes:
            text_parts.append(f"Sizes: {product.sizes}")
        if product.colors:
            text_parts.append(f"Colors: {product.colors}")
        if product.description:
            text_parts.append(product.description.strip())
        metadata = {
            "type": user_type_for_category(config, top.name if top else ""),
            "source": "catalog",
            "title": product.name,
            "price": str(product.price),
        }
        if product.featured_photo:
            metadata["imageUrl"] = product.featured_photo
        documents.append(RagDocument(id=f"product_{product.id}", text="\n".join(text_parts), metadata=metadata))
    return documents


def inactive_product_document_ids(db: Session) -> List[str]:
    rows = db.query(Product.id).filter(Product.is_active.is_(False)).all()
    return [f"product_{row.id}" for row in rows]
