from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime
from sqlalchemy.orm import relationship

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class OrderStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(32), unique=True, nullable=False, index=True)  # ORD-123456-ABC
    phone = Column(String(64), nullable=False, index=True)
    source = Column(String(16), nullable=False, default="shop")  # shop, quotation
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING, index=True)

    subtotal_amount = Column(Numeric(12, 2), nullable=False)  # Sum of line totals
    gst_rate = Column(Numeric(5, 4), nullable=False, default=0)
    gst_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)  # Subtotal + GST (or override)

    customer_name = Column(String(128), nullable=True)
    address = Column(String(512), nullable=True)
    city = Column(String(128), nullable=True)
    pincode = Column(String(16), nullable=True)
    user_type = Column(String(64), nullable=True)

    expires_at = Column(DateTime, nullable=True)
    payment_id = Column(String(64), nullable=True)
    invoice_number = Column(String(32), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    paid_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")

    def __repr__(self):
        return f"<Order {self.order_id} status={self.status} total={self.total_amount}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(64), nullable=True)
    name = Column(String(256), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)
    size = Column(String(64), nullable=True)
    color = Column(String(64), nullable=True)

    order = relationship("Order", back_populates="items")
