"""Orders: catalog checkouts and materialised quotations."""
import logging
import random
import string
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from sachetan.core.timeutils import utcnow
from sachetan.models.order import Order, OrderItem, OrderStatus
from sachetan.services.pricing import LineItem, compute_order_totals

logger = logging.getLogger(__name__)


def generate_order_id(now: Optional[datetime] = None) -> str:
    """ORD-<last 6 digits of epoch ms>-<3 random chars>"""
    now = now or utcnow()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=3))
    return f"ORD-{str(millis)[-6:]}-{suffix}"


def create_order(
    db: Session,
    phone: str,
    items: List[LineItem],
    *,
    source: str = "shop",
    gst_rate=0,
    override_total=None,
    whole_rupees: bool = False,
    customer_name: Optional[str] = None,
    address: Optional[str] = None,
    city: Optional[str] = None,
    pincode: Optional[str] = None,
    user_type: Optional[str] = None,
    expires_in_minutes: Optional[int] = None,
    commit: bool = True,
) -> Order:
    """Create a PENDING order. Totals are always computed here, never taken from the caller."""
    totals = compute_order_totals(items, gst_rate, override_total=override_total, whole_rupees=whole_rupees)

    order = Order(
        order_id=generate_order_id(),
        phone=phone,
        source=source,
        status=OrderStatus.PENDING,
        subtotal_amount=totals.subtotal,
        gst_rate=totals.gst_rate,
        gst_amount=totals.gst_amount,
        total_amount=totals.total,
        customer_name=customer_name,
        address=address,
        city=city,
        pincode=pincode,
        user_type=user_type,
        expires_at=utcnow() + timedelta(minutes=expires_in_minutes) if expires_in_minutes else None,
    )
    for item in items:
        order.items.append(OrderItem(
            product_id=item.product_id,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            line_total=item.line_total,
            size=item.size,
            color=item.color,
        ))
    db.add(order)
    if commit:
        db.commit()
        db.refresh(order)
    else:
        db.flush()
    logger.info(f"[Orders] Created {order.order_id} ({source}) for {phone}: ₹{order.total_amount}")
    return order


def get_order(db: Session, order_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.order_id == order_id.strip().upper()).first()


def expire_if_stale(db: Session, order: Order, now: Optional[datetime] = None) -> bool:
    """PENDING -> EXPIRED when past expiry. Returns True if the order changed."""
    now = now or utcnow()
    if order.status == OrderStatus.PENDING and order.expires_at and order.expires_at < now:
        order.status = OrderStatus.EXPIRED
        db.commit()
        logger.info(f"[Orders] {order.order_id} expired")
        return True
    return False


def expire_stale_orders(db: Session, now: Optional[datetime] = None) -> List[Order]:
    """Sweep: every unpaid order past its expiry becomes EXPIRED."""
    now = now or utcnow()
    stale = (
        db.query(Order)
        .filter(Order.status == OrderStatus.PENDING)
        .filter(Order.expires_at.isnot(None))
        .filter(Order.expires_at < now)
        .all()
    )
    for order in stale:
        order.status = OrderStatus.EXPIRED
    if stale:
        db.commit()
        logger.info(f"[Orders] Expired {len(stale)} unpaid order(s)")
    return stale


def cancel_order(db: Session, order: Order) -> None:
    if order.status == OrderStatus.PENDING:
        order.status = OrderStatus.CANCELLED
        db.commit()


def next_invoice_number(db: Session, year: int) -> str:
    """INV-<year>-0001, sequential per year."""
    prefix = f"INV-{year}-"
    count = db.query(Order).filter(Order.invoice_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:04d}"


def mark_paid(db: Session, order: Order, payment_id: str) -> Order:
    """PENDING -> PAID. Caller must have verified the payment signature."""
    now = utcnow()
    order.status = OrderStatus.PAID
    order.payment_id = payment_id
    order.paid_at = now
    order.invoice_number = next_invoice_number(db, now.year)
    db.commit()
    db.refresh(order)
    logger.info(f"[Orders] {order.order_id} paid ({payment_id}), invoice {order.invoice_number}")
    return order


def payment_link(base_url: str, order: Order) -> str:
    return f"{base_url}/payment/product?order={order.order_id}"


def format_order_summary(order: Order) -> str:
    lines = [f"🧾 *Order {order.order_id}*"]
    for item in order.items:
        details = ", ".join(x for x in (item.size, item.color) if x)
        lines.append(
            f"• {item.name}{f' ({details})' if details else ''}: "
            f"{item.quantity} × ₹{item.unit_price} = ₹{item.line_total}"
        )
    if order.gst_amount:
        lines.append(f"Subtotal: ₹{order.subtotal_amount}")
        lines.append(f"GST: ₹{order.gst_amount}")
    lines.append(f"*Total: ₹{order.total_amount}*")
    lines.append(f"Status: {order.status}")
    return "\n".join(lines)
