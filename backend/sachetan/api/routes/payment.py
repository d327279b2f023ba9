"""
Payment callbacks.

The gateway posts {id, payment_id, signature}. The signature is recomputed
server-side before anything is touched; a mismatch is rejected with no
state change. Repeating a verified callback is answered idempotently.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sachetan.agent.conversation_state import Stage
from sachetan.api.deps import get_db, get_services
from sachetan.bootstrap import Services
from sachetan.core.exceptions import BusinessError, CapacityError, PaymentVerificationError
from sachetan.models.booking import BookingStatus
from sachetan.models.order import OrderStatus
from sachetan.schemas.payment import BookingPaymentVerify, PaymentResult, ProductPaymentVerify
from sachetan.services import booking_service, order_service
from sachetan.services.payment_service import verify_payment_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def _verify(signed_id: str, payment_id: str, signature: str) -> None:
    try:
        verify_payment_signature(signed_id, payment_id, signature)
    except PaymentVerificationError as e:
        logger.warning(f"[Payments] Rejected callback for {signed_id}: {e}")
        raise BusinessError.bad_request("Payment verification failed")


@router.post("/product/verify", response_model=PaymentResult)
async def verify_product_payment(
    payload: ProductPaymentVerify,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    order = order_service.get_order(db, payload.order_id)
    if order is None:
        raise BusinessError.not_found("Order", payload.order_id)
    _verify(payload.razorpay_order_id or order.order_id, payload.payment_id, payload.signature)

    if order.status == OrderStatus.PAID:
        if order.payment_id == payload.payment_id:
            return PaymentResult(status="paid", reference=order.order_id, invoice_number=order.invoice_number)
        raise BusinessError.conflict("Order already paid")

    order_service.expire_if_stale(db, order)
    if order.status != OrderStatus.PENDING:
        raise BusinessError.conflict(f"Order is {order.status.lower()}")

    order = order_service.mark_paid(db, order, payload.payment_id)
    summary = order_service.format_order_summary(order)
    await services.messenger.send(
        order.phone,
        f"✅ Payment received, thank you!\nInvoice: *{order.invoice_number}*\n\n{summary}",
    )
    await services.messenger.notify_admins(
        f"💰 *Order paid* {order.order_id}\n"
        f"Customer: {order.customer_name or '-'} ({order.phone.replace('whatsapp:', '')})\n"
        f"Amount: ₹{order.total_amount}\nInvoice: {order.invoice_number}"
    )
    return PaymentResult(status="paid", reference=order.order_id, invoice_number=order.invoice_number)


@router.post("/booking/verify", response_model=PaymentResult)
async def verify_booking_payment(
    payload: BookingPaymentVerify,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    booking = booking_service.get_booking(db, payload.booking_id)
    if booking is None:
        raise BusinessError.not_found("Booking", payload.booking_id)
    _verify(payload.razorpay_order_id or booking.booking_id, payload.payment_id, payload.signature)

    if booking.status == BookingStatus.CONFIRMED:
        if booking.payment_id == payload.payment_id:
            return PaymentResult(status="confirmed", reference=booking.booking_id, invoice_number=booking.invoice_number)
        raise BusinessError.conflict("Booking already paid")
    if booking.status != BookingStatus.PENDING_PAYMENT:
        raise BusinessError.conflict(f"Booking is {booking.status.replace('_', ' ')}")

    try:
        booking = booking_service.confirm_booking(db, booking, payload.payment_id, services.flow.booking)
    except CapacityError as e:
        raise BusinessError.conflict(e.user_message)

    card = booking_service.format_booking(booking)
    session = services.store.load(booking.phone)
    if session.stage == Stage.PAYMENT_PENDING:
        services.store.save(booking.phone, stage=Stage.BOOKING_CONFIRMED)
    await services.messenger.send(
        booking.phone,
        f"🎉 Booking confirmed!\nInvoice: *{booking.invoice_number}*\n\n{card}",
    )
    await services.messenger.notify_admins(f"🏸 *Booking paid*\n{card}\nInvoice: {booking.invoice_number}")
    return PaymentResult(status="confirmed", reference=booking.booking_id, invoice_number=booking.invoice_number)
