from typing import Optional

from pydantic import BaseModel, Field


class ProductPaymentVerify(BaseModel):
    order_id: str = Field(min_length=1, max_length=32)
    payment_id: str = Field(min_length=1, max_length=64)
    signature: str = Field(min_length=1, max_length=256)
    # Gateway-side order id the signature was computed over; defaults to order_id
    razorpay_order_id: Optional[str] = None


class BookingPaymentVerify(BaseModel):
    booking_id: str = Field(min_length=1, max_length=32)
    payment_id: str = Field(min_length=1, max_length=64)
    signature: str = Field(min_length=1, max_length=256)
    razorpay_order_id: Optional[str] = None


class PaymentResult(BaseModel):
    status: str
    reference: str
    invoice_number: Optional[str] = None
