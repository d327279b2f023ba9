"""
Per-deployment conversation configuration.

One state machine serves every deployment; what differs (menu copy, rate
table, MOQ/GST rules, RAG prompt template, booking parameters) lives in a
FlowConfig instance handed to the engine.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple

from sachetan.agent.conversation_state import UserType
from sachetan_ai.prompts import CUSTOM_SOLUTIONS_TEMPLATE


@dataclass(frozen=True)
class RateCard:
    """Per-piece rates for one box size."""
    standard: Decimal
    bulk: Decimal


@dataclass
class BookingConfig:
    court_capacity: int = 4
    min_players: int = 2
    max_players: int = 4
    advance_buffer_hours: int = 2
    booking_days: int = 7
    last_booking_hour: int = 22  # today stops being bookable after this hour
    price_per_player: Dict[int, Decimal] = field(default_factory=lambda: {
        1: Decimal("200"),
        2: Decimal("300"),
    })
    payment_window_minutes: int = 5


@dataclass
class FlowConfig:
    business_name: str = "Sachetan Packaging"

    welcome_text: str = (
        "👋 Welcome to *Sachetan Packaging*!\n"
        "We make cake boxes, pizza boxes, bases, paper bags and custom printed packaging.\n\n"
        "How can we help you today?"
    )
    menu_text: str = (
        "📋 *Main Menu*\n\n"
        "1️⃣ Buy Products\n"
        "2️⃣ Order Status\n"
        "3️⃣ AI Assistant (custom boxes & quotations)\n"
        "4️⃣ FAQ & Support\n\n"
        "Reply with a number, or just type your question."
    )
    support_text: str = (
        "❓ *FAQ & Support*\n\n"
        "• Delivery: 3-7 working days across Maharashtra\n"
        "• Custom printing: share your design as PDF, AI or CDR\n"
        "• Payments: UPI / cards via secure payment link\n\n"
        "Type *menu* to go back or ask us anything."
    )
    contact_text: str = (
        "📞 Our team will get back to you shortly.\n"
        "You can also call us during business hours (10 AM - 7 PM)."
    )
    rules_text: str = (
        "🏸 *Court Booking Rules*\n\n"
        "• 2 to 4 players per booking\n"
        "• ₹200 per player for 1 hour, ₹300 per player for 2 hours\n"
        "• Book at least 2 hours in advance\n"
        "• Unpaid bookings are released after 5 minutes"
    )
    user_type_prompt: str = (
        "To suggest the right boxes and prices, tell us who you are:\n\n"
        "1️⃣ Homebaker\n"
        "2️⃣ Store Owner / Bulk Buyer\n"
        "3️⃣ Sweet Shop Owner"
    )
    user_type_options: Tuple[str, ...] = UserType.ALL

    # Quotation rules
    moq: Dict[str, int] = field(default_factory=lambda: {
        UserType.HOMEBAKERS: 100,
        UserType.STORE_OWNER_BULK_BUYER: 1000,
        UserType.SWEET_SHOP_OWNER: 500,
    })
    default_moq: int = 100
    bulk_threshold: int = 1000
    rate_table: Dict[str, RateCard] = field(default_factory=lambda: {
        "7x7x5": RateCard(standard=Decimal("11.00"), bulk=Decimal("6.00")),
        "8x8x5": RateCard(standard=Decimal("12.50"), bulk=Decimal("8.00")),
        "10x10x5": RateCard(standard=Decimal("18.00"), bulk=Decimal("10.00")),
    })
    # Cake weight to box size, for customers who say "1 kg box"
    size_by_weight: Dict[str, str] = field(default_factory=lambda: {
        "0.5kg": "7x7x5",
        "1kg": "8x8x5",
        "2kg": "10x10x5",
    })
    default_gst_rate: Decimal = Decimal("0.05")
    # (user type or "*", product category) -> rate; user-specific entries win
    gst_rates: Dict[Tuple[str, str], Decimal] = field(default_factory=lambda: {
        ("*", "laminated box"): Decimal("0.12"),
        ("*", "printed box"): Decimal("0.18"),
        (UserType.STORE_OWNER_BULK_BUYER, "paper bag"): Decimal("0.12"),
    })

    # Catalog checkout
    shop_min_quantity: int = 1
    order_payment_window_minutes: int = 5

    # Assistant behaviour
    custom_solutions_template: str = CUSTOM_SOLUTIONS_TEMPLATE
    strict_when_user_type_known: bool = True
    ack_before_generation: bool = False
    ack_text: str = "🔍 Checking that for you..."
    require_lead_capture: bool = True
    ask_pincode: bool = True

    # Top-category keyword -> user type tag for products synced into the index
    category_user_types: Dict[str, str] = field(default_factory=lambda: {
        "home": UserType.HOMEBAKERS,
        "bakery": UserType.HOMEBAKERS,
        "bulk": UserType.STORE_OWNER_BULK_BUYER,
        "wholesale": UserType.STORE_OWNER_BULK_BUYER,
        "store": UserType.STORE_OWNER_BULK_BUYER,
        "sweet": UserType.SWEET_SHOP_OWNER,
        "mithai": UserType.SWEET_SHOP_OWNER,
    })

    booking: BookingConfig = field(default_factory=BookingConfig)

    def user_type_label(self, user_type: Optional[str]) -> str:
        return UserType.LABELS.get(user_type or "", "Customer")


SACHETAN_FLOW = FlowConfig()
