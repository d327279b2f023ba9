"""
Deterministic pricing: MOQ, bulk vs standard rates, GST and order totals.

All money is Decimal. Quotations are rounded to whole rupees at each step
(subtotal -> GST -> total); catalog orders keep paise because catalog
prices are GST-inclusive and quoted to the paisa.

The LLM never computes any of this. `pricing_rules_summary` renders the
rules into the custom-solutions prompt and `build_quote` recomputes them
before an order is materialised.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple

from sachetan.agent.flow_config import FlowConfig
from sachetan.core.exceptions import ValidationError

ONE_RUPEE = Decimal("1")
PAISA = Decimal("0.01")

_SIZE = re.compile(r"(\d+(?:\.\d+)?)\s*[x×*]\s*(\d+(?:\.\d+)?)\s*[x×*]\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_WEIGHT = re.compile(r"(\d+(?:\.\d+)?)\s*(kg|kilo)", re.IGNORECASE)


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_rupees(amount) -> Decimal:
    return _dec(amount).quantize(ONE_RUPEE, rounding=ROUND_HALF_UP)


def round_paise(amount) -> Decimal:
    return _dec(amount).quantize(PAISA, rounding=ROUND_HALF_UP)


def calculate_gst(base_amount, gst_rate, whole_rupees: bool = True) -> dict:
    """GST breakdown for Indian tax compliance.

    Returns:
        dict with base_amount, gst_rate, gst_amount, total_amount
    """
    rounder = round_rupees if whole_rupees else round_paise
    base = rounder(base_amount)
    rate = _dec(gst_rate)
    gst_amt = rounder(base * rate)
    return {
        "base_amount": base,
        "gst_rate": rate,
        "gst_amount": gst_amt,
        "total_amount": base + gst_amt,
    }


def format_percent(rate) -> str:
    pct = _dec(rate) * 100
    if pct == pct.to_integral_value():
        return str(pct.quantize(ONE_RUPEE))
    return str(pct.normalize())


def line_total(unit_price, quantity: int) -> Decimal:
    return round_paise(_dec(unit_price) * int(quantity))


@dataclass
class LineItem:
    name: str
    unit_price: Decimal
    quantity: int
    product_id: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return line_total(self.unit_price, self.quantity)


@dataclass
class OrderTotals:
    subtotal: Decimal
    gst_rate: Decimal
    gst_amount: Decimal
    total: Decimal


def compute_order_totals(
    items: Iterable[LineItem],
    gst_rate=Decimal("0"),
    override_total=None,
    whole_rupees: bool = False,
) -> OrderTotals:
    """
    subtotal = sum of line totals; GST applied on the subtotal; total = subtotal + GST.
    An explicit `override_total` replaces the computed total (GST left as computed).
    """
    items = list(items)
    if not items:
        raise ValidationError("Order has no items", user_message="Your cart is empty.")
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    breakdown = calculate_gst(subtotal, gst_rate, whole_rupees=whole_rupees)
    total = breakdown["total_amount"] if override_total is None else round_paise(override_total)
    return OrderTotals(
        subtotal=breakdown["base_amount"],
        gst_rate=breakdown["gst_rate"],
        gst_amount=breakdown["gst_amount"],
        total=total,
    )


def normalize_size(size: Optional[str], config: FlowConfig) -> Optional[str]:
    """'7 x 7 x 5 inch' -> '7x7x5'; '1 kg' -> configured box size for that weight."""
    if not size:
        return None
    match = _SIZE.search(size)
    if match:
        parts = [p.rstrip("0").rstrip(".") if "." in p else p for p in match.groups()]
        return "x".join(parts)
    match = _WEIGHT.search(size)
    if match:
        weight = match.group(1)
        if "." in weight:
            weight = weight.rstrip("0").rstrip(".")
        return config.size_by_weight.get(f"{weight}kg")
    return None


def minimum_order_quantity(config: FlowConfig, user_type: Optional[str]) -> int:
    return config.moq.get(user_type or "", config.default_moq)


def select_unit_rate(
    config: FlowConfig,
    size_key: Optional[str],
    quantity: int,
    quoted_rate=None,
) -> Tuple[Decimal, str]:
    """Returns (rate, kind) where kind is 'quoted', 'bulk' or 'standard'."""
    if quoted_rate is not None:
        return round_paise(quoted_rate), "quoted"
    card = config.rate_table.get(size_key or "")
    if card is None:
        raise ValidationError(
            f"No rate for size {size_key}",
            user_message="Please share the box size (e.g. 8x8x5 or 1 kg) so we can quote a rate.",
        )
    if quantity >= config.bulk_threshold:
        return card.bulk, "bulk"
    return card.standard, "standard"


def select_gst_rate(config: FlowConfig, user_type: Optional[str], category: Optional[str]) -> Decimal:
    """User-specific rule, then category rule, then the default rate."""
    category = (category or "").strip().lower()
    if user_type and (user_type, category) in config.gst_rates:
        return config.gst_rates[(user_type, category)]
    if ("*", category) in config.gst_rates:
        return config.gst_rates[("*", category)]
    return config.default_gst_rate


@dataclass
class Quote:
    product: str
    size: Optional[str]
    quantity: int
    unit_rate: Decimal
    rate_kind: str
    moq: int
    totals: OrderTotals
    items: List[LineItem] = field(default_factory=list)

    def summary(self) -> str:
        gst_pct = format_percent(self.totals.gst_rate)
        return (
            f"*{self.product}*{f' ({self.size})' if self.size else ''}\n"
            f"Qty: {self.quantity} × ₹{self.unit_rate} ({self.rate_kind} rate)\n"
            f"Subtotal: ₹{self.totals.subtotal}\n"
            f"GST {gst_pct}%: ₹{self.totals.gst_amount}\n"
            f"*Total: ₹{self.totals.total}*"
        )


def build_quote(config: FlowConfig, user_type: Optional[str], order_ctx: dict) -> Quote:
    """
    Recompute a quotation from the order context.

    Raises:
        ValidationError: quantity missing or below MOQ, or no rate for the size
    """
    quantity = order_ctx.get("quantity")
    if not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity missing", user_message="How many pieces do you need?")

    moq = minimum_order_quantity(config, user_type)
    if quantity < moq:
        raise ValidationError(
            f"Quantity {quantity} below MOQ {moq}",
            user_message=f"Our minimum order for {config.user_type_label(user_type)}s is *{moq} pieces*.",
        )

    size_key = normalize_size(order_ctx.get("size"), config)
    rate, kind = select_unit_rate(config, size_key, quantity, order_ctx.get("quoted_rate"))
    category = order_ctx.get("category") or order_ctx.get("product")
    gst_rate = select_gst_rate(config, user_type, category)

    product = (order_ctx.get("product") or "Custom box").strip().title()
    item = LineItem(name=product, unit_price=rate, quantity=quantity, size=size_key or order_ctx.get("size"))
    totals = compute_order_totals([item], gst_rate, whole_rupees=True)
    return Quote(
        product=product,
        size=item.size,
        quantity=quantity,
        unit_rate=rate,
        rate_kind=kind,
        moq=moq,
        totals=totals,
        items=[item],
    )


def pricing_rules_summary(config: FlowConfig, user_type: Optional[str]) -> str:
    """Human-readable rules for the system prompt."""
    moq = minimum_order_quantity(config, user_type)
    lines = [
        f"- MOQ for {config.user_type_label(user_type)}: {moq} pieces. Below MOQ, explain politely and suggest alternatives.",
        f"- Bulk rate applies from {config.bulk_threshold} pieces; below that the standard rate applies.",
        "- Rates per piece (standard / bulk):",
    ]
    for size, card in config.rate_table.items():
        lines.append(f"  • {size}: ₹{card.standard} / ₹{card.bulk}")
    weights = ", ".join(f"{w} cake → {s}" for w, s in config.size_by_weight.items())
    if weights:
        lines.append(f"- Cake weight to box size: {weights}")
    default_pct = format_percent(config.default_gst_rate)
    lines.append(f"- GST: {default_pct}% by default.")
    for (who, category), rate in config.gst_rates.items():
        if who in ("*", user_type):
            lines.append(f"  • {category}: {format_percent(rate)}%")
    lines.append("- Subtotal = rate × quantity, rounded to whole rupees; GST on subtotal, rounded; Total = Subtotal + GST.")
    return "\n".join(lines)
