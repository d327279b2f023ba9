"""
Conversation stages and the message classifier.

Every inbound text is classified once per turn into a tagged variant:

    Greeting      -> reset to menu with a full welcome
    MenuReset     -> reset to menu
    Selection(n)  -> purely numeric input
    FreeText      -> anything else

Stage handlers consume the variant instead of checking keyword lists
themselves. Priority: greeting/reset keywords first, then numbers, then
free text.
"""
import re
from dataclasses import dataclass
from typing import Optional


class Stage:
    """Conversation stages persisted in chat_sessions.stage"""
    MENU = "menu"
    MANUAL = "manual"  # Human takeover: no automated replies
    CONFIRM_EXIT_FLOW = "confirm_exit_flow"

    # AI assistant
    SELECT_USER_TYPE = "select_user_type"
    CUSTOM_SOLUTIONS = "custom_solutions"
    CUSTOM_ASK_NAME = "custom_solutions_ask_name"
    CUSTOM_ASK_CITY = "custom_solutions_ask_city"
    CUSTOM_ASK_PINCODE = "custom_solutions_ask_pincode"

    # Catalog checkout
    SHOP_TOP_CATEGORY = "shop_top_category"
    SHOP_MID_CATEGORY = "shop_mid_category"
    SHOP_PRODUCT = "shop_product"
    SHOP_QUANTITY = "shop_quantity"
    ASK_NAME = "ask_name"
    ASK_ADDRESS = "ask_address"
    ASK_PINCODE = "ask_pincode"
    SHOP_CONFIRM = "shop_confirm"
    ORDER_STATUS = "order_status"

    # Court booking
    CHOOSE_DATE = "choose_date"
    CHOOSE_PLAYERS = "choose_players"
    CHOOSE_SLOT = "choose_slot"
    CHOOSE_COURT = "choose_court"
    NO_SLOTS_AVAILABLE = "no_slots_available"
    PAYMENT_PENDING = "payment_pending"
    BOOKING_CONFIRMED = "booking_confirmed"
    CHECK_AVAILABILITY_DATE = "check_availability_date"
    AFTER_AVAILABILITY = "after_availability"


# Multi-step selection stages where conversational input offers an interrupt
INTERRUPTIBLE_STAGES = frozenset({
    Stage.SHOP_TOP_CATEGORY,
    Stage.SHOP_MID_CATEGORY,
    Stage.SHOP_PRODUCT,
    Stage.SHOP_QUANTITY,
    Stage.SHOP_CONFIRM,
    Stage.CHOOSE_DATE,
    Stage.CHOOSE_PLAYERS,
    Stage.CHOOSE_SLOT,
    Stage.CHOOSE_COURT,
})

LEAD_CAPTURE_STAGES = frozenset({
    Stage.CUSTOM_ASK_NAME,
    Stage.CUSTOM_ASK_CITY,
    Stage.CUSTOM_ASK_PINCODE,
})


class UserType:
    HOMEBAKERS = "Homebakers"
    STORE_OWNER_BULK_BUYER = "StoreOwnerBulkBuyer"
    SWEET_SHOP_OWNER = "SweetShopOwner"

    ALL = (HOMEBAKERS, STORE_OWNER_BULK_BUYER, SWEET_SHOP_OWNER)

    LABELS = {
        HOMEBAKERS: "Homebaker",
        STORE_OWNER_BULK_BUYER: "Store Owner / Bulk Buyer",
        SWEET_SHOP_OWNER: "Sweet Shop Owner",
    }


GREETING_KEYWORDS = frozenset({
    "hi", "hii", "hiii", "hello", "helo", "hey", "hola", "namaste",
    "good morning", "good afternoon", "good evening", "good night",
})

MENU_RESET_KEYWORDS = frozenset({
    "menu", "main menu", "home", "restart", "start", "begin", "reset",
    "exit", "end", "stop", "thanks", "thank you", "thankyou", "thx",
})

# Known short replies that are never treated as a conversational question
SHORT_COMMANDS = frozenset({
    "yes", "y", "no", "n", "cancel", "confirm", "back", "paid", "book",
    "ok", "okay", "skip", "done",
})


class MessageKind:
    GREETING = "greeting"
    MENU_RESET = "menu_reset"
    SELECTION = "selection"
    FREE_TEXT = "free_text"


@dataclass(frozen=True)
class Classified:
    kind: str
    text: str  # normalized text
    number: Optional[int] = None

    @property
    def is_reset(self) -> bool:
        return self.kind in (MessageKind.GREETING, MessageKind.MENU_RESET)

    @property
    def is_conversational(self) -> bool:
        """Looks like a question rather than a menu reply."""
        return (
            self.kind == MessageKind.FREE_TEXT
            and bool(self.text)
            and self.text not in SHORT_COMMANDS
        )


_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCT = re.compile(r"[\s!.,?🙏👋]+$")
_NUMBER = re.compile(r"^\d{1,6}$")


def normalize(text: Optional[str]) -> str:
    text = _WHITESPACE.sub(" ", (text or "").strip().lower())
    return _TRAILING_PUNCT.sub("", text)


def classify_message(text: Optional[str]) -> Classified:
    """Classify one inbound message body."""
    normalized = normalize(text)

    if normalized in GREETING_KEYWORDS:
        return Classified(MessageKind.GREETING, normalized)
    if normalized in MENU_RESET_KEYWORDS:
        return Classified(MessageKind.MENU_RESET, normalized)
    if _NUMBER.match(normalized):
        return Classified(MessageKind.SELECTION, normalized, int(normalized))
    return Classified(MessageKind.FREE_TEXT, normalized)
