"""
Error taxonomy for the chatbot and safe HTTP errors for the admin/payment API.

Conversation errors carry a `user_message` that is safe to send over
WhatsApp. The engine converts every one of them into a reply at the turn
boundary; nothing reaches the webhook transport as a fault.

HTTP errors use generic messages externally and detailed logging internally.
"""
import logging
from typing import Optional

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


GENERIC_APOLOGY = "Sorry, something went wrong on our side. Please try again in a moment 🙏"


class ChatbotError(Exception):
    """Base class for errors handled at the conversation-turn boundary."""

    user_message: str = GENERIC_APOLOGY

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(ChatbotError):
    """Bad user input. Re-prompt, no state change."""

    user_message = "❌ Invalid selection. Please try again."


class RetrievalError(ChatbotError):
    """Vector store unreachable or query failed."""

    user_message = "Our assistant is taking a short break. Please try again in a few minutes, or type *menu*."


class GenerationError(ChatbotError):
    """Language-model call failed or timed out. Never surfaces to the user as-is."""

    user_message = "Sorry, I am unable to answer that right now."


class CapacityError(ChatbotError):
    """Booking would exceed the per-court player capacity."""

    def __init__(self, requested: int, remaining: int, message: str = ""):
        self.requested = requested
        self.remaining = remaining
        if remaining <= 0:
            text = "❌ Sorry, this slot is now full. Please choose another slot."
        else:
            text = (
                f"❌ Only {remaining} spot{'s' if remaining != 1 else ''} left for this slot, "
                f"but you asked for {requested}. Please choose fewer players or another slot."
            )
        super().__init__(message or f"requested={requested} remaining={remaining}", user_message=text)


class PaymentVerificationError(ChatbotError):
    """Payment signature mismatch. Reject without mutating state."""

    user_message = "Payment verification failed."


class PersistenceError(ChatbotError):
    """Storage write failed."""

    user_message = "Sorry, we could not save your progress. Please try again."


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        """
        Generic 404.

        Example:
            if not order:
                raise BusinessError.not_found("Order")
        """
        if reason:
            logger.warning(f"Not found: {resource} - {reason}")

        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )

    @staticmethod
    def unauthorized(reason: str = "") -> HTTPException:
        """Generic 401 for every authentication failure."""
        logger.warning(f"Unauthorized access attempt: {reason}")
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def bad_request(detail: str) -> HTTPException:
        """400 for input validation / business rule errors the caller caused."""
        logger.info(f"Bad request: {detail}")
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    @staticmethod
    def conflict(detail: str) -> HTTPException:
        """409, e.g. a booking slot filled up before payment was verified."""
        logger.info(f"Conflict: {detail}")
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """Generic 500. Logs the real error, hides it from the caller."""
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=True
            )
        else:
            logger.error("Internal server error occurred", exc_info=True)

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )

