"""
Groq API client: answer generation for the RAG engine.

The model only writes the natural-language reply (plus optional control
markers parsed by `reply_parser`). It never touches the database, sends
messages or decides prices; pricing rules are computed in code and handed to
it inside the system prompt.

Failures are raised as GenerationError after retries. The RAG engine turns
them into a fixed apology, so callers never see a provider exception.
"""

import logging
import time
from typing import Optional

from groq import Groq, APIError, APITimeoutError, RateLimitError

from sachetan.core.config import settings
from sachetan.core.exceptions import GenerationError

# NEVER log API keys
logger = logging.getLogger(__name__)


class GroqClient:
    """
    Minimal wrapper around the Groq chat-completions API.

    - Temperature: 0.3 (short, natural sales replies)
    - Max tokens: 700 (WhatsApp answers are short; state block included)
    - Retries: 2 with exponential backoff on timeouts and rate limits
    """

    TEMPERATURE = 0.3
    MAX_TOKENS = 700

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        api_key = settings.GROQ_API_KEY if api_key is None else api_key
        self.model = model or settings.GROQ_MODEL

        if not api_key:
            logger.warning(
                "⚠️ GROQ_API_KEY not found in environment. "
                "Answer generation is DISABLED; users will get the fallback apology."
            )
            self.client = None
        else:
            try:
                self.client = Groq(api_key=api_key, timeout=settings.GROQ_TIMEOUT_SECONDS)
                logger.info("✅ Groq client initialized successfully")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Groq client: {e}")
                self.client = None

    def is_available(self) -> bool:
        return self.client is not None

    def generate(self, system_prompt: str, user_prompt: str, max_retries: int = 2) -> str:
        """
        Blocking chat completion.

        Raises:
            GenerationError: client disabled, empty reply, or provider failure
        """
        if not self.is_available():
            raise GenerationError("Groq client not configured")

        for attempt in range(max_retries + 1):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=self.TEMPERATURE,
                    max_tokens=self.MAX_TOKENS,
                    stream=False,
                )

                if response.choices and response.choices[0].message.content:
                    content = response.choices[0].message.content
                    logger.debug(f"LLM response received: {len(content)} chars (attempt {attempt+1})")
                    return content
                raise GenerationError("LLM returned empty response")

            except APITimeoutError as e:
                if attempt < max_retries:
                    wait_time = 0.5 * (2 ** attempt)
                    logger.warning(f"⏱️ Groq timeout, retry {attempt+1}/{max_retries} after {wait_time}s")
                    time.sleep(wait_time)
                else:
                    raise GenerationError(f"Groq timeout after {max_retries} retries") from e

            except RateLimitError as e:
                if attempt < max_retries:
                    wait_time = 1.0 * (2 ** attempt)
                    logger.warning(f"⚠️ Groq rate limit, retry {attempt+1}/{max_retries} after {wait_time}s")
                    time.sleep(wait_time)
                else:
                    raise GenerationError("Groq rate limit exceeded after retries") from e

            except APIError as e:
                # Permanent errors are not retried
                raise GenerationError(f"Groq API error: {e}") from e

        raise GenerationError("Groq generation failed")

    def ping(self) -> bool:
        """Cheap reachability probe for the health endpoint."""
        if not self.is_available():
            return False
        try:
            self.client.models.list()
            return True
        except Exception as e:
            logger.warning(f"Groq ping failed: {e}")
            return False


_groq_client: Optional[GroqClient] = None


def get_groq_client() -> GroqClient:
    """Get or create the shared GroqClient instance."""
    global _groq_client
    if _groq_client is None:
        _groq_client = GroqClient()
    return _groq_client
