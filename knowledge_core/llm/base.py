import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when all generative-service retries are exhausted."""


class GenerativeClient(ABC):
    """Free-text generation contract used for relationship explanations.

    ``generate(prompt, system_message, model, max_tokens, temperature)``
    returns plain text.  Prompt wording is the caller's concern.
    """

    def __init__(self, model: str = "", max_retries: int = 3, retry_delay: float = 2.0):
        self.model = model
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    # ── Public entry point ──

    def generate(
        self,
        prompt: str,
        system_message: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
    ) -> str:
        """Generate text with automatic retry and jittered exponential backoff.

        Raises :class:`LLMError` after all retries are exhausted.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = self._generate(
                    prompt,
                    system_message=system_message,
                    model=model or self.model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                if result and result.strip():
                    return result.strip()
                logger.warning("[LLM] Empty response on attempt %d/%d",
                               attempt, self.max_retries)
                last_error = LLMError("empty response")
            except LLMError:
                raise
            except Exception as e:
                last_error = e
                logger.warning("[LLM] Error on attempt %d/%d: %s",
                               attempt, self.max_retries, e)

            if attempt < self.max_retries:
                wait = self.retry_delay * (2 ** (attempt - 1))
                jitter = wait * 0.1 * random.random()
                # Rate limited: wait longer
                if "429" in str(last_error):
                    wait *= 2
                    logger.info("[LLM] Rate limit detected (429). Backing off for %.1fs", wait)
                time.sleep(wait + jitter)

        raise LLMError(
            f"LLM failed after {self.max_retries} retries: {last_error}")

    # ── Subclass hook ──

    @abstractmethod
    def _generate(
        self,
        prompt: str,
        system_message: Optional[str],
        model: str,
        max_tokens: Optional[int],
        temperature: float,
    ) -> str:
        """Single generation attempt."""
