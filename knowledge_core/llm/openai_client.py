"""
OpenAI-compatible chat client. Works with OpenAI, Groq, Together.ai,
and any other provider that implements the OpenAI chat/completions API.
"""

import logging
from typing import Optional

import requests

from .base import GenerativeClient

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful knowledge-management assistant."


class TokenUsage:
    """Running token counts across chat calls."""

    def __init__(self):
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.call_count = 0

    def record(self, prompt_tokens: int, completion_tokens: int):
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens
        self.call_count += 1

    @property
    def total_tokens(self):
        return self.prompt_tokens + self.completion_tokens


class OpenAIChatClient(GenerativeClient):

    def __init__(self, base_url: str, model: str, api_key: str,
                 timeout: tuple = (10, 120), **kwargs):
        super().__init__(model=model, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.usage = TokenUsage()

    @classmethod
    def from_config(cls, cfg) -> "OpenAIChatClient":
        return cls(
            base_url=cfg.OPENAI_BASE_URL,
            model=cfg.CHAT_MODEL,
            api_key=cfg.OPENAI_API_KEY,
            max_retries=cfg.LLM_MAX_RETRIES,
            retry_delay=cfg.LLM_RETRY_DELAY,
        )

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _generate(self, prompt: str, system_message: Optional[str], model: str,
                  max_tokens: Optional[int], temperature: float) -> str:
        est_tokens = int(len(prompt.split()) * 1.3)
        logger.debug("[OpenAI] Sending ~%d est. tokens to %s", est_tokens, model)

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_message or DEFAULT_SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "stream": False,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        url = f"{self.base_url}/chat/completions"
        response = requests.post(url, headers=self._headers(), json=payload,
                                 timeout=self.timeout)
        response.raise_for_status()
        data = response.json()

        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", est_tokens)
        completion_tokens = usage.get("completion_tokens", 0)
        self.usage.record(
            prompt_tokens if isinstance(prompt_tokens, int) else est_tokens,
            completion_tokens if isinstance(completion_tokens, int) else 0,
        )
        logger.debug("[OpenAI] Usage: prompt=%s completion=%s",
                     prompt_tokens, completion_tokens)

        return data["choices"][0]["message"]["content"] or ""
