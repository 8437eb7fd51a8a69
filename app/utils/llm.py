"""
LLM provider bridge using OpenRouter or Ollama.

Provides:
- Chat completion via OpenRouter (hosted) or Ollama (local)
- Text embeddings with an in-memory cache
- Token estimation
- HTTP failures mapped onto the ingestion error taxonomy
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.errors import IngestError, MalformedInputError, TransientError
from app.utils.helpers import hash_text

EMBEDDING_DIMENSIONS = {
    "openrouter": 1536,  # text-embedding-3-small
    "ollama": 768,  # nomic-embed-text
}


class LLMError(IngestError):
    """Base class for provider failures."""


class LLMConfigError(LLMError):
    """Provider is not usable with the current configuration."""


class LLMTimeoutError(LLMError, TransientError):
    """Request timed out."""


class LLMRateLimitError(LLMError, TransientError):
    """Provider asked us to slow down."""


class LLMProviderError(LLMError, TransientError):
    """Provider-side or network failure."""


class LLMRequestError(LLMError, MalformedInputError):
    """Provider rejected the request itself."""


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0


@dataclass
class LLMResponse:
    """Completion result."""
    text: str
    usage: TokenUsage
    provider: str
    model: str


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, rounded up."""
    return math.ceil(len(text) / 4)


class LLMBridge:
    """Client for chat completion and embeddings."""

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize LLM bridge.

        Args:
            settings: Settings to read provider configuration from
            transport: Optional httpx transport (used by tests)

        Raises:
            LLMConfigError: if the provider is unknown or lacks credentials
        """
        self.settings = settings or get_settings()
        self.provider = self.settings.llm_provider.lower()

        if self.provider == "openrouter":
            if not self.settings.openrouter_api_key:
                raise LLMConfigError("OPENROUTER_API_KEY is required")
            self.model = self.settings.openrouter_model
            self.embedding_model = self.settings.openrouter_embedding_model
            base_url = self.settings.openrouter_url
            headers = {"Authorization": f"Bearer {self.settings.openrouter_api_key}"}
        elif self.provider == "ollama":
            self.model = self.settings.ollama_chat_model
            self.embedding_model = self.settings.ollama_embedding_model
            base_url = self.settings.ollama_url
            headers = {}
        else:
            raise LLMConfigError(f"Unknown LLM provider: {self.settings.llm_provider}")

        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=self.settings.llm_timeout,
            transport=transport,
        )
        self.cache: Dict[str, List[float]] = {}

        logger.info(f"LLM bridge initialized: provider={self.provider} model={self.model}")

    def close(self):
        self._client.close()

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            prompt: User message
            system: Optional system prompt
            max_tokens: Completion budget
            temperature: Sampling temperature

        Returns:
            Completion text with token usage
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        if self.provider == "openrouter":
            data = self._post("/chat/completions", {
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            })
            try:
                text = data["choices"][0]["message"]["content"] or ""
            except (KeyError, IndexError, TypeError) as e:
                raise LLMProviderError(f"Unexpected completion payload: {e}") from e
            usage = data.get("usage") or {}
            return LLMResponse(
                text=text,
                usage=TokenUsage(
                    input=usage.get("prompt_tokens", estimate_tokens(prompt)),
                    output=usage.get("completion_tokens", estimate_tokens(text)),
                ),
                provider=self.provider,
                model=self.model,
            )

        data = self._post("/api/chat", {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        })
        text = (data.get("message") or {}).get("content", "")
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                input=data.get("prompt_eval_count", estimate_tokens(prompt)),
                output=data.get("eval_count", estimate_tokens(text)),
            ),
            provider=self.provider,
            model=self.model,
        )

    def embed(self, text: str, use_cache: bool = True) -> List[float]:
        """
        Generate embedding for text.

        Args:
            text: Text to embed
            use_cache: Whether to use cache

        Returns:
            Embedding vector
        """
        cache_key = hash_text(text)
        if use_cache and cache_key in self.cache:
            logger.debug(f"Cache hit for text: {text[:50]}...")
            return self.cache[cache_key]

        if self.provider == "openrouter":
            data = self._post("/embeddings", {"model": self.embedding_model, "input": text})
            try:
                embedding = data["data"][0]["embedding"]
            except (KeyError, IndexError, TypeError) as e:
                raise LLMProviderError(f"Unexpected embedding payload: {e}") from e
        else:
            data = self._post("/api/embeddings", {"model": self.embedding_model, "prompt": text})
            embedding = data.get("embedding")
            if not embedding:
                raise LLMProviderError("Ollama returned no embedding")

        if use_cache:
            self.cache[cache_key] = embedding
        return embedding

    def get_embedding_dimension(self) -> int:
        return EMBEDDING_DIMENSIONS[self.provider]

    def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"{self.provider} request timed out: {e}") from e
        except httpx.TransportError as e:
            raise LLMProviderError(f"{self.provider} unreachable: {e}") from e

        status = response.status_code
        if status == 429:
            raise LLMRateLimitError(f"{self.provider} rate limited the request")
        if status >= 500:
            raise LLMProviderError(f"{self.provider} returned {status}: {response.text[:200]}")
        if status >= 400:
            raise LLMRequestError(f"{self.provider} rejected request ({status}): {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise LLMProviderError(f"{self.provider} returned invalid JSON: {e}") from e
