"""LiteLLM client wrapper for embedding and generation calls.

Every model call in Sift routes through this module. LiteLLM's built-in retry
handles transient errors (num_retries); each call carries a timeout.
"""

from __future__ import annotations

import logging
import os
from typing import Sequence

import litellm

from sift.config import EmbeddingCfg, GenerationCfg

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

LANGUAGE_NAMES: dict[str, str] = {
    "ja": "Japanese",
    "en": "English",
    "ko": "Korean",
    "zh": "Chinese",
}


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "vertex_ai": None,  # Uses application default credentials
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_env(model: str) -> tuple[str, str | None]:
    """Return (provider, API-key env var) for *model*; the env var is None when no key is checked."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    return provider, _PROVIDER_ENV.get(provider)


def validate_api_key(model: str) -> None:
    """Check that the API key env var required by *model*'s provider is set.

    Raises:
        EnvironmentError: If the required key is missing from the environment.
    """
    provider, env_var = provider_env(model)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 2048,
    temperature: float = 0.0,
    num_retries: int = 3,
    timeout: float = 30.0,
) -> str:
    """Call litellm.completion() and return the first choice's text."""
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        timeout=timeout,
    )
    return response.choices[0].message.content or ""


def embed(
    model: str,
    text: str,
    num_retries: int = 3,
    timeout: float = 30.0,
    dimensions: int | None = None,
) -> list[float]:
    """Call litellm.embedding() for one text and return its vector."""
    return embed_many(model, [text], num_retries=num_retries, timeout=timeout, dimensions=dimensions)[0]


def embed_many(
    model: str,
    texts: Sequence[str],
    num_retries: int = 3,
    timeout: float = 30.0,
    dimensions: int | None = None,
) -> list[list[float]]:
    """Embed *texts* in a single litellm.embedding() call, preserving order."""
    kwargs: dict = {"model": model, "input": list(texts), "num_retries": num_retries, "timeout": timeout}
    if dimensions:
        kwargs["dimensions"] = dimensions
    response = litellm.embedding(**kwargs)
    return [item["embedding"] for item in response.data]


# ------------------------------------------------------------------
# Configured client
# ------------------------------------------------------------------


class ModelClient:
    """Embedding + generation calls bound to the configured models.

    Args:
        embedding: Embedding model settings.
        generation: Generative model settings.
    """

    def __init__(
        self,
        embedding: EmbeddingCfg | None = None,
        generation: GenerationCfg | None = None,
    ) -> None:
        self.embedding = embedding or EmbeddingCfg()
        self.generation = generation or GenerationCfg()

    def embed_query(self, text: str) -> list[float]:
        return embed(
            self.embedding.model,
            text,
            num_retries=self.generation.num_retries,
            timeout=self.generation.timeout_seconds,
            dimensions=self.embedding.dimensions,
        )

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in one request (callers handle batching and pacing)."""
        return embed_many(
            self.embedding.model,
            texts,
            num_retries=self.generation.num_retries,
            timeout=self.generation.timeout_seconds,
            dimensions=self.embedding.dimensions,
        )

    def complete(self, messages: list[dict], max_tokens: int = 2048, temperature: float = 0.0) -> str:
        return complete(
            self.generation.model,
            messages,
            max_tokens=max_tokens,
            temperature=temperature,
            num_retries=self.generation.num_retries,
            timeout=self.generation.timeout_seconds,
        )

    def detect_language(self, text: str) -> str:
        """Ask the generative model for the ISO 639-1 code of *text*."""
        answer = self.complete(
            [
                {
                    "role": "system",
                    "content": "Identify the language of the user's text. "
                    "Reply with the two-letter ISO 639-1 code only.",
                },
                {"role": "user", "content": text[:500]},
            ],
            max_tokens=5,
        )
        return answer.strip().lower()[:2]

    def translate(self, text: str, target_language: str) -> str:
        """Translate *text* into *target_language*, keeping formatting intact."""
        name = LANGUAGE_NAMES.get(target_language, target_language)
        return self.complete(
            [
                {
                    "role": "system",
                    "content": f"Translate the user's text into {name}. "
                    "Keep line breaks, lists and URLs unchanged. Reply with the translation only.",
                },
                {"role": "user", "content": text},
            ]
        ).strip()
