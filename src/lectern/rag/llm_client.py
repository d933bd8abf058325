"""LiteLLM client wrapper with retry, backoff, and API key validation.

All LLM and embedding calls in the ingestion and retrieval pipelines route
through this module. LiteLLM's built-in retry is used (``num_retries``,
exponential backoff).
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import litellm

from lectern.config import GenerationCfg

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


ASSISTANT_SYSTEM_PROMPT = """\
You are an intelligent educational assistant that provides thoughtful, nuanced \
responses based on your knowledge base.

CORE PRINCIPLES:
1. Base all factual claims on the provided document excerpts, using [number] citations
2. You can synthesize, analyze, and draw connections between different parts of the material
3. Explain concepts with analogies, examples, and different perspectives
4. Understand the intent behind questions and provide helpful, relevant responses
5. If asked about something not in your knowledge base, acknowledge this naturally \
and guide the conversation to related topics you can discuss

Stay grounded in the source material and include citations like [1] when \
referencing specific facts."""


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

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
    temperature: float = 0.7,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed_texts(model: str, texts: list[str], num_retries: int = 3) -> list[list[float]]:
    """Call litellm.embedding() for a batch of *texts*. Returns one vector per text."""
    response = litellm.embedding(
        model=model,
        input=texts,
        num_retries=num_retries,
    )
    return [item["embedding"] for item in response.data]


class Generator(Protocol):
    """Answer generation collaborator: prompt in, text out."""

    def generate(self, prompt: str) -> str: ...


class LiteLLMGenerator:
    """Generator that sends the prompt to a chat model with the assistant system prompt."""

    def __init__(self, config: GenerationCfg | None = None, num_retries: int = 3) -> None:
        self._config = config or GenerationCfg()
        self._num_retries = num_retries

    def generate(self, prompt: str) -> str:
        logger.debug("Generating with %s (%d prompt chars)", self._config.model, len(prompt))
        return complete(
            self._config.model,
            [
                {"role": "system", "content": ASSISTANT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
            num_retries=self._num_retries,
        )
