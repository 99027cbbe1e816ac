"""Embedding client abstraction for the external embedding provider.

The retrieval backend depends on exactly one network contract:
``embed(text, api_key) -> vector``. Credentials are passed per call because
they live in user settings and can change while the process runs.
"""

import asyncio
from typing import Protocol

from loguru import logger
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)
from pydantic import BaseModel, Field

from project_retrieval.errors import EmbeddingProviderError


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        model: Model identifier (e.g., "openai/text-embedding-3-small")
        version: Version tag recorded in index manifests
        dimensions: Expected embedding dimensionality
        max_retries: Maximum attempts for transient failures
        timeout_seconds: API request timeout
        retry_backoff_seconds: Base delay for exponential backoff
        api_key: Default API key (set via env var)
        base_url: Optional OpenAI-compatible endpoint
    """

    model: str = "openai/text-embedding-3-small"
    version: str = "v1"
    dimensions: int = Field(default=1536, ge=8, le=4096)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    api_key: str | None = None
    base_url: str | None = None


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    model_name: str

    async def embed(self, text: str, api_key: str) -> list[float]:
        """Generate an embedding for a single text.

        Args:
            text: Input text
            api_key: Credential for the provider

        Returns:
            Embedding vector

        Raises:
            EmbeddingProviderError: If the provider call fails after retries
        """
        ...

    async def aclose(self) -> None:
        """Release any network resources held by the client."""
        ...


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic."""

    def __init__(self, config: EmbeddingConfig):
        """Initialize the client.

        Args:
            config: Embedding configuration
        """
        self.config = config
        self.model_name = config.model.removeprefix("openai/")
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client_for(self, api_key: str) -> AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            # Retries are handled here so the SDK must not retry on its own
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )
            self._clients[api_key] = client
        return client

    async def embed(self, text: str, api_key: str) -> list[float]:
        """Generate an embedding with retry on timeouts and rate limits.

        Args:
            text: Input text
            api_key: OpenAI API key

        Returns:
            Embedding vector of `config.dimensions` floats

        Raises:
            ValueError: If text is empty
            EmbeddingProviderError: For missing credentials, API failures after
                all retries, or a vector of the wrong size
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        if not api_key:
            raise EmbeddingProviderError("No embedding API key configured")

        client = self._client_for(api_key)
        attempts = self.config.max_retries

        for attempt in range(attempts):
            try:
                response = await client.embeddings.create(model=self.model_name, input=[text])
                vector = list(response.data[0].embedding)

                if len(vector) != self.config.dimensions:
                    raise EmbeddingProviderError(
                        f"Expected {self.config.dimensions} dimensions, got {len(vector)}"
                    )

                logger.debug(
                    f"Embedded {len(text)} chars with {self.model_name} "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                return vector

            except (APITimeoutError, APIConnectionError) as e:
                logger.warning(f"Timeout embedding text (attempt {attempt + 1}/{attempts}): {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.retry_backoff_seconds * 2**attempt)
                else:
                    raise EmbeddingProviderError(f"Embedding request timed out: {e}") from e

            except RateLimitError as e:
                logger.warning(f"Rate limited (attempt {attempt + 1}/{attempts}): {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(self.config.retry_backoff_seconds * 2 ** (attempt + 1))
                else:
                    raise EmbeddingProviderError(f"Embedding rate limit exceeded: {e}") from e

            except APIStatusError as e:
                # Non-retryable HTTP error
                logger.error(f"HTTP error embedding text: {e}")
                raise EmbeddingProviderError(
                    f"Embedding provider returned {e.status_code}: {e.message}"
                ) from e

        raise EmbeddingProviderError("Exhausted all retry attempts")

    async def aclose(self) -> None:
        """Close the HTTP client of every API key seen so far."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()
        if clients:
            logger.debug(f"Closed {len(clients)} embedding clients")


def create_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Factory function to create an embedding client based on model config.

    Example:
        >>> config = EmbeddingConfig(model="openai/text-embedding-3-small", dimensions=1536)
        >>> client = create_embedding_client(config)
    """
    if config.model.startswith("openai/"):
        return OpenAIEmbedding(config)
    raise ValueError(f"Unknown model prefix in {config.model!r}. Expected 'openai/'")
