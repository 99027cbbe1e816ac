"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable without an editable install
- Tests never pick up a real OPENAI_API_KEY from the environment
- Deterministic fake embeddings are available to unit and integration tests
"""

from __future__ import annotations

import hashlib
import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from project_retrieval.errors import EmbeddingProviderError  # noqa: E402

TEST_DIMENSIONS = 8


class FakeEmbedding:
    """Deterministic embedding client for tests.

    Texts listed in `exact` map to fixed vectors; anything else is hashed
    into a stable pseudo-random vector. Texts containing any marker in
    `fail_on` raise EmbeddingProviderError.
    """

    model_name = "fake-embedding"

    def __init__(self, dimensions: int = TEST_DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.exact: dict[str, list[float]] = {}
        self.fail_on: set[str] = set()
        self.calls: list[str] = []
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True

    async def embed(self, text: str, api_key: str) -> list[float]:
        self.calls.append(text)
        if not api_key:
            raise EmbeddingProviderError("No embedding API key configured")
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingProviderError(f"provider rejected text: {text[:20]!r}")
        if text in self.exact:
            return self.exact[text]
        digest = hashlib.sha256(text.encode()).digest()
        return [b / 255.0 for b in digest[: self.dimensions]]


@pytest.fixture
def fake_embedding() -> FakeEmbedding:
    return FakeEmbedding()


@pytest.fixture(autouse=True)
def _no_real_openai_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
