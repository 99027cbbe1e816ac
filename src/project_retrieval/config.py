"""Configuration management for the retrieval backend using Hydra.

All configuration is loaded from YAML files in conf/retrieval/.
This module provides typed config objects and validation.
"""

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

from project_retrieval.chunking import ChunkingConfig
from project_retrieval.embedding import EmbeddingConfig


class IndexConfig(BaseModel):
    """Per-project vector index configuration.

    Attributes:
        vectors_root: Directory holding one sub-directory per project
        lock_timeout_seconds: How long sync waits for the on-disk file lock
    """

    vectors_root: str = "data/vectors"
    lock_timeout_seconds: float = Field(default=30.0, gt=0.0)


class StoreConfig(BaseModel):
    """Chunk store configuration.

    Attributes:
        db_path: SQLite database file (":memory:" for an ephemeral store)
    """

    db_path: str = "data/chunks.db"


class RetrievalSettings(BaseModel):
    """User-facing retrieval settings.

    Attributes:
        enabled: Whether chunks are vectorized and searched at all
        top_k: Default number of chunks to retrieve per query
        preview_chars: Length of the citation preview
    """

    enabled: bool = True
    top_k: int = Field(default=5, ge=1, le=100)
    preview_chars: int = Field(default=150, ge=1)


class RetrievalConfig(BaseModel):
    """Top-level configuration for the retrieval backend."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> RetrievalConfig:
    """Load retrieval configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/retrieval/)
        overrides: List of config overrides (e.g., ["retrieval.top_k=8"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config("default", overrides=["retrieval.enabled=false"])
        >>> config.retrieval.enabled
        False
    """
    if config_path is None:
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "retrieval"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(config_dir=str(config_path), version_base=None, job_name="retrieval"):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return RetrievalConfig.model_validate(config_dict)


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Example:
        >>> cfg = OmegaConf.create(create_default_config())
        >>> OmegaConf.save(cfg, "conf/retrieval/default.yaml")
    """
    return {
        "chunking": {
            "chunk_size": 4000,
            "overlap": 400,
            "search_window": 200,
        },
        "embedding": {
            "model": "openai/text-embedding-3-small",
            "version": "v1",
            "dimensions": 1536,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "retry_backoff_seconds": 1.0,
            "api_key": "${oc.env:OPENAI_API_KEY,null}",
            "base_url": None,
        },
        "index": {
            "vectors_root": "data/vectors",
            "lock_timeout_seconds": 30.0,
        },
        "store": {
            "db_path": "data/chunks.db",
        },
        "retrieval": {
            "enabled": True,
            "top_k": 5,
            "preview_chars": 150,
        },
    }
