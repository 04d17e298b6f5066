"""Validated engine settings.

The six core settings (plus the fallback model list) are independently
adjustable; anything outside its documented domain is rejected here,
before the chunker or the orchestrator ever sees it.
"""
from typing import Any, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from vault_rag import config
from vault_rag.errors import ConfigurationError


class Settings(BaseModel):
    """Engine settings read (never owned) by the core."""

    model_config = ConfigDict(frozen=True)

    embedding_model: str = Field(default=config.EMBEDDING_MODEL, min_length=1)
    generative_model: str = Field(default=config.CHAT_MODEL, min_length=1)
    max_results: int = Field(default=config.MAX_RESULTS, ge=1)
    similarity_threshold: float = Field(default=config.SIMILARITY_THRESHOLD, ge=0.0, le=1.0)
    chunk_size: int = Field(default=config.CHUNK_SIZE, gt=0)
    chunk_overlap: int = Field(default=config.CHUNK_OVERLAP, ge=0)
    min_chunk_length: int = Field(default=config.MIN_CHUNK_LENGTH, ge=0)
    fallback_models: Tuple[str, ...] = config.FALLBACK_MODELS
    ingest_concurrency: int = Field(default=config.INGEST_CONCURRENCY, ge=1)

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be less than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


def load_settings(**overrides: Any) -> Settings:
    """Build settings from config defaults plus overrides.

    Raises:
        ConfigurationError: If any value is outside its domain
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
