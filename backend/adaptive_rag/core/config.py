"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "ARAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/adaptive-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
    ("retrieval", "max_stages"): "max_stages",
    ("retrieval", "min_confidence"): "min_confidence",
    ("retrieval", "diversity_weight"): "diversity_weight",
    ("retrieval", "expansion_factor"): "expansion_factor",
    ("retrieval", "adjacent_chunks"): "enable_adjacent_chunks",
    ("retrieval", "adjacency_window"): "adjacency_window",
    ("retrieval", "initial_match_count"): "initial_match_count",
    ("retrieval", "comprehensive_match_count"): "comprehensive_match_count",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("retrieval", "semantic_weight"): "semantic_weight",
    ("retrieval", "keyword_weight"): "keyword_weight",
    ("retrieval", "rerank_top_k"): "rerank_top_k",
    ("retrieval", "final_top_k"): "final_top_k",
    ("retrieval", "adaptive_lambda"): "adaptive_lambda",
    ("retrieval", "max_concurrency"): "max_concurrency",
    ("retrieval", "timeout_seconds"): "backend_timeout_seconds",
    ("chunking", "target_tokens"): "target_tokens",
    ("chunking", "max_tokens"): "max_tokens",
    ("chunking", "min_tokens"): "min_tokens",
    ("chunking", "overlap_tokens"): "overlap_tokens",
    ("chunking", "preserve_structure"): "preserve_structure",
    ("chunking", "adaptive_size"): "adaptive_size",
    ("chunking", "extract_metadata"): "extract_metadata",
    ("cache", "enabled"): "cache_enabled",
    ("cache", "ttl_seconds"): "cache_ttl_seconds",
    ("cache", "max_entries"): "cache_max_entries",
    ("embeddings", "dim"): "embedding_dim",
}


class RetrievalConfig(BaseModel):
    """Resolved knobs for one adaptive retrieval run."""

    max_stages: int = Field(default=3, ge=1, le=3)
    min_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    diversity_weight: float = Field(default=0.15, ge=0.0, le=1.0)
    expansion_factor: float = Field(default=1.5, ge=1.0)
    enable_adjacent_chunks: bool = False
    adjacency_window: int = Field(default=2, ge=0)
    initial_match_count: int = Field(default=20, ge=1)
    comprehensive_match_count: int = Field(default=60, ge=1)
    similarity_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.8, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    rerank_top_k: int = Field(default=20, ge=1)
    final_top_k: int = Field(default=10, ge=1)
    adaptive_lambda: bool = False
    max_concurrency: int = Field(default=3, ge=1)
    backend_timeout_seconds: float = Field(default=10.0, gt=0.0)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _check_weights(self) -> "RetrievalConfig":
        if self.semantic_weight + self.keyword_weight <= 0:
            raise ValueError("semantic_weight and keyword_weight cannot both be zero")
        return self

    @property
    def mmr_lambda(self) -> float:
        return 1.0 - self.diversity_weight


class ChunkingConfig(BaseModel):
    """Token budgets for the semantic chunker."""

    target_tokens: int = Field(default=500, ge=1)
    max_tokens: int = Field(default=800, ge=1)
    min_tokens: int = Field(default=200, ge=0)
    overlap_tokens: int = Field(default=100, ge=0)
    preserve_structure: bool = True
    adaptive_size: bool = True
    extract_metadata: bool = True

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _check_budgets(self) -> "ChunkingConfig":
        if not self.min_tokens <= self.target_tokens <= self.max_tokens:
            raise ValueError("expected min_tokens <= target_tokens <= max_tokens")
        if self.min_tokens * 2 > self.max_tokens:
            raise ValueError("max_tokens must be at least twice min_tokens")
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError("overlap_tokens must be smaller than max_tokens")
        return self


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    log_level: str = "INFO"
    log_json: bool = True

    max_stages: int = 3
    min_confidence: float = 0.85
    diversity_weight: float = 0.15
    expansion_factor: float = 1.5
    enable_adjacent_chunks: bool = False
    adjacency_window: int = 2
    initial_match_count: int = 20
    comprehensive_match_count: int = 60
    similarity_threshold: float = 0.45
    semantic_weight: float = 0.8
    keyword_weight: float = 0.2
    rerank_top_k: int = 20
    final_top_k: int = 10
    adaptive_lambda: bool = False
    max_concurrency: int = 3
    backend_timeout_seconds: float = 10.0

    target_tokens: int = 500
    max_tokens: int = 800
    min_tokens: int = 200
    overlap_tokens: int = 100
    preserve_structure: bool = True
    adaptive_size: bool = True
    extract_metadata: bool = True

    cache_enabled: bool = True
    cache_ttl_seconds: float = Field(default=3600.0, gt=0.0)
    cache_max_entries: int = Field(default=256, ge=1)

    embedding_dim: int = Field(default=384, ge=8)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> str:
        if isinstance(value, str):
            return value.upper()
        raise TypeError("log_level must be a string")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None

    def retrieval_config(self, **overrides: Any) -> RetrievalConfig:
        values = {name: getattr(self, name) for name in RetrievalConfig.model_fields}
        values.update(overrides)
        return RetrievalConfig(**values)

    def chunking_config(self, **overrides: Any) -> ChunkingConfig:
        values = {name: getattr(self, name) for name in ChunkingConfig.model_fields}
        values.update(overrides)
        return ChunkingConfig(**values)


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with ARAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor."""
    return Settings.from_yaml()


__all__ = ["ChunkingConfig", "RetrievalConfig", "Settings", "get_settings"]
