"""Lectern configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not here)
  2. Environment variables  (LECTERN_EMBEDDING_MODEL, LECTERN_GENERATION_MODEL, LECTERN_DB)
  3. Per-project lectern.yaml
  4. Global ~/.lectern/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lectern"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lectern.yaml"

DEFAULT_DB_NAME: str = ".lectern.db"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does not match max_tokens or batch_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "retrieval", "chunking", "ingestion", "vector_store"]
)

_FAILURE_POLICIES: frozenset[str] = frozenset(["propagate", "mock"])

# OpenAI caps a single embeddings request at 2048 inputs.
MAX_EMBEDDING_BATCH: int = 2048


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (lectern.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    max_parallel_batches: int = 1
    failure_policy: str = "propagate"  # propagate | mock
    num_retries: int = 3


@dataclass
class GenerationCfg:
    """Answer generation configuration (lectern.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 2048


@dataclass
class RetrievalCfg:
    """Retrieval configuration (lectern.yaml: retrieval:).

    Attributes:
        min_confidence: Similarity score a candidate needs to be cited.
        max_sources: Maximum number of citations per answer.
        oversample_factor: Nearest neighbours fetched = max_sources * factor.
        fallback_sample_size: Sub-threshold candidates shown to the fallback.
        topic_keywords: Optional ``keyword -> topic hint`` map used by the
            keyword fallback; empty means hints are derived from term frequency.
    """

    min_confidence: float = 0.65
    max_sources: int = 8
    oversample_factor: int = 3
    fallback_sample_size: int = 3
    topic_keywords: dict[str, str] = field(default_factory=dict)


@dataclass
class ChunkingCfg:
    """Character-based chunk window (lectern.yaml: chunking:)."""

    max_size: int = 1000
    overlap: int = 200


@dataclass
class IngestionCfg:
    """Scheduler and state-machine settings (lectern.yaml: ingestion:)."""

    max_concurrent: int = 3
    stagger_seconds: float = 0.0
    extracted_text_cap: int = 65_535
    extraction_cache_ttl: float = 3_600.0


@dataclass
class VectorStoreCfg:
    """Vector store settings (lectern.yaml: vector_store:)."""

    upsert_batch_size: int = 100


@dataclass
class LecternConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    vector_store: VectorStoreCfg = field(default_factory=VectorStoreCfg)
    db_path: Path = field(default_factory=lambda: Path(DEFAULT_DB_NAME))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: LecternConfig) -> None:
    """Raise ConfigError for values the pipeline cannot run with."""
    if cfg.embedding.failure_policy not in _FAILURE_POLICIES:
        raise ConfigError(
            f"embedding.failure_policy must be one of "
            f"{', '.join(sorted(_FAILURE_POLICIES))}, got '{cfg.embedding.failure_policy}'"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if not 1 <= cfg.embedding.batch_size <= MAX_EMBEDDING_BATCH:
        raise ConfigError(f"embedding.batch_size must be in [1, {MAX_EMBEDDING_BATCH}]")
    if cfg.embedding.max_parallel_batches < 1:
        raise ConfigError("embedding.max_parallel_batches must be >= 1")
    if not 0.0 <= cfg.retrieval.min_confidence <= 1.0:
        raise ConfigError("retrieval.min_confidence must be in [0.0, 1.0]")
    if cfg.retrieval.max_sources < 1:
        raise ConfigError("retrieval.max_sources must be >= 1")
    if cfg.retrieval.oversample_factor < 1:
        raise ConfigError("retrieval.oversample_factor must be >= 1")
    if cfg.ingestion.max_concurrent < 1:
        raise ConfigError("ingestion.max_concurrent must be >= 1")
    if cfg.ingestion.stagger_seconds < 0:
        raise ConfigError("ingestion.stagger_seconds must be >= 0")
    if cfg.vector_store.upsert_batch_size < 1:
        raise ConfigError("vector_store.upsert_batch_size must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> LecternConfig:
    """Build a *LecternConfig* from a merged raw YAML dict."""
    cfg = LecternConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            max_parallel_batches=int(
                e.get("max_parallel_batches", cfg.embedding.max_parallel_batches)
            ),
            failure_policy=str(e.get("failure_policy", cfg.embedding.failure_policy)).lower(),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            min_confidence=float(r.get("min_confidence", cfg.retrieval.min_confidence)),
            max_sources=int(r.get("max_sources", cfg.retrieval.max_sources)),
            oversample_factor=int(
                r.get("oversample_factor", cfg.retrieval.oversample_factor)
            ),
            fallback_sample_size=int(
                r.get("fallback_sample_size", cfg.retrieval.fallback_sample_size)
            ),
            topic_keywords={
                str(k): str(v) for k, v in (r.get("topic_keywords") or {}).items()
            },
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            max_size=int(c.get("max_size", cfg.chunking.max_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "ingestion" in data:
        i = data["ingestion"] or {}
        cfg.ingestion = IngestionCfg(
            max_concurrent=int(i.get("max_concurrent", cfg.ingestion.max_concurrent)),
            stagger_seconds=float(i.get("stagger_seconds", cfg.ingestion.stagger_seconds)),
            extracted_text_cap=int(
                i.get("extracted_text_cap", cfg.ingestion.extracted_text_cap)
            ),
            extraction_cache_ttl=float(
                i.get("extraction_cache_ttl", cfg.ingestion.extraction_cache_ttl)
            ),
        )

    if "vector_store" in data:
        v = data["vector_store"] or {}
        cfg.vector_store = VectorStoreCfg(
            upsert_batch_size=int(
                v.get("upsert_batch_size", cfg.vector_store.upsert_batch_size)
            ),
        )

    return cfg


def _apply_env_overrides(cfg: LecternConfig) -> LecternConfig:
    """Apply LECTERN_* environment variable overrides (layer 2)."""
    if model := os.environ.get("LECTERN_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("LECTERN_GENERATION_MODEL"):
        cfg.generation.model = model
    if db := os.environ.get("LECTERN_DB"):
        cfg.db_path = Path(db)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LecternConfig:
    """Load and return a merged *LecternConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *lectern.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


PROJECT_TEMPLATE = """\
# Lectern project configuration.
# NEVER store API keys here. Use environment variables:
#   export OPENAI_API_KEY=sk-...

embedding:
  model: openai/text-embedding-3-small
  dimensions: 1536
  failure_policy: propagate   # propagate | mock

generation:
  model: openai/gpt-4o-mini

retrieval:
  min_confidence: 0.65
  max_sources: 8

chunking:
  max_size: 1000
  overlap: 200

ingestion:
  max_concurrent: 3
"""


def write_project_template(project_dir: Path) -> Path | None:
    """Write a starter lectern.yaml into *project_dir* unless one exists.

    Returns the path written, or None if a config was already present.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return None
    target.write_text(PROJECT_TEMPLATE, encoding="utf-8")
    return target
