"""refindex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (REFINDEX_EMBEDDING_MODEL, REFINDEX_DB_PATH,
                             REFINDEX_LOG_LEVEL, REFINDEX_CORPUS_VERSION)
  3. Per-project refindex.yaml
  4. Global ~/.refindex/config.yaml  (defaults only, no API keys)
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".refindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "refindex.yaml"

# api_key, api-key, api_secret, *_token, token, *_secret, secret, password,
# passwd, credential(s). Does not match max_tokens or overlap_tokens.
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
    ["corpus", "embedding", "chunking", "indexing", "storage", "search", "logging"]
)


def _cpu_count() -> int:
    return os.cpu_count() or 1


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class CorpusCfg:
    """Corpus discovery and identity (refindex.yaml: corpus:).

    Attributes:
        path: Root directory of the HTML reference documents.
        extensions: File extensions picked up by recursive discovery.
        version: Explicit corpus version tag. Wins over *version_file*.
        version_file: File holding a ``key: value`` version line.
        version_key: Key looked up in *version_file*.
        source_type: Source identifier stored with every document.
        source_name: Human-readable source name.
        base_url: Prefix joined with each document's relative path to build its URL.
        category: Category label stored on every document.
    """

    path: str = ""
    extensions: list[str] = field(default_factory=lambda: [".html", ".htm"])
    version: str | None = None
    version_file: str | None = None
    version_key: str = "m_EditorVersion"
    source_type: str = "reference"
    source_name: str = "Reference Documentation"
    base_url: str = ""
    category: str = "Scripting API"


@dataclass
class EmbeddingCfg:
    """Embedding model and pool configuration (refindex.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    pool_size: int = field(default_factory=_cpu_count)
    max_batch_size: int = 256
    num_retries: int = 3


@dataclass
class ChunkingCfg:
    """Chunk sizing (refindex.yaml: chunking:).

    Text chunks target ``max_tokens * chars_per_token`` characters with
    ``overlap_tokens * chars_per_token`` characters of backward overlap.
    """

    max_tokens: int = 250
    chars_per_token: int = 4
    overlap_tokens: int = 50
    code_overlap_lines: int = 3
    code_lookback_lines: int = 5

    @property
    def target_chars(self) -> int:
        return self.max_tokens * self.chars_per_token

    @property
    def overlap_chars(self) -> int:
        return self.overlap_tokens * self.chars_per_token


@dataclass
class IndexingCfg:
    """Batch pipeline configuration (refindex.yaml: indexing:)."""

    files_per_batch: int = 1024
    max_parallelism: int = field(default_factory=_cpu_count)
    relationship_batch_size: int = 1000


@dataclass
class StorageCfg:
    """Store location and lock-retry policy (refindex.yaml: storage:)."""

    db_path: str = ".refindex.db"
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    busy_timeout: float = 30.0


@dataclass
class SearchCfg:
    """Search defaults (refindex.yaml: search:)."""

    limit: int = 5
    chunks_per_doc: int = 3
    semantic_weight: float = 0.75
    source: str = "reference"


@dataclass
class LoggingCfg:
    """Loguru sink configuration (refindex.yaml: logging:)."""

    level: str = "INFO"
    file: str | None = None


@dataclass
class RefIndexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    corpus: CorpusCfg = field(default_factory=CorpusCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


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
                f"Unknown config key '{key}' in '{source}' ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RefIndexConfig) -> None:
    positives = {
        "embedding.dimensions": cfg.embedding.dimensions,
        "embedding.pool_size": cfg.embedding.pool_size,
        "embedding.max_batch_size": cfg.embedding.max_batch_size,
        "chunking.max_tokens": cfg.chunking.max_tokens,
        "chunking.chars_per_token": cfg.chunking.chars_per_token,
        "indexing.files_per_batch": cfg.indexing.files_per_batch,
        "indexing.max_parallelism": cfg.indexing.max_parallelism,
        "indexing.relationship_batch_size": cfg.indexing.relationship_batch_size,
        "storage.max_attempts": cfg.storage.max_attempts,
        "search.limit": cfg.search.limit,
        "search.chunks_per_doc": cfg.search.chunks_per_doc,
    }
    for name, value in positives.items():
        if value < 1:
            raise ConfigError(f"{name} must be >= 1, got {value}")
    if cfg.chunking.overlap_tokens < 0 or cfg.chunking.overlap_tokens >= cfg.chunking.max_tokens:
        raise ConfigError(
            "chunking.overlap_tokens must be in [0, max_tokens), "
            f"got {cfg.chunking.overlap_tokens}"
        )
    if cfg.embedding.num_retries < 0:
        raise ConfigError(
            f"embedding.num_retries must be >= 0, got {cfg.embedding.num_retries}"
        )
    if not 0.0 <= cfg.search.semantic_weight <= 1.0:
        raise ConfigError(
            f"search.semantic_weight must be in [0.0, 1.0], got {cfg.search.semantic_weight}"
        )


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


def _cfg_from_dict(data: dict[str, Any]) -> RefIndexConfig:
    """Build a *RefIndexConfig* from a merged raw YAML dict."""
    cfg = RefIndexConfig()

    if "corpus" in data:
        c = data["corpus"]
        cfg.corpus = CorpusCfg(
            path=str(c.get("path", cfg.corpus.path)),
            extensions=[str(e).lower() for e in c.get("extensions", cfg.corpus.extensions)],
            version=str(c["version"]) if c.get("version") else cfg.corpus.version,
            version_file=c.get("version_file") or cfg.corpus.version_file,
            version_key=str(c.get("version_key", cfg.corpus.version_key)),
            source_type=str(c.get("source_type", cfg.corpus.source_type)),
            source_name=str(c.get("source_name", cfg.corpus.source_name)),
            base_url=str(c.get("base_url", cfg.corpus.base_url)),
            category=str(c.get("category", cfg.corpus.category)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            pool_size=int(e.get("pool_size", cfg.embedding.pool_size)),
            max_batch_size=int(e.get("max_batch_size", cfg.embedding.max_batch_size)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "chunking" in data:
        ch = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_tokens=int(ch.get("max_tokens", cfg.chunking.max_tokens)),
            chars_per_token=int(ch.get("chars_per_token", cfg.chunking.chars_per_token)),
            overlap_tokens=int(ch.get("overlap_tokens", cfg.chunking.overlap_tokens)),
            code_overlap_lines=int(
                ch.get("code_overlap_lines", cfg.chunking.code_overlap_lines)
            ),
            code_lookback_lines=int(
                ch.get("code_lookback_lines", cfg.chunking.code_lookback_lines)
            ),
        )

    if "indexing" in data:
        i = data["indexing"]
        cfg.indexing = IndexingCfg(
            files_per_batch=int(i.get("files_per_batch", cfg.indexing.files_per_batch)),
            max_parallelism=int(i.get("max_parallelism", cfg.indexing.max_parallelism)),
            relationship_batch_size=int(
                i.get("relationship_batch_size", cfg.indexing.relationship_batch_size)
            ),
        )

    if "storage" in data:
        s = data["storage"]
        cfg.storage = StorageCfg(
            db_path=str(s.get("db_path", cfg.storage.db_path)),
            max_attempts=int(s.get("max_attempts", cfg.storage.max_attempts)),
            backoff_seconds=float(s.get("backoff_seconds", cfg.storage.backoff_seconds)),
            busy_timeout=float(s.get("busy_timeout", cfg.storage.busy_timeout)),
        )

    if "search" in data:
        q = data["search"]
        cfg.search = SearchCfg(
            limit=int(q.get("limit", cfg.search.limit)),
            chunks_per_doc=int(q.get("chunks_per_doc", cfg.search.chunks_per_doc)),
            semantic_weight=float(q.get("semantic_weight", cfg.search.semantic_weight)),
            source=str(q.get("source", cfg.search.source)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: RefIndexConfig) -> RefIndexConfig:
    """Apply REFINDEX_* environment variable overrides."""
    if model := os.environ.get("REFINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db_path := os.environ.get("REFINDEX_DB_PATH"):
        cfg.storage.db_path = db_path
    if level := os.environ.get("REFINDEX_LOG_LEVEL"):
        cfg.logging.level = level
    if version := os.environ.get("REFINDEX_CORPUS_VERSION"):
        cfg.corpus.version = version
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RefIndexConfig:
    """Load and return a merged *RefIndexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *refindex.yaml*. Defaults to CWD.
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

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg
