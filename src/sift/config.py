"""Sift configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not here)
  2. Environment variables  (SIFT_GENERATION_MODEL, SIFT_EMBEDDING_MODEL,
                             SIFT_DEFAULT_LANGUAGE)
  3. Per-project sift.yaml  (next to .sift.db)
  4. Global ~/.sift/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Credentials (SIFT_ADMIN_KEY, provider API keys) are read from the environment
only; config files that contain API-key-like fields are rejected.
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".sift"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "sift.yaml"

ADMIN_KEY_ENV: str = "SIFT_ADMIN_KEY"

# Matches: api_key, apikey, api-key, api_secret, admin_key, _token (suffix),
# standalone token/secret, password, passwd, credential(s).
# Does NOT match legitimate keys like max_tokens or cache_ttl_seconds.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"(?:api|admin)[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "generation",
        "search",
        "cache",
        "storage",
        "language",
        "chunking",
        "admin",
        "errors",
        "synonyms",
    ]
)

ALERT_CHANNELS: tuple[str, ...] = ("log", "stderr", "none")


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
    """Embedding model configuration (sift.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 512
    batch_size: int = 20
    batch_delay_seconds: float = 1.0


@dataclass
class GenerationCfg:
    """Generative model configuration (sift.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    timeout_seconds: float = 30.0
    num_retries: int = 3
    enhance: bool = True
    max_enhance_chars: int = 1000


@dataclass
class SearchCfg:
    """Hybrid search configuration (sift.yaml: search:)."""

    default_limit: int = 10
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    candidate_cap: int = 30
    cache_ttl_seconds: int = 600
    result_ttl_seconds: int = 1800
    transport_content_chars: int = 500


@dataclass
class CacheCfg:
    """Cache tier TTLs in seconds (sift.yaml: cache:)."""

    hot_ttl_seconds: int = 60
    shared_max_ttl_seconds: int = 6 * 60 * 60
    max_ttl_seconds: int = 7 * 24 * 60 * 60
    location_ttl_seconds: int = 60 * 60
    template_ttl_seconds: int = 60 * 60


@dataclass
class StorageCfg:
    """Row-store limits (sift.yaml: storage:)."""

    max_rows_per_shard: int = 5000
    log_max_rows: int = 1000


@dataclass
class LanguageCfg:
    """Language handling (sift.yaml: language:).

    Attributes:
        default: Language used when detection fails or yields an unsupported code.
        supported: Language codes the normalizer and templates understand.
        detect_with_model: Ask the generative model to identify the language
            before falling back to Unicode-range heuristics.
    """

    default: str = "ja"
    supported: list[str] = field(default_factory=lambda: ["ja", "en"])
    detect_with_model: bool = False


@dataclass
class ChunkingCfg:
    """Chunk size and overlap for the ingest pipeline (sift.yaml: chunking:)."""

    chunk_size: int = 512
    overlap: float = 0.10


@dataclass
class AdminCfg:
    """Admin access (sift.yaml: admin:). The admin key itself lives in SIFT_ADMIN_KEY."""

    allowlist: list[str] = field(default_factory=list)


@dataclass
class ErrorsCfg:
    """Retry policy and CRITICAL alert channel (sift.yaml: errors:).

    ``alert`` is one of ALERT_CHANNELS: "log" writes to the ``sift.alerts``
    logger, "stderr" prints to the terminal, "none" disables alerts.
    """

    max_retries: int = 3
    backoff_base: float = 2.0
    alert: str = "log"


@dataclass
class SiftConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    language: LanguageCfg = field(default_factory=LanguageCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    admin: AdminCfg = field(default_factory=AdminCfg)
    errors: ErrorsCfg = field(default_factory=ErrorsCfg)
    synonyms: dict[str, dict[str, list[str]]] = field(default_factory=dict)

    @property
    def admin_key(self) -> str | None:
        """Admin key from the environment (never from config files)."""
        return os.environ.get(ADMIN_KEY_ENV) or None


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
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _validate_weights(search: SearchCfg) -> None:
    if search.semantic_weight < 0 or search.keyword_weight < 0:
        raise ConfigError("search weights must be >= 0")
    if search.semantic_weight + search.keyword_weight <= 0:
        raise ConfigError("search.semantic_weight + search.keyword_weight must be > 0")


def _validate_alert(errors: ErrorsCfg) -> None:
    if errors.alert not in ALERT_CHANNELS:
        raise ConfigError(
            f"errors.alert must be one of {', '.join(ALERT_CHANNELS)}, got '{errors.alert}'"
        )


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
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


def _cfg_from_dict(data: dict[str, Any]) -> SiftConfig:
    """Build a *SiftConfig* from a merged raw YAML dict."""
    cfg = SiftConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            batch_delay_seconds=float(
                e.get("batch_delay_seconds", cfg.embedding.batch_delay_seconds)
            ),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            timeout_seconds=float(g.get("timeout_seconds", cfg.generation.timeout_seconds)),
            num_retries=int(g.get("num_retries", cfg.generation.num_retries)),
            enhance=bool(g.get("enhance", cfg.generation.enhance)),
            max_enhance_chars=int(
                g.get("max_enhance_chars", cfg.generation.max_enhance_chars)
            ),
        )

    if "search" in data:
        s = data["search"]
        d = cfg.search
        cfg.search = SearchCfg(
            default_limit=int(s.get("default_limit", d.default_limit)),
            semantic_weight=float(s.get("semantic_weight", d.semantic_weight)),
            keyword_weight=float(s.get("keyword_weight", d.keyword_weight)),
            candidate_cap=int(s.get("candidate_cap", d.candidate_cap)),
            cache_ttl_seconds=int(s.get("cache_ttl_seconds", d.cache_ttl_seconds)),
            result_ttl_seconds=int(s.get("result_ttl_seconds", d.result_ttl_seconds)),
            transport_content_chars=int(
                s.get("transport_content_chars", d.transport_content_chars)
            ),
        )

    if "cache" in data:
        c = data["cache"]
        d = cfg.cache
        cfg.cache = CacheCfg(
            hot_ttl_seconds=int(c.get("hot_ttl_seconds", d.hot_ttl_seconds)),
            shared_max_ttl_seconds=int(
                c.get("shared_max_ttl_seconds", d.shared_max_ttl_seconds)
            ),
            max_ttl_seconds=int(c.get("max_ttl_seconds", d.max_ttl_seconds)),
            location_ttl_seconds=int(c.get("location_ttl_seconds", d.location_ttl_seconds)),
            template_ttl_seconds=int(c.get("template_ttl_seconds", d.template_ttl_seconds)),
        )

    if "storage" in data:
        st = data["storage"]
        cfg.storage = StorageCfg(
            max_rows_per_shard=int(
                st.get("max_rows_per_shard", cfg.storage.max_rows_per_shard)
            ),
            log_max_rows=int(st.get("log_max_rows", cfg.storage.log_max_rows)),
        )

    if "language" in data:
        lg = data["language"]
        cfg.language = LanguageCfg(
            default=str(lg.get("default", cfg.language.default)),
            supported=[str(x) for x in lg.get("supported", cfg.language.supported)],
            detect_with_model=bool(
                lg.get("detect_with_model", cfg.language.detect_with_model)
            ),
        )

    if "chunking" in data:
        ch = data["chunking"]
        cfg.chunking = ChunkingCfg(
            chunk_size=int(ch.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=float(ch.get("overlap", cfg.chunking.overlap)),
        )

    if "admin" in data:
        cfg.admin = AdminCfg(
            allowlist=[str(x) for x in data["admin"].get("allowlist", [])],
        )

    if "errors" in data:
        er = data["errors"]
        cfg.errors = ErrorsCfg(
            max_retries=int(er.get("max_retries", cfg.errors.max_retries)),
            backoff_base=float(er.get("backoff_base", cfg.errors.backoff_base)),
            alert=str(er.get("alert", cfg.errors.alert)),
        )

    if "synonyms" in data:
        cfg.synonyms = {
            str(lang): {str(k): [str(s) for s in v] for k, v in (table or {}).items()}
            for lang, table in data["synonyms"].items()
        }

    return cfg


def _apply_env_overrides(cfg: SiftConfig) -> SiftConfig:
    """Apply SIFT_* environment variable overrides (layer 2)."""
    if model := os.environ.get("SIFT_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("SIFT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if language := os.environ.get("SIFT_DEFAULT_LANGUAGE"):
        cfg.language.default = language
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> SiftConfig:
    """Load and return a merged *SiftConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *sift.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains credential-like fields or the
            search weights are invalid.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    _validate_weights(cfg.search)
    _validate_alert(cfg.errors)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.sift/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the file with mode 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Sift global configuration: defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export SIFT_ADMIN_KEY=...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
            "\n"
            "language:\n"
            "  default: ja\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
