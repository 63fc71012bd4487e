"""
Unified Run Configuration
=========================
Single source of truth for ALL ingestion defaults and runtime limits.

The coordinator, the service clients, the CLI and the Streamlit view all
read from one ``IngestRunConfig`` passed in explicitly. Nothing inside the
pipeline reads the process environment; ``from_env()`` is the only place
environment variables are consulted.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default values for every pipeline limit
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Crawl
    "max_links": 20,
    "max_links_recent": 10,
    "article_char_limit": 30_000,
    "min_article_chars": 200,
    "raw_content_limit": 500_000,
    "landing_timeout_ms": 30_000,
    "article_timeout_ms": 20_000,
    "login_timeout_ms": 15_000,
    "headless": True,
    "viewport_width": 1920,
    "viewport_height": 1080,
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    # Chunking
    "chunk_size": 5_000,
    # Summarization
    "window_size": 80_000,
    "completion_model": "claude-sonnet-4-5-20250929",
    "summary_max_tokens": 8_000,
    "max_summary_attempts": 5,
    "summary_backoff_seconds": 90.0,
    "window_delay_seconds": 0.0,
    "completion_timeout_s": 600.0,
    # Embeddings
    "embedding_model": "text-embedding-3-small",
    "embedding_dimensions": 1536,
    "embedding_batch_size": 50,
    "embedding_cooldown_seconds": 30.0,
    "embedding_batch_delay_seconds": 0.5,
    "max_embedding_retries": None,
    "embedding_timeout_s": 120.0,
    # Batch mode
    "source_cooldown_seconds": 120.0,
    # Debug
    "debug_dir": None,
    "screenshot_every": 5,
    # Persistence
    "store_path": "kb_sources.json",
}


@dataclass
class IngestRunConfig:
    """
    Unified configuration consumed by every pipeline stage.

    Populate via:
      - ``IngestRunConfig()``                 → all defaults
      - ``IngestRunConfig(max_links=5)``      → override one value
      - ``IngestRunConfig.from_env()``        → defaults + API keys from env
      - ``IngestRunConfig.from_cli_args(ns)`` → from argparse Namespace
    """

    # ---- Crawl limits ----
    max_links: int = _DEFAULTS["max_links"]
    article_char_limit: int = _DEFAULTS["article_char_limit"]
    min_article_chars: int = _DEFAULTS["min_article_chars"]
    raw_content_limit: int = _DEFAULTS["raw_content_limit"]
    landing_timeout_ms: int = _DEFAULTS["landing_timeout_ms"]
    article_timeout_ms: int = _DEFAULTS["article_timeout_ms"]
    login_timeout_ms: int = _DEFAULTS["login_timeout_ms"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    viewport_width: int = _DEFAULTS["viewport_width"]
    viewport_height: int = _DEFAULTS["viewport_height"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Chunking ----
    chunk_size: int = _DEFAULTS["chunk_size"]

    # ---- Summarization ----
    window_size: int = _DEFAULTS["window_size"]
    completion_model: str = _DEFAULTS["completion_model"]
    summary_max_tokens: int = _DEFAULTS["summary_max_tokens"]
    max_summary_attempts: int = _DEFAULTS["max_summary_attempts"]
    summary_backoff_seconds: float = _DEFAULTS["summary_backoff_seconds"]
    window_delay_seconds: float = _DEFAULTS["window_delay_seconds"]
    completion_timeout_s: float = _DEFAULTS["completion_timeout_s"]

    # ---- Embeddings ----
    embedding_model: str = _DEFAULTS["embedding_model"]
    embedding_dimensions: int = _DEFAULTS["embedding_dimensions"]
    embedding_batch_size: int = _DEFAULTS["embedding_batch_size"]
    embedding_cooldown_seconds: float = _DEFAULTS["embedding_cooldown_seconds"]
    embedding_batch_delay_seconds: float = _DEFAULTS["embedding_batch_delay_seconds"]
    max_embedding_retries: Optional[int] = _DEFAULTS["max_embedding_retries"]
    embedding_timeout_s: float = _DEFAULTS["embedding_timeout_s"]

    # ---- Batch mode ----
    source_cooldown_seconds: float = _DEFAULTS["source_cooldown_seconds"]
    skip_unchanged: bool = False

    # ---- Debug artifacts ----
    debug_dir: Optional[str] = _DEFAULTS["debug_dir"]
    screenshot_every: int = _DEFAULTS["screenshot_every"]

    # ---- Services / persistence ----
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    store_path: str = _DEFAULTS["store_path"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, **overrides) -> "IngestRunConfig":
        """Build config from environment variables (after ``.env`` loading).

        Recognised: ``ANTHROPIC_API_KEY``, ``OPENAI_API_KEY``,
        ``KB_COMPLETION_MODEL``, ``KB_EMBEDDING_MODEL``, ``KB_STORE_PATH``,
        ``KB_DEBUG_DIR``, ``KB_HEADLESS``.
        """
        headless_env = os.environ.get("KB_HEADLESS", "")
        cfg = cls(
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            completion_model=os.environ.get(
                "KB_COMPLETION_MODEL", _DEFAULTS["completion_model"]
            ),
            embedding_model=os.environ.get(
                "KB_EMBEDDING_MODEL", _DEFAULTS["embedding_model"]
            ),
            store_path=os.environ.get("KB_STORE_PATH", _DEFAULTS["store_path"]),
            debug_dir=os.environ.get("KB_DEBUG_DIR") or None,
            headless=headless_env.lower() not in ("0", "false", "no")
            if headless_env else _DEFAULTS["headless"],
        )
        return replace(cfg, **overrides) if overrides else cfg

    @classmethod
    def from_cli_args(cls, args) -> "IngestRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        cfg = cls.from_env()
        mode = getattr(args, "mode", "full")
        max_links = getattr(args, "max_links", None)
        if max_links is None:
            max_links = (
                _DEFAULTS["max_links_recent"] if mode == "recent"
                else _DEFAULTS["max_links"]
            )
        cfg = replace(
            cfg,
            max_links=max_links,
            headless=not getattr(args, "headed", False) and cfg.headless,
            skip_unchanged=getattr(args, "skip_unchanged", False),
            source_cooldown_seconds=getattr(
                args, "cooldown", _DEFAULTS["source_cooldown_seconds"]
            ),
        )
        if getattr(args, "store", None):
            cfg = replace(cfg, store_path=args.store)
        if getattr(args, "debug_dir", None):
            cfg = replace(cfg, debug_dir=args.debug_dir)
        return cfg

    @property
    def embeddings_enabled(self) -> bool:
        return bool(self.openai_api_key)

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("INGEST RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Max Links:        {self.max_links} per source")
        logger.info(f"  Article Limit:    {self.article_char_limit:,} chars")
        logger.info(f"  Corpus Limit:     {self.raw_content_limit:,} chars")
        logger.info(f"  Chunk Size:       {self.chunk_size:,} chars")
        logger.info(f"  Window Size:      {self.window_size:,} chars")
        logger.info(f"  Completion Model: {self.completion_model}")
        logger.info(
            f"  Embeddings:       "
            f"{self.embedding_model if self.embeddings_enabled else 'disabled (no API key)'}"
        )
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Store:            {self.store_path}")
        if self.debug_dir:
            logger.info(f"  Debug Dir:        {self.debug_dir}")
        if self.skip_unchanged:
            logger.info("  Skip Unchanged:   Yes")
        logger.info("=" * 60)
