"""
Knowledge-source Ingestion Package
Crawls login-gated knowledge sites, summarizes the content and indexes it
for similarity search.

CLI Usage:
    python -m kbingest run-all [options]
    python -m kbingest run --source <id> [options]
    python -m kbingest summarize --all-pending
    python -m kbingest embed [--source <id>]

    Options:
        --store         JSON store file (default: kb_sources.json)
        --mode          full | recent (20 or 10 articles per source)
        --max-links     Override the article count
        --headed        Show the browser window
        --cooldown      Seconds between sources in run-all
        --skip-unchanged  Keep the summary when the corpus did not change
"""

from .chunker import chunk_text
from .errors import (
    FatalServiceError,
    IngestError,
    PersistenceUnavailable,
    RateLimitedError,
)
from .indexer import EmbeddingIndexer
from .link_discovery import discover_links
from .models import Article, Chunk, EventKind, ProcessingState, ProgressEvent, RunResult, Source
from .pipeline import PipelineCoordinator
from .run_config import IngestRunConfig
from .scraper import extract_content
from .storage import InMemorySourceStore, JsonSourceStore, SourceFilter, SourceStore
from .summarizer import Summarizer, SummaryStep, split_windows
from .auth import authenticate

__all__ = [
    'Article',
    'Chunk',
    'EventKind',
    'ProcessingState',
    'ProgressEvent',
    'RunResult',
    'Source',
    'IngestRunConfig',
    'PipelineCoordinator',
    # Stages
    'authenticate',
    'discover_links',
    'extract_content',
    'chunk_text',
    'split_windows',
    'Summarizer',
    'SummaryStep',
    'EmbeddingIndexer',
    # Persistence
    'SourceStore',
    'SourceFilter',
    'InMemorySourceStore',
    'JsonSourceStore',
    # Errors
    'IngestError',
    'RateLimitedError',
    'FatalServiceError',
    'PersistenceUnavailable',
]

__version__ = '1.0.0'
