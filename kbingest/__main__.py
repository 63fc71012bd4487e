#!/usr/bin/env python3
"""
Command-line Entry Point
========================
Batch and single-source ingestion runs against a JSON source store.

All configuration flows through ``IngestRunConfig``: defaults, ``.env``
values and CLI flags are merged there.

Run with: python -m kbingest
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

# Load .env file (API keys, store path) before anything else
_env_path = Path(__file__).resolve().parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()  # tries CWD

from .errors import FatalServiceError, PersistenceUnavailable
from .indexer import EmbeddingIndexer
from .models import EventKind, Source
from .pipeline import PipelineCoordinator
from .run_config import IngestRunConfig
from .services import AnthropicCompletionClient, OpenAIEmbeddingClient
from .storage import JsonSourceStore, SourceFilter
from .utils import is_valid_url

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_embedding_client(cfg: IngestRunConfig):
    """OpenAI client when a key is configured, else None."""
    if not cfg.embeddings_enabled:
        logger.warning("[EMBED] OPENAI_API_KEY missing, chunks will be stored without embeddings")
        return None
    return OpenAIEmbeddingClient(
        cfg.openai_api_key,
        model=cfg.embedding_model,
        dimensions=cfg.embedding_dimensions,
        timeout=cfg.embedding_timeout_s,
    )


def build_coordinator(
    cfg: IngestRunConfig, store: JsonSourceStore, with_completion: bool = True
) -> PipelineCoordinator:
    """Create service clients from the config and wire the coordinator."""
    completion = None
    if with_completion:
        completion = AnthropicCompletionClient(
            cfg.anthropic_api_key,
            model=cfg.completion_model,
            timeout=cfg.completion_timeout_s,
        )
    return PipelineCoordinator(store, cfg, completion, build_embedding_client(cfg))


def print_summary(results, elapsed: float):
    """Print batch summary."""
    print("\n" + "=" * 65)
    print("INGEST COMPLETE")
    print("=" * 65)
    for r in results:
        mark = "OK  " if r.success else "FAIL"
        detail = (
            f"{r.articles_processed} articles, {r.summary_length:,} chars summary, "
            f"{r.chunks_embedded}/{r.chunks_created} embedded"
            if r.success else r.error
        )
        print(f"  [{mark}] {r.source_name}: {detail}")
    ok = sum(1 for r in results if r.success)
    print(f"\n  Sources:    {ok}/{len(results)} succeeded")
    print(f"  Total time: {elapsed:.1f}s")
    print("=" * 65)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def _print_events(events, sse: bool = False) -> int:
    exit_code = 1
    async for event in events:
        if event.kind == EventKind.DONE:
            exit_code = 0
        if sse:
            print(event.to_sse(), end="", flush=True)
        elif event.kind == EventKind.STATUS:
            print(f"  … {event.message}")
        elif event.kind == EventKind.RESULT:
            print("\n" + json.dumps(event.data, indent=2, ensure_ascii=False))
        elif event.kind == EventKind.ERROR:
            print(f"\n  ERROR: {event.message}")
    return exit_code


def cmd_run(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    source = store.get_source(args.source)
    if source is None:
        print(f"Unknown source id: {args.source}")
        return 2
    coordinator = build_coordinator(cfg, store)
    return asyncio.run(_print_events(coordinator.run_source(source), sse=args.sse))


def cmd_run_all(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    source_filter = SourceFilter(only_unprocessed=args.only_unprocessed)
    coordinator = build_coordinator(cfg, store)
    start = time.time()
    results = asyncio.run(coordinator.run_all(source_filter))
    print_summary(results, time.time() - start)
    return 0 if all(r.success for r in results) else 1


def cmd_summarize(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    if args.source:
        source = store.get_source(args.source)
        if source is None:
            print(f"Unknown source id: {args.source}")
            return 2
        sources = [source]
    else:
        sources = [s for s in store.list_sources() if s.content and not s.is_processed]
    if not sources:
        print("Nothing to summarize")
        return 0

    coordinator = build_coordinator(cfg, store)

    async def summarize_all() -> int:
        exit_code = 0
        for source in sources:
            print(f"\n{source.name}")
            if await _print_events(coordinator.process_stored(source)) != 0:
                exit_code = 1
        return exit_code

    return asyncio.run(summarize_all())


def cmd_chunk(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    source = store.get_source(args.source)
    if source is None:
        print(f"Unknown source id: {args.source}")
        return 2
    if not source.content:
        print(f"Source {source.id} has no stored content; run it first")
        return 2
    coordinator = build_coordinator(cfg, store, with_completion=False)
    count = asyncio.run(coordinator.rechunk(source))
    stats = store.embedding_stats([source.id])
    print(f"{count} chunk(s) rebuilt, {stats['with_embedding']} embedded")
    return 0


def cmd_embed(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    client = build_embedding_client(cfg)
    if client is None:
        print("ERROR: OPENAI_API_KEY is required to generate embeddings")
        return 1
    source_ids = args.source or None
    indexer = EmbeddingIndexer(client, store, cfg)
    embedded = asyncio.run(indexer.embed_pending(source_ids))
    stats = store.embedding_stats(source_ids)
    print(f"{embedded} chunk(s) embedded, {stats['without_embedding']} still pending")
    return 0


def cmd_add(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    if not is_valid_url(args.url):
        print(f"Invalid URL: {args.url}")
        return 2
    credentials = None
    if args.email or args.password:
        credentials = json.dumps({"email": args.email or "", "password": args.password or ""})
    source = store.add_source(Source(
        id=args.id or "",
        name=args.name,
        url=args.url,
        category=args.category,
        credentials=credentials,
    ))
    print(f"Added source {source.id}: {source.name}")
    return 0


def cmd_list(args, cfg: IngestRunConfig, store: JsonSourceStore) -> int:
    for s in store.list_sources():
        state = "processed" if s.is_processed else "unprocessed"
        active = "" if s.is_active else " (inactive)"
        print(f"  {s.id}  {s.name}{active}  [{state}, {s.pages_crawled} pages]  {s.url or '-'}")
    stats = store.embedding_stats()
    print(
        f"\n  Chunks: {stats['total']} "
        f"({stats['with_embedding']} embedded, {stats['without_embedding']} pending)"
    )
    return 0


# ---------------------------------------------------------------------------
# Flag-driven entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='python -m kbingest',
        description='Knowledge-source ingestion: crawl, summarize, chunk and embed',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m kbingest add --name "InView" --url https://www.inview.nl/zoeken --email me@x.nl --password ...
  python -m kbingest list
  python -m kbingest run --source 3f2a...            # one source, live progress
  python -m kbingest run-all --mode recent           # weekly job, 10 articles each
  python -m kbingest summarize --all-pending        # summarize corpora crawled earlier
  python -m kbingest embed                           # backfill missing embeddings
        """
    )
    parser.add_argument('--store', type=str, help='JSON store file (default: kb_sources.json)')
    parser.add_argument('--debug-dir', type=str, help='Directory for failure screenshots')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    def crawl_flags(p):
        p.add_argument('--mode', choices=('full', 'recent'), default='full',
                       help='full = 20 articles, recent = 10 (default: full)')
        p.add_argument('--max-links', type=int, help='Articles per source (overrides --mode)')
        p.add_argument('--headed', action='store_true', help='Show the browser window')
        p.add_argument('--skip-unchanged', action='store_true',
                       help='Keep the summary when the crawled corpus did not change')

    p_run = sub.add_parser('run', help='Process one source')
    p_run.add_argument('--source', required=True, help='Source id')
    p_run.add_argument('--sse', action='store_true',
                       help='Print progress as server-sent event frames')
    crawl_flags(p_run)
    p_run.set_defaults(func=cmd_run)

    p_all = sub.add_parser('run-all', help='Process every eligible source')
    p_all.add_argument('--cooldown', type=float, default=120.0,
                       help='Seconds between sources (default: 120)')
    p_all.add_argument('--only-unprocessed', action='store_true',
                       help='Skip sources that already have a summary')
    crawl_flags(p_all)
    p_all.set_defaults(func=cmd_run_all)

    p_sum = sub.add_parser('summarize', help='Summarize stored content without crawling')
    target = p_sum.add_mutually_exclusive_group(required=True)
    target.add_argument('--source', help='Source id')
    target.add_argument('--all-pending', action='store_true',
                        help='Every source with content but no summary')
    p_sum.set_defaults(func=cmd_summarize)

    p_chunk = sub.add_parser('chunk', help='Rebuild chunks from stored content')
    p_chunk.add_argument('--source', required=True, help='Source id')
    p_chunk.set_defaults(func=cmd_chunk)

    p_embed = sub.add_parser('embed', help='Embed stored chunks that have no vector yet')
    p_embed.add_argument('--source', action='append',
                         help='Source id (repeatable; default: every source)')
    p_embed.set_defaults(func=cmd_embed)

    p_add = sub.add_parser('add', help='Register a source')
    p_add.add_argument('--name', required=True)
    p_add.add_argument('--url', required=True)
    p_add.add_argument('--category', default='')
    p_add.add_argument('--id', help='Explicit id (default: random)')
    p_add.add_argument('--email')
    p_add.add_argument('--password')
    p_add.set_defaults(func=cmd_add)

    p_list = sub.add_parser('list', help='List sources and embedding coverage')
    p_list.set_defaults(func=cmd_list)

    return parser


def run_cli_with_args(argv=None) -> int:
    """Parse argv, build IngestRunConfig, dispatch."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    cfg = IngestRunConfig.from_cli_args(args)
    try:
        store = JsonSourceStore(cfg.store_path)
        if args.command in ('run', 'run-all', 'summarize'):
            cfg.log_summary()
        return args.func(args, cfg, store)
    except (FatalServiceError, PersistenceUnavailable) as e:
        print(f"ERROR: {e}")
        return 1


def main() -> None:
    sys.exit(run_cli_with_args())


if __name__ == '__main__':
    main()
