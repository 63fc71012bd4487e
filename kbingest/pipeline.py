"""
Pipeline Coordinator
====================
Runs one source end to end and reports progress as a stream of events.

Stages (strictly sequential, one browser page per run):

1. **Crawl**: open the source URL, log in when credentials exist,
   discover article links (landing page as fallback article)
2. **Extract**: visit each link, keep articles above the noise bar
3. **Persist raw**: corpus + pages crawled + last synced
4. **Summarize**: window-by-window, then consolidate
5. **Persist summary**: marks the source processed
6. **Chunk**: heading-aware split of the corpus
7. **Embed**: replace chunks, embed in batches

``process_stored`` runs stages 4-7 on a corpus crawled earlier, and
``rechunk`` redoes 6-7 alone.

Failure policy:
- Login and link discovery failures are soft; the run carries on with
  whatever the page shows.
- Any later failure ends the run with an ``error`` event. Whatever was
  already persisted stays persisted.
- The browser is closed when extraction ends, and on every exit path
  (including the consumer closing the stream).

Usage::

    coordinator = PipelineCoordinator(store, config, completion, embeddings)
    async for event in coordinator.run_source(source):
        print(event.kind, event.message)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import (
    AsyncContextManager, AsyncIterator, Awaitable, Callable, List, Optional,
)

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .auth.auth_factory import authenticate
from .browser import browser_page
from .chunker import chunk_text
from .errors import ContentTooThin, IngestError, RunCancelled
from .indexer import EmbeddingIndexer
from .link_discovery import discover_links
from .models import (
    Article, EventKind, ProcessingState, ProgressEvent, RunResult, Source,
)
from .run_config import IngestRunConfig
from .scraper import extract_content
from .storage import SourceFilter, SourceStore
from .summarizer import Summarizer
from .utils import save_debug_screenshot

logger = logging.getLogger(__name__)

CORPUS_SEPARATOR = "\n\n---\n\n"
PREVIEW_CHARS = 300

PageFactory = Callable[[IngestRunConfig], AsyncContextManager[Page]]


def build_corpus(articles: List[Article], limit: int) -> str:
    """Join article entries and cap the result at *limit* characters."""
    return CORPUS_SEPARATOR.join(a.to_corpus_entry() for a in articles)[:limit]


def _check_cancel(cancel: Optional[asyncio.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise RunCancelled("Run cancelled")


class _Progress:
    """Turns stage messages into events and records them on a ``RunResult``."""

    def __init__(self, source: Source, result: Optional[RunResult] = None):
        self.source = source
        self.result = result or RunResult(source_id=source.id, source_name=source.name)

    def status(self, message: str, state: ProcessingState) -> ProgressEvent:
        self.result.state = state
        self.result.messages.append(message)
        logger.info(f"[PIPELINE] {self.source.name}: {message}")
        return ProgressEvent(EventKind.STATUS, message, state=state)

    def failure(self, message: str) -> ProgressEvent:
        self.result.state = ProcessingState.FAILED
        self.result.error = message
        self.result.messages.append(message)
        logger.error(f"[PIPELINE] {self.source.name}: {message}")
        return ProgressEvent(EventKind.ERROR, message, state=ProcessingState.FAILED)


class PipelineCoordinator:
    """Drives sources through crawl → summary → chunks → embeddings.

    Args:
        store: Persistence for sources and chunks.
        config: Run configuration.
        completion_client: Used by the summarizer (``complete(...)``).
        embedding_client: Used by the indexer (``embed_batch(...)``);
            None stores chunks without vectors.
        page_factory: Async context manager yielding a browser page.
        authenticate_fn: Login entry point (``authenticate`` signature).
        sleep: Awaitable sleep shared by every wait in the run.
    """

    def __init__(
        self,
        store: SourceStore,
        config: Optional[IngestRunConfig] = None,
        completion_client=None,
        embedding_client=None,
        page_factory: PageFactory = browser_page,
        authenticate_fn=authenticate,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.config = config or IngestRunConfig()
        self.page_factory = page_factory
        self.authenticate_fn = authenticate_fn
        self._sleep = sleep
        self.summarizer = Summarizer(completion_client, self.config, sleep=sleep)
        self.indexer = EmbeddingIndexer(embedding_client, store, self.config, sleep=sleep)

    # ------------------------------------------------------------------
    # Single source
    # ------------------------------------------------------------------

    async def run_source(
        self,
        source: Source,
        cancel: Optional[asyncio.Event] = None,
        result: Optional[RunResult] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Process *source*, yielding progress events.

        The stream always ends with exactly one ``done`` or ``error``
        event. *result*, when given, is filled in as the run proceeds.
        """
        progress = _Progress(source, result)
        if not source.url:
            yield progress.failure("Source has no URL")
            return

        async for event in self._guarded(self._crawl_and_distill(source, cancel, progress), progress):
            yield event

    async def process_stored(
        self,
        source: Source,
        cancel: Optional[asyncio.Event] = None,
        result: Optional[RunResult] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Summarize, chunk and embed the corpus already stored for *source*.

        No browser is opened. Ends with ``done`` or ``error`` like
        ``run_source``.
        """
        progress = _Progress(source, result)
        if not source.content:
            yield progress.failure("Source has no stored content; crawl it first")
            return

        progress.result.articles_processed = source.pages_crawled or 0
        progress.result.total_chars = len(source.content)
        yield progress.status(
            f"Summarizing stored content ({len(source.content):,} chars)",
            ProcessingState.SUMMARIZING,
        )
        async for event in self._guarded(
            self._distill(source, source.content, cancel, progress), progress
        ):
            yield event

    async def rechunk(self, source: Source, cancel: Optional[asyncio.Event] = None) -> int:
        """Rebuild the chunks of *source* from its stored corpus.

        Returns the number of chunks written. Vectors are generated when
        an embedding client is configured.
        """
        if not source.content:
            raise IngestError(f"Source {source.id} has no stored content")
        chunks = chunk_text(source.content, self.config.chunk_size)
        if self.indexer.client is None:
            self.store.replace_chunks(source.id, chunks)
        else:
            await self.indexer.index(source.id, chunks, cancel)
        logger.info(f"[PIPELINE] {source.name}: {len(chunks)} chunk(s) rebuilt")
        return len(chunks)

    async def _guarded(
        self, stream: AsyncIterator[ProgressEvent], progress: _Progress
    ) -> AsyncIterator[ProgressEvent]:
        """Turn any failure inside *stream* into a final ``error`` event."""
        try:
            async for event in stream:
                yield event
        except RunCancelled:
            yield progress.failure("Run cancelled")
        except IngestError as e:
            yield progress.failure(f"Agent error: {e}")
        except Exception as e:
            logger.exception(f"[PIPELINE] Unexpected failure for {progress.source.name}")
            yield progress.failure(f"Agent error: {e}")
        finally:
            await stream.aclose()

    async def _crawl_and_distill(
        self,
        source: Source,
        cancel: Optional[asyncio.Event],
        progress: _Progress,
    ) -> AsyncIterator[ProgressEvent]:
        status, result = progress.status, progress.result

        # ── Crawl + extract (browser lives only for this block) ──
        articles: List[Article] = []
        crawl = self._crawl(source, articles, cancel, status)
        try:
            async for event in crawl:
                yield event
        finally:
            await crawl.aclose()

        if not articles:
            yield progress.failure(
                "No articles found. The credentials may be wrong or the "
                "site structure may have changed."
            )
            return

        total = sum(len(a.text) for a in articles)
        yield status(
            f"{len(articles)} article(s) retrieved ({total:,} chars)",
            ProcessingState.EXTRACTING,
        )

        # ── Persist raw corpus ──
        corpus = build_corpus(articles, self.config.raw_content_limit)
        unchanged = (
            self.config.skip_unchanged
            and source.is_processed
            and bool(source.summary)
            and source.content == corpus
        )
        self.store.update_crawl(source.id, corpus, len(articles), datetime.now())
        result.articles_processed = len(articles)
        result.total_chars = len(corpus)

        if unchanged:
            yield status("Content unchanged, summary kept", ProcessingState.PROCESSED)
            result.summary_length = len(source.summary or "")
            yield ProgressEvent(
                EventKind.RESULT,
                data=result.to_payload((source.summary or "")[:PREVIEW_CHARS]),
            )
            yield ProgressEvent(EventKind.DONE, state=ProcessingState.PROCESSED)
            return

        yield status("Content saved, summarizing", ProcessingState.SUMMARIZING)
        async for event in self._distill(source, corpus, cancel, progress):
            yield event

    async def _distill(
        self,
        source: Source,
        corpus: str,
        cancel: Optional[asyncio.Event],
        progress: _Progress,
    ) -> AsyncIterator[ProgressEvent]:
        """Summary → chunks → embeddings → result for a stored corpus."""
        status, result = progress.status, progress.result

        # ── Summarize ──
        summary = ""
        async for step in self.summarizer.summarize_steps(
            source.name, corpus, source.category, cancel
        ):
            if step.summary is None:
                yield status(step.message, ProcessingState.SUMMARIZING)
            else:
                summary = step.summary

        _check_cancel(cancel)
        self.store.update_summary(source.id, summary, datetime.now())
        result.summary_length = len(summary)
        yield status(f"Summary saved ({len(summary):,} chars)", ProcessingState.SUMMARIZING)

        # ── Chunk ──
        chunks = chunk_text(corpus, self.config.chunk_size)
        result.chunks_created = len(chunks)
        yield status(f"{len(chunks)} chunk(s) created", ProcessingState.CHUNKING)

        # ── Embed ──
        _check_cancel(cancel)
        if self.indexer.client is None:
            self.store.replace_chunks(source.id, chunks)
            yield status(
                "Chunks stored; embeddings skipped (no embedding client)",
                ProcessingState.EMBEDDING,
            )
        else:
            yield status("Generating embeddings", ProcessingState.EMBEDDING)
            async for outcome in self.indexer.index_batches(source.id, chunks, cancel):
                result.chunks_embedded = outcome.embedded
                if outcome.skipped:
                    yield status(
                        f"Embedding batch {outcome.batch_number}/{outcome.total_batches} skipped",
                        ProcessingState.EMBEDDING,
                    )
                else:
                    yield status(
                        f"{outcome.embedded}/{outcome.total_chunks} embeddings",
                        ProcessingState.EMBEDDING,
                    )

        yield status(
            f"Done: {result.articles_processed} article(s), {len(summary):,} chars of knowledge",
            ProcessingState.PROCESSED,
        )
        yield ProgressEvent(
            EventKind.RESULT,
            data=result.to_payload(summary[:PREVIEW_CHARS]),
            state=ProcessingState.PROCESSED,
        )
        yield ProgressEvent(EventKind.DONE, state=ProcessingState.PROCESSED)

    async def _crawl(
        self,
        source: Source,
        articles: List[Article],
        cancel: Optional[asyncio.Event],
        status: Callable[[str, ProcessingState], ProgressEvent],
    ) -> AsyncIterator[ProgressEvent]:
        """Open the browser, log in, discover and extract into *articles*."""
        cfg = self.config
        yield status("Starting browser", ProcessingState.CRAWLING)

        async with self.page_factory(cfg) as page:
            _check_cancel(cancel)
            yield status(f"Opening {source.name}", ProcessingState.CRAWLING)
            await self._goto(page, source.url, cfg.landing_timeout_ms)

            # ── Authentication (soft) ──
            creds = source.parsed_credentials()
            if creds.is_complete:
                yield status("Logging in", ProcessingState.CRAWLING)
                logged_in = await self.authenticate_fn(
                    page, source.url, creds,
                    nav_timeout_ms=cfg.login_timeout_ms,
                    debug_dir=cfg.debug_dir,
                )
                if logged_in:
                    yield status("Logged in", ProcessingState.CRAWLING)
                    await self._goto(page, source.url, cfg.landing_timeout_ms)
                else:
                    yield status(
                        "Login failed, continuing with public content",
                        ProcessingState.CRAWLING,
                    )

            # ── Discovery (soft) ──
            _check_cancel(cancel)
            yield status("Looking for articles", ProcessingState.CRAWLING)
            links = await discover_links(page, source.host, cfg.max_links)
            yield status(f"{len(links)} article(s) found", ProcessingState.CRAWLING)

            if not links:
                try:
                    title, text = await extract_content(page)
                except Exception as e:
                    logger.warning(f"[LINKS] Landing page unreadable: {e}")
                else:
                    if len(text) > cfg.min_article_chars:
                        links = [(source.url, title)]

            # ── Extraction ──
            links = links[:cfg.max_links]
            for i, (url, link_title) in enumerate(links):
                _check_cancel(cancel)
                label = (link_title or url)[:50]
                yield status(
                    f"Article {i + 1}/{len(links)}: {label}", ProcessingState.EXTRACTING
                )
                article = await self._visit(page, url, link_title)
                if article is not None:
                    articles.append(article)
                if cfg.debug_dir and cfg.screenshot_every and (i + 1) % cfg.screenshot_every == 0:
                    await save_debug_screenshot(page, cfg.debug_dir, f"{source.id}_article_{i + 1}")

    async def _goto(self, page: Page, url: str, timeout_ms: int) -> None:
        try:
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeout:
            logger.warning(f"[PIPELINE] Navigation timeout (continuing): {url[:80]}")

    async def _visit(self, page: Page, url: str, link_title: str) -> Optional[Article]:
        """Load one article; None when it fails or is too thin."""
        cfg = self.config
        try:
            try:
                await page.goto(url, wait_until="networkidle", timeout=cfg.article_timeout_ms)
            except PlaywrightTimeout:
                logger.debug(f"[EXTRACT] Timeout, extracting what loaded: {url[:80]}")
            title, text = await extract_content(page)
            if len(text) <= cfg.min_article_chars:
                raise ContentTooThin(url, len(text))
        except ContentTooThin as e:
            logger.info(f"[EXTRACT] Dropped: {e}")
            return None
        except Exception as e:
            logger.warning(f"[EXTRACT] Failed {url[:80]}: {e}")
            return None
        return Article(
            url=url,
            title=title or link_title or url,
            text=text[:cfg.article_char_limit],
        )

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------

    async def process_source(
        self, source: Source, cancel: Optional[asyncio.Event] = None
    ) -> RunResult:
        """Run one source to completion and return its outcome."""
        result = RunResult(source_id=source.id, source_name=source.name)
        async for _event in self.run_source(source, cancel, result):
            pass
        return result

    async def run_all(
        self,
        source_filter: Optional[SourceFilter] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> List[RunResult]:
        """Process every eligible source, one at a time.

        Sources are separated by ``source_cooldown_seconds`` to stay
        under the completion service's rate limits. One failing source
        never stops the batch.
        """
        sources = self.store.find_eligible_sources(source_filter)
        logger.info(f"[PIPELINE] {len(sources)} eligible source(s)")
        results: List[RunResult] = []

        for i, source in enumerate(sources):
            if cancel is not None and cancel.is_set():
                logger.info("[PIPELINE] Batch cancelled")
                break
            if i and self.config.source_cooldown_seconds > 0:
                logger.info(
                    f"[PIPELINE] Cooling down {self.config.source_cooldown_seconds:.0f}s"
                )
                await self._sleep(self.config.source_cooldown_seconds)

            logger.info(f"[PIPELINE] ({i + 1}/{len(sources)}) {source.name}")
            result = await self.process_source(source, cancel)
            results.append(result)

        ok = sum(1 for r in results if r.success)
        logger.info(f"[PIPELINE] Batch finished: {ok}/{len(results)} succeeded")
        return results
