"""
Embedding Indexer
=================
Replaces a source's chunks in the store and embeds them in batches.

Per batch:
    - success       → one vector stored per chunk
    - rate limited  → cool down, retry the SAME batch
                      (bounded by ``max_embedding_retries`` when set)
    - other failure → log, skip the batch, continue with the next

A chunk without a vector is a valid end state. ``embed_pending`` picks
such chunks up later without touching the chunks that already have one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional

from .errors import RateLimitedError, RunCancelled, ServiceError
from .models import Chunk
from .run_config import IngestRunConfig

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Progress after one batch."""
    batch_number: int
    total_batches: int
    embedded: int
    total_chunks: int
    skipped: bool = False


class EmbeddingIndexer:
    """Batched embedding writer.

    Args:
        client: Object with ``embed_batch(texts) -> [vector]``, or None
            to store chunks without embedding them.
        store: A ``SourceStore``.
        config: Batch size, cooldown, retry bound.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        client,
        store,
        config: Optional[IngestRunConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.config = config or IngestRunConfig()
        self._sleep = sleep

    async def index_batches(
        self,
        source_id: str,
        chunks: List[Chunk],
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[BatchOutcome]:
        """Replace the source's chunks, then embed them batch by batch.

        Yields a ``BatchOutcome`` after every batch.
        """
        stored = self.store.replace_chunks(source_id, chunks)
        logger.info(f"[EMBED] {len(stored)} chunk(s) stored for source {source_id}")
        async for outcome in self._embed_stored(stored, cancel):
            yield outcome

    async def pending_batches(
        self,
        source_ids: Optional[Iterable[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[BatchOutcome]:
        """Embed only the stored chunks that have no vector yet.

        ``source_ids=None`` covers every source in the store.
        """
        pending = self.store.pending_chunks(source_ids)
        logger.info(f"[EMBED] {len(pending)} chunk(s) without embedding")
        async for outcome in self._embed_stored(pending, cancel):
            yield outcome

    async def _embed_stored(
        self,
        stored: List[Chunk],
        cancel: Optional[asyncio.Event],
    ) -> AsyncIterator[BatchOutcome]:
        if self.client is None or not stored:
            return

        size = max(1, self.config.embedding_batch_size)
        total_batches = (len(stored) + size - 1) // size
        embedded = 0

        for number, start in enumerate(range(0, len(stored), size), start=1):
            batch = stored[start:start + size]
            texts = [c.embedding_text for c in batch]
            vectors = await self._embed_with_retry(texts, number, total_batches, cancel)

            if vectors is None:
                yield BatchOutcome(number, total_batches, embedded, len(stored), skipped=True)
            else:
                self.store.store_embeddings(
                    (chunk.id, vector) for chunk, vector in zip(batch, vectors)
                )
                embedded += len(batch)
                logger.info(f"[EMBED] {embedded}/{len(stored)} embeddings")
                yield BatchOutcome(number, total_batches, embedded, len(stored))

            if number < total_batches and self.config.embedding_batch_delay_seconds > 0:
                await self._sleep(self.config.embedding_batch_delay_seconds)

    async def _embed_with_retry(
        self,
        texts: List[str],
        number: int,
        total: int,
        cancel: Optional[asyncio.Event],
    ) -> Optional[List[List[float]]]:
        """Embed one batch; None means the batch was skipped."""
        max_retries = self.config.max_embedding_retries
        retries = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise RunCancelled("Cancelled during embedding")
            try:
                return await asyncio.to_thread(self.client.embed_batch, texts)
            except RateLimitedError:
                retries += 1
                if max_retries is not None and retries > max_retries:
                    logger.warning(
                        f"[EMBED] Batch {number}/{total} still rate limited after "
                        f"{max_retries} retries, skipping"
                    )
                    return None
                wait = self.config.embedding_cooldown_seconds
                logger.warning(f"[EMBED] Rate limited on batch {number}/{total}, waiting {wait:.0f}s")
                await self._sleep(wait)
            except ServiceError as e:
                logger.error(f"[EMBED] Batch {number}/{total} failed, skipping: {e}")
                return None

    async def index(
        self,
        source_id: str,
        chunks: List[Chunk],
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Run every batch; return how many chunks received a vector."""
        embedded = 0
        async for outcome in self.index_batches(source_id, chunks, cancel):
            embedded = outcome.embedded
        return embedded

    async def embed_pending(
        self,
        source_ids: Optional[Iterable[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Backfill vectors for chunks stored without one; return the count."""
        embedded = 0
        async for outcome in self.pending_batches(source_ids, cancel):
            embedded = outcome.embedded
        return embedded
