"""
Source Store
============
Persistence for sources, their chunks and the chunk embeddings.

    SourceStore (ABC)
      ├── InMemorySourceStore   : dict-backed, tests and one-shot runs
      └── JsonSourceStore       : same, mirrored to one JSON file on disk

The pipeline only ever goes through the ``SourceStore`` interface.
Storage failures surface as ``PersistenceUnavailable``.
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import PersistenceUnavailable
from .models import Chunk, ChunkMatch, Source

logger = logging.getLogger(__name__)


@dataclass
class SourceFilter:
    """Which sources a batch run picks up."""
    only_active: bool = True
    only_unprocessed: bool = False
    require_url: bool = True
    source_ids: Optional[Sequence[str]] = None

    def matches(self, source: Source) -> bool:
        if self.only_active and not source.is_active:
            return False
        if self.only_unprocessed and source.is_processed:
            return False
        if self.require_url and not source.url:
            return False
        if self.source_ids is not None and source.id not in self.source_ids:
            return False
        return True


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero vectors."""
    if not a or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class SourceStore(ABC):
    """Persistence operations used by the pipeline."""

    # ── Sources ──

    @abstractmethod
    def add_source(self, source: Source) -> Source:
        ...

    @abstractmethod
    def get_source(self, source_id: str) -> Optional[Source]:
        ...

    @abstractmethod
    def list_sources(self) -> List[Source]:
        ...

    def find_eligible_sources(self, source_filter: Optional[SourceFilter] = None) -> List[Source]:
        source_filter = source_filter or SourceFilter()
        return [s for s in self.list_sources() if source_filter.matches(s)]

    @abstractmethod
    def update_crawl(
        self, source_id: str, content: str, pages_crawled: int, last_synced: datetime
    ) -> None:
        ...

    @abstractmethod
    def update_summary(self, source_id: str, summary: str, processed_at: datetime) -> None:
        """Store the summary and mark the source processed."""
        ...

    # ── Chunks & embeddings ──

    @abstractmethod
    def replace_chunks(self, source_id: str, chunks: List[Chunk]) -> List[Chunk]:
        """Delete every chunk of the source, then insert *chunks*.

        Returns the stored chunks with ``id`` and ``source_id`` set.
        """
        ...

    @abstractmethod
    def get_chunks(self, source_id: str) -> List[Chunk]:
        ...

    @abstractmethod
    def store_embedding(self, chunk_id: str, vector: List[float]) -> None:
        ...

    def store_embeddings(self, items: Iterable[Tuple[str, List[float]]]) -> None:
        """Store several vectors; implementations may persist once."""
        for chunk_id, vector in items:
            self.store_embedding(chunk_id, vector)

    @abstractmethod
    def get_embedding(self, chunk_id: str) -> Optional[List[float]]:
        ...

    # ── Derived queries ──

    def pending_chunks(self, source_ids: Optional[Iterable[str]] = None) -> List[Chunk]:
        """Stored chunks that have no embedding yet, in document order per source."""
        return [c for c in self._chunks_for(source_ids) if self.get_embedding(c.id) is None]

    def _chunks_for(self, source_ids: Optional[Iterable[str]]) -> List[Chunk]:
        if source_ids is None:
            source_ids = [s.id for s in self.list_sources()]
        chunks: List[Chunk] = []
        for sid in source_ids:
            chunks.extend(self.get_chunks(sid))
        return chunks

    def search_similar_chunks(
        self,
        query_vector: Sequence[float],
        source_ids: Optional[Iterable[str]] = None,
        max_results: int = 35,
    ) -> List[ChunkMatch]:
        """Embedded chunks ranked by cosine similarity, best first."""
        matches: List[ChunkMatch] = []
        for chunk in self._chunks_for(source_ids):
            vector = self.get_embedding(chunk.id)
            if vector is None:
                continue
            matches.append(ChunkMatch(chunk, cosine_similarity(query_vector, vector)))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:max_results]

    def embedding_stats(self, source_ids: Optional[Iterable[str]] = None) -> Dict[str, int]:
        chunks = self._chunks_for(source_ids)
        with_embedding = sum(1 for c in chunks if self.get_embedding(c.id) is not None)
        return {
            "total": len(chunks),
            "with_embedding": with_embedding,
            "without_embedding": len(chunks) - with_embedding,
        }


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemorySourceStore(SourceStore):

    def __init__(self, sources: Optional[Iterable[Source]] = None):
        self._sources: Dict[str, Source] = {}
        self._chunks: Dict[str, List[Chunk]] = {}
        self._embeddings: Dict[str, List[float]] = {}
        for source in sources or []:
            self._sources[source.id] = source

    def _require(self, source_id: str) -> Source:
        source = self._sources.get(source_id)
        if source is None:
            raise PersistenceUnavailable(f"Unknown source: {source_id}")
        return source

    def _changed(self) -> None:
        """Hook called after every mutation."""

    def add_source(self, source: Source) -> Source:
        if not source.id:
            source = replace(source, id=uuid.uuid4().hex)
        self._sources[source.id] = source
        self._changed()
        return source

    def get_source(self, source_id: str) -> Optional[Source]:
        return self._sources.get(source_id)

    def list_sources(self) -> List[Source]:
        return list(self._sources.values())

    def update_crawl(self, source_id, content, pages_crawled, last_synced) -> None:
        source = self._require(source_id)
        source.content = content
        source.pages_crawled = pages_crawled
        source.last_synced = last_synced
        self._changed()

    def update_summary(self, source_id, summary, processed_at) -> None:
        if not summary:
            raise ValueError("A processed source needs a non-empty summary")
        source = self._require(source_id)
        source.summary = summary
        source.is_processed = True
        source.processed_at = processed_at
        self._changed()

    def replace_chunks(self, source_id, chunks) -> List[Chunk]:
        self._require(source_id)
        for old in self._chunks.pop(source_id, []):
            self._embeddings.pop(old.id, None)
        stored = [
            replace(c, id=uuid.uuid4().hex, source_id=source_id) for c in chunks
        ]
        self._chunks[source_id] = stored
        self._changed()
        return list(stored)

    def get_chunks(self, source_id) -> List[Chunk]:
        return sorted(self._chunks.get(source_id, []), key=lambda c: c.index)

    def store_embedding(self, chunk_id, vector) -> None:
        self._embeddings[chunk_id] = list(vector)
        self._changed()

    def store_embeddings(self, items) -> None:
        for chunk_id, vector in items:
            self._embeddings[chunk_id] = list(vector)
        self._changed()

    def get_embedding(self, chunk_id) -> Optional[List[float]]:
        return self._embeddings.get(chunk_id)


# ---------------------------------------------------------------------------
# JSON file implementation
# ---------------------------------------------------------------------------

class JsonSourceStore(InMemorySourceStore):
    """In-memory store mirrored to a single JSON document.

    Every mutation rewrites the file via a temp file + ``os.replace`` so
    a crash never leaves a half-written store behind.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._loading = False
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceUnavailable(f"Cannot read store {self.path}: {e}") from e

        self._loading = True
        try:
            for raw in data.get("sources", []):
                source = Source.from_dict(raw)
                self._sources[source.id] = source
            for raw in data.get("chunks", []):
                chunk = Chunk.from_dict(raw)
                self._chunks.setdefault(chunk.source_id, []).append(chunk)
            self._embeddings = {
                k: list(v) for k, v in (data.get("embeddings") or {}).items()
            }
        finally:
            self._loading = False
        logger.info(
            f"[STORE] Loaded {len(self._sources)} source(s), "
            f"{sum(len(c) for c in self._chunks.values())} chunk(s) from {self.path}"
        )

    def _snapshot(self) -> dict:
        return {
            "sources": [s.to_dict() for s in self._sources.values()],
            "chunks": [c.to_dict() for cs in self._chunks.values() for c in cs],
            "embeddings": self._embeddings,
        }

    def _changed(self) -> None:
        if self._loading:
            return
        self.save()

    def save(self) -> None:
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self._snapshot(), f, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceUnavailable(f"Cannot write store {self.path}: {e}") from e

