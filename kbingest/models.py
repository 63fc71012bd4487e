"""
Ingestion Data Model
====================
Records passed between the pipeline stages and the source store.

- ``Source``          : a registered crawl target (persisted)
- ``Article``         : one extracted page (ephemeral, per run)
- ``Chunk``           : a retrieval unit of a source's corpus (persisted)
- ``ProcessingState`` : the stage a run is in
- ``ProgressEvent``   : what the coordinator reports to its caller
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .auth.base_auth import Credentials
from .utils import extract_domain

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    """Lifecycle of one source within one run."""
    UNPROCESSED = "unprocessed"
    CRAWLING = "crawling"
    EXTRACTING = "extracting"
    SUMMARIZING = "summarizing"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass
class Source:
    """A registered external site.

    ``credentials`` holds the serialized JSON exactly as stored; use
    :meth:`parsed_credentials` to read it.
    """
    id: str
    name: str
    url: Optional[str] = None
    credentials: Optional[str] = None
    category: str = ""
    is_active: bool = True
    is_processed: bool = False
    last_synced: Optional[datetime] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    processed_at: Optional[datetime] = None
    pages_crawled: int = 0

    def parsed_credentials(self) -> Credentials:
        """Decode ``credentials`` into a ``Credentials`` object.

        Malformed JSON yields empty credentials rather than an error: the
        run then proceeds unauthenticated.
        """
        if not self.credentials:
            return Credentials()
        try:
            data = json.loads(self.credentials)
        except (TypeError, ValueError):
            logger.warning(f"[SOURCE] Unreadable credentials for {self.name}")
            return Credentials()
        if not isinstance(data, dict):
            return Credentials()
        extra = {
            k: str(v) for k, v in data.items()
            if k not in ("email", "username", "password") and v is not None
        }
        return Credentials(
            username=str(data.get("email") or data.get("username") or ""),
            password=str(data.get("password") or ""),
            extra=extra,
        )

    @property
    def host(self) -> str:
        return extract_domain(self.url or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "credentials": self.credentials,
            "category": self.category,
            "is_active": self.is_active,
            "is_processed": self.is_processed,
            "last_synced": _iso(self.last_synced),
            "content": self.content,
            "summary": self.summary,
            "processed_at": _iso(self.processed_at),
            "pages_crawled": self.pages_crawled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            url=data.get("url"),
            credentials=data.get("credentials"),
            category=data.get("category", ""),
            is_active=bool(data.get("is_active", True)),
            is_processed=bool(data.get("is_processed", False)),
            last_synced=_parse_iso(data.get("last_synced")),
            content=data.get("content"),
            summary=data.get("summary"),
            processed_at=_parse_iso(data.get("processed_at")),
            pages_crawled=int(data.get("pages_crawled", 0)),
        )


@dataclass
class Article:
    """One visited page that passed the noise filter."""
    url: str
    title: str
    text: str

    def to_corpus_entry(self) -> str:
        return f"[{self.title}]\nURL: {self.url}\n\n{self.text}"


@dataclass
class Chunk:
    """A retrieval-sized slice of a source's corpus.

    ``id`` and ``source_id`` are assigned by the store on insert.
    """
    index: int
    content: str
    heading: Optional[str] = None
    source_id: str = ""
    id: str = ""

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding service."""
        if self.heading:
            return f"{self.heading}\n\n{self.content}"
        return self.content

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "index": self.index,
            "content": self.content,
            "heading": self.heading,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            id=data.get("id", ""),
            source_id=data.get("source_id", ""),
            index=int(data["index"]),
            content=data.get("content", ""),
            heading=data.get("heading"),
        )


@dataclass
class ChunkMatch:
    """A chunk returned by similarity search."""
    chunk: Chunk
    similarity: float


class EventKind(str, Enum):
    STATUS = "status"
    RESULT = "result"
    DONE = "done"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """One item of the coordinator's progress stream."""
    kind: EventKind
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    state: Optional[ProcessingState] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)

    def to_sse(self) -> str:
        """Render as a server-sent event frame, one ``data:`` line per payload line."""
        payload = json.dumps(self.data) if self.kind == EventKind.RESULT else self.message
        data = "".join(f"data: {line}\n" for line in payload.splitlines() or [""])
        return f"event: {self.kind.value}\n{data}\n"


@dataclass
class RunResult:
    """Outcome of one source run (batch mode)."""
    source_id: str
    source_name: str
    state: ProcessingState = ProcessingState.UNPROCESSED
    articles_processed: int = 0
    total_chars: int = 0
    summary_length: int = 0
    chunks_created: int = 0
    chunks_embedded: int = 0
    error: str = ""
    messages: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state == ProcessingState.PROCESSED

    def to_payload(self, preview: str = "") -> Dict[str, Any]:
        return {
            "articlesProcessed": self.articles_processed,
            "totalChars": self.total_chars,
            "summaryLength": self.summary_length,
            "chunksCreated": self.chunks_created,
            "preview": preview,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
