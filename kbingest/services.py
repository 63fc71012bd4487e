"""
Service Clients
===============
Thin blocking HTTP clients for the completion and embedding services.

Both clients translate HTTP failures into the pipeline's error taxonomy:

    429                      → ``RateLimitedError`` (carries Retry-After)
    any other non-2xx        → ``FatalServiceError``
    transport error/timeout  → ``FatalServiceError``

Retrying is NOT done here; the summarizer and the indexer own their
retry policies. The pipeline calls these clients through
``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests

from .errors import FatalServiceError, RateLimitedError

logger = logging.getLogger(__name__)


ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"

# Per-input cap accepted by the embedding endpoint
MAX_EMBEDDING_INPUT_CHARS = 32_000


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def _raise_for_status(response: requests.Response, service: str) -> None:
    if response.status_code == 429:
        raise RateLimitedError(
            f"{service} rate limited", retry_after=_retry_after(response)
        )
    if not response.ok:
        raise FatalServiceError(
            f"{service} error ({response.status_code}): {response.text[:300]}",
            status_code=response.status_code,
        )


def _post(session: requests.Session, url: str, payload: dict, timeout: float,
          service: str) -> dict:
    try:
        response = session.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise FatalServiceError(f"{service} request failed: {e}") from e
    _raise_for_status(response, service)
    try:
        return response.json()
    except ValueError as e:
        raise FatalServiceError(f"{service} returned invalid JSON") from e


class AnthropicCompletionClient:
    """Messages API client: one system prompt, one user turn, text out."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        timeout: float = 600.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise FatalServiceError("ANTHROPIC_API_KEY is not configured")
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        })

    def complete(self, system_prompt: str, user_content: str, max_tokens: int = 8000) -> str:
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_content}],
        }
        data = _post(self._session, ANTHROPIC_MESSAGES_URL, payload, self.timeout, "Completion")
        parts = [
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        ]
        usage = data.get("usage") or {}
        logger.debug(
            f"[SUMMARY] Completion: {usage.get('input_tokens', '?')} in / "
            f"{usage.get('output_tokens', '?')} out tokens"
        )
        return "".join(parts)


class OpenAIEmbeddingClient:
    """Embeddings API client returning vectors in input order."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise FatalServiceError("OPENAI_API_KEY is not configured")
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        payload = {
            "model": self.model,
            "input": [t[:MAX_EMBEDDING_INPUT_CHARS] for t in texts],
            "dimensions": self.dimensions,
        }
        data = _post(self._session, OPENAI_EMBEDDINGS_URL, payload, self.timeout, "Embedding")
        items = sorted(data.get("data", []), key=lambda item: item.get("index", 0))
        vectors = [item["embedding"] for item in items]
        if len(vectors) != len(texts):
            raise FatalServiceError(
                f"Embedding count mismatch: sent {len(texts)}, got {len(vectors)}"
            )
        return vectors
