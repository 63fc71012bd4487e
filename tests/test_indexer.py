"""
Tests for batched embedding with per-batch retry and skip.
"""

import asyncio

import pytest

from kbingest.errors import FatalServiceError, RateLimitedError, RunCancelled
from kbingest.indexer import EmbeddingIndexer
from kbingest.models import Chunk, Source
from kbingest.run_config import IngestRunConfig
from kbingest.storage import InMemorySourceStore

from fakes import FakeEmbeddingClient, SleepRecorder


def _chunks(n):
    return [Chunk(index=i, content=f"inhoud {i}", heading="Artikel 1" if i == 0 else None)
            for i in range(n)]


def _setup(client, **overrides):
    store = InMemorySourceStore([Source(id="s1", name="Bron", url="https://kb.example.nl/")])
    sleep = SleepRecorder()
    indexer = EmbeddingIndexer(client, store, IngestRunConfig(**overrides), sleep=sleep)
    return indexer, store, sleep


class TestEmbeddingIndexer:

    def test_all_batches_embedded(self):
        client = FakeEmbeddingClient()
        indexer, store, sleep = _setup(client)

        count = asyncio.run(indexer.index("s1", _chunks(120)))

        assert count == 120
        assert [len(b) for b in client.batches] == [50, 50, 20]
        assert store.embedding_stats(["s1"]) == {
            "total": 120, "with_embedding": 120, "without_embedding": 0,
        }
        assert sleep.calls == [0.5, 0.5]

    def test_heading_prefixed_to_input(self):
        client = FakeEmbeddingClient()
        indexer, _, _ = _setup(client)
        asyncio.run(indexer.index("s1", _chunks(2)))
        assert client.batches[0] == ["Artikel 1\n\ninhoud 0", "inhoud 1"]

    def test_rate_limit_on_second_batch_retries_same_batch(self):
        def behaviour(call):
            if call == 2:
                raise RateLimitedError()

        client = FakeEmbeddingClient(behaviour)
        indexer, store, sleep = _setup(client)

        count = asyncio.run(indexer.index("s1", _chunks(120)))

        assert count == 120
        assert len(client.batches) == 4
        assert client.batches[1] == client.batches[2]
        assert 30.0 in sleep.calls

    def test_other_error_skips_batch(self):
        def behaviour(call):
            if call == 2:
                raise FatalServiceError("bad request", status_code=400)

        client = FakeEmbeddingClient(behaviour)
        indexer, store, _ = _setup(client)

        count = asyncio.run(indexer.index("s1", _chunks(120)))

        assert count == 70
        stats = store.embedding_stats(["s1"])
        assert stats["total"] == 120
        assert stats["without_embedding"] == 50

    def test_bounded_retries_skip_batch(self):
        def behaviour(call):
            raise RateLimitedError()

        client = FakeEmbeddingClient(behaviour)
        indexer, _, sleep = _setup(client, max_embedding_retries=2)

        count = asyncio.run(indexer.index("s1", _chunks(10)))

        assert count == 0
        assert len(client.batches) == 3
        assert sleep.calls == [30.0, 30.0]

    def test_without_client_chunks_are_stored_only(self):
        indexer, store, _ = _setup(None)
        assert asyncio.run(indexer.index("s1", _chunks(5))) == 0
        assert len(store.get_chunks("s1")) == 5

    def test_reindex_replaces_chunks(self):
        client = FakeEmbeddingClient()
        indexer, store, _ = _setup(client)
        asyncio.run(indexer.index("s1", _chunks(8)))
        asyncio.run(indexer.index("s1", _chunks(8)))
        assert store.embedding_stats(["s1"])["total"] == 8

    def test_cancel_stops_embedding(self):
        cancel = asyncio.Event()
        cancel.set()
        indexer, _, _ = _setup(FakeEmbeddingClient())
        with pytest.raises(RunCancelled):
            asyncio.run(indexer.index("s1", _chunks(3), cancel))


class TestEmbedPending:

    def _stored_without_vectors(self, n=5):
        indexer, store, sleep = _setup(FakeEmbeddingClient(), embedding_batch_size=2)
        stored = store.replace_chunks("s1", _chunks(n))
        return indexer, store, sleep, stored

    def test_backfills_only_chunks_without_vector(self):
        indexer, store, sleep, stored = self._stored_without_vectors(5)
        store.store_embedding(stored[0].id, [0.0, 0.0, 9.0])

        count = asyncio.run(indexer.embed_pending())

        assert count == 4
        assert [len(b) for b in indexer.client.batches] == [2, 2]
        assert indexer.client.batches[0] == ["inhoud 1", "inhoud 2"]
        assert store.get_embedding(stored[0].id) == [0.0, 0.0, 9.0]
        assert store.embedding_stats(["s1"])["without_embedding"] == 0
        assert sleep.calls == [0.5]

    def test_chunk_ids_survive_backfill(self):
        indexer, store, _, stored = self._stored_without_vectors(3)
        asyncio.run(indexer.embed_pending(["s1"]))
        assert [c.id for c in store.get_chunks("s1")] == [c.id for c in stored]

    def test_limited_to_requested_sources(self):
        store = InMemorySourceStore([
            Source(id="s1", name="Bron", url="https://kb.example.nl/"),
            Source(id="s2", name="Andere bron", url="https://kb2.example.nl/"),
        ])
        store.replace_chunks("s1", _chunks(2))
        store.replace_chunks("s2", _chunks(3))
        indexer = EmbeddingIndexer(FakeEmbeddingClient(), store, sleep=SleepRecorder())

        assert asyncio.run(indexer.embed_pending(["s2"])) == 3
        assert store.embedding_stats(["s1"])["with_embedding"] == 0
        assert store.embedding_stats(["s2"])["without_embedding"] == 0

    def test_nothing_pending_makes_no_calls(self):
        indexer, store, _, _ = self._stored_without_vectors(2)
        asyncio.run(indexer.embed_pending())
        indexer.client.batches.clear()

        assert asyncio.run(indexer.embed_pending()) == 0
        assert indexer.client.batches == []

    def test_rate_limited_backfill_retries_same_batch(self):
        def behaviour(call):
            if call == 1:
                raise RateLimitedError()

        client = FakeEmbeddingClient(behaviour)
        indexer, store, sleep = _setup(client)
        store.replace_chunks("s1", _chunks(3))

        assert asyncio.run(indexer.embed_pending()) == 3
        assert client.batches[0] == client.batches[1]
        assert sleep.calls == [30.0]
