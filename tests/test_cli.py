"""
Tests for the command-line entry point (commands that need no browser).
"""

import asyncio
from datetime import datetime

import kbingest.__main__ as cli
from kbingest.__main__ import build_parser, run_cli_with_args
from kbingest.models import Chunk, EventKind, ProgressEvent, Source
from kbingest.run_config import IngestRunConfig
from kbingest.storage import JsonSourceStore

from fakes import FakeCompletionClient, FakeEmbeddingClient


def _store_with_source(store_path, content=None):
    store = JsonSourceStore(store_path)
    store.add_source(Source(id="inview", name="InView", url="https://www.inview.nl/zoeken"))
    if content:
        store.update_crawl("inview", content, 2, datetime.now())
    return store


class TestCli:

    def test_add_then_list(self, tmp_path, capsys):
        store_path = str(tmp_path / "kb.json")

        code = run_cli_with_args([
            "--store", store_path, "add", "--id", "inview", "--name", "InView",
            "--url", "https://www.inview.nl/zoeken", "--category", "Arbeidsrecht",
            "--email", "jurist@example.nl", "--password", "geheim",
        ])
        assert code == 0

        source = JsonSourceStore(store_path).get_source("inview")
        assert source.category == "Arbeidsrecht"
        assert source.parsed_credentials().is_complete

        assert run_cli_with_args(["--store", store_path, "list"]) == 0
        out = capsys.readouterr().out
        assert "inview  InView" in out
        assert "Chunks: 0" in out

    def test_unknown_source(self, tmp_path, capsys):
        code = run_cli_with_args(["--store", str(tmp_path / "kb.json"), "run", "--source", "nope"])
        assert code == 2
        assert "Unknown source id" in capsys.readouterr().out

    def test_run_all_flags_reach_config(self):
        args = build_parser().parse_args([
            "run-all", "--mode", "recent", "--cooldown", "30", "--only-unprocessed",
            "--skip-unchanged",
        ])
        cfg = IngestRunConfig.from_cli_args(args)
        assert args.only_unprocessed is True
        assert cfg.max_links == 10
        assert cfg.source_cooldown_seconds == 30.0
        assert cfg.skip_unchanged is True

    def test_add_rejects_invalid_url(self, tmp_path, capsys):
        store_path = str(tmp_path / "kb.json")
        code = run_cli_with_args(["--store", store_path, "add", "--name", "X", "--url", "inview.nl"])
        assert code == 2
        assert "Invalid URL" in capsys.readouterr().out
        assert JsonSourceStore(store_path).list_sources() == []


class TestSseOutput:

    def test_run_accepts_sse_flag(self):
        assert build_parser().parse_args(["run", "--source", "x", "--sse"]).sse is True

    def test_events_printed_as_frames(self, capsys):
        async def events():
            yield ProgressEvent(EventKind.STATUS, "Inloggen")
            yield ProgressEvent(EventKind.DONE)

        code = asyncio.run(cli._print_events(events(), sse=True))

        assert code == 0
        assert capsys.readouterr().out == (
            "event: status\ndata: Inloggen\n\nevent: done\ndata: \n\n"
        )


class TestStoredContentCommands:

    def test_summarize_all_pending(self, tmp_path, monkeypatch):
        store_path = str(tmp_path / "kb.json")
        _store_with_source(store_path, content="Kennis over ontslag. " * 50)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.setattr(
            cli, "AnthropicCompletionClient",
            lambda *a, **kw: FakeCompletionClient(lambda c, n: "samenvatting"),
        )

        code = run_cli_with_args(["--store", store_path, "summarize", "--all-pending"])

        assert code == 0
        source = JsonSourceStore(store_path).get_source("inview")
        assert source.is_processed is True
        assert source.summary == "samenvatting"
        assert JsonSourceStore(store_path).get_chunks("inview")

    def test_summarize_nothing_pending(self, tmp_path, capsys):
        store_path = str(tmp_path / "kb.json")
        _store_with_source(store_path)

        code = run_cli_with_args(["--store", store_path, "summarize", "--all-pending"])

        assert code == 0
        assert "Nothing to summarize" in capsys.readouterr().out

    def test_chunk_needs_stored_content(self, tmp_path, capsys):
        store_path = str(tmp_path / "kb.json")
        _store_with_source(store_path)

        code = run_cli_with_args(["--store", store_path, "chunk", "--source", "inview"])

        assert code == 2
        assert "no stored content" in capsys.readouterr().out

    def test_chunk_without_embedding_key(self, tmp_path, monkeypatch, capsys):
        store_path = str(tmp_path / "kb.json")
        _store_with_source(store_path, content="Kennis over ontslag. " * 50)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        code = run_cli_with_args(["--store", store_path, "chunk", "--source", "inview"])

        assert code == 0
        assert "1 chunk(s) rebuilt, 0 embedded" in capsys.readouterr().out

    def test_embed_requires_key(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        code = run_cli_with_args(["--store", str(tmp_path / "kb.json"), "embed"])
        assert code == 1
        assert "OPENAI_API_KEY" in capsys.readouterr().out

    def test_embed_backfills_pending_chunks(self, tmp_path, monkeypatch, capsys):
        store_path = str(tmp_path / "kb.json")
        store = _store_with_source(store_path)
        store.replace_chunks("inview", [Chunk(0, "een"), Chunk(1, "twee")])
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setattr(cli, "OpenAIEmbeddingClient", lambda *a, **kw: FakeEmbeddingClient())

        code = run_cli_with_args(["--store", store_path, "embed", "--source", "inview"])

        assert code == 0
        assert "2 chunk(s) embedded, 0 still pending" in capsys.readouterr().out
        stats = JsonSourceStore(store_path).embedding_stats(["inview"])
        assert stats["with_embedding"] == 2
