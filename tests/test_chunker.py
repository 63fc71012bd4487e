"""
Tests for the heading-aware chunker and the split-point search.
"""

import re

import pytest

from kbingest.chunker import chunk_text, is_heading
from kbingest.utils import find_split_point


def _strip_ws(text: str) -> str:
    return re.sub(r"\s+", "", text)


def _corpus() -> str:
    parts = []
    for i in range(1, 9):
        parts.append(f"Artikel {i} Ontslag")
        for j in range(6):
            parts.append(
                f"Paragraaf {i}.{j}. " + "De werkgever moet een redelijke grond hebben. " * 12
            )
            parts.append("")
    parts.append("ECLI:NL:HR:2020:1234")
    parts.append("x" * 12_000)  # one line longer than two chunks
    return "\n".join(parts)


# ====================================================================
# Split point
# ====================================================================

class TestFindSplitPoint:

    def test_short_text_is_not_cut(self):
        assert find_split_point("abc", 10) == 3

    def test_prefers_paragraph_break(self):
        text = "a" * 60 + "\n\n" + "b" * 60
        assert find_split_point(text, 100) == 60

    def test_falls_back_to_sentence_break(self):
        text = "a" * 70 + ". " + "b" * 60
        assert find_split_point(text, 100) == 71

    def test_hard_cut_without_breaks(self):
        assert find_split_point("a" * 300, 100) == 100

    def test_break_before_midpoint_is_ignored(self):
        text = "a" * 10 + "\n\n" + "b" * 200
        assert find_split_point(text, 100) == 100


# ====================================================================
# Heading detection
# ====================================================================

class TestIsHeading:

    @pytest.mark.parametrize("line", [
        "## Inleiding",
        "Artikel 7 Proeftijd",
        "Art. 7:669 BW",
        "Hoofdstuk 3 Ontslag",
        "Afdeling 9 Einde",
        "Section 4 Scope",
        "2.1 Toepassingsbereik",
        "ONTSLAG OP STAANDE VOET",
        "[Nieuwsbrief maart]",
        "AR-2023-0456 Transitievergoeding",
        "ECLI:NL:HR:2020:1234",
    ])
    def test_recognised(self, line):
        assert is_heading(line)

    @pytest.mark.parametrize("line", [
        "",
        "Dit is een gewone zin over ontslag.",
        "A" * 120,
        "artikel 7 in kleine letters",
    ])
    def test_not_headings(self, line):
        assert not is_heading(line)


# ====================================================================
# Chunking properties
# ====================================================================

class TestChunkText:

    def test_empty_input(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\n ") == []

    def test_short_text_single_chunk(self):
        chunks = chunk_text("Korte tekst.", 5000)
        assert len(chunks) == 1
        assert chunks[0].content == "Korte tekst."
        assert chunks[0].heading is None
        assert chunks[0].index == 0

    def test_deterministic(self):
        text = _corpus()
        assert chunk_text(text, 1000) == chunk_text(text, 1000)

    @pytest.mark.parametrize("size", [300, 1000, 5000])
    def test_size_bound(self, size):
        for chunk in chunk_text(_corpus(), size):
            assert len(chunk.content) <= size

    @pytest.mark.parametrize("size", [300, 1000, 5000])
    def test_reconstruction_ignoring_whitespace(self, size):
        text = _corpus()
        joined = "".join(c.content for c in chunk_text(text, size))
        assert _strip_ws(joined) == _strip_ws(text)

    def test_indices_are_sequential(self):
        chunks = chunk_text(_corpus(), 1000)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_heading_starts_new_chunk_once_buffer_is_large_enough(self):
        para = "woord " * 400
        text = "Hoofdstuk 1\n" + para + "\nArtikel 5 Ontslag\n" + para
        chunks = chunk_text(text, 5000)

        assert len(chunks) == 2
        # the opening heading arrived with an empty buffer: no label
        assert chunks[0].heading is None
        assert chunks[0].content.startswith("Hoofdstuk 1")
        assert chunks[1].heading == "Artikel 5 Ontslag"
        assert chunks[1].content.startswith("Artikel 5 Ontslag")

    def test_heading_below_threshold_is_plain_text(self):
        text = "inleiding\nArtikel 1 Kort\nmeer tekst"
        chunks = chunk_text(text, 5000)
        assert len(chunks) == 1
        assert chunks[0].heading is None

    def test_split_remainder_keeps_heading(self):
        text = "x" * 1000 + "\nArtikel 9 Lang\n" + ("Zin over het arbeidsrecht. " * 400)
        chunks = chunk_text(text, 2000)
        labelled = [c for c in chunks if c.heading == "Artikel 9 Lang"]
        assert len(labelled) > 1

    def test_heading_label_truncated(self):
        long_heading = "## " + "k" * 400
        text = "y" * 2000 + "\n" + long_heading + "\nbody"
        chunks = chunk_text(text, 5000)
        assert len(chunks[-1].heading) == 200

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk_text("abc", 0)

    def test_tiny_target_size_terminates(self):
        chunks = chunk_text("ab\ncd", 1)
        assert [c.content for c in chunks] == ["a", "b", "c", "d"]
        assert [c.index for c in chunks] == [0, 1, 2, 3]
