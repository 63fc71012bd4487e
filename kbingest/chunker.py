"""
Heading-aware Chunker
=====================
Splits a source corpus into retrieval chunks of at most ``target_size``
characters, carrying the most recent section heading along as context.

Single pass over the lines, no lookahead, fully deterministic:

* A heading line starts a new chunk only once the current buffer holds
  at least 30 % of the target; a heading that arrives earlier is kept
  as ordinary text and the previous heading stays in effect.
* A buffer that reaches the target is cut at the last paragraph break
  past its midpoint, else the last sentence break, else hard at the
  target. The remainder keeps the current heading.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .models import Chunk
from .utils import find_split_point

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5000
HEADING_FLUSH_RATIO = 0.3
MAX_HEADING_CHARS = 200

HEADING_RE = re.compile(
    r'^('
    r'#{1,4}\s'                                   # markdown
    r'|Artikel\s+\d|Art\.\s*\d'                   # statute articles
    r'|(Afdeling|Titel|Boek|Hoofdstuk)\s+\d'      # statute structure
    r'|(Section|Chapter)\s+\d'
    r'|\d+\.\d+[\s.]'                             # numbered 1.2
    r'|[A-Z][A-Z\s]{5,79}$'                       # short ALL CAPS line
    r'|\[.+\]$'                                   # [Article title]
    r'|AR-\d{4}-\d+'                              # ruling citation
    r'|ECLI:'                                     # case-law identifier
    r')'
)


def is_heading(line: str) -> bool:
    """True if the (stripped) line looks like a section heading."""
    line = line.strip()
    return bool(line) and HEADING_RE.match(line) is not None


def chunk_text(text: str, target_size: int = DEFAULT_CHUNK_SIZE) -> List[Chunk]:
    """Split *text* into ordered ``Chunk`` objects.

    Args:
        text: Corpus text, lines separated by ``\\n``.
        target_size: Upper bound on chunk length in characters.

    Returns:
        Chunks with ``index`` 0..n-1 in document order. Empty input
        yields an empty list.
    """
    if target_size <= 0:
        raise ValueError("target_size must be positive")
    if not text or not text.strip():
        return []

    chunks: List[Chunk] = []
    heading: Optional[str] = None
    buffer = ""

    def emit(content: str) -> None:
        content = content.strip()
        if content:
            chunks.append(Chunk(index=len(chunks), content=content, heading=heading))

    flush_at = target_size * HEADING_FLUSH_RATIO

    for line in text.split("\n"):
        if is_heading(line) and len(buffer) >= flush_at:
            emit(buffer)
            buffer = line + "\n"
            heading = line.strip()[:MAX_HEADING_CHARS]
        else:
            buffer += line + "\n"

        while len(buffer) >= target_size and buffer.strip():
            cut = find_split_point(buffer, target_size)
            emit(buffer[:cut])
            buffer = buffer[cut:].strip() + "\n"

    emit(buffer)

    logger.debug(
        f"[CHUNK] {len(chunks)} chunk(s) from {len(text):,} chars "
        f"(target {target_size:,})"
    )
    return chunks
