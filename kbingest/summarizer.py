"""
Summarization Orchestrator
==========================
Turns a raw corpus into one knowledge summary with the completion service.

    corpus ──split_windows──▶ [w1, w2, ...] ──complete──▶ [p1, p2, ...]
                                                              │
                          len > 1 ──consolidate──▶ summary ◀──┘

Rate limits are retried with a linear backoff (``backoff × attempt``)
up to ``max_attempts`` calls per window. Any other service error, or a
window that is still throttled after the last attempt, aborts the
summary. Consolidation is best-effort: when it fails the joined partial
summaries are returned instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from .errors import IngestError, RateLimitedError, RunCancelled, SummarizationError
from .run_config import IngestRunConfig
from .utils import find_split_point

logger = logging.getLogger(__name__)


KNOWLEDGE_PROMPT = """Je bent een juridisch kennissysteem. Verwerk de volgende tekst tot een gestructureerde kennissamenvatting.

Focus op:
1. Wetsartikelen met exacte nummers (art. 7:669 BW, etc.)
2. Rechtspraak: ECLI-nummers, rechtsregels, kernbeslissingen
3. Juridische principes en vuistregels
4. Berekeningen en termijnen
5. Praktijktips voor arbeidsrechtadvocaten

Schrijf in het Nederlands. Wees uitgebreid maar gestructureerd."""

PARTIAL_SEPARATOR = "\n\n---\n\n"


def window_prompt(source_name: str, category: str, window: str) -> str:
    return f'Verwerk de volgende tekst uit "{source_name}" ({category}):\n\n{window}'


def consolidation_prompt(source_name: str, partials: List[str]) -> str:
    return (
        f"Consolideer de volgende {len(partials)} deelsamenvatting(en) van "
        f'"{source_name}" tot één samenhangende kennissamenvatting. '
        f"Verwijder duplicaten maar bewaar alle unieke informatie:\n\n"
        f"{PARTIAL_SEPARATOR.join(partials)}"
    )


def split_windows(text: str, window_size: int = 80_000) -> List[str]:
    """Cut *text* into windows of at most ``window_size`` characters.

    Cuts prefer a paragraph break, then a sentence break, past the
    window's midpoint; otherwise the cut is hard.
    """
    if window_size <= 0:
        raise ValueError("window_size must be positive")
    if not text:
        return []
    windows: List[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= window_size:
            windows.append(remaining)
            break
        cut = find_split_point(remaining, window_size)
        windows.append(remaining[:cut])
        remaining = remaining[cut:].lstrip()
    return windows


@dataclass
class SummaryStep:
    """One progress report from ``Summarizer.summarize_steps``.

    The final step carries ``summary``; earlier ones only a message.
    """
    message: str
    summary: Optional[str] = None


class Summarizer:
    """Window-by-window summarization with rate-limit backoff.

    Args:
        client: Object with ``complete(system_prompt, user_content,
            max_tokens) -> str``; called in a worker thread.
        config: Run configuration (window size, attempts, backoff).
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        client,
        config: Optional[IngestRunConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.config = config or IngestRunConfig()
        self._sleep = sleep

    # ── Single completion with retry ──────────────────────────────

    async def _complete(self, user_content: str, label: str) -> str:
        max_attempts = max(1, self.config.max_summary_attempts)
        for attempt in range(1, max_attempts + 1):
            try:
                return await asyncio.to_thread(
                    self.client.complete,
                    KNOWLEDGE_PROMPT,
                    user_content,
                    self.config.summary_max_tokens,
                )
            except RateLimitedError:
                if attempt == max_attempts:
                    raise SummarizationError(
                        f"{label}: still rate limited after {max_attempts} attempts"
                    )
                wait = self.config.summary_backoff_seconds * attempt
                logger.warning(
                    f"[SUMMARY] {label}: rate limited (attempt {attempt}/{max_attempts}), "
                    f"waiting {wait:.0f}s"
                )
                await self._sleep(wait)
        raise SummarizationError(f"{label}: no attempts made")

    # ── Public steps ──────────────────────────────────────────────

    def windows(self, corpus: str) -> List[str]:
        return split_windows(corpus, self.config.window_size)

    async def summarize_window(
        self, source_name: str, window: str, index: int, total: int, category: str = ""
    ) -> str:
        label = f"window {index + 1}/{total}"
        logger.info(f"[SUMMARY] {source_name}: {label} ({len(window):,} chars)")
        return await self._complete(window_prompt(source_name, category, window), label)

    async def consolidate(self, source_name: str, partials: List[str]) -> str:
        """Merge partial summaries; falls back to joining them on failure."""
        joined = PARTIAL_SEPARATOR.join(partials)
        if len(partials) <= 1:
            return joined
        logger.info(f"[SUMMARY] {source_name}: consolidating {len(partials)} partials")
        try:
            merged = await self._complete(
                consolidation_prompt(source_name, partials), "consolidation"
            )
        except IngestError as e:
            logger.warning(f"[SUMMARY] Consolidation failed, keeping partials: {e}")
            return joined
        return merged or joined

    async def summarize_steps(
        self,
        source_name: str,
        corpus: str,
        category: str = "",
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[SummaryStep]:
        """Summarize *corpus*, reporting before each completion call.

        The last step yielded carries the summary.

        Raises:
            SummarizationError: a window stayed rate limited, or no window
                produced text.
            FatalServiceError: any other completion failure.
            RunCancelled: *cancel* was set between windows.
        """
        windows = self.windows(corpus)
        partials: List[str] = []
        for i, window in enumerate(windows):
            if cancel is not None and cancel.is_set():
                raise RunCancelled("Run cancelled")
            if i and self.config.window_delay_seconds > 0:
                await self._sleep(self.config.window_delay_seconds)
            yield SummaryStep(f"Summarizing part {i + 1} of {len(windows)}")
            text = await self.summarize_window(source_name, window, i, len(windows), category)
            if text:
                partials.append(text)

        if not partials:
            raise SummarizationError(f"No summary text produced for {source_name}")
        if len(partials) > 1:
            yield SummaryStep("Consolidating knowledge")
        summary = await self.consolidate(source_name, partials)
        yield SummaryStep(f"Summary ready ({len(summary):,} chars)", summary=summary)

    async def summarize(self, source_name: str, corpus: str, category: str = "") -> str:
        """Summarize *corpus* end to end and return the summary."""
        summary = ""
        async for step in self.summarize_steps(source_name, corpus, category):
            if step.summary is not None:
                summary = step.summary
        return summary
