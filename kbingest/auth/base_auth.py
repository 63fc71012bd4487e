"""
Base Login Strategy (Abstract)
==============================
Defines the contract that ALL site-specific login strategies implement,
plus the element matchers and navigation helpers they share.

To add a new site:
    1. Create ``<site>_auth.py`` inheriting from ``BaseLoginStrategy``
    2. Implement ``portal_name``, ``detect`` and ``login``
    3. Register in ``auth_factory.py`` via ``AuthFactory.register()``
    4. No changes to the pipeline are needed.

Design principles:
    - "Try selector A, then B, then C" is an ordered list of matchers
      evaluated until one finds an element, never nested conditionals
    - A missing field is not an error: ``login`` returns False and the
      pipeline carries on with whatever the page shows
    - Navigation waits are bounded and their timeouts are swallowed
    - Credentials are never logged
"""

from __future__ import annotations

import asyncio
import logging
import time as _time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from playwright.async_api import ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ..errors import SoftNavigationFailure
from ..utils import save_debug_screenshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Credentials container
# ---------------------------------------------------------------------------

@dataclass
class Credentials:
    """Plain credential container, decoded once from the source record."""
    username: str = ""
    password: str = ""
    extra: Dict[str, str] = field(default_factory=dict)
    """Extra stored fields (cookie, token, ...), unused by the strategies."""

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)


# ---------------------------------------------------------------------------
# Element matchers
# ---------------------------------------------------------------------------

class ElementMatcher(ABC):
    """One way of locating an element on a page."""

    @abstractmethod
    async def find(self, page: Page) -> Optional[ElementHandle]:
        ...


@dataclass(frozen=True)
class SelectorMatcher(ElementMatcher):
    """Match by CSS / Playwright selector (attribute or ``:has-text``)."""
    selector: str
    visible_only: bool = False

    async def find(self, page: Page) -> Optional[ElementHandle]:
        el = await page.query_selector(self.selector)
        if el is None:
            return None
        if self.visible_only and not await el.is_visible():
            return None
        return el

    def __str__(self) -> str:
        return self.selector


@dataclass(frozen=True)
class TextMatcher(ElementMatcher):
    """Match elements of ``tag`` whose trimmed text contains a phrase.

    Comparison is case-insensitive.
    """
    tag: str
    phrases: Sequence[str]

    async def find(self, page: Page) -> Optional[ElementHandle]:
        wanted = [p.strip().lower() for p in self.phrases]
        for el in await page.query_selector_all(self.tag):
            text = ((await el.text_content()) or "").strip().lower()
            if text and any(p in text for p in wanted):
                return el
        return None

    def __str__(self) -> str:
        return f"{self.tag}~{list(self.phrases)}"


def selectors(*sels: str, visible_only: bool = False) -> List[ElementMatcher]:
    """Shorthand for a list of ``SelectorMatcher``."""
    return [SelectorMatcher(s, visible_only=visible_only) for s in sels]


async def find_first(
    page: Page, matchers: Sequence[ElementMatcher], label: str = ""
) -> Optional[ElementHandle]:
    """Evaluate matchers in order; return the first element found."""
    for matcher in matchers:
        try:
            el = await matcher.find(page)
        except Exception:
            continue
        if el is not None:
            if label:
                logger.debug(f"[AUTH] Found {label}: {matcher}")
            return el
    return None


# ---------------------------------------------------------------------------
# Abstract Base Strategy
# ---------------------------------------------------------------------------

class BaseLoginStrategy(ABC):
    """Abstract base for all login strategies.

    Subclasses MUST implement:
        - ``portal_name``  : human readable name (e.g. "Generic")
        - ``detect(url)``  : True if this strategy owns the URL's host
        - ``login(page, source_url, creds)`` : perform the login flow
    """

    def __init__(
        self,
        *,
        nav_timeout_ms: int = 15_000,
        settle_s: float = 2.0,
        type_delay_ms: int = 50,
        debug_dir: Optional[str] = None,
    ):
        self.nav_timeout_ms = nav_timeout_ms
        self.settle_s = settle_s
        self.type_delay_ms = type_delay_ms
        self.debug_dir = debug_dir

    # ── Identity ──────────────────────────────────────────────────

    @property
    @abstractmethod
    def portal_name(self) -> str:
        """Human-readable portal name (e.g. 'InView SSO')."""
        ...

    @abstractmethod
    def detect(self, url: str) -> bool:
        """Return True if this strategy should log in for *url*.

        Must be fast (no network calls, pattern matching only).
        """
        ...

    # ── Login flow ────────────────────────────────────────────────

    @abstractmethod
    async def login(self, page: Page, source_url: str, creds: Credentials) -> bool:
        """Drive *page* to an authenticated state.

        Returns:
            True if the page looks authenticated afterwards.
        """
        ...

    async def authenticate(
        self, page: Page, source_url: str, creds: Optional[Credentials]
    ) -> bool:
        """Run ``login`` with the shared guard rails.

        Incomplete credentials short-circuit to False before any
        navigation. Errors inside the flow are logged and reported as
        False; they never propagate.
        """
        if creds is None or not creds.is_complete:
            logger.info(f"[AUTH] {self.portal_name}: no credentials, skipping login")
            return False
        try:
            ok = await self.login(page, source_url, creds)
        except SoftNavigationFailure as e:
            logger.warning(f"[AUTH] {self.portal_name}: {e}")
            await self._screenshot(page, "login_incomplete")
            return False
        except Exception as e:
            logger.warning(f"[AUTH] {self.portal_name}: login attempt failed: {e}")
            await self._screenshot(page, "login_error")
            return False
        if ok:
            logger.info(f"[AUTH] {self.portal_name}: login successful")
        else:
            logger.warning(f"[AUTH] {self.portal_name}: login not verified")
            await self._screenshot(page, "login_unverified")
        return ok

    # ── Shared helpers ────────────────────────────────────────────

    async def _goto(self, page: Page, url: str, timeout_ms: Optional[int] = None) -> None:
        """Navigate; a timeout is treated as "proceed anyway"."""
        try:
            await page.goto(
                url,
                wait_until="networkidle",
                timeout=timeout_ms or self.nav_timeout_ms,
            )
        except PlaywrightTimeout:
            logger.debug(f"[AUTH] Navigation timeout (continuing): {url[:80]}")

    async def _click_and_wait(
        self, page: Page, el: ElementHandle, timeout_ms: Optional[int] = None
    ) -> None:
        """Click while concurrently awaiting the navigation it triggers."""
        try:
            async with page.expect_navigation(
                wait_until="networkidle",
                timeout=timeout_ms or self.nav_timeout_ms,
            ):
                await el.click()
        except PlaywrightTimeout:
            # Some sites finish without a navigation event
            pass

    async def _press_enter_and_wait(
        self, page: Page, timeout_ms: Optional[int] = None
    ) -> None:
        try:
            async with page.expect_navigation(
                wait_until="networkidle",
                timeout=timeout_ms or self.nav_timeout_ms,
            ):
                await page.keyboard.press("Enter")
        except PlaywrightTimeout:
            pass

    async def _type_into(self, el: ElementHandle, value: str) -> None:
        """Select existing content, then type with a per-key delay.

        Real keystrokes rather than ``fill`` so client-side handlers fire.
        """
        try:
            await el.click(click_count=3)
        except Exception:
            pass
        await el.type(value, delay=self.type_delay_ms)

    async def _wait_until_visible(
        self,
        page: Page,
        matchers: Sequence[ElementMatcher],
        timeout_s: float = 10.0,
        poll_s: float = 0.5,
    ) -> Optional[ElementHandle]:
        """Poll until a matched element has layout (``offsetParent``).

        Presence alone is not enough: two-step forms render the password
        field hidden and reveal it later.
        """
        deadline = _time.monotonic() + timeout_s
        while True:
            el = await find_first(page, matchers)
            if el is not None:
                try:
                    if await el.evaluate("el => el.offsetParent !== null"):
                        return el
                except Exception:
                    pass
            if _time.monotonic() >= deadline:
                return None
            await asyncio.sleep(poll_s)

    async def _settle(self, factor: float = 1.0) -> None:
        if self.settle_s > 0:
            await asyncio.sleep(self.settle_s * factor)

    async def _screenshot(self, page: Page, name: str) -> None:
        await save_debug_screenshot(
            page, self.debug_dir, f"{self.portal_name.lower().replace(' ', '_')}_{name}"
        )
