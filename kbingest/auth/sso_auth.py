"""
InView SSO Login Strategy
=========================
Two-step PingFederate login used by Wolters Kluwer InView.

Flow:
    1. Open the public homepage and dismiss the cookie banner
    2. Open the SSO login URL carrying the final destination as
       ``redirect_uri``
    3. Type the username into ``pf.username`` (fallback: email/username)
    4. Click the "continue" button that reveals the password field
    5. Poll until the password field has layout
    6. Type the password and submit while awaiting navigation
    7. Success = back on the portal host, no ``login`` in the URL

Selectors reflect the DOM observed on the live portal; every step has
an ordered fallback list.
"""

from __future__ import annotations

import logging
from typing import List
from urllib.parse import quote

from playwright.async_api import Page

from ..errors import SoftNavigationFailure
from ..utils import is_same_host
from .base_auth import (
    BaseLoginStrategy,
    Credentials,
    ElementMatcher,
    TextMatcher,
    find_first,
    selectors,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Portal constants
# ---------------------------------------------------------------------------

INVIEW_HOST = "inview.nl"
INVIEW_HOME = "https://www.inview.nl/"
INVIEW_SSO_LOGIN = "https://www.inview.nl/.sso/login?redirect_uri="

_COOKIE_MATCHERS: List[ElementMatcher] = [
    TextMatcher("button", ("accepteer alle", "alle cookies accepteren", "accept all")),
    *selectors("#onetrust-accept-btn-handler", visible_only=True),
]

_USERNAME_MATCHERS: List[ElementMatcher] = selectors(
    'input[name="pf.username"]',
    'input[type="email"]',
    'input[name="email"]',
    'input[name="username"]',
)

_REVEAL_MATCHERS: List[ElementMatcher] = selectors(
    'button.wk-login-submit[type="button"]',
)

_PASSWORD_MATCHERS: List[ElementMatcher] = selectors(
    'input[name="pf.pass"]',
    'input[type="password"]',
)

_SUBMIT_MATCHERS: List[ElementMatcher] = selectors(
    'button.wk-login-submit[type="submit"]',
    'button[type="submit"]',
    'input[type="submit"]',
)


def build_sso_url(destination: str) -> str:
    """SSO entry URL that lands on *destination* after login."""
    return INVIEW_SSO_LOGIN + quote(destination, safe="")


class InViewSSOStrategy(BaseLoginStrategy):
    """Login strategy for ``*.inview.nl``."""

    def __init__(self, *, type_delay_ms: int = 30, reveal_timeout_s: float = 10.0,
                 submit_timeout_ms: int = 30_000, **kwargs):
        super().__init__(type_delay_ms=type_delay_ms, **kwargs)
        self.reveal_timeout_s = reveal_timeout_s
        self.submit_timeout_ms = submit_timeout_ms

    @property
    def portal_name(self) -> str:
        return "InView SSO"

    def detect(self, url: str) -> bool:
        return is_same_host(url, INVIEW_HOST)

    async def login(self, page: Page, source_url: str, creds: Credentials) -> bool:
        # ── Cookie banner ─────────────────────────────────────────
        logger.info("[SSO] Opening homepage for cookie consent")
        await self._goto(page, INVIEW_HOME, timeout_ms=30_000)
        await self._accept_cookies(page)

        # ── SSO form ──────────────────────────────────────────────
        sso_url = build_sso_url(source_url)
        logger.info("[SSO] Opening SSO login page")
        await self._goto(page, sso_url, timeout_ms=30_000)
        await self._settle()

        username_el = await find_first(page, _USERNAME_MATCHERS, "username")
        if not username_el:
            raise SoftNavigationFailure(f"username field not found on {page.url[:80]}")
        await self._type_into(username_el, creds.username)
        logger.info("[SSO] Username entered")

        # ── Reveal password field ─────────────────────────────────
        reveal_el = await find_first(page, _REVEAL_MATCHERS, "continue button")
        if reveal_el:
            await reveal_el.click()
        else:
            await page.keyboard.press("Enter")

        password_el = await self._wait_until_visible(
            page, _PASSWORD_MATCHERS, timeout_s=self.reveal_timeout_s
        )
        if not password_el:
            raise SoftNavigationFailure("password field never became visible")
        await self._type_into(password_el, creds.password)
        logger.info("[SSO] Password entered")

        # ── Submit ────────────────────────────────────────────────
        submit_el = await find_first(page, _SUBMIT_MATCHERS, "submit button")
        if submit_el:
            await self._click_and_wait(page, submit_el, timeout_ms=self.submit_timeout_ms)
        else:
            await self._press_enter_and_wait(page, timeout_ms=self.submit_timeout_ms)
        await self._settle()

        final_url = page.url
        logger.info(f"[SSO] Landed on {final_url[:80]}")
        return is_same_host(final_url, INVIEW_HOST) and "login" not in final_url.lower()

    async def _accept_cookies(self, page: Page) -> None:
        button = await find_first(page, _COOKIE_MATCHERS, "cookie button")
        if not button:
            logger.debug("[SSO] No cookie banner")
            return
        try:
            await button.click()
            logger.info("[SSO] Cookies accepted")
            await self._settle(0.5)
        except Exception as e:
            logger.debug(f"[SSO] Cookie click failed: {e}")
