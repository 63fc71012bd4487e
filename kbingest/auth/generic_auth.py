"""
Generic Login Strategy
======================
Form-based login for sites without a dedicated strategy.

Handles:
    - Login behind a link or button on the landing page
    - Single-page username + password forms
    - Multi-step forms (username → Next → password)

Success heuristic: no visible password field remains, or the URL moved
away from where the flow started. This is deliberately loose; a stricter
check would misjudge sites that keep the user on the same URL.
"""

from __future__ import annotations

import logging
from typing import List

from playwright.async_api import Page

from .base_auth import (
    BaseLoginStrategy,
    Credentials,
    ElementMatcher,
    find_first,
    selectors,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Auto-detection selector banks (tried in order)
# ---------------------------------------------------------------------------

_LOGIN_LINK_MATCHERS: List[ElementMatcher] = selectors(
    'a[href*="login"]',
    'a[href*="signin"]',
    'a[href*="inloggen"]',
    'button:has-text("Inloggen")',
    'a:has-text("Inloggen")',
    'a:has-text("Log in")',
    'button:has-text("Log in")',
)

_USERNAME_MATCHERS: List[ElementMatcher] = selectors(
    'input[type="email"]',
    'input[name="email"]',
    'input[name="username"]',
    'input[id="username"]',
    'input[name="login"]',
    'input[name="loginfmt"]',          # Microsoft / Azure AD
    'input[autocomplete="username"]',
)

_PASSWORD_MATCHERS: List[ElementMatcher] = selectors(
    'input[type="password"]',
    'input[name="password"]',
)

_NEXT_MATCHERS: List[ElementMatcher] = selectors(
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Volgende")',
    'button:has-text("Next")',
    'button:has-text("Doorgaan")',
    'button:has-text("Continue")',
)

_SUBMIT_MATCHERS: List[ElementMatcher] = selectors(
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Inloggen")',
    'button:has-text("Login")',
    'button:has-text("Sign in")',
    'button:has-text("Log in")',
)


class GenericLoginStrategy(BaseLoginStrategy):
    """Fallback strategy for any host no other strategy claims."""

    @property
    def portal_name(self) -> str:
        return "Generic"

    def detect(self, url: str) -> bool:
        # Fallback only: selected by AuthFactory.resolve(), never by detect()
        return False

    async def login(self, page: Page, source_url: str, creds: Credentials) -> bool:
        """Execute the generic login flow on the current page.

        Steps:
            1. Click a login link/button if one is present
            2. Fill the username / email field
            3. If no password field yet, click "Next" (multi-step)
            4. Fill the password field
            5. Click submit (or press Enter)
            6. Classify the result
        """
        start_url = page.url
        logger.info(f"[AUTH] Generic login starting at {start_url[:80]}")

        # ── Step 1: Login link ────────────────────────────────────
        login_link = await find_first(page, _LOGIN_LINK_MATCHERS, "login link")
        if login_link:
            logger.info("[AUTH] Login link found, clicking")
            await self._click_and_wait(page, login_link)
            await self._settle()

        # ── Step 2: Username ──────────────────────────────────────
        username_el = await find_first(page, _USERNAME_MATCHERS, "username")
        if not username_el:
            logger.warning(f"[AUTH] No username field on {page.url[:80]}")
            return False
        await self._type_into(username_el, creds.username)
        logger.info("[AUTH] Username filled")

        # ── Step 3: Multi-step check ──────────────────────────────
        password_el = await find_first(page, _PASSWORD_MATCHERS, "password")
        if not password_el:
            next_el = await find_first(page, _NEXT_MATCHERS, "next button")
            if next_el:
                logger.info("[AUTH] Multi-step form, clicking next")
                await self._click_and_wait(page, next_el, timeout_ms=10_000)
                await self._settle()
            password_el = await find_first(page, _PASSWORD_MATCHERS, "password")

        if not password_el:
            logger.warning("[AUTH] No password field found")
            return False

        # ── Step 4: Password ──────────────────────────────────────
        await self._type_into(password_el, creds.password)
        logger.info("[AUTH] Password filled")

        # ── Step 5: Submit ────────────────────────────────────────
        submit_el = await find_first(page, _SUBMIT_MATCHERS, "submit button")
        if submit_el:
            await self._click_and_wait(page, submit_el)
            logger.info("[AUTH] Submit clicked")
        else:
            logger.info("[AUTH] No submit button, pressing Enter")
            await self._press_enter_and_wait(page)
        await self._settle(1.5)

        # ── Step 6: Classify ──────────────────────────────────────
        return await self._looks_authenticated(page, start_url)

    async def _looks_authenticated(self, page: Page, start_url: str) -> bool:
        password_visible = False
        el = await find_first(page, _PASSWORD_MATCHERS[:1])
        if el is not None:
            try:
                password_visible = await el.is_visible()
            except Exception:
                password_visible = False
        url_changed = page.url != start_url
        logger.debug(
            f"[AUTH] Heuristic state: password_visible={password_visible}, "
            f"url_changed={url_changed}"
        )
        return (not password_visible) or url_changed
