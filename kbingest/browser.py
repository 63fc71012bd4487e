"""
Browser Session
Launches one headless Chromium page per run and always tears it down.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Page, async_playwright

from .run_config import IngestRunConfig

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    '--disable-gpu',
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--no-first-run',
]


@asynccontextmanager
async def browser_page(config: IngestRunConfig) -> AsyncIterator[Page]:
    """Yield a fresh page; browser and Playwright are closed on exit.

    Exit runs on success, error and cancellation alike.
    """
    playwright = await async_playwright().start()
    browser = None
    context = None
    try:
        browser = await playwright.chromium.launch(
            headless=config.headless,
            args=_LAUNCH_ARGS,
        )
        context = await browser.new_context(
            user_agent=config.user_agent,
            viewport={
                'width': config.viewport_width,
                'height': config.viewport_height,
            },
        )
        page = await context.new_page()
        logger.info(f"[BROWSER] Chromium started (headless={config.headless})")
        yield page
    finally:
        if context is not None:
            for p in context.pages:
                try:
                    await p.close()
                except Exception:
                    pass
            try:
                await context.close()
            except Exception:
                pass
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                pass
        try:
            await playwright.stop()
        except Exception:
            pass
        logger.info("[BROWSER] Closed")
