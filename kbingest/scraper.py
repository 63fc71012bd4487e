"""
Content Extractor
Pulls the readable text of one article page.

The page's rendered HTML is parsed with BeautifulSoup; all selection and
cleanup happens on that parsed copy, so the live DOM is never modified.
"""

import logging
from typing import Tuple

from bs4 import BeautifulSoup
from playwright.async_api import Page

from .utils import clean_text

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

# Main-content containers, most specific first
CONTENT_SELECTORS = (
    'article',
    '[role="article"]',
    '.article-content',
    '.article-body',
    '.content-body',
    '.document-content',
    '.entry-content',
    'main',
    '[role="main"]',
    '.content',
    '#content',
    '.post-content',
)

# Boilerplate subtrees dropped before text is read
BOILERPLATE_SELECTORS = (
    'script', 'style', 'noscript',
    'nav', 'footer', 'header', 'aside',
    '.sidebar', '.menu', '.navigation',
    '.cookie-notice', '.ad', '.advertisement',
)

# A container must carry more text than this to win over <body>
MIN_CONTAINER_CHARS = 200


def extract_from_html(html: str) -> Tuple[str, str]:
    """Return ``(title, text)`` for an HTML document.

    The first content selector whose element holds more than
    ``MIN_CONTAINER_CHARS`` characters of text wins; otherwise the whole
    body is used. Whitespace in the result is collapsed to single spaces.
    Empty or unparsable input yields ``("", "")``.
    """
    if not html or not html.strip():
        return "", ""

    soup = BeautifulSoup(html, _BS_PARSER)

    title = ""
    if soup.title and soup.title.string:
        title = clean_text(soup.title.string)

    for selector in BOILERPLATE_SELECTORS:
        for el in soup.select(selector):
            el.decompose()

    container = None
    for selector in CONTENT_SELECTORS:
        el = soup.select_one(selector)
        if el is not None and len(el.get_text(" ", strip=True)) > MIN_CONTAINER_CHARS:
            container = el
            break

    if container is None:
        container = soup.body or soup

    text = clean_text(container.get_text(" "))
    return title, text


async def extract_content(page: Page) -> Tuple[str, str]:
    """Extract ``(title, text)`` from the page currently loaded in *page*."""
    html = await page.content()
    title, text = extract_from_html(html)
    if not title:
        try:
            title = clean_text(await page.title())
        except Exception:
            title = ""
    logger.debug(f"[EXTRACT] {len(text):,} chars from {page.url[:80]}")
    return title, text
