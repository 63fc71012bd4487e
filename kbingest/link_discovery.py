"""
Link Discovery
==============
Finds candidate article links on a source's landing page.

Two passes over the anchors of the rendered HTML:

1. Every anchor on the page. A link is kept when it survives the reject
   filters and either its URL carries a content marker (``artikel``,
   ``uitspraak``, ``document`` ...) or its anchor text is longer than
   20 characters.
2. Only when pass 1 found fewer than 5 links: anchors inside the main
   content container, with a lower text bar of 10 characters.

Results are deduplicated by exact URL and capped at ``max_links``.
"""

from __future__ import annotations

import logging
from typing import List, Set, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from playwright.async_api import Page

from .utils import has_skip_extension

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

# URL substrings that mark a link as article-like
CONTENT_MARKERS = (
    'document', 'article', 'artikel', 'ruling', 'uitspraak', 'rechtspraak',
    'publication', 'publicatie', 'annotation', 'annotatie',
    'content', 'detail', 'update', '/ar-',
)

# URL substrings that mark navigation / account chrome
NAVIGATION_MARKERS = ('/login', '/account', '/cart', '/signin', '/logout', '/inloggen')

MAIN_CONTAINER_SELECTOR = 'main, article, .content, .articles, [role="main"], #content'

PRIMARY_TEXT_BAR = 20
SECONDARY_TEXT_BAR = 10
SECOND_PASS_THRESHOLD = 5
MAX_TITLE_CHARS = 200


def _rejected(url: str, host: str) -> bool:
    """Reject filters, applied in order."""
    if host not in url:
        return True
    if has_skip_extension(url):
        return True
    lowered = url.lower()
    if any(marker in lowered for marker in NAVIGATION_MARKERS):
        return True
    if '#' in url and '#/' not in url:
        return True
    return False


def _anchors(root, base_url: str):
    for a in root.select('a[href]'):
        href = (a.get('href') or '').strip()
        if not href or href.lower().startswith(('javascript:', 'mailto:', 'tel:')):
            continue
        yield urljoin(base_url, href), a.get_text(" ", strip=True)


def discover_links_from_html(
    html: str, base_url: str, host: str, max_links: int = 20
) -> List[Tuple[str, str]]:
    """Pure link discovery over an HTML string.

    Args:
        html: Rendered HTML of the landing page.
        base_url: URL the HTML was loaded from (resolves relative hrefs).
        host: Source host; must appear in every accepted URL.
        max_links: Upper bound on returned links.

    Returns:
        ``[(url, title), ...]`` in document order.
    """
    if not html or max_links <= 0:
        return []

    soup = BeautifulSoup(html, _BS_PARSER)
    host = host.lower()
    links: List[Tuple[str, str]] = []
    seen: Set[str] = set()

    # ── Pass 1: whole page ──
    for url, text in _anchors(soup, base_url):
        if len(links) >= max_links:
            break
        if url in seen or _rejected(url, host):
            continue
        lowered = url.lower()
        if any(m in lowered for m in CONTENT_MARKERS) or len(text) > PRIMARY_TEXT_BAR:
            seen.add(url)
            links.append((url, text[:MAX_TITLE_CHARS]))

    # ── Pass 2: main container, lower text bar ──
    if len(links) < SECOND_PASS_THRESHOLD:
        container = soup.select_one(MAIN_CONTAINER_SELECTOR)
        if container is not None:
            for url, text in _anchors(container, base_url):
                if len(links) >= max_links:
                    break
                if url in seen or _rejected(url, host):
                    continue
                if len(text) > SECONDARY_TEXT_BAR:
                    seen.add(url)
                    links.append((url, text[:MAX_TITLE_CHARS]))

    return links


async def discover_links(page: Page, host: str, max_links: int = 20) -> List[Tuple[str, str]]:
    """Discover article links on the page currently loaded in *page*.

    Failures are logged and yield an empty list; the caller falls back
    to the landing page itself.
    """
    try:
        html = await page.content()
    except Exception as e:
        logger.warning(f"[LINKS] Could not read landing page: {e}")
        return []
    links = discover_links_from_html(html, page.url, host, max_links)
    logger.info(f"[LINKS] {len(links)} candidate article(s) on {page.url[:80]}")
    return links
