"""
Utility Functions
URL helpers, text normalisation, split-point search and debug artifacts.
"""

import logging
import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


# File extensions that never hold article text
SKIP_EXTENSIONS = (
    '.css', '.js', '.json', '.xml', '.rss',
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',
    '.woff', '.woff2', '.ttf', '.eot', '.otf',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx',
    '.zip', '.rar', '.tar', '.gz', '.7z',
    '.mp3', '.mp4', '.avi', '.mov', '.webm',
)

_WHITESPACE_RE = re.compile(r'\s+')


def extract_domain(url: str) -> str:
    """Extract domain from URL."""
    parsed = urlparse(url)
    return parsed.netloc.lower()


def is_valid_url(url: str) -> bool:
    """Check if URL is valid."""
    try:
        parsed = urlparse(url)
        return all([parsed.scheme in ('http', 'https'), parsed.netloc])
    except Exception:
        return False


def is_same_host(url: str, host: str) -> bool:
    """True if *url* is on *host*, ignoring a leading ``www.`` on both."""
    url_host = extract_domain(url)
    host = host.lower()
    if url_host.startswith('www.'):
        url_host = url_host[4:]
    if host.startswith('www.'):
        host = host[4:]
    return bool(host) and (url_host == host or url_host.endswith('.' + host))


def has_skip_extension(url: str) -> bool:
    """True if the URL path ends in a static-asset extension."""
    path = urlparse(url).path.lower()
    return path.endswith(SKIP_EXTENSIONS)


def clean_text(text: str) -> str:
    """Collapse all whitespace runs into single spaces."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(' ', text).strip()


def find_split_point(text: str, limit: int) -> int:
    """Pick where to cut *text* so the head is at most ``limit`` chars.

    Preference: last paragraph break, then last sentence break, then a
    hard cut at ``limit``. A break is only taken when it lies past the
    halfway mark, so heads never shrink below ``limit / 2``.
    """
    if len(text) <= limit:
        return len(text)
    half = limit * 0.5

    paragraph = text.rfind('\n\n', 0, limit + 2)
    if paragraph > half:
        return paragraph

    sentence = text.rfind('. ', 0, limit + 1)
    if sentence > half:
        # keep the full stop with the head
        return sentence + 1

    return limit


async def save_debug_screenshot(page, directory: Optional[str], name: str) -> Optional[str]:
    """Best-effort screenshot for failure diagnosis.

    Returns the written path, or None. Never raises.
    """
    if not directory:
        return None
    try:
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        safe = re.sub(r'[^A-Za-z0-9_.-]+', '_', name)[:80]
        path = str(target / f"debug_{safe}.png")
        await page.screenshot(path=path, full_page=False)
        logger.debug(f"[DEBUG] Screenshot saved: {path}")
        return path
    except Exception as e:
        logger.debug(f"[DEBUG] Screenshot failed: {e}")
        return None
