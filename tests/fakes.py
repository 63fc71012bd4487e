"""
In-memory stand-ins for a Playwright page and the external services.

Only the calls the pipeline makes are implemented.
"""

from contextlib import asynccontextmanager
from typing import Callable, Dict, List, Optional


class FakeElement:
    def __init__(self, text: str = "", visible: bool = True, laid_out: bool = True,
                 on_click: Optional[Callable[[], None]] = None):
        self.text = text
        self.visible = visible
        self.laid_out = laid_out
        self.on_click = on_click
        self.typed: List[str] = []
        self.clicks = 0

    async def is_visible(self):
        return self.visible

    async def text_content(self):
        return self.text

    async def click(self, **kwargs):
        self.clicks += 1
        if self.on_click and not kwargs:
            self.on_click()

    async def type(self, value, delay=0):
        self.typed.append(value)

    async def evaluate(self, script):
        return self.laid_out


class FakeKeyboard:
    def __init__(self):
        self.pressed: List[str] = []

    async def press(self, key):
        self.pressed.append(key)


class FakePage:
    """Selector lookups come from ``elements``; HTML from ``routes``."""

    def __init__(self, url: str = "about:blank", elements: Optional[Dict[str, object]] = None,
                 routes: Optional[Dict[str, str]] = None):
        self.url = url
        self.elements: Dict[str, object] = dict(elements or {})
        self.routes: Dict[str, str] = dict(routes or {})
        self.keyboard = FakeKeyboard()
        self.goto_calls: List[str] = []
        self.queries: List[str] = []
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        self.url = url

    async def query_selector(self, selector):
        self.queries.append(selector)
        found = self.elements.get(selector)
        if isinstance(found, list):
            return found[0] if found else None
        return found

    async def query_selector_all(self, selector):
        self.queries.append(selector)
        found = self.elements.get(selector)
        if found is None:
            return []
        return found if isinstance(found, list) else [found]

    @asynccontextmanager
    async def expect_navigation(self, wait_until=None, timeout=None):
        yield

    async def content(self):
        return self.routes.get(self.url, "<html><body></body></html>")

    async def title(self):
        return ""

    async def screenshot(self, path=None, full_page=False):
        return b""


def page_factory_for(page: FakePage):
    """A ``page_factory`` that always yields *page* and marks it closed."""
    @asynccontextmanager
    async def factory(config):
        try:
            yield page
        finally:
            page.closed = True
    return factory


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeCompletionClient:
    """``behaviour(user_content, call_number)`` returns text or raises."""

    def __init__(self, behaviour: Optional[Callable[[str, int], str]] = None):
        self.behaviour = behaviour or (lambda content, n: f"summary {n}")
        self.calls: List[str] = []

    def complete(self, system_prompt, user_content, max_tokens=8000):
        self.calls.append(user_content)
        return self.behaviour(user_content, len(self.calls))


class FakeEmbeddingClient:
    """``behaviour(call_number)`` may raise; otherwise unit vectors come back."""

    def __init__(self, behaviour: Optional[Callable[[int], None]] = None, dims: int = 3):
        self.behaviour = behaviour
        self.dims = dims
        self.batches: List[List[str]] = []

    def embed_batch(self, texts):
        self.batches.append(list(texts))
        if self.behaviour:
            self.behaviour(len(self.batches))
        return [[1.0] + [0.0] * (self.dims - 1) for _ in texts]
