"""
Authentication Factory
======================
Selects the login strategy for a source URL and runs it.

Adding a new site:
    1. Create a strategy class inheriting from ``BaseLoginStrategy``
    2. Call ``AuthFactory.register(strategy_class)``
    3. The factory will match the site by host and use it

Hosts no registered strategy claims fall back to
``GenericLoginStrategy``.

Usage::

    from kbingest.auth.auth_factory import authenticate

    ok = await authenticate(page, source.url, source.parsed_credentials())
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

from playwright.async_api import Page

from .base_auth import BaseLoginStrategy, Credentials
from .generic_auth import GenericLoginStrategy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Strategy Registry
# ---------------------------------------------------------------------------

# Global registry: maps portal name → strategy class
_STRATEGY_REGISTRY: Dict[str, Type[BaseLoginStrategy]] = {}


class AuthFactory:
    """Registry of host-specific login strategies."""

    @staticmethod
    def register(strategy_class: Type[BaseLoginStrategy]) -> None:
        # Instantiate once to get the portal_name
        name = strategy_class().portal_name.lower()
        _STRATEGY_REGISTRY[name] = strategy_class
        logger.debug(f"[AUTH-FACTORY] Registered strategy: {name}")

    @staticmethod
    def detect(url: str, **kwargs) -> Optional[BaseLoginStrategy]:
        """Return the first registered strategy whose ``detect(url)`` is True.

        ``kwargs`` are passed to the strategy constructor.
        """
        url_lower = (url or "").lower()
        for strategy_class in _STRATEGY_REGISTRY.values():
            strategy = strategy_class(**kwargs)
            if strategy.detect(url_lower):
                logger.info(
                    f"[AUTH-FACTORY] Detected portal: {strategy.portal_name} "
                    f"(from URL: {url[:60]})"
                )
                return strategy
        return None

    @staticmethod
    def resolve(url: str, **kwargs) -> BaseLoginStrategy:
        """Like ``detect`` but never None: falls back to the generic form login."""
        return AuthFactory.detect(url, **kwargs) or GenericLoginStrategy(**kwargs)

    @staticmethod
    def list_strategies() -> List[str]:
        return list(_STRATEGY_REGISTRY.keys())


async def authenticate(
    page: Page,
    source_url: str,
    credentials: Optional[Credentials],
    **strategy_kwargs,
) -> bool:
    """Log *page* in for *source_url*. Never raises.

    Returns False straight away, without touching the page, when either
    the username or the password is missing.
    """
    if credentials is None or not credentials.is_complete:
        logger.info("[AUTH] No complete credentials, continuing unauthenticated")
        return False
    strategy = AuthFactory.resolve(source_url, **strategy_kwargs)
    logger.info(f"[AUTH] Using {strategy.portal_name} strategy")
    return await strategy.authenticate(page, source_url, credentials)


# ---------------------------------------------------------------------------
# Auto-register built-in strategies on import
# ---------------------------------------------------------------------------

def _auto_register() -> None:
    from .sso_auth import InViewSSOStrategy
    AuthFactory.register(InViewSSOStrategy)


_auto_register()
