"""
Authentication Module
=====================
Per-site login strategies for gated knowledge sources.

Architecture:
    - ``BaseLoginStrategy``  : abstract base class for all strategies
    - ``AuthFactory``        : picks the strategy from the source host
    - ``authenticate``       : the single entry point the pipeline calls
    - ``Credentials``        : credential container decoded from the source

Built-in strategies:
    - ``InViewSSOStrategy``    : two-step PingFederate SSO (inview.nl)
    - ``GenericLoginStrategy`` : form login fallback for every other host
"""

from .base_auth import BaseLoginStrategy, Credentials
from .auth_factory import AuthFactory, authenticate
from .generic_auth import GenericLoginStrategy
from .sso_auth import InViewSSOStrategy

__all__ = [
    "BaseLoginStrategy",
    "Credentials",
    "AuthFactory",
    "authenticate",
    "GenericLoginStrategy",
    "InViewSSOStrategy",
]
