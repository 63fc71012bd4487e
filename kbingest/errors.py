"""
Error Taxonomy
==============
Exceptions raised across the ingestion pipeline.

Recovery policy (who catches what):
    - ``SoftNavigationFailure`` : caught inside the auth/discovery layer,
      logged, the run continues on whatever page state exists.
    - ``ContentTooThin``        : article is dropped, never propagated.
    - ``RateLimitedError``      : retried by the summarizer / indexer.
    - ``FatalServiceError``     : aborts the run (earlier state is kept).
    - ``PersistenceUnavailable``: aborts the run.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for all pipeline errors."""


class SoftNavigationFailure(IngestError):
    """A navigation wait or element lookup failed in a recoverable way."""


class ContentTooThin(IngestError):
    """Extracted text is below the noise threshold."""

    def __init__(self, url: str, length: int):
        super().__init__(f"Content too thin ({length} chars): {url}")
        self.url = url
        self.length = length


class ServiceError(IngestError):
    """Base for completion / embedding service failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ServiceError):
    """The service signalled throttling (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limited",
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class FatalServiceError(ServiceError):
    """Any non-throttling service failure."""


class SummarizationError(IngestError):
    """Summarization could not produce a complete summary."""


class PersistenceUnavailable(IngestError):
    """The source store could not be read or written."""


class RunCancelled(IngestError):
    """The caller cancelled the run."""
