"""
Error taxonomy for the scraping pipeline.

Every error carries a stable ``code`` so failures can be counted and
surfaced to callers without string matching on messages.
"""

from typing import Optional


class ScrapingError(Exception):
    """Base exception for scraping pipeline errors."""

    code = "SCRAPING_FAILED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidURLError(ScrapingError):
    """Raised when a target URL is not a syntactically valid http(s) URL."""

    code = "INVALID_URL"


class UnsupportedDomainError(ScrapingError):
    """Raised when no source profile matches the URL's host."""

    code = "UNSUPPORTED_DOMAIN"


class RateLimitExceededError(ScrapingError):
    """Raised when a source's hourly quota is spent and the wait is too long."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, source: str, wait_ms: int):
        super().__init__(message)
        self.source = source
        self.wait_ms = wait_ms

    @property
    def retry_after(self) -> int:
        """Seconds until the source accepts requests again."""
        return max(0, -(-self.wait_ms // 1000))

    @property
    def minutes_to_reset(self) -> int:
        return max(0, -(-self.wait_ms // 60000))


class FetchFailedError(ScrapingError):
    """Raised when the fetch collaborator fails or times out."""

    code = "FETCH_FAILED"

    def __init__(self, message: str, timed_out: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.timed_out = timed_out
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Client errors other than 429 are not worth retrying."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ExtractionFailedError(ScrapingError):
    """Raised if extraction escapes its own fallback path."""

    code = "EXTRACTION_FAILED"


class EnrichmentFailedError(ScrapingError):
    """Raised by enrichment collaborators. Never fatal to a scrape."""

    code = "ENRICHMENT_FAILED"

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause
