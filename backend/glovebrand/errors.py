from __future__ import annotations


class BrandingError(RuntimeError):
    """Base class for failures raised by the branding pipeline."""


class UrlValidationError(BrandingError):
    """Malformed, blocked or unsafe URL. Permanent: never retried."""


class FetchError(BrandingError):
    """A fetch failed permanently (4xx, too many redirects, blocked hop)."""


class TransientFetchError(FetchError):
    """Timeout, connection reset or 5xx after the fetcher's own retries."""


class ResponseTooLargeError(FetchError):
    pass


class CrawlError(BrandingError):
    pass


class BudgetExceededError(CrawlError):
    """Cumulative bytes fetched for one crawl went over the job budget."""


class ExtractionError(BrandingError):
    pass


class AutomationError(BrandingError):
    pass


class InfrastructureError(BrandingError):
    """Queue, job store or object storage is missing or misconfigured."""

    def __init__(self, component: str, message: str) -> None:
        super().__init__(f"{component}: {message}")
        self.component = component


class InvalidStageTransitionError(BrandingError):
    pass
