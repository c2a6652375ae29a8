from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import httpx

from glovebrand.errors import (
    BudgetExceededError,
    FetchError,
    ResponseTooLargeError,
    TransientFetchError,
    UrlValidationError,
)
from glovebrand.services.url_safety import Resolver, validate_url

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "GloveDesignBot/1.0 (+https://github.com/berginj/GloveDesign)"
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


@dataclass(frozen=True)
class FetchPolicy:
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 10.0
    max_redirects: int = 3
    retries: int = 1
    backoff_seconds: float = 0.2
    max_bytes: int = 5 * 1024 * 1024
    resolve_dns: bool = True


def fetch_policy_from_settings(settings: Any) -> FetchPolicy:
    return FetchPolicy(
        user_agent=settings.FETCH_USER_AGENT,
        timeout_seconds=float(settings.FETCH_TIMEOUT_SECONDS),
        max_redirects=int(settings.FETCH_MAX_REDIRECTS),
        retries=int(settings.FETCH_RETRIES),
        backoff_seconds=float(settings.FETCH_RETRY_BACKOFF_SECONDS),
        max_bytes=int(settings.FETCH_MAX_BYTES),
    )


class FetchBudget:
    """Cumulative byte budget shared by every fetch of one crawl."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = int(max_bytes)
        self.used_bytes = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_bytes - self.used_bytes)

    def charge(self, size_bytes: int) -> None:
        if self.used_bytes + size_bytes > self.max_bytes:
            raise BudgetExceededError("Download budget exceeded.")
        self.used_bytes += size_bytes


@dataclass(frozen=True)
class FetchResult:
    url: str
    content: bytes
    size_bytes: int
    content_type: Optional[str] = None

    @property
    def text(self) -> str:
        charset = None
        if self.content_type and "charset=" in self.content_type:
            charset = self.content_type.split("charset=", 1)[1].split(";", 1)[0].strip().strip('"')
        try:
            return self.content.decode(charset or "utf-8", errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")


class SafeFetcher:
    """
    The only way the pipeline touches the network.

    Every hop (the initial URL and each redirect target) is run through the URL
    validator before a connection is made, bodies are streamed and cut off at
    ``max_bytes``, and transient failures are retried with a short linear backoff.
    """

    def __init__(
        self,
        policy: Optional[FetchPolicy] = None,
        *,
        client: Optional[httpx.Client] = None,
        resolver: Optional[Resolver] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or FetchPolicy()
        self._owns_client = client is None
        self.client = client or httpx.Client(follow_redirects=False, timeout=self.policy.timeout_seconds)
        self.resolver = resolver
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "SafeFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def fetch(
        self,
        url: str,
        *,
        max_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        budget: Optional[FetchBudget] = None,
    ) -> FetchResult:
        cap = int(max_bytes if max_bytes is not None else self.policy.max_bytes)
        if budget is not None and budget.remaining <= 0:
            raise BudgetExceededError("Download budget exceeded.")
        attempts = int(retries if retries is not None else self.policy.retries)
        current = url
        for _ in range(self.policy.max_redirects + 1):
            current = validate_url(current, resolve_dns=self.policy.resolve_dns, resolver=self.resolver)
            outcome = self._request_with_retries(current, cap=cap, timeout=timeout, retries=attempts)
            if isinstance(outcome, str):
                current = urljoin(current, outcome)
                continue
            if budget is not None:
                budget.charge(outcome.size_bytes)
            return outcome
        logger.warning("fetcher.redirect_limit_exceeded", extra={"url": url})
        raise FetchError("Too many redirects.")

    def fetch_text(self, url: str, **kwargs) -> tuple[str, FetchResult]:
        result = self.fetch(url, **kwargs)
        return result.text, result

    def _request_with_retries(
        self,
        url: str,
        *,
        cap: int,
        timeout: Optional[float],
        retries: int,
    ) -> FetchResult | str:
        attempt = 0
        while True:
            try:
                return self._request_once(url, cap=cap, timeout=timeout)
            except TransientFetchError as exc:
                if attempt >= retries:
                    raise
                logger.info(
                    "fetcher.retry",
                    extra={"url": url, "attempt": attempt + 1, "error": str(exc)},
                )
                self._sleep(self.policy.backoff_seconds * (attempt + 1))
                attempt += 1

    def _request_once(self, url: str, *, cap: int, timeout: Optional[float]) -> FetchResult | str:
        headers = {"User-Agent": self.policy.user_agent, "Accept": "*/*"}
        try:
            with self.client.stream(
                "GET",
                url,
                headers=headers,
                timeout=timeout if timeout is not None else self.policy.timeout_seconds,
                follow_redirects=False,
            ) as response:
                status = response.status_code
                if status in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise FetchError(f"Redirect without Location header from {url}")
                    return location
                if status == 429 or status >= 500:
                    raise TransientFetchError(f"HTTP {status} from {url}")
                if status >= 400:
                    raise FetchError(f"HTTP {status} from {url}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > cap:
                    raise ResponseTooLargeError(f"Response exceeded max bytes ({declared} > {cap}).")
                chunks: list[bytes] = []
                total = 0
                for chunk in response.iter_bytes():
                    total += len(chunk)
                    if total > cap:
                        raise ResponseTooLargeError(f"Response exceeded max bytes ({total} > {cap}).")
                    chunks.append(chunk)
                return FetchResult(
                    url=url,
                    content=b"".join(chunks),
                    size_bytes=total,
                    content_type=response.headers.get("content-type"),
                )
        except (FetchError, UrlValidationError):
            raise
        except httpx.TimeoutException as exc:
            raise TransientFetchError(f"Timed out fetching {url}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(f"Network error fetching {url}: {exc}") from exc
