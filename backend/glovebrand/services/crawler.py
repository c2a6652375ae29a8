from __future__ import annotations

import logging
import re
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterable, Optional
from urllib import robotparser
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from glovebrand.errors import BrandingError, BudgetExceededError
from glovebrand.schemas.branding import CrawlReport, ImageCandidate, RobotsReport, TermsReport
from glovebrand.services.fetcher import FetchBudget, SafeFetcher

logger = logging.getLogger(__name__)

TERMS_PATHS = ("/terms", "/terms-of-service", "/terms-of-use", "/legal", "/privacy", "/policies/terms")
MAX_TERMS_HITS = 2

LINK_KEYWORDS_RE = re.compile(r"about|team|club|baseball|home|program|organization|brand", re.IGNORECASE)
CSS_URL_RE = re.compile(r"url\(\s*['\"]?(.*?)['\"]?\s*\)", re.IGNORECASE)
IMAGE_EXT_RE = re.compile(r"\.(png|jpe?g|svg|gif|webp)$", re.IGNORECASE)

META_IMAGE_NAMES = ("og:image", "twitter:image")
ICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")
CONTEXT_TAGS = ("header", "nav", "footer", "section", "main")

LOGO_HINT_WORDS = ("logo", "brand", "crest", "emblem")
HEADER_HINT_WORDS = ("header", "nav")


@dataclass(frozen=True)
class CrawlLimits:
    max_pages: int = 3
    max_images: int = 30
    max_bytes: int = 25 * 1024 * 1024
    max_page_bytes: int = 2 * 1024 * 1024
    max_asset_bytes: int = 5 * 1024 * 1024
    max_css_files: int = 4
    max_css_bytes: int = 300 * 1024
    max_robots_bytes: int = 200 * 1024
    request_delay_seconds: float = 0.15
    wall_clock_seconds: float = 120.0
    page_timeout_seconds: float = 15.0
    asset_timeout_seconds: float = 8.0
    max_style_blocks: int = 5
    max_style_block_chars: int = 10_000
    max_inline_styles: int = 100


def crawl_limits_from_settings(settings: Any) -> CrawlLimits:
    return CrawlLimits(
        max_pages=int(settings.CRAWL_MAX_PAGES),
        max_images=int(settings.CRAWL_MAX_IMAGES),
        max_bytes=int(settings.CRAWL_MAX_BYTES),
        max_page_bytes=int(settings.CRAWL_MAX_PAGE_BYTES),
        max_asset_bytes=int(settings.CRAWL_MAX_ASSET_BYTES),
        max_css_files=int(settings.CRAWL_MAX_CSS_FILES),
        request_delay_seconds=float(settings.CRAWL_REQUEST_DELAY_SECONDS),
        wall_clock_seconds=float(settings.CRAWL_WALL_CLOCK_SECONDS),
    )


def collect_hints(values: Iterable[Optional[str]]) -> list[str]:
    hints: list[str] = []
    for value in values:
        if not value:
            continue
        normalized = value.lower()
        if any(word in normalized for word in LOGO_HINT_WORDS) and "logo" not in hints:
            hints.append("logo")
        if any(word in normalized for word in HEADER_HINT_WORDS) and "header" not in hints:
            hints.append("header")
    return hints


def is_likely_image(url: str) -> bool:
    lower = url.lower()
    path = urlsplit(lower).path
    return "logo" in lower or "brand" in lower or bool(IMAGE_EXT_RE.search(path))


def resolve_url(base: str, value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value or value.startswith(("data:", "javascript:", "mailto:", "tel:")):
        return None
    try:
        resolved = urljoin(base, value)
        parts = urlsplit(resolved)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return parts._replace(fragment="").geturl()


def parse_robots(text: str) -> tuple[bool, str]:
    """Return (allowed, reason) for the ``User-agent: *`` group."""
    if not text or not text.strip():
        return True, "robots.txt empty"
    rp = robotparser.RobotFileParser()
    rp.parse(text.splitlines())
    if rp.default_entry is None:
        return True, "no explicit rules for user-agent *"
    if not rp.can_fetch("*", "/"):
        return False, "disallow / for user-agent *"
    return True, "allowed by robots.txt"


class _CrawlState:
    def __init__(self, start_url: str, limits: CrawlLimits) -> None:
        self.report = CrawlReport(start_url=start_url, limits=asdict(limits))
        self.seen_images: set[str] = set()
        self.seen_css: set[str] = set()
        self.limits = limits

    @property
    def images_full(self) -> bool:
        return len(self.report.image_candidates) >= self.limits.max_images

    def add_image(self, candidate: ImageCandidate) -> bool:
        if self.images_full or candidate.url in self.seen_images:
            return False
        self.seen_images.add(candidate.url)
        self.report.image_candidates.append(candidate)
        return True


class SiteCrawler:
    """
    Bounded breadth-first crawl of one team site.

    Stays on the start host, follows only links whose path looks like an
    about/team/club page and stops at whichever limit is hit first: pages, image
    candidates, the byte budget or the wall clock.
    """

    def __init__(
        self,
        fetcher: SafeFetcher,
        limits: Optional[CrawlLimits] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.limits = limits or CrawlLimits()
        self._sleep = sleep
        self._clock = clock

    def crawl(self, start_url: str, *, job_id: Optional[str] = None) -> CrawlReport:
        started = self._clock()
        limits = self.limits
        budget = FetchBudget(limits.max_bytes)
        state = _CrawlState(start_url, limits)
        report = state.report
        log_extra = {"job_id": job_id, "stage": "crawl", "url": start_url}

        report.robots = self._check_robots(start_url, budget, job_id)
        report.terms = self._check_terms(start_url, budget, job_id)
        if report.terms.found:
            report.notes.append(f"Terms page found: {', '.join(report.terms.found)}")
        else:
            report.notes.append(f"Terms check: {report.terms.notes}")
        if not report.robots.checked:
            report.notes.append("robots.txt could not be fetched; crawling with default limits.")
        if not report.robots.allowed:
            report.notes.append(
                f"robots.txt disallows crawling ({report.robots.notes}). Proposal-only mode recommended."
            )
            return self._finish(report, budget, started, job_id)

        start_host = (urlsplit(start_url).hostname or "").lower()
        worklist: deque[str] = deque([start_url])
        seen: set[str] = set()
        budget_exhausted = False
        timed_out = False

        while worklist and len(report.visited) < limits.max_pages and not state.images_full:
            if self._clock() - started >= limits.wall_clock_seconds:
                timed_out = True
                break
            current = worklist.popleft()
            if current in seen:
                continue
            seen.add(current)
            if limits.request_delay_seconds > 0:
                self._sleep(limits.request_delay_seconds)
            try:
                text, result = self.fetcher.fetch_text(
                    current,
                    max_bytes=limits.max_page_bytes,
                    timeout=limits.page_timeout_seconds,
                    budget=budget,
                )
            except BudgetExceededError:
                report.skipped.append(current)
                budget_exhausted = True
                break
            except BrandingError as exc:
                report.skipped.append(current)
                logger.warning("crawler.page_failed", extra={**log_extra, "url": current, "error": str(exc)})
                continue

            report.visited.append(result.url)
            soup = BeautifulSoup(text, "html.parser")
            self._collect_images(soup, result.url, state)
            self._collect_meta_images(soup, result.url, state)
            self._collect_inline_backgrounds(soup, result.url, state)
            self._collect_svg_references(soup, result.url, state)
            self._collect_inline_styles(soup, state)
            self._collect_stylesheets(soup, result.url, state)
            try:
                self._collect_css_backgrounds(state, budget, job_id)
            except BudgetExceededError:
                budget_exhausted = True
                break
            for link in self._collect_links(soup, result.url, start_host):
                if len(worklist) + len(report.visited) < limits.max_pages and link not in seen:
                    worklist.append(link)

        if len(report.visited) >= limits.max_pages:
            report.notes.append(f"Page cap reached ({limits.max_pages}).")
        if state.images_full:
            report.notes.append(f"Image cap reached ({limits.max_images}).")
        if budget_exhausted or budget.used_bytes >= limits.max_bytes:
            report.notes.append(f"Download budget reached ({limits.max_bytes} bytes).")
        if timed_out:
            report.notes.append(f"Crawl time limit reached ({int(limits.wall_clock_seconds)}s).")
        if not report.visited:
            report.notes.append("Start page could not be fetched; continuing without crawl results.")
        return self._finish(report, budget, started, job_id)

    def _finish(self, report: CrawlReport, budget: FetchBudget, started: float, job_id: Optional[str]) -> CrawlReport:
        report.bytes_downloaded = budget.used_bytes
        report.duration_ms = int((self._clock() - started) * 1000)
        logger.info(
            "crawler.finished",
            extra={
                "job_id": job_id,
                "stage": "crawl",
                "visited": len(report.visited),
                "skipped": len(report.skipped),
                "images": len(report.image_candidates),
                "bytes": report.bytes_downloaded,
            },
        )
        return report

    def _check_robots(self, start_url: str, budget: FetchBudget, job_id: Optional[str]) -> RobotsReport:
        parts = urlsplit(start_url)
        robots_url = f"{parts.scheme}://{parts.netloc}/robots.txt"
        try:
            text, _ = self.fetcher.fetch_text(
                robots_url,
                max_bytes=self.limits.max_robots_bytes,
                timeout=self.limits.asset_timeout_seconds,
                budget=budget,
            )
        except BrandingError as exc:
            logger.info("crawler.robots_fetch_failed", extra={"job_id": job_id, "stage": "robots", "error": str(exc)})
            return RobotsReport(checked=False, allowed=True, url=robots_url, notes="robots.txt fetch failed")
        allowed, reason = parse_robots(text)
        return RobotsReport(checked=True, allowed=allowed, url=robots_url, notes=reason)

    def _check_terms(self, start_url: str, budget: FetchBudget, job_id: Optional[str]) -> TermsReport:
        parts = urlsplit(start_url)
        base = f"{parts.scheme}://{parts.netloc}"
        found: list[str] = []
        for path in TERMS_PATHS:
            if len(found) >= MAX_TERMS_HITS:
                break
            url = f"{base}{path}"
            try:
                result = self.fetcher.fetch(
                    url,
                    max_bytes=self.limits.max_robots_bytes,
                    timeout=self.limits.asset_timeout_seconds,
                    retries=0,
                    budget=budget,
                )
            except BudgetExceededError:
                break
            except BrandingError:
                continue
            if result.size_bytes > 0:
                found.append(url)
        if found:
            return TermsReport(checked=True, found=found, notes="terms page reachable")
        logger.info("crawler.terms_not_found", extra={"job_id": job_id, "stage": "terms"})
        return TermsReport(checked=True, found=[], notes="terms page not found")

    def _collect_images(self, soup: BeautifulSoup, page_url: str, state: _CrawlState) -> None:
        for img in soup.find_all("img"):
            if state.images_full:
                return
            url = resolve_url(page_url, img.get("src") or "")
            if not url:
                continue
            context_el = img.find_parent(list(CONTEXT_TAGS))
            alt = img.get("alt")
            class_attr = img.get("class")
            class_hint = " ".join(class_attr) if isinstance(class_attr, list) else class_attr
            parent_hints = []
            if context_el is not None:
                parent_class = context_el.get("class")
                parent_hints = [context_el.name, context_el.get("id"),
                                " ".join(parent_class) if isinstance(parent_class, list) else parent_class]
            state.add_image(
                ImageCandidate(
                    url=url,
                    source_page=page_url,
                    kind="img",
                    alt=alt,
                    context=context_el.name if context_el is not None else None,
                    hints=collect_hints([alt, class_hint, img.get("id"), *parent_hints]),
                    width=_parse_dimension(img.get("width")),
                    height=_parse_dimension(img.get("height")),
                )
            )

    def _collect_meta_images(self, soup: BeautifulSoup, page_url: str, state: _CrawlState) -> None:
        for name in META_IMAGE_NAMES:
            for meta in soup.find_all("meta", attrs={"property": name}) + soup.find_all("meta", attrs={"name": name}):
                url = resolve_url(page_url, meta.get("content") or "")
                if url:
                    state.add_image(
                        ImageCandidate(url=url, source_page=page_url, kind="meta", alt=name, context="meta", hints=[name])
                    )
        for link in soup.find_all("link", href=True):
            rel_attr = link.get("rel") or []
            rel = " ".join(rel_attr).lower() if isinstance(rel_attr, list) else str(rel_attr).lower()
            if rel not in ICON_RELS:
                continue
            url = resolve_url(page_url, link.get("href") or "")
            if url:
                state.add_image(
                    ImageCandidate(url=url, source_page=page_url, kind="icon", alt=rel, context="meta", hints=[rel])
                )

    def _collect_inline_backgrounds(self, soup: BeautifulSoup, page_url: str, state: _CrawlState) -> None:
        for el in soup.find_all(style=re.compile("background", re.IGNORECASE)):
            for value in CSS_URL_RE.findall(el.get("style") or ""):
                if state.images_full:
                    return
                url = resolve_url(page_url, value)
                if url:
                    state.add_image(
                        ImageCandidate(
                            url=url,
                            source_page=page_url,
                            kind="css",
                            context="inline-style",
                            hints=collect_hints([el.get("id"), " ".join(el.get("class") or [])]),
                        )
                    )

    def _collect_svg_references(self, soup: BeautifulSoup, page_url: str, state: _CrawlState) -> None:
        for svg in soup.find_all("svg"):
            for el in svg.find_all(["image", "use"]):
                href = el.get("href") or el.get("xlink:href")
                if not href or href.startswith("#"):
                    continue
                url = resolve_url(page_url, href)
                if url:
                    state.add_image(ImageCandidate(url=url, source_page=page_url, kind="svg", context="svg"))

    def _collect_inline_styles(self, soup: BeautifulSoup, state: _CrawlState) -> None:
        styles = state.report.inline_styles
        blocks = 0
        for style in soup.find_all("style"):
            text = style.get_text()
            if text and blocks < self.limits.max_style_blocks:
                styles.append(text[: self.limits.max_style_block_chars])
                blocks += 1
        for el in soup.find_all(style=True):
            if len(styles) >= self.limits.max_inline_styles:
                return
            value = el.get("style")
            if value:
                styles.append(value)

    def _collect_stylesheets(self, soup: BeautifulSoup, page_url: str, state: _CrawlState) -> None:
        css_urls = state.report.css_urls
        for link in soup.find_all("link", href=True):
            if len(css_urls) >= self.limits.max_css_files:
                return
            rel_attr = link.get("rel") or []
            rels = [r.lower() for r in rel_attr] if isinstance(rel_attr, list) else [str(rel_attr).lower()]
            if "stylesheet" not in rels:
                continue
            url = resolve_url(page_url, link["href"])
            if url and url not in css_urls:
                css_urls.append(url)

    def _collect_css_backgrounds(self, state: _CrawlState, budget: FetchBudget, job_id: Optional[str]) -> None:
        for css_url in list(state.report.css_urls):
            if len(state.seen_css) >= self.limits.max_css_files or state.images_full:
                return
            if css_url in state.seen_css:
                continue
            state.seen_css.add(css_url)
            try:
                text, _ = self.fetcher.fetch_text(
                    css_url,
                    max_bytes=self.limits.max_css_bytes,
                    timeout=self.limits.asset_timeout_seconds,
                    retries=1,
                    budget=budget,
                )
            except BudgetExceededError:
                raise
            except BrandingError as exc:
                logger.warning(
                    "crawler.css_fetch_failed",
                    extra={"job_id": job_id, "stage": "crawl-css", "url": css_url, "error": str(exc)},
                )
                continue
            for value in CSS_URL_RE.findall(text):
                if state.images_full:
                    return
                url = resolve_url(css_url, value)
                if url and is_likely_image(url):
                    state.add_image(
                        ImageCandidate(
                            url=url,
                            source_page=css_url,
                            kind="css",
                            context="css",
                            hints=collect_hints([url.rsplit("/", 1)[-1]]),
                        )
                    )

    def _collect_links(self, soup: BeautifulSoup, page_url: str, start_host: str) -> list[str]:
        links: list[str] = []
        for anchor in soup.find_all("a", href=True):
            url = resolve_url(page_url, anchor["href"])
            if not url:
                continue
            parts = urlsplit(url)
            if (parts.hostname or "").lower() != start_host:
                continue
            if LINK_KEYWORDS_RE.search(parts.path or ""):
                links.append(url)
        return links[: self.limits.max_pages]


def _parse_dimension(value: Any) -> Optional[int]:
    if value is None:
        return None
    match = re.match(r"\s*(\d+)", str(value))
    if not match:
        return None
    number = int(match.group(1))
    return number or None
