from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from PIL import Image, UnidentifiedImageError

from glovebrand.errors import BrandingError, ExtractionError
from glovebrand.schemas.branding import Palette, PaletteColor
from glovebrand.services.colors import (
    CSS_VAR_DECL_RE,
    color_distance,
    find_color_literals,
    hex_to_rgb,
    is_neutral,
    lighten,
    parse_css_color,
    rgb_to_hex,
)
from glovebrand.services.fetcher import SafeFetcher

logger = logging.getLogger(__name__)

FALLBACK_PRIMARY = "#1b1b1b"
DERIVED_CONFIDENCE = 0.2
DERIVED_EVIDENCE = "derived"


@dataclass(frozen=True)
class PaletteConfig:
    css_var_weight: float = 0.5
    css_literal_weight: float = 0.35
    css_confidence_cap: float = 0.95
    max_stylesheets: int = 3
    max_matches_per_source: int = 40
    stylesheet_max_bytes: int = 300 * 1024
    stylesheet_timeout_seconds: float = 8.0
    sample_size: int = 64
    alpha_cutoff: float = 0.2
    kmeans_k: int = 8
    kmeans_iterations: int = 6
    logo_weight: float = 0.9
    logo_confidence_floor: float = 0.1
    merge_distance: float = 25.0
    neutral_spread: int = 20


def _derived(hex_value: str) -> PaletteColor:
    return PaletteColor(hex=hex_value, confidence=DERIVED_CONFIDENCE, evidence=[DERIVED_EVIDENCE])


def _to_hex(value: str, alpha_cutoff: float) -> Optional[str]:
    try:
        r, g, b, a = parse_css_color(value)
    except ExtractionError:
        return None
    if a < alpha_cutoff:
        return None
    return rgb_to_hex((r, g, b))


class _CssAccumulator:
    """Per-hex confidence that grows with every sighting, up to a cap."""

    def __init__(self, cap: float) -> None:
        self.cap = cap
        self._colors: dict[str, PaletteColor] = {}

    def add(self, hex_value: str, weight: float, evidence: str) -> None:
        existing = self._colors.get(hex_value)
        if existing is None:
            self._colors[hex_value] = PaletteColor(hex=hex_value, confidence=min(self.cap, weight), evidence=[evidence])
            return
        existing.confidence = min(self.cap, existing.confidence + weight)
        if evidence not in existing.evidence:
            existing.evidence.append(evidence)

    def colors(self) -> list[PaletteColor]:
        return list(self._colors.values())


def mine_css_colors(text: str, evidence: str, config: PaletteConfig, accumulator: _CssAccumulator) -> None:
    matches = 0
    stripped = text
    for match in CSS_VAR_DECL_RE.finditer(text):
        if matches >= config.max_matches_per_source:
            break
        name, value = match.group(1), match.group(2)
        literals = find_color_literals(value)
        if not literals:
            continue
        hex_value = _to_hex(literals[0], config.alpha_cutoff)
        if hex_value is None:
            continue
        accumulator.add(hex_value, config.css_var_weight, f"css-var:{name}")
        matches += 1
        stripped = stripped.replace(match.group(0), " ", 1)

    for literal in find_color_literals(stripped):
        if matches >= config.max_matches_per_source:
            break
        hex_value = _to_hex(literal, config.alpha_cutoff)
        if hex_value is None:
            continue
        accumulator.add(hex_value, config.css_literal_weight, evidence)
        matches += 1


def kmeans_colors(pixels: Sequence[tuple[int, int, int]], k: int, iterations: int) -> list[tuple[str, int]]:
    """
    Plain k-means over RGB pixels. Centroids are seeded from the first ``k`` pixels so the
    result is deterministic. Returns (hex, member_count) for non-empty clusters, largest first.
    """
    if not pixels:
        return []
    k = max(1, min(k, len(pixels)))
    centroids = [tuple(float(c) for c in p) for p in pixels[:k]]

    def assign() -> list[list[tuple[int, int, int]]]:
        groups: list[list[tuple[int, int, int]]] = [[] for _ in range(k)]
        for p in pixels:
            best = 0
            best_dist = math.inf
            for index, c in enumerate(centroids):
                dist = (p[0] - c[0]) ** 2 + (p[1] - c[1]) ** 2 + (p[2] - c[2]) ** 2
                if dist < best_dist:
                    best_dist = dist
                    best = index
            groups[best].append(p)
        return groups

    for _ in range(iterations):
        groups = assign()
        for index, group in enumerate(groups):
            if not group:
                continue
            n = len(group)
            centroids[index] = (
                round(sum(p[0] for p in group) / n),
                round(sum(p[1] for p in group) / n),
                round(sum(p[2] for p in group) / n),
            )

    groups = assign()
    clusters = [(rgb_to_hex(centroids[i]), len(group)) for i, group in enumerate(groups) if group]
    clusters.sort(key=lambda item: -item[1])
    return clusters


def mine_logo_colors(logo_bytes: bytes, config: PaletteConfig) -> list[PaletteColor]:
    try:
        with Image.open(io.BytesIO(logo_bytes)) as img:
            img.load()
            rgba = img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ExtractionError(f"Unable to decode logo image: {exc}") from exc

    rgba.thumbnail((config.sample_size, config.sample_size))
    cutoff = config.alpha_cutoff * 255
    pixels = [(r, g, b) for r, g, b, a in rgba.getdata() if a >= cutoff]
    clusters = kmeans_colors(pixels, config.kmeans_k, config.kmeans_iterations)
    total = sum(count for _, count in clusters)
    colors: list[PaletteColor] = []
    for hex_value, count in clusters:
        share = count / total
        confidence = max(config.logo_confidence_floor, config.logo_weight * math.sqrt(share))
        colors.append(PaletteColor(hex=hex_value, confidence=min(1.0, confidence), evidence=["logo"]))
    return colors


def merge_colors(colors: Sequence[PaletteColor], distance: float = 25.0) -> list[PaletteColor]:
    """
    Greedy merge of near-duplicate colors.

    The first color seen in a neighbourhood is the anchor and keeps its hex; later colors
    within ``distance`` fold into it. Anchors end up at least ``distance`` apart, so merging
    the output again changes nothing.
    """
    merged: list[PaletteColor] = []
    for color in colors:
        rgb = hex_to_rgb(color.hex)
        anchor = next((m for m in merged if color_distance(hex_to_rgb(m.hex), rgb) < distance), None)
        if anchor is None:
            merged.append(PaletteColor(hex=color.hex, confidence=color.confidence, evidence=list(color.evidence)))
            continue
        high, low = max(anchor.confidence, color.confidence), min(anchor.confidence, color.confidence)
        anchor.confidence = min(1.0, high + 0.5 * low)
        for item in color.evidence:
            if item not in anchor.evidence:
                anchor.evidence.append(item)
    return merged


def rank_palette(pool: Sequence[PaletteColor], neutral_spread: int = 20) -> Palette:
    ranked = sorted(pool, key=lambda c: -c.confidence)
    used: set[int] = set()

    def take(predicate) -> Optional[PaletteColor]:
        for index, color in enumerate(ranked):
            if index not in used and predicate(color):
                used.add(index)
                return color
        return None

    def chromatic(color: PaletteColor) -> bool:
        return not is_neutral(color.hex, neutral_spread)

    primary = take(chromatic) or take(lambda _c: True) or _derived(FALLBACK_PRIMARY)
    secondary = take(chromatic) or _derived(lighten(primary.hex, 0.2))
    neutral = take(lambda c: is_neutral(c.hex, neutral_spread)) or _derived(lighten(primary.hex, 0.9))
    accent = take(lambda _c: True) or _derived(lighten(primary.hex, 0.4))
    return Palette(primary=primary, secondary=secondary, accent=accent, neutral=neutral, raw=list(ranked))


class PaletteExtractor:
    def __init__(self, fetcher: Optional[SafeFetcher], config: Optional[PaletteConfig] = None) -> None:
        self.fetcher = fetcher
        self.config = config or PaletteConfig()

    def extract(
        self,
        logo_bytes: Optional[bytes],
        css_urls: Sequence[str],
        inline_styles: Sequence[str],
        *,
        logo_url: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> Palette:
        config = self.config
        accumulator = _CssAccumulator(config.css_confidence_cap)
        for snippet in inline_styles:
            mine_css_colors(snippet, "inline-style", config, accumulator)

        if self.fetcher is not None:
            for css_url in list(css_urls)[: config.max_stylesheets]:
                try:
                    text, _ = self.fetcher.fetch_text(
                        css_url,
                        max_bytes=config.stylesheet_max_bytes,
                        timeout=config.stylesheet_timeout_seconds,
                    )
                except BrandingError as exc:
                    logger.info(
                        "palette.stylesheet_failed",
                        extra={"job_id": job_id, "stage": "extract-colors", "url": css_url, "error": str(exc)},
                    )
                    continue
                mine_css_colors(text, "css", config, accumulator)

        logo_colors: list[PaletteColor] = []
        if logo_bytes:
            try:
                logo_colors = mine_logo_colors(logo_bytes, config)
            except ExtractionError as exc:
                logger.info(
                    "palette.logo_decode_failed",
                    extra={"job_id": job_id, "stage": "extract-colors", "url": logo_url, "error": str(exc)},
                )

        pool = merge_colors([*accumulator.colors(), *logo_colors], config.merge_distance)
        palette = rank_palette(pool, config.neutral_spread)
        logger.info(
            "palette.extracted",
            extra={
                "job_id": job_id,
                "stage": "extract-colors",
                "primary": palette.primary.hex,
                "pool_size": len(pool),
            },
        )
        return palette
