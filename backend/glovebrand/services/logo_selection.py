from __future__ import annotations

import hashlib
import io
import logging
import math
import mimetypes
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import urlsplit

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from glovebrand.errors import BrandingError
from glovebrand.schemas.branding import ImageCandidate, LogoAnalysis, LogoScore
from glovebrand.services.artifact_storage import ArtifactStore, job_artifact_path
from glovebrand.services.fetcher import SafeFetcher

logger = logging.getLogger(__name__)

POSITIVE_HINTS = ("logo", "mark", "crest", "emblem", "wordmark", "brand", "club", "team")
NEGATIVE_HINTS = ("hero", "banner", "background", "slide", "slideshow", "photo", "sponsor", "ad", "roster")

ANALYSIS_SIZE = 96
EDGE_DELTA = 18
TRANSPARENT_ALPHA = 0.7
PIXEL_ANALYSIS_TOP_N = 5

KNOWN_IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "svg", "gif", "webp", "ico")


@dataclass(frozen=True)
class LogoScoringWeights:
    header_nav: float = 15
    footer: float = -3
    positive_hint: float = 10
    negative_hint: float = -8
    semantic_logo_hint: float = 6
    og_image: float = 3
    good_aspect: float = 4
    extreme_aspect: float = -6
    very_small: float = -4
    very_large: float = -3
    reasonable_size: float = 4
    svg: float = 8
    png: float = 4
    # pixel analysis adjustments
    high_entropy: float = -6
    high_edge_density: float = -4
    transparency: float = 4
    analysis_good_aspect: float = 2
    analysis_extreme_aspect: float = -3
    entropy_threshold: float = 5.2
    edge_density_threshold: float = 0.18
    alpha_ratio_threshold: float = 0.05


DEFAULT_WEIGHTS = LogoScoringWeights()


def _file_name(url: str) -> str:
    path = urlsplit(url).path
    return path.rsplit("/", 1)[-1].lower()


def score_logo_candidates(
    candidates: Sequence[ImageCandidate],
    weights: LogoScoringWeights = DEFAULT_WEIGHTS,
) -> list[LogoScore]:
    """Heuristic score per candidate, in discovery order."""
    scored: list[LogoScore] = []
    for index, candidate in enumerate(candidates):
        score = 0.0
        reasons: list[str] = []

        context = (candidate.context or "").lower()
        if context in ("header", "nav"):
            score += weights.header_nav
            reasons.append("Found in header/nav")
        elif "footer" in context:
            score += weights.footer
            reasons.append("Footer placement")

        url_lower = candidate.url.lower()
        alt_lower = (candidate.alt or "").lower()
        file_hint = _file_name(candidate.url)
        haystacks = (url_lower, alt_lower, file_hint)
        for hint in POSITIVE_HINTS:
            if any(hint in value for value in haystacks):
                score += weights.positive_hint
                reasons.append(f"Hint match: {hint}")
                break
        for hint in NEGATIVE_HINTS:
            if any(hint in value for value in haystacks):
                score += weights.negative_hint
                reasons.append(f"Likely photo/banner: {hint}")
                break

        if "logo" in candidate.hints:
            score += weights.semantic_logo_hint
            reasons.append("Semantic logo hint")
        if any("og:image" in hint for hint in candidate.hints):
            score += weights.og_image
            reasons.append("OpenGraph image")

        if candidate.width and candidate.height:
            ratio = candidate.width / candidate.height
            if 0.6 < ratio < 2.2:
                score += weights.good_aspect
                reasons.append("Logo-like aspect ratio")
            elif ratio > 3 or ratio < 0.3:
                score += weights.extreme_aspect
                reasons.append("Extreme aspect ratio")
            max_side = max(candidate.width, candidate.height)
            if max_side < 50:
                score += weights.very_small
                reasons.append("Very small image")
            elif max_side > 800:
                score += weights.very_large
                reasons.append("Very large image")
            elif 120 <= max_side <= 500:
                score += weights.reasonable_size
                reasons.append("Reasonable logo size")

        path_lower = urlsplit(url_lower).path
        if path_lower.endswith(".svg"):
            score += weights.svg
            reasons.append("SVG preferred")
        elif path_lower.endswith(".png"):
            score += weights.png
            reasons.append("PNG preferred")

        scored.append(
            LogoScore(
                candidate=candidate,
                score=score,
                heuristic_score=score,
                rank=index,
                reasons=reasons,
                url=candidate.url,
            )
        )
    return scored


def rank_logo_scores(scores: Sequence[LogoScore]) -> list[LogoScore]:
    # sorted() is stable: equal scores keep discovery order.
    ranked = sorted(scores, key=lambda item: -item.score)
    return [item.model_copy(update={"rank": position}) for position, item in enumerate(ranked)]


def analyze_image(data: bytes) -> Optional[LogoAnalysis]:
    """Pixel statistics for a raster image; ``None`` when Pillow cannot decode it (e.g. SVG)."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            rgba = img.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
        return None
    if not width or not height:
        return None

    rgba.thumbnail((ANALYSIS_SIZE, ANALYSIS_SIZE))
    w, h = rgba.size
    pixels = list(rgba.getdata())
    gray = [round(0.299 * r + 0.587 * g + 0.114 * b) for r, g, b, _ in pixels]

    histogram = [0] * 256
    transparent = 0
    edges = 0
    total_edges = 0
    for y in range(h):
        for x in range(w):
            idx = y * w + x
            if pixels[idx][3] / 255.0 < TRANSPARENT_ALPHA:
                transparent += 1
            value = gray[idx]
            histogram[value] += 1
            if x < w - 1 and y < h - 1:
                total_edges += 2
                if abs(gray[idx + 1] - value) > EDGE_DELTA:
                    edges += 1
                if abs(gray[idx + w] - value) > EDGE_DELTA:
                    edges += 1

    total = w * h
    entropy = 0.0
    for count in histogram:
        if count:
            p = count / total
            entropy -= p * math.log2(p)

    return LogoAnalysis(
        width=width,
        height=height,
        aspect_ratio=width / height,
        entropy=entropy,
        edge_density=edges / total_edges if total_edges else 0.0,
        alpha_ratio=transparent / total if total else 0.0,
    )


def apply_logo_analysis(
    score: LogoScore,
    analysis: LogoAnalysis,
    weights: LogoScoringWeights = DEFAULT_WEIGHTS,
) -> LogoScore:
    reasons = list(score.reasons)
    adjusted = score.score
    if analysis.entropy > weights.entropy_threshold:
        adjusted += weights.high_entropy
        reasons.append("High entropy suggests photo")
    if analysis.edge_density > weights.edge_density_threshold:
        adjusted += weights.high_edge_density
        reasons.append("High edge density suggests photo")
    if analysis.alpha_ratio > weights.alpha_ratio_threshold:
        adjusted += weights.transparency
        reasons.append("Transparency suggests logo")
    if 0.6 < analysis.aspect_ratio < 2.2:
        adjusted += weights.analysis_good_aspect
        reasons.append("Aspect ratio reinforced by analysis")
    elif analysis.aspect_ratio > 3 or analysis.aspect_ratio < 0.3:
        adjusted += weights.analysis_extreme_aspect
        reasons.append("Aspect ratio suggests banner")
    return score.model_copy(update={"score": adjusted, "reasons": reasons, "analysis": analysis})


def _initials(hostname: str) -> str:
    labels = [part for part in hostname.lower().split(".") if part and part != "www"]
    name = labels[0] if labels else hostname or "team"
    words = [w for w in name.replace("_", "-").split("-") if w]
    if len(words) >= 2:
        return (words[0][0] + words[1][0]).upper()
    return name[:2].upper()


def build_placeholder_logo(team_url: str, size: int = 256) -> bytes:
    """Deterministic PNG derived from the team hostname: colored disc plus initials."""
    hostname = (urlsplit(team_url).hostname or team_url or "team").lower()
    digest = hashlib.sha256(hostname.encode("utf-8")).digest()
    # keep the fill dark enough for white initials
    fill = tuple(40 + (b % 140) for b in digest[:3])

    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    margin = size // 16
    draw.ellipse((margin, margin, size - margin, size - margin), fill=fill + (255,))
    text = _initials(hostname)
    font = ImageFont.load_default()
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    text_w, text_h = right - left, bottom - top
    draw.text(((size - text_w) / 2 - left, (size - text_h) / 2 - top), text, fill=(255, 255, 255, 255), font=font)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _logo_extension(url: Optional[str], content_type: Optional[str]) -> str:
    if url:
        name = _file_name(url)
        if "." in name:
            ext = name.rsplit(".", 1)[-1]
            if ext in KNOWN_IMAGE_EXTENSIONS:
                return ext
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime == "image/svg+xml":
            return "svg"
        guessed = mimetypes.guess_extension(mime)
        if guessed:
            return guessed.lstrip(".")
    return "png"


class LogoSelector:
    def __init__(
        self,
        fetcher: SafeFetcher,
        storage: ArtifactStore,
        *,
        weights: LogoScoringWeights = DEFAULT_WEIGHTS,
        max_asset_bytes: int = 5 * 1024 * 1024,
        analyze_top_n: int = PIXEL_ANALYSIS_TOP_N,
    ) -> None:
        self.fetcher = fetcher
        self.storage = storage
        self.weights = weights
        self.max_asset_bytes = max_asset_bytes
        self.analyze_top_n = analyze_top_n

    def select(self, job_id: str, candidates: Sequence[ImageCandidate], team_url: str) -> LogoScore:
        """
        Pick the most logo-like candidate and store its bytes as the job logo.

        The top candidates by heuristic score are downloaded and adjusted with pixel
        analysis; the winner is the highest adjusted score, ties going to the better
        heuristic rank. Falls back to a generated placeholder when nothing usable
        could be fetched.
        """
        ranked = rank_logo_scores(score_logo_candidates(candidates, self.weights))
        best: Optional[LogoScore] = None
        best_bytes: Optional[bytes] = None
        best_type: Optional[str] = None

        for entry in ranked[: self.analyze_top_n]:
            try:
                result = self.fetcher.fetch(entry.url or "", max_bytes=self.max_asset_bytes)
            except BrandingError as exc:
                logger.info(
                    "logo_selection.fetch_failed",
                    extra={"job_id": job_id, "stage": "select-logo", "url": entry.url, "error": str(exc)},
                )
                continue
            analysis = analyze_image(result.content)
            if analysis is not None:
                entry = apply_logo_analysis(entry, analysis, self.weights)
            else:
                entry = entry.model_copy(update={"reasons": [*entry.reasons, "Pixel analysis unavailable"]})
            if best is None or entry.score > best.score:
                best, best_bytes, best_type = entry, result.content, result.content_type

        if best is None or best_bytes is None:
            reason = "No logo candidates found" if not ranked else "No logo candidate could be downloaded"
            best = LogoScore(
                candidate=None,
                score=0.0,
                heuristic_score=0.0,
                rank=0,
                reasons=[reason, "Generated placeholder logo from team hostname"],
                placeholder=True,
            )
            best_bytes = build_placeholder_logo(team_url)
            best_type = "image/png"

        ext = _logo_extension(best.url, best_type)
        content_type = (best_type or "").split(";", 1)[0].strip() or mimetypes.types_map.get(f".{ext}", "image/png")
        location = self.storage.put(job_artifact_path(job_id, f"logo.{ext}"), best_bytes, content_type)
        logger.info(
            "logo_selection.selected",
            extra={
                "job_id": job_id,
                "stage": "select-logo",
                "url": best.url,
                "score": best.score,
                "placeholder": best.placeholder,
            },
        )
        return best.model_copy(
            update={
                "path": location.path,
                "url": best.url or location.url,
                "content_type": content_type,
                "reasons": [*best.reasons, f"Stored at {location.path}"],
            }
        )
