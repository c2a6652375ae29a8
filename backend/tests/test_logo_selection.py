import io

from PIL import Image

from glovebrand.schemas.branding import ImageCandidate
from glovebrand.services.crawler import CrawlLimits, SiteCrawler
from glovebrand.services.logo_selection import (
    LogoSelector,
    analyze_image,
    build_placeholder_logo,
    rank_logo_scores,
    score_logo_candidates,
)
from glovebrand.services.palette import PaletteExtractor

from site_fixtures import SITE_CSS, SITE_HTML, build_fetcher

SVG_LOGO = b'<svg xmlns="http://www.w3.org/2000/svg" width="200" height="120"><rect fill="#112233" width="200" height="120"/></svg>'


def _jpeg(size=(1600, 500), color=(90, 140, 60)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


def _png_with_transparency() -> bytes:
    img = Image.new("RGBA", (100, 100), (0, 0, 0, 0))
    for x in range(25, 75):
        for y in range(25, 75):
            img.putpixel((x, y), (200, 16, 46, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_header_svg_outscores_banner_photo():
    candidates = [
        ImageCandidate(
            url="https://t.example.org/assets/hero-banner.jpg",
            source_page="https://t.example.org/",
            context="section",
            width=1600,
            height=500,
        ),
        ImageCandidate(
            url="https://t.example.org/assets/logo.svg",
            source_page="https://t.example.org/",
            context="header",
            alt="Tigers logo",
            hints=["logo", "header"],
            width=200,
            height=120,
        ),
    ]
    scores = score_logo_candidates(candidates)
    assert [s.rank for s in scores] == [0, 1]
    banner, logo = scores
    assert logo.score > banner.score
    assert "Found in header/nav" in logo.reasons
    assert "SVG preferred" in logo.reasons
    assert "Likely photo/banner: hero" in banner.reasons

    ranked = rank_logo_scores(scores)
    assert ranked[0].url.endswith("logo.svg")
    assert [s.rank for s in ranked] == [0, 1]


def test_rank_is_stable_for_equal_scores():
    candidates = [
        ImageCandidate(url=f"https://t.example.org/img{i}.gif", source_page="https://t.example.org/")
        for i in range(3)
    ]
    ranked = rank_logo_scores(score_logo_candidates(candidates))
    assert [s.url for s in ranked] == [c.url for c in candidates]


def test_analyze_image_detects_transparency():
    analysis = analyze_image(_png_with_transparency())
    assert analysis is not None
    assert analysis.width == 100 and analysis.height == 100
    assert analysis.alpha_ratio > 0.5
    assert analyze_image(SVG_LOGO) is None


def test_placeholder_logo_is_deterministic_png():
    first = build_placeholder_logo("https://river-city-tigers.example.org/")
    assert first == build_placeholder_logo("https://river-city-tigers.example.org/about")
    with Image.open(io.BytesIO(first)) as img:
        assert img.format == "PNG"
        assert img.size == (256, 256)


def test_selector_falls_back_to_placeholder(artifact_storage):
    candidates = [ImageCandidate(url="https://t.example.org/missing-logo.png", source_page="https://t.example.org/")]
    selector = LogoSelector(build_fetcher({}), artifact_storage)

    logo = selector.select("job-ph", candidates, "https://t.example.org/")

    assert logo.placeholder is True
    assert logo.path == "jobs/job-ph/logo.png"
    assert "No logo candidate could be downloaded" in logo.reasons
    assert artifact_storage.get(logo.path).startswith(b"\x89PNG")


def test_selector_prefers_transparent_png_after_analysis(artifact_storage):
    candidates = [
        ImageCandidate(url="https://t.example.org/crest.png", source_page="https://t.example.org/", width=100, height=100),
        ImageCandidate(url="https://t.example.org/team-photo.jpg", source_page="https://t.example.org/"),
    ]
    fetcher = build_fetcher({"/crest.png": _png_with_transparency(), "/team-photo.jpg": _jpeg()})
    logo = LogoSelector(fetcher, artifact_storage).select("job-png", candidates, "https://t.example.org/")

    assert logo.url == "https://t.example.org/crest.png"
    assert logo.analysis is not None
    assert "Transparency suggests logo" in logo.reasons
    assert logo.path == "jobs/job-png/logo.png"


def test_extraction_flow_against_mocked_site(artifact_storage):
    routes = {
        "/": SITE_HTML,
        "/robots.txt": "User-agent: *\nDisallow:",
        "/assets/site.css": SITE_CSS,
        "/assets/logo.svg": SVG_LOGO,
        "/assets/hero-banner.jpg": _jpeg(),
        "/assets/sponsor.png": _png_with_transparency(),
    }
    fetcher = build_fetcher(routes)
    report = SiteCrawler(fetcher, CrawlLimits(max_pages=1, request_delay_seconds=0), sleep=lambda _s: None).crawl(
        "https://tigers.example.org/"
    )
    assert report.image_candidates

    logo = LogoSelector(fetcher, artifact_storage).select(
        "job-e2e", report.image_candidates, "https://tigers.example.org/"
    )
    assert logo.url == "https://tigers.example.org/assets/logo.svg"
    assert logo.path == "jobs/job-e2e/logo.svg"
    assert "Pixel analysis unavailable" in logo.reasons

    palette = PaletteExtractor(fetcher).extract(
        artifact_storage.get(logo.path), report.css_urls, report.inline_styles, logo_url=logo.url
    )
    raw = {color.hex: color for color in palette.raw}
    assert "#112233" in raw
    assert "css-var:--team-primary" in raw["#112233"].evidence
