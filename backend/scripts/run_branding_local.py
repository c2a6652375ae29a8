#!/usr/bin/env python3
"""Run the branding pipeline in-process for one team URL and write artifacts to a local directory."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from glovebrand.config import settings
from glovebrand.services.artifact_storage import LocalArtifactStorage
from glovebrand.services.crawler import SiteCrawler, crawl_limits_from_settings
from glovebrand.services.fetcher import SafeFetcher, fetch_policy_from_settings
from glovebrand.services.glove_design import generate_design
from glovebrand.services.logo_selection import LogoSelector
from glovebrand.services.palette import PaletteConfig, PaletteExtractor
from glovebrand.services.proposal import write_outputs
from glovebrand.services.url_safety import validate_url
from glovebrand.services.wizard_automation import WizardAutomator, wizard_config_from_settings


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("team_url")
    parser.add_argument("--out", default=settings.ARTIFACT_LOCAL_DIR, help="Output directory.")
    parser.add_argument("--job-id", default="local")
    parser.add_argument("--autofill", action="store_true", help="Also attempt the glove wizard.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    job_id = args.job_id
    team_url = validate_url(args.team_url)
    storage = LocalArtifactStorage(args.out)

    with SafeFetcher(fetch_policy_from_settings(settings)) as fetcher:
        report = SiteCrawler(fetcher, crawl_limits_from_settings(settings)).crawl(team_url, job_id=job_id)
        logo = LogoSelector(fetcher, storage, max_asset_bytes=settings.CRAWL_MAX_ASSET_BYTES).select(
            job_id, report.image_candidates, team_url
        )
        logo_bytes = storage.get(logo.path) if logo.path else None
        palette = PaletteExtractor(fetcher, PaletteConfig(max_stylesheets=settings.CRAWL_MAX_CSS_FILES)).extract(
            logo_bytes, report.css_urls, report.inline_styles, logo_url=logo.url, job_id=job_id
        )

    design = generate_design(job_id, team_url, logo.url, logo.path, palette)
    wizard_result = None
    if args.autofill:
        wizard_result = WizardAutomator(storage, wizard_config_from_settings(settings)).run(job_id, design, logo.path)

    outputs = write_outputs(
        storage,
        job_id=job_id,
        report=report,
        logo=logo,
        palette=palette,
        design=design,
        wizard_result=wizard_result,
    )
    for key, location in sorted(outputs.items()):
        print(f"{key}: {Path(args.out) / location['path']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
