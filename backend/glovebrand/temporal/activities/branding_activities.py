from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from temporalio import activity

from glovebrand.config import settings
from glovebrand.db.base import session_scope
from glovebrand.db.enums import JobStageEnum
from glovebrand.db.repositories.branding_jobs import BrandingJobsRepository
from glovebrand.db.repositories.queue_messages import queue_from_settings
from glovebrand.schemas.branding import CrawlReport, GloveDesign, LogoScore, Palette, WizardResult
from glovebrand.services.artifact_storage import build_artifact_storage
from glovebrand.services.crawler import SiteCrawler, crawl_limits_from_settings
from glovebrand.services.fetcher import SafeFetcher, fetch_policy_from_settings
from glovebrand.services.glove_design import generate_design
from glovebrand.services.job_sweeper import sweep_stale_jobs, sweeper_config_from_settings
from glovebrand.services.logo_selection import LogoSelector
from glovebrand.services.palette import PaletteConfig, PaletteExtractor
from glovebrand.services.proposal import write_outputs
from glovebrand.services.url_safety import validate_url
from glovebrand.services.wizard_automation import WizardAutomator, wizard_config_from_settings


@contextmanager
def _repo() -> Iterator[BrandingJobsRepository]:
    with session_scope() as session:
        yield BrandingJobsRepository(session)


def _fetcher() -> SafeFetcher:
    return SafeFetcher(fetch_policy_from_settings(settings))


@activity.defn
def validate_job_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    team_url = validate_url(params["team_url"])
    activity.logger.info("branding.validate.ok", extra={"job_id": job_id, "stage": "validate", "url": team_url})
    return {"team_url": team_url}


@activity.defn
def crawl_site_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    with _fetcher() as fetcher:
        crawler = SiteCrawler(fetcher, crawl_limits_from_settings(settings))
        report = crawler.crawl(params["team_url"], job_id=job_id)
    return report.model_dump(mode="json")


@activity.defn
def select_logo_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    report = CrawlReport.model_validate(params["report"])
    storage = build_artifact_storage(settings)
    with _fetcher() as fetcher:
        selector = LogoSelector(fetcher, storage, max_asset_bytes=settings.CRAWL_MAX_ASSET_BYTES)
        logo = selector.select(job_id, report.image_candidates, params["team_url"])
    return logo.model_dump(mode="json")


@activity.defn
def extract_colors_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    report = CrawlReport.model_validate(params["report"])
    logo = LogoScore.model_validate(params["logo"])
    logo_bytes: Optional[bytes] = None
    if logo.path:
        logo_bytes = build_artifact_storage(settings).get(logo.path)
    with _fetcher() as fetcher:
        extractor = PaletteExtractor(fetcher, PaletteConfig(max_stylesheets=settings.CRAWL_MAX_CSS_FILES))
        palette = extractor.extract(
            logo_bytes,
            report.css_urls,
            report.inline_styles,
            logo_url=logo.url,
            job_id=job_id,
        )
    return palette.model_dump(mode="json")


@activity.defn
def generate_design_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    logo = LogoScore.model_validate(params["logo"])
    design = generate_design(
        params["job_id"],
        params["team_url"],
        logo.url,
        logo.path,
        Palette.model_validate(params["palette"]),
    )
    return design.model_dump(mode="json")


@activity.defn
def write_outputs_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    wizard_payload = params.get("wizard_result")
    outputs = write_outputs(
        build_artifact_storage(settings),
        job_id=job_id,
        report=CrawlReport.model_validate(params["report"]),
        logo=LogoScore.model_validate(params["logo"]),
        palette=Palette.model_validate(params["palette"]),
        design=GloveDesign.model_validate(params["design"]),
        wizard_result=WizardResult.model_validate(wizard_payload) if wizard_payload else None,
    )
    activity.logger.info(
        "branding.outputs.written",
        extra={"job_id": job_id, "stage": "write-outputs", "outputs": sorted(outputs)},
    )
    return outputs


@activity.defn
def run_wizard_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    automator = WizardAutomator(build_artifact_storage(settings), wizard_config_from_settings(settings))
    result = automator.run(
        params["job_id"],
        GloveDesign.model_validate(params["design"]),
        params.get("logo_path"),
    )
    return result.model_dump(mode="json")


@activity.defn
def update_job_stage_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    job_id = params["job_id"]
    stage = JobStageEnum(params["stage"])
    fields = {
        key: params[key]
        for key in (
            "outputs",
            "error",
            "error_details",
            "instance_id",
            "autofill_attempted",
            "autofill_succeeded",
            "wizard_warnings",
        )
        if params.get(key) is not None
    }
    with _repo() as repo:
        result = repo.update_stage(job_id, stage, **fields)
        current = JobStageEnum(result.job.stage).value if result.job is not None else None
    if not result.applied:
        activity.logger.warning(
            "branding.checkpoint.skipped",
            extra={"job_id": job_id, "stage": stage.value, "current_stage": current},
        )
    return {"applied": result.applied, "stage": current}


@activity.defn
def sweep_stale_jobs_activity(params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    with session_scope() as session:
        return sweep_stale_jobs(
            BrandingJobsRepository(session),
            queue_from_settings(session, settings),
            sweeper_config_from_settings(settings),
        )
