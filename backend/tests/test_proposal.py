import json

from glovebrand.schemas.branding import CrawlReport, LogoScore, Palette, PaletteColor, WizardResult
from glovebrand.services.glove_design import generate_design
from glovebrand.services.proposal import build_proposal, write_outputs
from glovebrand.services.wizard_automation import default_manual_steps

TEAM_URL = "https://tigers.example.org/"


def _palette() -> Palette:
    def color(hex_value, evidence="css"):
        return PaletteColor(hex=hex_value, confidence=0.8, evidence=[evidence])

    return Palette(
        primary=color("#112233", "css-var:--team-primary"),
        secondary=color("#c8102e"),
        accent=color("#ffcc00"),
        neutral=color("#f5f5f5"),
    )


def _inputs():
    palette = _palette()
    logo = LogoScore(
        score=4.2,
        reasons=["Alt text mentions logo", "Stored at jobs/job-1/logo.svg"],
        url="https://tigers.example.org/assets/logo.svg",
        path="jobs/job-1/logo.svg",
    )
    report = CrawlReport(start_url=TEAM_URL, visited=[TEAM_URL], notes=["Stopped at page limit (5)."])
    design = generate_design("job-1", TEAM_URL, logo.url, logo.path, palette)
    return palette, logo, report, design


def test_proposal_markdown_sections():
    palette, logo, report, design = _inputs()
    text = build_proposal(design, logo, palette, report)

    assert text.startswith("# Glove Design Proposal\n")
    assert "**Team:** Tigers" in text
    assert "**Logo Candidate:** https://tigers.example.org/assets/logo.svg" in text
    assert "- Primary: #112233 (css-var:--team-primary; confidence 0.80)" in text
    assert "### Variant A" in text and "### Variant C" in text
    assert "## Crawl Notes\n- Stopped at page limit (5)." in text
    assert "## Wizard Autofill" not in text


def test_proposal_lists_manual_steps_when_wizard_fails():
    palette, logo, report, design = _inputs()
    wizard = WizardResult(attempted=True, succeeded=False, warnings=["Autofill blocked by site protections."])
    text = build_proposal(design, logo, palette, report, wizard)

    assert "- Succeeded: no" in text
    assert "Mapping confidence" not in text
    assert "- Autofill blocked by site protections." in text
    for step in default_manual_steps():
        assert f"- {step}" in text


def test_write_outputs_uploads_artifacts(artifact_storage):
    palette, logo, report, design = _inputs()
    wizard = WizardResult(
        attempted=True,
        succeeded=True,
        schema_path="jobs/job-1/wizard_schema_snapshot.json",
        screenshot_path="jobs/job-1/configured.png",
    )
    outputs = write_outputs(
        artifact_storage,
        job_id="job-1",
        report=report,
        logo=logo,
        palette=palette,
        design=design,
        wizard_result=wizard,
    )

    assert set(outputs) == {
        "logo",
        "palette",
        "design",
        "proposal",
        "crawl_report",
        "wizard_schema",
        "configured_image",
    }
    assert outputs["palette"]["path"] == "jobs/job-1/palette.json"
    assert json.loads(artifact_storage.get("jobs/job-1/palette.json"))["primary"]["hex"] == "#112233"
    stored_report = json.loads(artifact_storage.get(outputs["crawl_report"]["path"]))
    assert stored_report["logo_decision"]["selected_url"] == logo.url
    assert artifact_storage.get(outputs["proposal"]["path"]).decode("utf-8").startswith("# Glove Design Proposal")


def test_write_outputs_without_wizard(artifact_storage):
    palette, logo, report, design = _inputs()
    outputs = write_outputs(
        artifact_storage, job_id="job-1", report=report, logo=logo, palette=palette, design=design
    )
    assert "wizard_schema" not in outputs
    assert "configured_image" not in outputs


def test_proposal_reports_mapping_confidence():
    palette, logo, report, design = _inputs()
    wizard = WizardResult(
        attempted=True,
        succeeded=False,
        mapping_confidence=0.412,
        warnings=["Mapping confidence too low for safe autofill."],
    )
    text = build_proposal(design, logo, palette, report, wizard)

    assert "- Mapping confidence: 0.41" in text
