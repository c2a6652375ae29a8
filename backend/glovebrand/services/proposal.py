from __future__ import annotations

from typing import Any, Optional

from glovebrand.schemas.branding import (
    ArtifactLocation,
    CrawlReport,
    GloveDesign,
    LogoScore,
    Palette,
    WizardResult,
)
from glovebrand.services.artifact_storage import ArtifactStore, job_artifact_path, put_json
from glovebrand.services.wizard_automation import default_manual_steps


def _color_line(role: str, color: Any) -> str:
    return f"- {role}: {color.hex} ({', '.join(color.evidence)}; confidence {color.confidence:.2f})"


def logo_decision(logo: LogoScore) -> dict[str, Any]:
    return {
        "selected_url": logo.url,
        "stored_path": logo.path,
        "score": logo.score,
        "placeholder": logo.placeholder,
        "reasons": list(logo.reasons),
        "analysis": logo.analysis.model_dump(mode="json") if logo.analysis else None,
    }


def build_proposal(
    design: GloveDesign,
    logo: LogoScore,
    palette: Palette,
    report: CrawlReport,
    wizard_result: Optional[WizardResult] = None,
) -> str:
    lines = [
        "# Glove Design Proposal",
        "",
        f"**Team:** {design.team.name}",
        f"**Team URL:** {design.team.source_url}",
        f"**Logo Candidate:** {logo.url or 'generated placeholder'}",
        f"**Logo Evidence:** {'; '.join(logo.reasons)}",
        "",
        "## Palette",
        _color_line("Primary", palette.primary),
        _color_line("Secondary", palette.secondary),
        _color_line("Accent", palette.accent),
        _color_line("Neutral", palette.neutral),
        "",
        "## Variants",
    ]

    for variant in design.variants:
        lines.append(f"### Variant {variant.name}")
        lines.append(variant.description)
        for component, hex_value in variant.components.model_dump().items():
            lines.append(f"- {component.replace('_', ' ')}: {hex_value}")
        if variant.notes:
            lines.append(f"- Notes: {'; '.join(variant.notes)}")
        lines.append("")

    if report.notes:
        lines.append("## Crawl Notes")
        lines.extend(f"- {note}" for note in report.notes)

    if wizard_result is not None and wizard_result.attempted:
        lines.append("")
        lines.append("## Wizard Autofill")
        lines.append(f"- Attempted: {'yes' if wizard_result.attempted else 'no'}")
        lines.append(f"- Succeeded: {'yes' if wizard_result.succeeded else 'no'}")
        if wizard_result.mapping_confidence is not None:
            lines.append(f"- Mapping confidence: {wizard_result.mapping_confidence:.2f}")
        if wizard_result.warnings:
            lines.append("### Warnings")
            lines.extend(f"- {warning}" for warning in wizard_result.warnings)
        if not wizard_result.succeeded:
            lines.append("### Manual Steps")
            steps = wizard_result.manual_steps or default_manual_steps()
            lines.extend(f"- {step}" for step in steps)

    return "\n".join(lines) + "\n"


def write_outputs(
    storage: ArtifactStore,
    *,
    job_id: str,
    report: CrawlReport,
    logo: LogoScore,
    palette: Palette,
    design: GloveDesign,
    wizard_result: Optional[WizardResult] = None,
) -> dict[str, dict[str, Any]]:
    """Upload palette, design, proposal and crawl report; return the outputs map for the job record."""
    report_with_decision = report.model_copy(update={"logo_decision": logo_decision(logo)})

    outputs: dict[str, ArtifactLocation] = {}
    if logo.path:
        outputs["logo"] = ArtifactLocation(path=logo.path, url=logo.url if logo.placeholder else None)
    outputs["palette"] = put_json(storage, job_artifact_path(job_id, "palette.json"), palette.model_dump(mode="json"))
    outputs["design"] = put_json(
        storage, job_artifact_path(job_id, "glove_design.json"), design.model_dump(mode="json")
    )
    proposal = build_proposal(design, logo, palette, report_with_decision, wizard_result)
    outputs["proposal"] = storage.put(
        job_artifact_path(job_id, "proposal.md"), proposal.encode("utf-8"), "text/markdown"
    )
    outputs["crawl_report"] = put_json(
        storage, job_artifact_path(job_id, "crawl_report.json"), report_with_decision.model_dump(mode="json")
    )
    if wizard_result is not None:
        if wizard_result.schema_path:
            outputs["wizard_schema"] = ArtifactLocation(path=wizard_result.schema_path, url=wizard_result.schema_url)
        if wizard_result.screenshot_path:
            outputs["configured_image"] = ArtifactLocation(
                path=wizard_result.screenshot_path, url=wizard_result.screenshot_url
            )
    return {key: location.model_dump(mode="json") for key, location in outputs.items()}
