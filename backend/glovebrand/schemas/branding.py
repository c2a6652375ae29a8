from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from glovebrand.db.enums import JobModeEnum, JobStageEnum, JobStatusEnum


class ImageCandidate(BaseModel):
    url: str
    source_page: str
    kind: Literal["img", "meta", "icon", "css", "svg"] = "img"
    alt: Optional[str] = None
    context: Optional[str] = None
    hints: list[str] = Field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None


class RobotsReport(BaseModel):
    checked: bool = False
    allowed: bool = True
    url: Optional[str] = None
    notes: Optional[str] = None


class TermsReport(BaseModel):
    checked: bool = False
    found: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class CrawlReport(BaseModel):
    start_url: str
    visited: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    image_candidates: list[ImageCandidate] = Field(default_factory=list)
    css_urls: list[str] = Field(default_factory=list)
    inline_styles: list[str] = Field(default_factory=list)
    limits: dict[str, Any] = Field(default_factory=dict)
    bytes_downloaded: int = 0
    duration_ms: int = 0
    robots: RobotsReport = Field(default_factory=RobotsReport)
    terms: TermsReport = Field(default_factory=TermsReport)
    notes: list[str] = Field(default_factory=list)
    logo_decision: Optional[dict[str, Any]] = None


class LogoAnalysis(BaseModel):
    width: int
    height: int
    aspect_ratio: float
    entropy: float
    edge_density: float
    alpha_ratio: float


class LogoScore(BaseModel):
    candidate: Optional[ImageCandidate] = None
    score: float = 0.0
    heuristic_score: float = 0.0
    rank: int = 0
    reasons: list[str] = Field(default_factory=list)
    analysis: Optional[LogoAnalysis] = None
    placeholder: bool = False
    content_type: Optional[str] = None
    path: Optional[str] = None
    url: Optional[str] = None


class PaletteColor(BaseModel):
    hex: str
    confidence: float
    evidence: list[str] = Field(default_factory=list)


class Palette(BaseModel):
    primary: PaletteColor
    secondary: PaletteColor
    accent: PaletteColor
    neutral: PaletteColor
    raw: list[PaletteColor] = Field(default_factory=list)


class GloveComponents(BaseModel):
    palm: str
    back: str
    web: str
    laces: str
    stitching: str
    binding: str
    wrist: str
    logo_placement: str


class GloveVariant(BaseModel):
    name: str
    description: str
    components: GloveComponents
    notes: list[str] = Field(default_factory=list)


class TeamInfo(BaseModel):
    name: str
    source_url: str


class LogoRef(BaseModel):
    url: Optional[str] = None
    path: Optional[str] = None


class GloveDesign(BaseModel):
    job_id: str
    team: TeamInfo
    logo: LogoRef
    palette: Palette
    variants: list[GloveVariant]


class WizardFieldMapping(BaseModel):
    label: str
    slot: str
    hex: str
    color_name: str
    confidence: float
    option: Optional[str] = None


class WizardResult(BaseModel):
    attempted: bool = True
    succeeded: bool = False
    blocked: bool = False
    warnings: list[str] = Field(default_factory=list)
    manual_steps: list[str] = Field(default_factory=list)
    mappings: list[WizardFieldMapping] = Field(default_factory=list)
    mapping_confidence: Optional[float] = None
    schema_path: Optional[str] = None
    screenshot_path: Optional[str] = None
    schema_url: Optional[str] = None
    screenshot_url: Optional[str] = None


class ArtifactLocation(BaseModel):
    path: str
    url: Optional[str] = None


# --- API payloads ---


class SubmitJobRequest(BaseModel):
    teamUrl: str = Field(min_length=1, max_length=2048)
    mode: JobModeEnum = JobModeEnum.proposal


class SubmitJobResponse(BaseModel):
    jobId: str
    cached: bool = False


class JobStatusResponse(BaseModel):
    jobId: str
    teamUrl: str
    mode: JobModeEnum
    stage: JobStageEnum
    status: JobStatusEnum
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    stageTimestamps: dict[str, str] = Field(default_factory=dict)
    retryCount: int = 0
    lastRetryAt: Optional[datetime] = None
    outputs: dict[str, ArtifactLocation] = Field(default_factory=dict)
    error: Optional[str] = None
    errorDetails: Optional[str] = None
    instanceId: Optional[str] = None
    autofillAttempted: Optional[bool] = None
    autofillSucceeded: Optional[bool] = None
    wizardWarnings: Optional[list[str]] = None


class CancelJobResponse(BaseModel):
    jobId: str
    canceled: bool
    terminated: bool


class RetryJobResponse(BaseModel):
    jobId: str
    stage: JobStageEnum
    retryCount: int


class RequeueRequest(BaseModel):
    limit: int = 1
