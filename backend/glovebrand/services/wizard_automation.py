from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ContextManager, Iterator, Optional, Sequence

from glovebrand.errors import AutomationError
from glovebrand.schemas.branding import GloveDesign, Palette, WizardFieldMapping, WizardResult
from glovebrand.services.artifact_storage import ArtifactStore, job_artifact_path
from glovebrand.services.colors import color_distance, hex_to_rgb

logger = logging.getLogger(__name__)

DEFAULT_WIZARD_URL = "https://bc2gloves.com/cart"
SCHEMA_SNAPSHOT_FILE = "wizard_schema_snapshot.json"
CONFIGURED_IMAGE_FILE = "configured.png"

BLOCK_KEYWORDS = ("captcha", "access denied", "blocked", "sign in", "login", "verify you are human")
COLOR_FIELD_RE = re.compile(r"color|palm|back|web|lace|stitch|binding|wrist|accent|primary|secondary", re.IGNORECASE)

NAMED_COLORS: tuple[tuple[str, str], ...] = (
    ("black", "#000000"),
    ("white", "#ffffff"),
    ("gray", "#808080"),
    ("navy", "#001f3f"),
    ("blue", "#005eff"),
    ("red", "#d0021b"),
    ("maroon", "#800000"),
    ("orange", "#f26b38"),
    ("gold", "#d4af37"),
    ("yellow", "#f5d000"),
    ("green", "#2ecc40"),
    ("teal", "#39cccc"),
    ("purple", "#6f42c1"),
    ("pink", "#f783ac"),
    ("brown", "#8b4513"),
    ("tan", "#d2b48c"),
)

_SNAPSHOT_JS = """
() => Array.from(document.querySelectorAll('label, select, input, textarea')).map((el) => ({
  tag: el.tagName.toLowerCase(),
  text: (el.innerText || '').trim(),
  name: el.name || null,
  id: el.id || null,
  type: el.type || null,
}))
"""

_SELECTS_JS = """
() => Array.from(document.querySelectorAll('select')).map((select) => ({
  selector: select.id ? `#${select.id}` : (select.name ? `select[name="${select.name}"]` : 'select'),
  label: select.labels && select.labels[0] ? select.labels[0].innerText.trim() : null,
  name: select.name || null,
  options: Array.from(select.options).map((option) => ({
    value: option.value,
    label: (option.textContent || option.value || '').trim(),
  })),
}))
"""


@dataclass(frozen=True)
class WizardConfig:
    url: str = DEFAULT_WIZARD_URL
    headless: bool = True
    navigation_timeout_ms: int = 45000
    min_mapping_confidence: float = 0.55
    block_keywords: tuple[str, ...] = BLOCK_KEYWORDS


def wizard_config_from_settings(settings: Any) -> WizardConfig:
    return WizardConfig(
        url=settings.WIZARD_URL,
        headless=bool(settings.WIZARD_HEADLESS),
        navigation_timeout_ms=int(settings.WIZARD_NAVIGATION_TIMEOUT_MS),
        min_mapping_confidence=float(settings.WIZARD_MIN_MAPPING_CONFIDENCE),
    )


def default_manual_steps(wizard_url: str = DEFAULT_WIZARD_URL) -> list[str]:
    return [
        f"Open {wizard_url} and start the glove wizard.",
        "Select glove model and size, then choose colors matching the proposal palette.",
        "Upload the logo from the job artifacts.",
        "Review the preview and adjust contrast if any panel colors blend together.",
        "Save screenshots of the configuration for approval.",
    ]


def nearest_color_name(hex_value: str) -> tuple[str, float]:
    target = hex_to_rgb(hex_value)
    best_name, best_dist = NAMED_COLORS[0][0], float("inf")
    for name, named_hex in NAMED_COLORS:
        dist = color_distance(target, hex_to_rgb(named_hex))
        if dist < best_dist:
            best_name, best_dist = name, dist
    return best_name, max(0.4, 1 - best_dist / 200)


def slot_for_label(label: str) -> str:
    if re.search(r"primary|palm|back", label, re.IGNORECASE):
        return "primary"
    if re.search(r"secondary|web", label, re.IGNORECASE):
        return "secondary"
    if re.search(r"accent|stitch", label, re.IGNORECASE):
        return "accent"
    if re.search(r"lace|binding|wrist|neutral", label, re.IGNORECASE):
        return "neutral"
    return "primary"


@dataclass
class MappingOutcome:
    ok: bool
    selections: list[tuple[str, str]] = field(default_factory=list)
    mappings: list[WizardFieldMapping] = field(default_factory=list)
    confidence: Optional[float] = None
    reason: Optional[str] = None


def map_selections(selects: Sequence[dict[str, Any]], palette: Palette, min_confidence: float = 0.55) -> MappingOutcome:
    """Map wizard <select> fields to palette slots by label and pick the closest named option."""
    outcome = MappingOutcome(ok=False)
    for select in selects:
        label = (select.get("label") or select.get("name") or "").strip()
        if not COLOR_FIELD_RE.search(label):
            continue
        slot = slot_for_label(label)
        hex_value = getattr(palette, slot).hex
        color_name, confidence = nearest_color_name(hex_value)
        options = select.get("options") or []
        option = next((opt for opt in options if color_name in (opt.get("label") or "").lower()), None)
        if option is None:
            outcome.reason = f'Could not map color for "{label or select.get("selector")}".'
            return outcome
        outcome.selections.append((select.get("selector") or "select", option.get("value") or ""))
        outcome.mappings.append(
            WizardFieldMapping(
                label=label,
                slot=slot,
                hex=hex_value,
                color_name=color_name,
                confidence=confidence,
                option=option.get("label"),
            )
        )

    if not outcome.mappings:
        outcome.reason = "No color fields detected for mapping."
        return outcome
    outcome.confidence = sum(m.confidence for m in outcome.mappings) / len(outcome.mappings)
    if outcome.confidence < min_confidence:
        outcome.reason = "Mapping confidence too low for safe autofill."
        return outcome
    outcome.ok = True
    return outcome


@contextmanager
def chromium_page(config: WizardConfig) -> Iterator[Any]:
    from playwright.sync_api import sync_playwright

    with sync_playwright() as p:
        try:
            browser = p.chromium.launch(headless=config.headless)
        except Exception as exc:  # noqa: BLE001
            raise AutomationError(f"Browser unavailable: {exc}") from exc
        try:
            page = browser.new_page(viewport={"width": 1280, "height": 1600})
            yield page
        finally:
            browser.close()


class WizardAutomator:
    """
    Best-effort autofill of the third-party glove wizard.

    Every outcome, including a blocked site or a crash, comes back as a
    ``WizardResult`` with warnings and manual steps; nothing is raised into the pipeline.
    """

    def __init__(
        self,
        storage: ArtifactStore,
        config: Optional[WizardConfig] = None,
        *,
        page_factory: Optional[Callable[[WizardConfig], ContextManager[Any]]] = None,
    ) -> None:
        self.storage = storage
        self.config = config or WizardConfig()
        self.page_factory = page_factory or chromium_page

    def run(self, job_id: str, design: GloveDesign, logo_path: Optional[str] = None) -> WizardResult:
        log_extra = {"job_id": job_id, "stage": "wizard", "url": self.config.url}
        result = WizardResult(attempted=True, succeeded=False)
        try:
            with self.page_factory(self.config) as page:
                self._drive(page, job_id, design, logo_path, result)
        except Exception as exc:  # noqa: BLE001
            logger.warning("wizard.failed", extra={**log_extra, "error": str(exc)})
            if isinstance(exc, AutomationError):
                result.warnings.append(str(exc))
            else:
                result.warnings.append("Wizard automation failed or was blocked.")
            result.succeeded = False
            if not result.schema_path:
                self._store_snapshot(job_id, {"url": self.config.url, "error": str(exc)}, result)
        if not result.succeeded:
            result.manual_steps = default_manual_steps(self.config.url)
        logger.info(
            "wizard.finished",
            extra={**log_extra, "succeeded": result.succeeded, "warnings": len(result.warnings)},
        )
        return result

    def _drive(self, page: Any, job_id: str, design: GloveDesign, logo_path: Optional[str], result: WizardResult) -> None:
        page.goto(self.config.url, timeout=self.config.navigation_timeout_ms, wait_until="domcontentloaded")

        blocked = self._detect_blocked(page)
        self._capture_snapshot(page, job_id, result)
        if blocked:
            result.blocked = True
            result.warnings.append(blocked)
            return

        selects = page.evaluate(_SELECTS_JS) or []
        outcome = map_selections(selects, design.palette, self.config.min_mapping_confidence)
        result.mappings = outcome.mappings
        if outcome.confidence is not None:
            result.mapping_confidence = round(outcome.confidence, 3)
        if not outcome.ok:
            result.warnings.append(outcome.reason or "Color mapping failed.")
            return

        for selector, value in outcome.selections:
            page.select_option(selector, value)

        if not self._upload_logo(page, logo_path):
            result.warnings.append("Logo upload was not applied (no supported file input found).")

        screenshot = page.screenshot(full_page=True)
        location = self.storage.put(job_artifact_path(job_id, CONFIGURED_IMAGE_FILE), screenshot, "image/png")
        result.screenshot_path = location.path
        result.screenshot_url = location.url
        result.succeeded = True

    def _detect_blocked(self, page: Any) -> Optional[str]:
        text = (page.inner_text("body") or "").lower()
        if any(keyword in text for keyword in self.config.block_keywords):
            return "Autofill blocked by site protections."
        return None

    def _capture_snapshot(self, page: Any, job_id: str, result: WizardResult) -> None:
        snapshot = {
            "captured_at": datetime.now(timezone.utc).isoformat(),
            "url": page.url,
            "title": page.title(),
            "fields": page.evaluate(_SNAPSHOT_JS) or [],
        }
        self._store_snapshot(job_id, snapshot, result)

    def _store_snapshot(self, job_id: str, snapshot: dict[str, Any], result: WizardResult) -> None:
        snapshot.setdefault("captured_at", datetime.now(timezone.utc).isoformat())
        data = json.dumps(snapshot, indent=2, default=str).encode("utf-8")
        try:
            location = self.storage.put(job_artifact_path(job_id, SCHEMA_SNAPSHOT_FILE), data, "application/json")
        except Exception as exc:  # noqa: BLE001
            logger.warning("wizard.snapshot_upload_failed", extra={"job_id": job_id, "error": str(exc)})
            return
        result.schema_path = location.path
        result.schema_url = location.url

    def _upload_logo(self, page: Any, logo_path: Optional[str]) -> bool:
        if not logo_path:
            return False
        inputs = page.query_selector_all("input[type='file']")
        if not inputs:
            return False
        data = self.storage.get(logo_path)
        name = logo_path.rsplit("/", 1)[-1]
        mime = "image/svg+xml" if name.endswith(".svg") else "image/png"
        inputs[0].set_input_files({"name": name, "mimeType": mime, "buffer": data})
        return True
