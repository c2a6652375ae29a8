from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

from glovebrand.schemas.branding import GloveComponents, GloveDesign, GloveVariant, LogoRef, Palette, TeamInfo
from glovebrand.services.colors import contrast_ratio

MIN_CONTRAST_RATIO = 2.2

# component -> palette role
VARIANT_ROLES: dict[str, dict[str, str]] = {
    "A": {
        "palm": "primary",
        "back": "secondary",
        "web": "secondary",
        "laces": "neutral",
        "stitching": "accent",
        "binding": "secondary",
        "wrist": "primary",
        "logo_placement": "accent",
    },
    "B": {
        "palm": "secondary",
        "back": "primary",
        "web": "primary",
        "laces": "neutral",
        "stitching": "accent",
        "binding": "primary",
        "wrist": "secondary",
        "logo_placement": "primary",
    },
    "C": {
        "palm": "neutral",
        "back": "neutral",
        "web": "primary",
        "laces": "primary",
        "stitching": "accent",
        "binding": "secondary",
        "wrist": "secondary",
        "logo_placement": "primary",
    },
}

VARIANT_DESCRIPTIONS = {
    "A": "Classic layout with primary palm and secondary web.",
    "B": "Inverted contrast with bold web and back.",
    "C": "Minimal neutral base with strong web and accents.",
}

# (base component, component swapped to neutral when contrast is too low)
CONTRAST_PAIRS: tuple[tuple[str, str], ...] = (
    ("palm", "web"),
    ("back", "web"),
    ("palm", "laces"),
    ("back", "binding"),
    ("palm", "stitching"),
    ("back", "wrist"),
)

__all__ = ["MIN_CONTRAST_RATIO", "contrast_ratio", "generate_design", "team_name_from_url"]


def team_name_from_url(team_url: str) -> str:
    hostname = (urlsplit(team_url).hostname or team_url).lower()
    labels = [label for label in hostname.split(".") if label and label != "www"]
    base = labels[0] if labels else hostname
    return " ".join(word.capitalize() for word in base.replace("_", "-").split("-") if word) or hostname


def _build_variant(name: str, palette: Palette) -> GloveVariant:
    components = {component: getattr(palette, role).hex for component, role in VARIANT_ROLES[name].items()}
    notes: list[str] = []
    neutral = palette.neutral.hex
    for base_key, accent_key in CONTRAST_PAIRS:
        ratio = contrast_ratio(components[base_key], components[accent_key])
        if ratio < MIN_CONTRAST_RATIO:
            components[accent_key] = neutral
            notes.append(f"Adjusted {base_key}/{accent_key} to neutral for contrast ({ratio:.2f}).")
    return GloveVariant(
        name=name,
        description=VARIANT_DESCRIPTIONS[name],
        components=GloveComponents(**components),
        notes=notes,
    )


def generate_design(
    job_id: str,
    team_url: str,
    logo_url: Optional[str],
    logo_path: Optional[str],
    palette: Palette,
) -> GloveDesign:
    """Three deterministic colorway variants (A/B/C) from a ranked palette. No I/O."""
    return GloveDesign(
        job_id=job_id,
        team=TeamInfo(name=team_name_from_url(team_url), source_url=team_url),
        logo=LogoRef(url=logo_url, path=logo_path),
        palette=palette.model_copy(deep=True),
        variants=[_build_variant(name, palette) for name in ("A", "B", "C")],
    )
