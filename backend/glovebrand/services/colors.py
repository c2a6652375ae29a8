from __future__ import annotations

import colorsys
import math
import re

from glovebrand.errors import ExtractionError

HEX_COLOR_RE = re.compile(r"#(?:[0-9a-fA-F]{8}|[0-9a-fA-F]{6}|[0-9a-fA-F]{3,4})\b")
FUNC_COLOR_RE = re.compile(r"(?:rgba?|hsla?)\([^)]+\)", re.IGNORECASE)
CSS_VAR_DECL_RE = re.compile(r"(--[A-Za-z0-9_-]+)\s*:\s*([^;}{]+)")
CSS_FUNC_RE = re.compile(r"^(rgba?|hsla?)\((.*)\)$")
NAMED_KEYWORDS = {
    "transparent": (0, 0, 0, 0.0),
    "white": (255, 255, 255, 1.0),
    "black": (0, 0, 0, 1.0),
}

RGB = tuple[int, int, int]


def _split_alpha(args: str) -> tuple[list[str], float]:
    body, _, alpha_raw = args.partition("/")
    parts = body.replace(",", " ").split()
    if not alpha_raw and len(parts) == 4:
        alpha_raw = parts.pop()
    if len(parts) != 3:
        raise ValueError(args)
    if not alpha_raw.strip():
        return parts, 1.0
    alpha_raw = alpha_raw.strip()
    alpha = float(alpha_raw[:-1]) / 100.0 if alpha_raw.endswith("%") else float(alpha_raw)
    return parts, max(0.0, min(1.0, alpha))


def _percent(raw: str, scale: float) -> float:
    return float(raw[:-1]) * scale / 100.0 if raw.endswith("%") else float(raw)


def _parse_hex(body: str) -> tuple[int, int, int, float]:
    if len(body) in (3, 4):
        body = "".join(ch * 2 for ch in body)
    if len(body) not in (6, 8):
        raise ValueError(body)
    channels = [int(body[i : i + 2], 16) for i in range(0, len(body), 2)]
    alpha = channels[3] / 255.0 if len(channels) == 4 else 1.0
    return channels[0], channels[1], channels[2], alpha


def parse_css_color(value: str) -> tuple[int, int, int, float]:
    """Parse a hex, rgb(a) or hsl(a) CSS color into (r, g, b, alpha)."""
    raw = value.strip().lower()
    if raw in NAMED_KEYWORDS:
        return NAMED_KEYWORDS[raw]
    try:
        if raw.startswith("#"):
            return _parse_hex(raw[1:])
        match = CSS_FUNC_RE.match(raw)
        if not match:
            raise ValueError(raw)
        func, args = match.groups()
        parts, alpha = _split_alpha(args)
        if func.startswith("rgb"):
            r, g, b = (max(0, min(255, int(round(_percent(p, 255.0))))) for p in parts)
            return r, g, b, alpha
        hue = float(parts[0][:-3]) if parts[0].endswith("deg") else float(parts[0])
        if not (parts[1].endswith("%") and parts[2].endswith("%")):
            raise ValueError(raw)
        sat, light = (max(0.0, min(1.0, _percent(p, 1.0))) for p in parts[1:])
    except ValueError as exc:
        raise ExtractionError(f"Unsupported CSS color: {value!r}.") from exc
    # colorsys works in HLS with hue in 0..1
    r_f, g_f, b_f = colorsys.hls_to_rgb((hue % 360.0) / 360.0, light, sat)
    return int(round(r_f * 255)), int(round(g_f * 255)), int(round(b_f * 255)), alpha


def hex_to_rgb(value: str) -> RGB:
    r, g, b, _ = parse_css_color(value)
    return r, g, b


def rgb_to_hex(rgb: tuple[float, float, float]) -> str:
    r, g, b = (max(0, min(255, int(round(c)))) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def color_distance(a: RGB, b: RGB) -> float:
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


def lighten(hex_value: str, amount: float) -> str:
    """Mix ``hex_value`` toward white by ``amount`` (0..1)."""
    amount = max(0.0, min(1.0, amount))
    r, g, b = hex_to_rgb(hex_value)
    return rgb_to_hex(tuple(c + (255 - c) * amount for c in (r, g, b)))


def is_neutral(hex_value: str, spread: int = 20) -> bool:
    r, g, b = hex_to_rgb(hex_value)
    return max(r, g, b) - min(r, g, b) < spread


def relative_luminance_srgb(r: int, g: int, b: int) -> float:
    def to_linear(c: int) -> float:
        v = c / 255.0
        return v / 12.92 if v <= 0.04045 else ((v + 0.055) / 1.055) ** 2.4

    return 0.2126 * to_linear(r) + 0.7152 * to_linear(g) + 0.0722 * to_linear(b)


def contrast_ratio(a: str, b: str) -> float:
    la = relative_luminance_srgb(*hex_to_rgb(a))
    lb = relative_luminance_srgb(*hex_to_rgb(b))
    lighter, darker = (la, lb) if la >= lb else (lb, la)
    return (lighter + 0.05) / (darker + 0.05)


def find_color_literals(text: str) -> list[str]:
    found = [match.group(0) for match in HEX_COLOR_RE.finditer(text)]
    found.extend(match.group(0) for match in FUNC_COLOR_RE.finditer(text))
    return found
