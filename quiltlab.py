"""
quiltlab.py
===========

A compact quilt-pattern generator. It lays out a 6 × 6 grid of patchwork
squares (each a 3 × 3 checkerboard of patches) from a 24-color palette,
pairs colors per square with a tiered-contrast policy, and marks one
"cross" square plus a handful of "center highlight" squares in an accent
color. Output is a PNG (via Pillow) or an SVG document.

Key features
------------
- Palettes as hex strings (e.g., ["#FFFFFF", "#E63946"]), always 24 unique
  colors sorted from brightest to darkest.
- Palette derivation from an image: dominant colors are sampled, then
  expanded (interpolation / tonal variants) or thinned (farthest-point
  selection) to exactly 24.
- Deterministic output from a seed. The whole drawing is replayed from the
  seed, so a saved ``PatternState`` reproduces the image exactly.
- Undo / redo through a bounded ``HistoryStore``.

Quick start
-----------
>>> from quiltlab import QuiltGenerator, generate_grayscale_palette, to_svg
>>> gen = QuiltGenerator(generate_grayscale_palette(), highlight_color="#E63946")
>>> state = gen.generate(seed=12345)
>>> svg = to_svg(gen)

Command line
------------
$ quiltlab --image photo.jpg --seed 7 --out /tmp/quilt.png --svg /tmp/quilt.svg

License: MIT
"""

import argparse
import json
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

try:
    from PIL import Image, ImageDraw
except Exception as e:  # pragma: no cover
    raise SystemExit("This module requires Pillow. Try: pip install pillow") from e

try:
    import numpy as np
except Exception as e:  # pragma: no cover
    raise SystemExit("This module requires NumPy. Try: pip install numpy") from e

try:
    import yaml
except Exception as e:  # pragma: no cover
    raise SystemExit("This module requires PyYAML. Try: pip install pyyaml") from e


logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

PALETTE_SIZE = 24
GRID_SIZE = 6
PATCH_GRID = 3
CROSS_POSITIONS = frozenset({2, 4, 6, 8})
CENTER_POSITION = 5
EXPORT_SIZE = 450

DEFAULT_HIGHLIGHT = "#808080"
IMAGE_HIGHLIGHT = "#E63946"


class PaletteError(ValueError):
    """Raised when a palette cannot be derived from the given colors."""


# ---------------------------- Configuration ---------------------------------

def _defaults() -> Dict[str, Dict[str, Any]]:
    return {
        "canvas": {"size": EXPORT_SIZE},
        "export": {"size": EXPORT_SIZE, "dir": ".", "prefix": "quilt-pattern"},
        "history": {"max_size": 20},
        "highlight": {"default": DEFAULT_HIGHLIGHT, "image": IMAGE_HIGHLIGHT},
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """Built-in settings, overlaid section by section with the YAML file.

    Keys missing from a section in the file keep their default, so a file
    holding only ``history: {max_size: 5}`` changes nothing else. Without
    ``config_path`` the config/default.yaml beside this module is read.
    """
    if config_path is None:
        config_path = Path(__file__).resolve().parent / "config" / "default.yaml"
    path = Path(config_path)
    config = _defaults()
    if not path.exists():
        return config
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a mapping of sections")
    for section, values in data.items():
        if isinstance(values, dict):
            config[section] = {**config.get(section, {}), **values}
        else:
            config[section] = values
    return config


# ---------------------------- Color utilities -------------------------------

def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def hex_to_rgb(hex_color: str) -> Optional[RGB]:
    """Convert '#RRGGBB' or 'RRGGBB' (any case) to (r,g,b); None if malformed."""
    if not isinstance(hex_color, str):
        return None
    h = hex_color.strip()
    if h.startswith("#"):
        h = h[1:]
    if len(h) != 6 or not all(c in "0123456789abcdefABCDEF" for c in h):
        return None
    return (int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16))


def rgb_to_hex(r: float, g: float, b: float) -> str:
    r, g, b = (int(_clamp(c, 0, 255)) for c in (r, g, b))
    return f"#{r:02X}{g:02X}{b:02X}"


def normalize_hex(color: str) -> Optional[str]:
    rgb = hex_to_rgb(color)
    return rgb_to_hex(*rgb) if rgb is not None else None


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def interpolate_colors(c1: RGB, c2: RGB, ratio: float) -> RGB:
    return tuple(_round_half_up(lerp(a, b, ratio)) for a, b in zip(c1, c2))


def adjust_brightness(rgb: RGB, factor: float) -> RGB:
    """Scale every channel by ``factor``, clamped to 0..255."""
    return tuple(int(_clamp(_round_half_up(c * factor), 0, 255)) for c in rgb)


def color_distance(c1: RGB, c2: RGB) -> float:
    """Euclidean distance in RGB space (not perceptual)."""
    dr, dg, db = c1[0] - c2[0], c1[1] - c2[1], c1[2] - c2[2]
    return math.sqrt(dr * dr + dg * dg + db * db)


def luma(color: str) -> float:
    """Brightness 0.299R + 0.587G + 0.114B of a hex color."""
    r, g, b = hex_to_rgb(color) or (0, 0, 0)
    return (r * 299 + g * 587 + b * 114) / 1000


def sort_by_brightness(colors: Sequence[str]) -> List[str]:
    return sorted(colors, key=luma, reverse=True)


# ---------------------------- Seeded random ---------------------------------

class SeededRandom:
    """Deterministic linear congruential stream.

    Every layout decision is an ordered draw from one of these, so the draw
    order is part of the output format: changing it changes every pattern
    produced from an existing seed.
    """

    M = 4294967296
    A = 1664525
    C = 1013904223

    def __init__(self, seed: int):
        self.state = int(seed) % self.M

    def next_float(self) -> float:
        self.state = (self.A * self.state + self.C) % self.M
        return self.state / self.M

    def random(self, a: Optional[float] = None, b: Optional[float] = None) -> float:
        """u, u * a, or u scaled into [a, b) (bounds swapped if reversed)."""
        u = self.next_float()
        if a is None:
            return u
        if b is None:
            return u * a
        if a > b:
            a, b = b, a
        return u * (b - a) + a

    def floor_random(self, a: float, b: Optional[float] = None) -> int:
        return int(math.floor(self.random(a, b)))


def new_seed() -> int:
    """Millisecond wall-clock seed."""
    return int(time.time() * 1000)


# ---------------------------- Palette engine --------------------------------

def generate_grayscale_palette(count: int = PALETTE_SIZE) -> List[str]:
    palette = []
    for i in range(count):
        gray = int(_clamp(255 - i * 10, 0, 255))
        palette.append(rgb_to_hex(gray, gray, gray))
    return palette


def expand_palette(colors: Sequence[str], target_count: int = PALETTE_SIZE) -> List[str]:
    """Grow ``colors`` to ``target_count`` unique colors.

    Each pass interpolates neighbouring colors of the current list at ratios
    cycling through 0.5, 0.65 and 0.8. When a pass adds nothing, tonal
    variants (x1.2 and x0.85 brightness, alternating) are tried instead.
    If that stalls too, every pairwise interpolation and both tonal
    variants of every color are tried before giving up.
    The input colors are kept, in order, at the front of the result.
    """
    expanded = list(colors)
    if not expanded:
        raise PaletteError("cannot expand an empty palette")

    while len(expanded) < target_count:
        needed = target_count - len(expanded)
        source = list(expanded)

        for i in range(needed):
            if len(expanded) >= target_count:
                break
            c1 = hex_to_rgb(source[i % len(source)])
            c2 = hex_to_rgb(source[(i + 1) % len(source)])
            if c1 is None or c2 is None:
                continue
            ratio = 0.5 + (i % 3) * 0.15
            candidate = rgb_to_hex(*interpolate_colors(c1, c2, ratio))
            if candidate not in expanded:
                expanded.append(candidate)

        if len(expanded) < target_count and len(expanded) == len(source):
            for color in source[:target_count - len(expanded)]:
                if len(expanded) >= target_count:
                    break
                rgb = hex_to_rgb(color)
                if rgb is None:
                    continue
                factor = 1.2 if len(expanded) % 2 == 0 else 0.85
                candidate = rgb_to_hex(*adjust_brightness(rgb, factor))
                if candidate not in expanded:
                    expanded.append(candidate)

        if len(expanded) == len(source):
            for candidate in _widened_candidates(source):
                if len(expanded) >= target_count:
                    break
                if candidate not in expanded:
                    expanded.append(candidate)

        if len(expanded) == len(source):
            raise PaletteError(f"palette stuck at {len(expanded)} colors, cannot reach {target_count}")

    return expanded[:target_count]


def _widened_candidates(source: Sequence[str]):
    """Every pairwise interpolation at every ratio, then both tonal variants."""
    rgbs = [rgb for rgb in (hex_to_rgb(c) for c in source) if rgb is not None]
    for a, c1 in enumerate(rgbs):
        for b, c2 in enumerate(rgbs):
            if a == b:
                continue
            for ratio in (0.5, 0.65, 0.8):
                yield rgb_to_hex(*interpolate_colors(c1, c2, ratio))
    for rgb in rgbs:
        for factor in (1.2, 0.85):
            yield rgb_to_hex(*adjust_brightness(rgb, factor))


def select_most_distinct(colors: Sequence[str], target_count: int = PALETTE_SIZE) -> List[str]:
    """Greedy farthest-point selection starting from the first color.

    At every step the remaining candidate whose nearest selected color is
    farthest away is taken; ties go to the earliest candidate.
    """
    colors = list(colors)
    if not colors:
        return []
    rgb = np.array([hex_to_rgb(c) or (0, 0, 0) for c in colors], dtype=np.float64)

    selected = [0]
    remaining = list(range(1, len(colors)))
    # nearest-selected distance for every remaining candidate, kept in step with `remaining`
    nearest = np.sqrt(((rgb[remaining] - rgb[0]) ** 2).sum(axis=1))

    while len(selected) < target_count and remaining:
        pick = int(np.argmax(nearest))
        chosen = remaining.pop(pick)
        nearest = np.delete(nearest, pick)
        selected.append(chosen)
        if remaining:
            d = np.sqrt(((rgb[remaining] - rgb[chosen]) ** 2).sum(axis=1))
            nearest = np.minimum(nearest, d)

    return [colors[i] for i in selected]


def _derive_palette(hex_colors: Sequence[str], target_count: int) -> List[str]:
    unique = list(dict.fromkeys(hex_colors))
    if not unique:
        raise PaletteError("no colors to build a palette from")
    if len(unique) < target_count:
        unique = expand_palette(unique, target_count)
    elif len(unique) > target_count:
        unique = select_most_distinct(unique, target_count)
    return sort_by_brightness(unique)


def palette_from_samples(sampled: Optional[Sequence[Sequence[int]]],
                         target_count: int = PALETTE_SIZE) -> List[str]:
    """Build a palette from sampled RGB triples, or grayscale on any failure."""
    try:
        hex_colors = [rgb_to_hex(*c[:3]) for c in (sampled or [])]
        return _derive_palette(hex_colors, target_count)
    except Exception as e:
        logger.warning("Palette extraction failed: %s; using grayscale palette", e)
        return generate_grayscale_palette(target_count)


def normalize_palette(colors: Sequence[str], target_count: int = PALETTE_SIZE) -> List[str]:
    """Canonicalize a user palette; malformed entries are dropped."""
    out = []
    for c in colors:
        h = normalize_hex(c)
        if h is None:
            logger.warning("Skipping malformed color %r", c)
            continue
        out.append(h)
    if not out:
        logger.warning("No usable colors in custom palette; using grayscale palette")
        return generate_grayscale_palette(target_count)
    return out


def sample_image_colors(image: Image.Image, color_count: int = PALETTE_SIZE,
                        quality: int = 10) -> List[RGB]:
    """Dominant colors of ``image``, most populous first.

    Every ``quality``-th pixel is considered; transparent and near-white
    pixels are ignored. The survivors are median-cut quantized by Pillow.
    """
    rgba = np.asarray(image.convert("RGBA")).reshape(-1, 4)[::max(1, int(quality))]
    keep = (rgba[:, 3] >= 125) & ~np.all(rgba[:, :3] > 250, axis=1)
    pixels = rgba[keep, :3]
    if len(pixels) == 0:
        return []

    strip = Image.fromarray(np.ascontiguousarray(pixels.reshape(1, -1, 3)))
    quantized = strip.quantize(colors=color_count, method=Image.Quantize.MEDIANCUT)
    flat = quantized.getpalette() or []
    counts = sorted(quantized.getcolors() or [], key=lambda ci: -ci[0])
    return [tuple(flat[3 * idx:3 * idx + 3]) for _, idx in counts]


def extract_from_image(image: Image.Image,
                       sampler: Callable[..., Sequence[Sequence[int]]] = sample_image_colors,
                       target_count: int = PALETTE_SIZE) -> List[str]:
    """Derive a palette from an image, degrading to grayscale on failure."""
    try:
        sampled = sampler(image, target_count, 10)
        if not sampled or len(sampled) < target_count:
            sampled = sampler(image, target_count, 5)
    except Exception as e:
        logger.warning("Color sampling failed: %s; using grayscale palette", e)
        return generate_grayscale_palette(target_count)
    logger.debug("Sampled %d colors from image", len(sampled or []))
    return palette_from_samples(sampled, target_count)


# ---------------------------- Contrast pairing ------------------------------

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW_MEDIUM = "LOW-MEDIUM"
LOW = "LOW"


def contrast_tier(u: float) -> str:
    """Map a uniform draw in [0, 1) to a tier (half-open bands)."""
    if u < 0.4:
        return HIGH
    if u < 0.75:
        return MEDIUM
    if u < 0.95:
        return LOW_MEDIUM
    return LOW


def _pick(palette: Sequence[str], i1: int, i2: int) -> Tuple[str, str]:
    last = len(palette) - 1
    return palette[int(_clamp(i1, 0, last))], palette[int(_clamp(i2, 0, last))]


def high_contrast_pair(rng: SeededRandom, palette: Sequence[str]) -> Tuple[str, str]:
    """Dark band (18..22) against light band (0..7)."""
    n = len(palette)
    dark = rng.floor_random(18, min(23, n))
    light = rng.floor_random(0, min(8, n))
    return _pick(palette, dark, light)


def medium_contrast_pair(rng: SeededRandom, palette: Sequence[str]) -> Tuple[str, str]:
    n = len(palette)
    i1 = rng.floor_random(n)
    offset = rng.floor_random(5, 10)
    return _pick(palette, i1, (i1 + offset) % n)


def low_medium_contrast_pair(rng: SeededRandom, palette: Sequence[str]) -> Tuple[str, str]:
    n = len(palette)
    i1 = rng.floor_random(6, min(18, n))
    offset = rng.floor_random(3, 5)
    return _pick(palette, i1, int(_clamp(i1 + offset, 0, n - 1)))


def low_contrast_pair(rng: SeededRandom, palette: Sequence[str]) -> Tuple[str, str]:
    n = len(palette)
    i1 = rng.floor_random(n)
    return _pick(palette, i1, (i1 + rng.floor_random(1, 3)) % n)


PAIR_POLICIES = {
    HIGH: high_contrast_pair,
    MEDIUM: medium_contrast_pair,
    LOW_MEDIUM: low_medium_contrast_pair,
    LOW: low_contrast_pair,
}


def color_pair(rng: SeededRandom, palette: Sequence[str]) -> Tuple[str, str]:
    return PAIR_POLICIES[contrast_tier(rng.random())](rng, palette)


# ---------------------------- Pattern engine --------------------------------

@dataclass(frozen=True)
class PatternState:
    """Everything needed to reproduce one rendered quilt."""
    seed: int
    cross_row: int
    cross_col: int
    center_highlights: Tuple[int, ...]
    palette: Tuple[str, ...]
    highlight_color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "crossRow": self.cross_row,
            "crossCol": self.cross_col,
            "centerHighlights": list(self.center_highlights),
            "palette": list(self.palette),
            "highlightColor": self.highlight_color,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternState":
        try:
            seed = int(data["seed"])
            row, col = int(data["crossRow"]), int(data["crossCol"])
            highlights = tuple(int(i) for i in data["centerHighlights"])
            palette = tuple(data["palette"])
            highlight = data["highlightColor"]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid pattern state: {e}") from e
        if not (0 <= row < GRID_SIZE and 0 <= col < GRID_SIZE):
            raise ValueError(f"Cross square ({row}, {col}) outside the {GRID_SIZE}x{GRID_SIZE} grid")
        cross = row * GRID_SIZE + col
        for i in highlights:
            if not 0 <= i < GRID_SIZE * GRID_SIZE or i == cross:
                raise ValueError(f"Invalid center highlight square {i}")
        canon = [normalize_hex(c) for c in palette]
        if not canon or None in canon:
            raise ValueError("Pattern state palette must be a non-empty list of #RRGGBB colors")
        highlight_hex = normalize_hex(highlight)
        if highlight_hex is None:
            raise ValueError(f"Invalid highlight color {highlight!r}")
        return cls(seed, row, col, highlights, tuple(canon), highlight_hex)


@dataclass(frozen=True)
class Patch:
    x: float
    y: float
    size: float
    fill: str


@dataclass
class QuiltGenerator:
    """Seeded 6x6 quilt layout with tiered-contrast color pairs.

    ``generate()`` picks the geometry (cross square, center highlights);
    ``patches()`` and ``draw()`` replay the per-square color draws from the
    stored seed, so any number of renders of one generation are identical.
    Geometry writes and layout reads go through one lock, so a replay never
    sees half of a new generation.
    """
    palette: Sequence[str]
    highlight_color: str = DEFAULT_HIGHLIGHT
    canvas_size: float = EXPORT_SIZE
    seed: int = 0
    cross_row: int = 0
    cross_col: int = 0
    center_highlights: Tuple[int, ...] = ()
    generated: bool = field(default=False, init=False, repr=False)
    _lock: Any = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.palette = tuple(normalize_palette(self.palette))
        self.highlight_color = normalize_hex(self.highlight_color) or DEFAULT_HIGHLIGHT

    @property
    def is_generated(self) -> bool:
        return self.generated

    def resize(self, canvas_size: float) -> None:
        self.canvas_size = canvas_size

    def update_palette(self, palette: Sequence[str]) -> None:
        palette = tuple(normalize_palette(palette))
        with self._lock:
            self.palette = palette

    def set_highlight_color(self, color: str) -> bool:
        """Returns False (and keeps the old color) for a malformed color."""
        h = normalize_hex(color)
        if h is None:
            logger.warning("Ignoring malformed highlight color %r", color)
            return False
        with self._lock:
            self.highlight_color = h
        return True

    def generate(self, seed: Optional[int] = None) -> PatternState:
        seed = new_seed() if seed is None else int(seed)
        rng = SeededRandom(seed)

        cross_row = rng.floor_random(GRID_SIZE)
        cross_col = rng.floor_random(GRID_SIZE)
        cross = cross_row * GRID_SIZE + cross_col
        count = rng.floor_random(3, 8)

        available = [i for i in range(GRID_SIZE * GRID_SIZE) if i != cross]
        highlights = []
        for _ in range(count):
            if not available:
                break
            highlights.append(available.pop(rng.floor_random(len(available))))

        with self._lock:
            self.seed = seed
            self.cross_row, self.cross_col = cross_row, cross_col
            self.center_highlights = tuple(highlights)
            self.generated = True
            state = self.get_state()
        logger.debug("Generated seed=%d cross=(%d, %d) highlights=%s",
                     seed, cross_row, cross_col, highlights)
        return state

    def get_state(self) -> PatternState:
        with self._lock:
            return PatternState(
                seed=self.seed,
                cross_row=self.cross_row,
                cross_col=self.cross_col,
                center_highlights=tuple(self.center_highlights),
                palette=tuple(self.palette),
                highlight_color=self.highlight_color,
            )

    def set_state(self, state: PatternState) -> None:
        with self._lock:
            self.seed = state.seed
            self.cross_row = state.cross_row
            self.cross_col = state.cross_col
            self.center_highlights = tuple(state.center_highlights)
            self.palette = tuple(state.palette)
            self.highlight_color = state.highlight_color
            self.generated = True

    def patches(self, size: Optional[float] = None) -> Optional[List[Patch]]:
        """Resolved patches in draw order (row-major squares, then patches).

        Returns None when nothing has been generated yet.
        """
        with self._lock:
            if not self.generated:
                logger.warning("No pattern generated yet")
                return None
            state = self.get_state()
            canvas = self.canvas_size if size is None else size
        square_size = canvas / GRID_SIZE
        patch_size = square_size / PATCH_GRID
        highlighted = set(state.center_highlights)
        rng = SeededRandom(state.seed)

        out = []
        for row in range(GRID_SIZE):
            for col in range(GRID_SIZE):
                x = col * square_size
                y = row * square_size
                first, second = color_pair(rng, state.palette)
                start_with_light = rng.random() > 0.5
                has_cross = row == state.cross_row and col == state.cross_col
                has_center = (row * GRID_SIZE + col) in highlighted

                for i in range(PATCH_GRID):
                    for j in range(PATCH_GRID):
                        position = i * PATCH_GRID + j + 1
                        if has_cross and position in CROSS_POSITIONS:
                            fill = state.highlight_color
                        elif has_center and position == CENTER_POSITION:
                            fill = state.highlight_color
                        else:
                            use_first = (i + j) % 2 == 0
                            if start_with_light:
                                use_first = not use_first
                            fill = first if use_first else second
                        out.append(Patch(x + j * patch_size, y + i * patch_size, patch_size, fill))
        return out

    def draw(self, surface: Any, size: Optional[float] = None) -> bool:
        """Issue one filled rectangle per patch on an ImageDraw-like surface."""
        patches = self.patches(size)
        if patches is None:
            return False
        for p in patches:
            surface.rectangle([p.x, p.y, p.x + p.size, p.y + p.size], fill=p.fill)
        return True


# ---------------------------- Export ----------------------------------------

def default_export_name(extension: str, timestamp: Optional[int] = None,
                        prefix: str = "quilt-pattern") -> str:
    ts = new_seed() if timestamp is None else timestamp
    return f"{prefix}-{ts}.{extension}"


def render_image(generator: QuiltGenerator, size: Optional[int] = None) -> Optional[Image.Image]:
    """Rasterize onto a white RGB canvas; None if nothing generated yet."""
    px = int(round(generator.canvas_size if size is None else size))
    im = Image.new("RGB", (px, px), color=(255, 255, 255))
    if not generator.draw(ImageDraw.Draw(im), size=px):
        return None
    return im


def export_png(generator: QuiltGenerator, path: Optional[str] = None,
               size: Optional[int] = None) -> Optional[str]:
    im = render_image(generator, size)
    if im is None:
        return None
    out_path = path or default_export_name("png")
    im.save(out_path, format="PNG", optimize=True)
    logger.info("Wrote %s", out_path)
    return out_path


def _fmt(v: float) -> str:
    return str(int(v)) if float(v).is_integer() else repr(float(v))


def to_svg(generator: QuiltGenerator, size: float = EXPORT_SIZE) -> Optional[str]:
    """SVG document with one <rect> per patch, at a fixed canvas size."""
    patches = generator.patches(size)
    if patches is None:
        return None
    lines = [f'<svg width="{_fmt(size)}" height="{_fmt(size)}" xmlns="http://www.w3.org/2000/svg">',
             "  <!-- Quilt pattern generated with quiltlab -->"]
    for p in patches:
        lines.append(f'  <rect x="{_fmt(p.x)}" y="{_fmt(p.y)}" width="{_fmt(p.size)}" '
                     f'height="{_fmt(p.size)}" fill="{p.fill}"/>')
    lines.append("</svg>")
    return "\n".join(lines)


def export_svg(generator: QuiltGenerator, path: Optional[str] = None,
               size: float = EXPORT_SIZE) -> Optional[str]:
    svg = to_svg(generator, size)
    if svg is None:
        return None
    out_path = path or default_export_name("svg")
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(svg)
    logger.info("Wrote %s", out_path)
    return out_path


# ---------------------------- History ---------------------------------------

class HistoryStore:
    """Bounded undo/redo buffer of PatternStates.

    Pushing after an undo discards the redo branch. When the buffer is full
    the oldest state is evicted and the cursor stays put (it already points
    at the newest entry).
    """

    def __init__(self, max_size: int = 20):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._states = deque()
        self.cursor = -1

    def __len__(self) -> int:
        return len(self._states)

    @property
    def can_undo(self) -> bool:
        return self.cursor > 0

    @property
    def can_redo(self) -> bool:
        return self.cursor < len(self._states) - 1

    @property
    def current(self) -> Optional[PatternState]:
        return self._states[self.cursor] if self._states else None

    def states(self) -> List[PatternState]:
        return list(self._states)

    def push_state(self, state: PatternState) -> None:
        while len(self._states) > self.cursor + 1:
            self._states.pop()
        self._states.append(state)
        if len(self._states) > self.max_size:
            self._states.popleft()
        else:
            self.cursor += 1

    def undo(self) -> Optional[PatternState]:
        if not self.can_undo:
            return None
        self.cursor -= 1
        return self._states[self.cursor]

    def redo(self) -> Optional[PatternState]:
        if not self.can_redo:
            return None
        self.cursor += 1
        return self._states[self.cursor]

    def clear(self) -> None:
        self._states.clear()
        self.cursor = -1


# ---------------------------- Session ---------------------------------------

class QuiltSession:
    """Palette, generator and history wired together the way the app uses them."""

    def __init__(self, config: Optional[Dict[str, Dict[str, Any]]] = None):
        self.config = config or load_config()
        self.default_highlight = self.config["highlight"]["default"]
        self.image_highlight = self.config["highlight"]["image"]
        self.palette = generate_grayscale_palette()
        self.generator = QuiltGenerator(self.palette, highlight_color=self.default_highlight,
                                        canvas_size=self.config["canvas"]["size"])
        self.history = HistoryStore(self.config["history"]["max_size"])
        self.new_pattern()

    def _record(self) -> PatternState:
        state = self.generator.get_state()
        self.history.push_state(state)
        return state

    def new_pattern(self, seed: Optional[int] = None) -> PatternState:
        self.generator.generate(seed)
        return self._record()

    def apply_image(self, image: Image.Image, seed: Optional[int] = None,
                    sampler: Callable[..., Sequence[Sequence[int]]] = sample_image_colors) -> PatternState:
        self.palette = extract_from_image(image, sampler=sampler)
        self.generator.update_palette(self.palette)
        self.generator.set_highlight_color(self.image_highlight)
        return self.new_pattern(seed)

    def use_palette(self, colors: Sequence[str]) -> PatternState:
        """Swap in a custom palette and redraw the current layout."""
        self.palette = normalize_palette(colors)
        self.generator.update_palette(self.palette)
        return self._record()

    def set_highlight_color(self, color: str) -> PatternState:
        """Recolor the highlights; a malformed or unchanged color records nothing."""
        before = self.generator.highlight_color
        if not self.generator.set_highlight_color(color) or self.generator.highlight_color == before:
            return self.generator.get_state()
        return self._record()

    def reset_to_grayscale(self, seed: Optional[int] = None) -> PatternState:
        self.palette = generate_grayscale_palette()
        self.generator.update_palette(self.palette)
        self.generator.set_highlight_color(self.default_highlight)
        return self.new_pattern(seed)

    def restore(self, state: PatternState) -> PatternState:
        self.palette = list(state.palette)
        self.generator.set_state(state)
        return self._record()

    def undo(self) -> bool:
        state = self.history.undo()
        if state is None:
            return False
        self.generator.set_state(state)
        self.palette = list(state.palette)
        return True

    def redo(self) -> bool:
        state = self.history.redo()
        if state is None:
            return False
        self.generator.set_state(state)
        self.palette = list(state.palette)
        return True


# ---------------------------- CLI -------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Generate seeded quilt patterns as PNG and/or SVG")
    ap.add_argument("--out", default=None, help="Output PNG path")
    ap.add_argument("--svg", default=None, help="Output SVG path")
    ap.add_argument("--image", default=None, help="Derive the palette from this image")
    ap.add_argument("--palette", default=None, help="Comma-separated hex colors (e.g., '#111111,#F72585')")
    ap.add_argument("--highlight", default=None, help="Highlight color hex")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--size", type=int, default=None, help="PNG size in pixels")
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("--load-state", default=None, help="JSON pattern state to render instead of generating")
    ap.add_argument("--save-state", default=None, help="Write the pattern state as JSON")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    config = load_config(Path(args.config) if args.config else None)
    session = QuiltSession(config)

    if args.load_state:
        with open(args.load_state, "r", encoding="utf-8") as jf:
            try:
                state = PatternState.from_dict(json.load(jf))
            except ValueError as e:
                raise SystemExit(f"--load-state: {e}")
        session.restore(state)
    elif args.image:
        with Image.open(args.image) as img:
            session.apply_image(img, seed=args.seed)
    else:
        session.new_pattern(args.seed)

    if args.palette:
        session.use_palette([c.strip() for c in args.palette.split(",") if c.strip()])
    if args.highlight:
        session.set_highlight_color(args.highlight)

    png_path = args.out
    svg_path = args.svg
    if png_path is None and svg_path is None:
        export_dir = Path(config["export"]["dir"])
        export_dir.mkdir(parents=True, exist_ok=True)
        png_path = str(export_dir / default_export_name("png", prefix=config["export"]["prefix"]))

    if png_path:
        print(export_png(session.generator, png_path, args.size))
    if svg_path:
        print(export_svg(session.generator, svg_path, config["export"]["size"]))
    if args.save_state:
        with open(args.save_state, "w", encoding="utf-8") as jf:
            json.dump(session.generator.get_state().to_dict(), jf, indent=2)
        print(args.save_state)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
