"""Geometry primitives: rounded rectangles and circles, anti-aliased at any scale.

All coordinates are logical (preview) pixels; ``scale`` multiplies them to the
target tier. Shapes are drawn as coverage masks at ``supersample`` times the
target resolution and box-filtered down, then alpha-composited in the given
colour. Stroke geometry follows the HTML canvas convention: a stroke of width
``w`` along a path covers ``w/2`` on each side of it.
"""

import math

from PIL import Image, ImageChops, ImageDraw

from qrcard.logging import get_logger

log = get_logger("geometry")

SUPERSAMPLE = 4


def clamp_radius(width: float, height: float, radius: float) -> float:
    """Clamp *radius* so that ``2 * radius <= min(width, height)``."""
    limit = max(0.0, min(width, height) / 2)
    if radius > limit:
        log.debug("radius %.2f clamped to %.2f for %.1fx%.1f box", radius, limit, width, height)
        return limit
    return max(0.0, radius)


class CoverageMask:
    """A coverage mask for one shape plus where it sits on the target."""

    def __init__(self, bounds, canvas_size, supersample: int = SUPERSAMPLE):
        cw, ch = canvas_size
        self.left = max(0, math.floor(bounds[0]))
        self.top = max(0, math.floor(bounds[1]))
        right = min(cw, math.ceil(bounds[2]))
        bottom = min(ch, math.ceil(bounds[3]))
        self.width = max(1, right - self.left)
        self.height = max(1, bottom - self.top)
        self.ss = supersample
        self._big = Image.new("L", (self.width * supersample, self.height * supersample), 0)
        self.draw = ImageDraw.Draw(self._big)

    @property
    def origin(self) -> tuple[int, int]:
        return self.left, self.top

    def box(self, x0: float, y0: float, x1: float, y1: float) -> list[int]:
        """Map a half-open target-pixel box to inclusive supersampled coords."""
        ss = self.ss
        return [
            round((x0 - self.left) * ss),
            round((y0 - self.top) * ss),
            round((x1 - self.left) * ss) - 1,
            round((y1 - self.top) * ss) - 1,
        ]

    def length(self, value: float) -> int:
        return round(value * self.ss)

    def finish(self) -> Image.Image:
        if self.ss == 1:
            return self._big
        return self._big.resize((self.width, self.height), Image.BOX)


def paint_mask(target: Image.Image, color, mask: Image.Image, origin: tuple[int, int]) -> None:
    """Alpha-composite *color* onto *target* through *mask* at *origin*."""
    rgba = Image.new("RGBA", (1, 1), color).getpixel((0, 0))
    layer = Image.new("RGBA", mask.size, rgba)
    if rgba[3] == 255:
        layer.putalpha(mask)
    else:
        layer.putalpha(ImageChops.multiply(mask, Image.new("L", mask.size, rgba[3])))
    target.alpha_composite(layer, dest=origin)


def rounded_rect_path_mask(
    canvas_size,
    x: float, y: float, width: float, height: float,
    radius: float,
    line_width: float,
    scale: int = 1,
    supersample: int = SUPERSAMPLE,
) -> CoverageMask:
    """Coverage mask of a rounded-rectangle stroke centred on the given path."""
    radius = clamp_radius(width, height, radius)
    half = line_width / 2
    ox0, oy0 = (x - half) * scale, (y - half) * scale
    ox1, oy1 = (x + width + half) * scale, (y + height + half) * scale

    cm = CoverageMask((ox0, oy0, ox1, oy1), canvas_size, supersample)
    cm.draw.rounded_rectangle(cm.box(ox0, oy0, ox1, oy1), radius=cm.length((radius + half) * scale), fill=255)

    ix0, iy0 = (x + half) * scale, (y + half) * scale
    ix1, iy1 = (x + width - half) * scale, (y + height - half) * scale
    if ix1 > ix0 and iy1 > iy0:
        inner_radius = max(0.0, radius - half) * scale
        cm.draw.rounded_rectangle(cm.box(ix0, iy0, ix1, iy1), radius=cm.length(inner_radius), fill=0)
    return cm


def stroke_rounded_rect(
    target: Image.Image,
    x: float, y: float, width: float, height: float,
    radius: float,
    color,
    line_width: float,
    scale: int = 1,
    supersample: int = SUPERSAMPLE,
) -> None:
    """Stroke a rounded-rectangle outline whose path runs through (x, y, width, height)."""
    if line_width <= 0:
        return
    cm = rounded_rect_path_mask(target.size, x, y, width, height, radius, line_width, scale, supersample)
    paint_mask(target, color, cm.finish(), cm.origin)


def fill_rounded_rect(
    target: Image.Image,
    x: float, y: float, width: float, height: float,
    radius: float,
    color,
    scale: int = 1,
    supersample: int = SUPERSAMPLE,
) -> None:
    """Fill a rounded rectangle; nothing is painted outside the rounded corners."""
    radius = clamp_radius(width, height, radius)
    x0, y0 = x * scale, y * scale
    x1, y1 = (x + width) * scale, (y + height) * scale
    cm = CoverageMask((x0, y0, x1, y1), target.size, supersample)
    cm.draw.rounded_rectangle(cm.box(x0, y0, x1, y1), radius=cm.length(radius * scale), fill=255)
    paint_mask(target, color, cm.finish(), cm.origin)


def circle_mask(
    canvas_size,
    cx: float, cy: float, radius: float,
    scale: int = 1,
    supersample: int = SUPERSAMPLE,
) -> CoverageMask:
    """Coverage mask of a filled circle (used as a clip region)."""
    r = radius * scale
    cx, cy = cx * scale, cy * scale
    cm = CoverageMask((cx - r, cy - r, cx + r, cy + r), canvas_size, supersample)
    cm.draw.ellipse(cm.box(cx - r, cy - r, cx + r, cy + r), fill=255)
    return cm


def ring_mask(
    canvas_size,
    cx: float, cy: float, radius: float,
    line_width: float,
    scale: int = 1,
    supersample: int = SUPERSAMPLE,
) -> CoverageMask:
    """Coverage mask of a circular stroke centred on the circle edge."""
    half = line_width / 2
    outer = (radius + half) * scale
    inner = max(0.0, radius - half) * scale
    cx, cy = cx * scale, cy * scale
    cm = CoverageMask((cx - outer, cy - outer, cx + outer, cy + outer), canvas_size, supersample)
    cm.draw.ellipse(cm.box(cx - outer, cy - outer, cx + outer, cy + outer), fill=255)
    if inner > 0:
        cm.draw.ellipse(cm.box(cx - inner, cy - inner, cx + inner, cy + inner), fill=0)
    return cm


def fill_circle(target: Image.Image, cx: float, cy: float, radius: float, color,
                scale: int = 1, supersample: int = SUPERSAMPLE) -> None:
    cm = circle_mask(target.size, cx, cy, radius, scale, supersample)
    paint_mask(target, color, cm.finish(), cm.origin)


def stroke_circle(target: Image.Image, cx: float, cy: float, radius: float, color,
                  line_width: float, scale: int = 1, supersample: int = SUPERSAMPLE) -> None:
    if line_width <= 0:
        return
    cm = ring_mask(target.size, cx, cy, radius, line_width, scale, supersample)
    paint_mask(target, color, cm.finish(), cm.origin)
