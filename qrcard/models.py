"""Immutable values passed through the compositing pipeline."""

import dataclasses
import re
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image

from qrcard.encoder import DOWNLOAD_FILENAME, to_data_uri
from qrcard.errors import InvalidInput
from qrcard.logo import PendingRaster

HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class Layout:
    """Proportional layout constants, in preview pixels (scale 1).

    Every tier multiplies these by its scale, so border, padding, QR area and
    logo keep the same proportions at any resolution.
    """

    qr_box_size: int = 210
    padding: int = 10
    border_width: int = 4
    border_radius: int = 20
    card_inset: int = 5
    card_radius_reduction: int = 6
    logo_size: int = 59
    logo_shadow_margin: int = 6
    logo_shadow_blur: int = 7
    logo_shadow_color: str = "#dde3ed"
    logo_ring_width: int = 4
    caption_offset: int = 2
    caption_color: str = "#1e293b"

    @property
    def canvas_size(self) -> int:
        return self.qr_box_size + 2 * self.padding

    def canvas_px(self, scale: int) -> int:
        return self.canvas_size * scale


@dataclass(frozen=True)
class Caption:
    text: str
    font_family: str = "DejaVuSans.ttf"
    font_size_px: float = 12

    def __post_init__(self):
        if self.font_size_px <= 0:
            raise InvalidInput(f"Caption font size must be positive, got {self.font_size_px}")


@dataclass(frozen=True)
class RenderRequest:
    """One compositing job. Built at the moment of export, never mutated."""

    text: str
    color: str = "#144da3"
    logo: Image.Image | PendingRaster | None = None
    caption: Caption | None = None
    scale: int = 1
    layout: Layout = field(default_factory=Layout)

    def __post_init__(self):
        if not isinstance(self.text, str) or not self.text:
            raise InvalidInput("Text to encode must be a non-empty string")
        if not isinstance(self.color, str) or not HEX_COLOR.match(self.color):
            raise InvalidInput(f"Color must look like '#RRGGBB', got {self.color!r}")
        if isinstance(self.scale, bool) or not isinstance(self.scale, int) or self.scale < 1:
            raise InvalidInput(f"Scale must be a positive integer, got {self.scale!r}")
        if self.logo is not None and not isinstance(self.logo, (Image.Image, PendingRaster)):
            raise InvalidInput(f"Unsupported logo type: {type(self.logo).__name__}")

    @property
    def has_logo(self) -> bool:
        return self.logo is not None

    @property
    def output_size(self) -> int:
        return self.layout.canvas_px(self.scale)

    def with_scale(self, scale: int) -> "RenderRequest":
        return dataclasses.replace(self, scale=scale)


@dataclass(frozen=True)
class CompositeResult:
    """A finished render: the raster plus its PNG encoding."""

    image: Image.Image
    png_bytes: bytes
    scale: int
    tier: str = "preview"
    filename: str = DOWNLOAD_FILENAME
    logo_error: str | None = None

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.png_bytes)

    def save(self, directory: str | Path = ".", filename: str | None = None) -> Path:
        """Write the PNG bytes to *directory* and return the written path."""
        path = Path(directory) / (filename or self.filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.png_bytes)
        return path
