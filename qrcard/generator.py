"""QR Matrix Source: text -> module matrix -> raster of an exact pixel size."""

import asyncio
from enum import Enum

import qrcode
import qrcode.constants
from PIL import Image, ImageDraw

from qrcard.logging import audit, get_logger, trace

log = get_logger("generator")


class ECCLevel(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%


ECC_NAMES = {"L": ECCLevel.L, "M": ECCLevel.M, "Q": ECCLevel.Q, "H": ECCLevel.H}


@trace
def get_module_matrix(text: str, ecc: str = "H") -> list[list[bool]]:
    """Get the raw module matrix (True=dark, False=light) without a quiet zone."""
    ecc_level = ECC_NAMES[ecc.upper()]
    qr = qrcode.QRCode(
        version=None,
        error_correction=ecc_level.value,
        box_size=1,
        border=0,
    )
    qr.add_data(text)
    qr.make(fit=True)
    return [list(row) for row in qr.modules]


def _module_edges(count: int, pixel_size: int) -> list[int]:
    """Pixel boundaries of *count* modules spread over *pixel_size* pixels."""
    cell = pixel_size / count
    return [round(i * cell) for i in range(count + 1)]


@trace
def render_qr(
    text: str,
    pixel_size: int,
    ecc: str = "H",
    fg_color: str = "#000000",
    bg_color: str = "#ffffff",
) -> Image.Image:
    """Render the QR symbol for *text* into a square RGB raster.

    Module edges are snapped to whole pixels from the fractional module size,
    so any *pixel_size* is honoured exactly without resampling. No quiet zone
    is added; the caller frames the symbol.

    Args:
        text: The string to encode.
        pixel_size: Width and height of the returned image.
        ecc: Error correction level: L/M/Q/H.
        fg_color: Dark module colour (any Pillow colour string).
        bg_color: Light module colour.
    """
    if pixel_size <= 0:
        raise ValueError(f"pixel_size must be positive, got {pixel_size}")

    modules = get_module_matrix(text, ecc=ecc)
    count = len(modules)
    edges = _module_edges(count, pixel_size)

    img = Image.new("RGB", (pixel_size, pixel_size), bg_color)
    draw = ImageDraw.Draw(img)
    for r, row in enumerate(modules):
        y0, y1 = edges[r], edges[r + 1]
        for c, dark in enumerate(row):
            if not dark:
                continue
            x0, x1 = edges[c], edges[c + 1]
            if x1 > x0 and y1 > y0:
                draw.rectangle([x0, y0, x1 - 1, y1 - 1], fill=fg_color)

    audit("qr.rendered", logger=log,
          data=text[:80], modules=f"{count}x{count}", ecc=ecc.upper(),
          image_px=f"{pixel_size}x{pixel_size}", fg=fg_color)
    return img


class QRMatrixSource:
    """Renders QR rasters on request; the async form signals completion.

    ``render_async`` runs the render off the event loop and only returns once
    the finished raster is available, so callers never read back a surface
    that is still being drawn.
    """

    def __init__(self, ecc: str = "H"):
        if ecc.upper() not in ECC_NAMES:
            raise ValueError(f"Unknown error correction level: {ecc!r}")
        self.ecc = ecc.upper()

    def render(self, text: str, pixel_size: int,
               fg_color: str = "#000000", bg_color: str = "#ffffff") -> Image.Image:
        return render_qr(text, pixel_size, ecc=self.ecc, fg_color=fg_color, bg_color=bg_color)

    async def render_async(self, text: str, pixel_size: int,
                           fg_color: str = "#000000", bg_color: str = "#ffffff") -> Image.Image:
        return await asyncio.to_thread(self.render, text, pixel_size, fg_color, bg_color)
