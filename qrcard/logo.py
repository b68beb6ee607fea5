"""Logo loading: decode user-supplied bytes into a drawable RGBA bitmap."""

import asyncio
import io
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from qrcard.errors import LogoDecodeFailure
from qrcard.logging import audit, get_logger, trace

log = get_logger("logo")

# A decoded logo bitmap. Always RGBA once it leaves decode_logo().
RasterImage = Image.Image

# SVG logos are rasterized at this width; the compositor scales down from it.
SVG_RASTER_WIDTH = 512


def _looks_like_svg(data: bytes) -> bool:
    head = data[:256].lstrip().lower()
    return head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:1024].lower())


def rasterize_svg(data: bytes, width: int = SVG_RASTER_WIDTH) -> bytes:
    """Render an SVG document to PNG bytes, keeping its aspect ratio."""
    try:
        import cairosvg

        return cairosvg.svg2png(bytestring=data, output_width=width)
    except (SyntaxError, ValueError, OSError) as e:
        audit("logo.decode_failed", logger=log, bytes=len(data), format="SVG", error=str(e))
        raise LogoDecodeFailure(f"Cannot rasterize SVG logo: {e}") from e


@trace
def decode_logo(data: bytes) -> RasterImage:
    """Decode logo bytes (PNG, JPEG, GIF, WebP, SVG, ...) to RGBA.

    SVG input is rasterized first. EXIF orientation is applied so photos
    come out upright.

    Raises:
        LogoDecodeFailure: empty, malformed or otherwise undecodable input.
    """
    if not data:
        raise LogoDecodeFailure("Logo data is empty")
    source_format = None
    if _looks_like_svg(data):
        data = rasterize_svg(data)
        source_format = "SVG"

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        fmt = source_format or img.format or "unknown"
        img = ImageOps.exif_transpose(img)
        rgba = img.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        audit("logo.decode_failed", logger=log, bytes=len(data), error=str(e))
        raise LogoDecodeFailure(f"Cannot decode logo image: {e}") from e

    audit("logo.decoded", logger=log,
          format=fmt, size=f"{rgba.size[0]}x{rgba.size[1]}", bytes=len(data))
    return rgba


def load_logo_file(path: str | Path) -> bytes:
    """Read a user-selected logo file."""
    return Path(path).read_bytes()


def square_crop(image: Image.Image) -> Image.Image:
    """Center-crop *image* to a square of its shorter side."""
    w, h = image.size
    if w == h:
        return image
    side = min(w, h)
    left = (w - side) // 2
    top = (h - side) // 2
    return image.crop((left, top, left + side, top + side))


class PendingRaster:
    """A logo whose decode may not have finished yet.

    Awaiting it yields the decoded RGBA bitmap or raises LogoDecodeFailure.
    The decode runs at most once; later awaits return the cached outcome.
    """

    def __init__(self, data: bytes | None = None, image: RasterImage | None = None):
        if data is None and image is None:
            raise ValueError("PendingRaster needs either bytes or a decoded image")
        self._data = data
        self._image = image
        self._error: LogoDecodeFailure | None = None
        self._lock: asyncio.Lock | None = None

    @classmethod
    def from_bytes(cls, data: bytes) -> "PendingRaster":
        return cls(data=data)

    @classmethod
    def from_file(cls, path: str | Path) -> "PendingRaster":
        return cls(data=load_logo_file(path))

    @classmethod
    def resolved(cls, image: RasterImage) -> "PendingRaster":
        return cls(image=image.convert("RGBA"))

    @property
    def done(self) -> bool:
        return self._image is not None or self._error is not None

    def result(self) -> RasterImage:
        """Return the decoded image; only valid once the decode has finished."""
        if not self.done:
            raise RuntimeError("Logo decode has not completed")
        if self._error is not None:
            raise self._error
        return self._image

    async def wait(self) -> RasterImage:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if not self.done:
                try:
                    self._image = await asyncio.to_thread(decode_logo, self._data)
                except LogoDecodeFailure as e:
                    self._error = e
                self._data = None
        return self.result()

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self):
        state = "resolved" if self._image is not None else "failed" if self._error else "pending"
        return f"<PendingRaster {state}>"
