"""PNG serialization of finished rasters."""

import base64
import io

from PIL import Image

from qrcard.logging import audit, get_logger, trace

log = get_logger("encoder")

DOWNLOAD_FILENAME = "qr-custom.png"
DATA_URI_PREFIX = "data:image/png;base64,"


@trace
def encode_png(image: Image.Image) -> bytes:
    """Encode *image* as lossless PNG with fixed options (same pixels, same bytes)."""
    buf = io.BytesIO()
    image.save(buf, format="PNG", optimize=False, compress_level=6)
    data = buf.getvalue()
    audit("png.encoded", logger=log,
          size=f"{image.size[0]}x{image.size[1]}", mode=image.mode, bytes=len(data))
    return data


def to_data_uri(png_bytes: bytes) -> str:
    return DATA_URI_PREFIX + base64.b64encode(png_bytes).decode("ascii")


def decode_png(data: bytes | str) -> Image.Image:
    """Decode PNG bytes or a ``data:image/png`` URI back to an image."""
    if isinstance(data, str):
        if not data.startswith(DATA_URI_PREFIX):
            raise ValueError("Not a PNG data URI")
        data = base64.b64decode(data[len(DATA_URI_PREFIX):])
    img = Image.open(io.BytesIO(data))
    img.load()
    return img
