import io

import pytest
from PIL import Image

from qrcard.models import RenderRequest

URL = "https://example.com"
COLOR = "#144da3"
COLOR_RGBA = (0x14, 0x4D, 0xA3, 255)
RED = (255, 0, 0, 255)
RED_SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="20" height="20" viewBox="0 0 20 20">'
    b'<rect width="20" height="20" fill="#ff0000"/></svg>'
)


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def red_logo() -> Image.Image:
    # Non-square on purpose: the compositor has to square-crop it.
    return Image.new("RGBA", (80, 40), RED)


@pytest.fixture
def red_logo_bytes(red_logo) -> bytes:
    return png_bytes(red_logo)


@pytest.fixture
def request_a() -> RenderRequest:
    return RenderRequest(text=URL, color=COLOR)
