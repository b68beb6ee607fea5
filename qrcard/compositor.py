"""Layered compositor: QR raster + styling -> one flattened RGBA card.

Pass order is fixed, later passes paint over earlier ones:

    1  border   rounded outline at the outer bounds, in the request colour
    2  card     white rounded fill inset by the padding
    3  qr       QR raster at (padding, padding)
    4  caption  optional centred text under the QR box
    5  logo     a) blurred drop shadow + white disc
                b) logo clipped to a circle, centred
                c) white ring on the circle edge

Every invocation allocates its own surface, so concurrent or abandoned
renders never share pixels. In ``compose_async`` the logo decode is awaited
only after passes 1-4 are on the surface.
"""

from PIL import Image, ImageChops, ImageDraw, ImageFilter, ImageFont

from qrcard.encoder import encode_png
from qrcard.errors import InvalidInput, LogoDecodeFailure
from qrcard.generator import QRMatrixSource
from qrcard.geometry import (
    circle_mask,
    fill_circle,
    fill_rounded_rect,
    paint_mask,
    stroke_circle,
    stroke_rounded_rect,
)
from qrcard.logging import audit, get_logger, trace
from qrcard.logo import PendingRaster, RasterImage, square_crop
from qrcard.models import CompositeResult, RenderRequest

log = get_logger("compositor")

WHITE = "#ffffff"
TRANSPARENT = (0, 0, 0, 0)
ECC = "H"


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def _pass_done(request: RenderRequest, name: str) -> None:
    audit("compose.pass", logger=log, name=name, scale=request.scale)


def draw_border(surface: Image.Image, request: RenderRequest) -> None:
    """Pass 1: outline inset by half the border width so it ends at the edge."""
    lay, s = request.layout, request.scale
    half = lay.border_width / 2
    side = lay.canvas_size - lay.border_width
    stroke_rounded_rect(surface, half, half, side, side,
                        lay.border_radius, request.color, lay.border_width, scale=s)


def draw_card(surface: Image.Image, request: RenderRequest) -> None:
    """Pass 2: white card behind the QR box."""
    lay, s = request.layout, request.scale
    origin = lay.padding - lay.card_inset
    side = lay.qr_box_size + 2 * lay.card_inset
    fill_rounded_rect(surface, origin, origin, side, side,
                      lay.border_radius - lay.card_radius_reduction, WHITE, scale=s)


def draw_qr(surface: Image.Image, request: RenderRequest, qr_image: Image.Image) -> None:
    """Pass 3: QR raster into the padded interior.

    A raster of the wrong size is upscaled with nearest-neighbour so module
    edges stay hard; the export tier avoids this by requesting the exact size.
    """
    lay, s = request.layout, request.scale
    box = lay.qr_box_size * s
    if qr_image.size != (box, box):
        log.debug("qr raster %dx%d resized to %d", qr_image.size[0], qr_image.size[1], box)
        qr_image = qr_image.resize((box, box), Image.NEAREST)
    surface.paste(qr_image.convert("RGBA"), (lay.padding * s, lay.padding * s))


def load_font(font_family: str, size_px: int) -> ImageFont.FreeTypeFont:
    """Resolve a font by file name or path, falling back to Pillow's default."""
    try:
        return ImageFont.truetype(font_family, size_px)
    except OSError:
        log.warning("Font %r not found, using the built-in default", font_family)
        return ImageFont.load_default(size=size_px)


def caption_band(request: RenderRequest) -> tuple[int, int, int, int]:
    """Scaled (left, top, right, bottom) box the caption ink may occupy.

    It starts ``caption_offset`` below the QR box, stops at the inner edge of
    the border, and keeps clear of the border's rounded corners.
    """
    lay, s = request.layout, request.scale
    top = (lay.padding + lay.qr_box_size + lay.caption_offset) * s
    bottom = (lay.canvas_size - lay.border_width) * s
    return lay.border_radius * s, top, (lay.canvas_size - lay.border_radius) * s, bottom


def fit_caption_font(font_family: str, size_px: int, text: str,
                     max_height: int) -> ImageFont.FreeTypeFont:
    """Shrink the font so the text's ink below the anchor fits *max_height*.

    Ink height grows linearly with the font size, so one proportional step
    is enough; draw_caption clips any leftover pixel of rounding.
    """
    font = load_font(font_family, size_px)
    ink = font.getbbox(text, anchor="mt")[3]
    if ink <= max_height:
        return font
    size = max(1, size_px * max_height // ink)
    log.debug("caption font %dpx shrunk to %dpx to fit %dpx band", size_px, size, max_height)
    return load_font(font_family, size)


def draw_caption(surface: Image.Image, request: RenderRequest) -> bool:
    """Pass 4: caption centred horizontally below the QR box.

    The font is shrunk to fit the band between the QR box and the border,
    and ink outside the band is dropped, so the border is never painted
    over. Long text is not wrapped. Returns whether anything was drawn.
    """
    caption = request.caption
    if caption is None or not caption.text:
        return False
    lay, s = request.layout, request.scale
    left, top, right, bottom = caption_band(request)
    if bottom <= top or right <= left:
        log.warning("No room for a caption in this layout, skipping %r", caption.text)
        return False

    font = fit_caption_font(caption.font_family, max(1, round(caption.font_size_px * s)),
                            caption.text, bottom - top)
    layer = Image.new("RGBA", surface.size, TRANSPARENT)
    ImageDraw.Draw(layer).text((lay.canvas_size * s / 2, top), caption.text,
                               font=font, fill=lay.caption_color, anchor="mt")
    surface.alpha_composite(layer.crop((left, top, right, bottom)), dest=(left, top))
    return True


def _draw_logo_shadow(surface: Image.Image, request: RenderRequest) -> None:
    lay, s = request.layout, request.scale
    center = lay.canvas_size / 2
    radius = lay.logo_size / 2 + lay.logo_shadow_margin

    cm = circle_mask(surface.size, center, center, radius, scale=s)
    shadow = Image.new("L", surface.size, 0)
    shadow.paste(cm.finish(), cm.origin)
    # canvas shadowBlur maps to a gaussian sigma of blur / 2
    shadow = shadow.filter(ImageFilter.GaussianBlur(lay.logo_shadow_blur * s / 2))
    paint_mask(surface, lay.logo_shadow_color, shadow, (0, 0))

    fill_circle(surface, center, center, radius, WHITE, scale=s)


def _draw_logo_clip(surface: Image.Image, request: RenderRequest, logo: RasterImage) -> None:
    lay, s = request.layout, request.scale
    center = lay.canvas_size / 2
    diameter = lay.logo_size * s

    cm = circle_mask(surface.size, center, center, lay.logo_size / 2, scale=s)
    clip = cm.finish()

    side = max(1, round(diameter))
    square = square_crop(logo.convert("RGBA")).resize((side, side), Image.LANCZOS)

    # Sub-pixel placement: the logo spans exactly [c - d/2, c + d/2].
    k = side / diameter
    off_x = center * s - diameter / 2 - cm.left
    off_y = center * s - diameter / 2 - cm.top
    layer = square.transform(
        clip.size, Image.AFFINE, (k, 0, -k * off_x, 0, k, -k * off_y),
        resample=Image.BICUBIC,
    )
    layer.putalpha(ImageChops.multiply(layer.getchannel("A"), clip))
    surface.alpha_composite(layer, dest=cm.origin)


def _draw_logo_ring(surface: Image.Image, request: RenderRequest) -> None:
    lay, s = request.layout, request.scale
    center = lay.canvas_size / 2
    stroke_circle(surface, center, center, lay.logo_size / 2, WHITE, lay.logo_ring_width, scale=s)


def draw_logo(surface: Image.Image, request: RenderRequest, logo: RasterImage) -> None:
    """Passes 5a-5c."""
    _draw_logo_shadow(surface, request)
    _pass_done(request, "logo_shadow")
    _draw_logo_clip(surface, request, logo)
    _pass_done(request, "logo_clip")
    _draw_logo_ring(surface, request)
    _pass_done(request, "logo_ring")


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def new_surface(request: RenderRequest) -> Image.Image:
    side = request.output_size
    return Image.new("RGBA", (side, side), TRANSPARENT)


def render_base(request: RenderRequest, qr_image: Image.Image) -> Image.Image:
    """Passes 1-4 on a fresh surface."""
    surface = new_surface(request)
    draw_border(surface, request)
    _pass_done(request, "border")
    draw_card(surface, request)
    _pass_done(request, "card")
    draw_qr(surface, request, qr_image)
    _pass_done(request, "qr")
    if draw_caption(surface, request):
        _pass_done(request, "caption")
    log.debug("base passes done for %dx%d surface", *surface.size)
    return surface


def _qr_for(request: RenderRequest, qr_image: Image.Image | None) -> Image.Image:
    if qr_image is not None:
        return qr_image
    return QRMatrixSource(ECC).render(
        request.text, request.layout.qr_box_size * request.scale,
        fg_color=request.color, bg_color=WHITE,
    )


def _skip_logo(error: LogoDecodeFailure) -> str:
    log.error("Logo decode failed, finishing without logo: %s", error)
    audit("compose.logo_skipped", logger=log, error=str(error))
    return str(error)


def _finalize(surface: Image.Image, request: RenderRequest, tier: str,
              logo_error: str | None = None) -> CompositeResult:
    png = encode_png(surface)
    audit("compose.done", logger=log,
          tier=tier, scale=request.scale, size=f"{surface.size[0]}x{surface.size[1]}",
          logo=request.has_logo and logo_error is None,
          caption=request.caption is not None, bytes=len(png))
    return CompositeResult(
        image=surface,
        png_bytes=png,
        scale=request.scale,
        tier=tier,
        logo_error=logo_error,
    )


@trace
def compose(request: RenderRequest, qr_image: Image.Image | None = None,
            tier: str = "preview") -> CompositeResult:
    """Render *request* synchronously.

    The logo must already be decoded: a plain image, or a PendingRaster that
    has finished. A failed PendingRaster finishes the card without the logo.

    Raises:
        InvalidInput: the logo is a PendingRaster still being decoded.
    """
    logo = request.logo
    logo_error = None
    if isinstance(logo, PendingRaster):
        if not logo.done:
            raise InvalidInput("Logo is still decoding; use compose_async()")
        try:
            logo = logo.result()
        except LogoDecodeFailure as e:
            logo, logo_error = None, _skip_logo(e)

    surface = render_base(request, _qr_for(request, qr_image))
    if logo is not None:
        draw_logo(surface, request, logo)
    return _finalize(surface, request, tier, logo_error)


@trace
async def compose_async(request: RenderRequest, qr_image: Image.Image | None = None,
                        source: QRMatrixSource | None = None,
                        tier: str = "preview") -> CompositeResult:
    """Render *request*, awaiting the QR raster and the logo decode.

    Without *qr_image* the raster is requested from *source* at the request's
    full resolution. Logo passes run strictly after passes 1-4; a logo that
    fails to decode is reported in ``CompositeResult.logo_error`` and the card
    is finished without it.
    """
    if qr_image is None:
        source = source or QRMatrixSource(ECC)
        qr_image = await source.render_async(
            request.text, request.layout.qr_box_size * request.scale,
            fg_color=request.color, bg_color=WHITE,
        )

    surface = render_base(request, qr_image)

    logo_error = None
    if request.logo is not None:
        try:
            if isinstance(request.logo, PendingRaster):
                logo = await request.logo
            else:
                logo = request.logo
        except LogoDecodeFailure as e:
            logo_error = _skip_logo(e)
        else:
            draw_logo(surface, request, logo)

    return _finalize(surface, request, tier, logo_error)
