import asyncio
import logging
import math
import threading

import numpy as np
import pytest

from qrcard import compositor
from qrcard.compositor import compose, compose_async
from qrcard.errors import InvalidInput, LogoDecodeFailure
from qrcard.logo import PendingRaster
from qrcard.models import Caption, Layout, RenderRequest

from conftest import COLOR, COLOR_RGBA, RED_SVG, URL


def _outside_radius(size: int, radius: float) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size]
    c = size / 2
    return np.hypot(xx + 0.5 - c, yy + 0.5 - c) > radius


# ---------------------------------------------------------------------------
# Scenario A: no logo, no caption, preview scale
# ---------------------------------------------------------------------------

def test_output_is_square_canvas(request_a):
    result = compose(request_a)
    assert result.size == (230, 230)
    assert result.image.mode == "RGBA"
    assert result.filename == "qr-custom.png"
    assert result.logo_error is None


@pytest.mark.parametrize("scale", [1, 4])
def test_output_size_follows_scale(scale):
    req = RenderRequest(text="hello", color="#00aa33", scale=scale)
    assert compose(req).size == (230 * scale, 230 * scale)


def test_border_midlines_have_request_color(request_a):
    img = compose(request_a).image
    for xy in [(115, 1), (1, 115), (228, 115), (115, 228)]:
        assert img.getpixel(xy) == COLOR_RGBA


def test_border_is_four_pixels_wide(request_a):
    img = compose(request_a).image
    for y in range(4):
        assert img.getpixel((115, y)) == COLOR_RGBA
    # gap between border and card stays transparent
    assert img.getpixel((115, 4))[3] == 0


def test_border_corners_are_rounded(request_a):
    img = compose(request_a).image
    assert img.getpixel((0, 0))[3] == 0
    assert img.getpixel((3, 3))[3] == 0
    # on the stroke band of the radius-20 arc
    corner = img.getpixel((7, 7))
    assert corner[3] > 200
    assert abs(corner[2] - COLOR_RGBA[2]) < 10


def test_card_is_white_around_qr(request_a):
    img = compose(request_a).image
    # between card edge (5) and QR box (10)
    assert img.getpixel((115, 7)) == (255, 255, 255, 255)
    assert img.getpixel((7, 115)) == (255, 255, 255, 255)


def test_qr_is_placed_at_padding(request_a):
    img = compose(request_a).image
    # top-left finder module starts exactly at (padding, padding)
    assert img.getpixel((10, 10)) == COLOR_RGBA
    assert img.getpixel((20, 9)) == (255, 255, 255, 255)


def test_identical_requests_give_identical_png(request_a):
    a = compose(request_a)
    b = compose(RenderRequest(text=URL, color=COLOR))
    assert a.png_bytes == b.png_bytes


def test_different_colors_change_output():
    a = compose(RenderRequest(text=URL, color="#144da3"))
    b = compose(RenderRequest(text=URL, color="#a31414"))
    assert a.png_bytes != b.png_bytes


# ---------------------------------------------------------------------------
# Scenario B: logo
# ---------------------------------------------------------------------------

def test_logo_is_circular_with_white_ring(request_a, red_logo):
    req = RenderRequest(text=URL, color=COLOR, logo=red_logo)
    img = compose(req).image
    r, g, b, a = img.getpixel((115, 115))
    assert r > 240 and g < 15 and b < 15 and a == 255
    # ring straddles radius 29.5
    assert img.getpixel((144, 115)) == (255, 255, 255, 255)
    assert img.getpixel((115, 85)) == (255, 255, 255, 255)
    # where a square logo's corner would be, there is only the white disc
    assert img.getpixel((138, 138)) == (255, 255, 255, 255)
    assert img.getpixel((91, 91)) == (255, 255, 255, 255)


def test_logo_changes_only_the_center(request_a, red_logo):
    plain = np.asarray(compose(request_a).image)
    with_logo = np.asarray(compose(RenderRequest(text=URL, color=COLOR, logo=red_logo)).image)

    inner = ~_outside_radius(230, 59 / 2 - 3)
    assert np.any(plain[inner] != with_logo[inner])

    # outside logo circle + shadow disc + blur halo nothing moves
    outer = _outside_radius(230, 60)
    assert np.array_equal(plain[outer], with_logo[outer])


def test_logo_keeps_proportions_at_export_scale(red_logo):
    req = RenderRequest(text=URL, color=COLOR, logo=red_logo, scale=4)
    img = compose(req).image
    assert img.size == (920, 920)
    r, g, b, _ = img.getpixel((460, 460))
    assert r > 240 and g < 15 and b < 15
    # ring at radius 29.5 * 4 = 118
    assert img.getpixel((460 + 118, 460)) == (255, 255, 255, 255)


# ---------------------------------------------------------------------------
# Caption
# ---------------------------------------------------------------------------

def test_caption_draws_below_qr_only(request_a):
    plain = np.asarray(compose(request_a).image)
    caption = Caption(text="SCAN ME", font_family="no-such-font.ttf", font_size_px=12)
    captioned = np.asarray(compose(RenderRequest(text=URL, color=COLOR, caption=caption)).image)

    assert np.array_equal(plain[:220], captioned[:220])
    assert np.any(plain[220:] != captioned[220:])


@pytest.mark.parametrize("scale", [1, 4])
@pytest.mark.parametrize("text", ["SCAN ME", "a caption far too long to fit under the code at any size"])
def test_caption_stays_between_qr_and_border(scale, text):
    plain_img = compose(RenderRequest(text=URL, color=COLOR, scale=scale)).image
    caption = Caption(text=text, font_family="no-such-font.ttf", font_size_px=12)
    img = compose(RenderRequest(text=URL, color=COLOR, caption=caption, scale=scale)).image
    plain, captioned = np.asarray(plain_img), np.asarray(img)

    top, bottom = 222 * scale, 226 * scale
    assert np.array_equal(plain[:top], captioned[:top])
    assert np.array_equal(plain[bottom:], captioned[bottom:])
    # clear of the rounded border corners
    assert np.array_equal(plain[:, :20 * scale], captioned[:, :20 * scale])
    assert np.array_equal(plain[:, 210 * scale:], captioned[:, 210 * scale:])
    assert np.any(plain[top:bottom] != captioned[top:bottom])

    for x in range(95 * scale, 136 * scale):
        assert img.getpixel((x, 228 * scale)) == COLOR_RGBA


def test_empty_caption_text_is_skipped(request_a):
    plain = compose(request_a)
    empty = compose(RenderRequest(text=URL, color=COLOR, caption=Caption(text="")))
    assert plain.png_bytes == empty.png_bytes


# ---------------------------------------------------------------------------
# Async path
# ---------------------------------------------------------------------------

def test_async_without_logo_matches_sync(request_a):
    sync_result = compose(request_a)
    async_result = asyncio.run(compose_async(request_a))
    assert sync_result.png_bytes == async_result.png_bytes


def test_async_waits_for_pending_logo(red_logo, red_logo_bytes):
    pending = PendingRaster.from_bytes(red_logo_bytes)
    assert not pending.done
    result = asyncio.run(compose_async(RenderRequest(text=URL, color=COLOR, logo=pending)))
    assert pending.done
    expected = compose(RenderRequest(text=URL, color=COLOR, logo=red_logo))
    assert result.png_bytes == expected.png_bytes


def test_svg_logo_is_painted():
    pending = PendingRaster.from_bytes(RED_SVG)
    result = asyncio.run(compose_async(RenderRequest(text=URL, color=COLOR, logo=pending)))
    assert result.logo_error is None
    r, g, b, a = result.image.getpixel((115, 115))
    assert r > 240 and g < 15 and b < 15 and a == 255
    assert result.image.getpixel((144, 115)) == (255, 255, 255, 255)


def test_undecodable_logo_falls_back_to_plain_card(request_a):
    pending = PendingRaster.from_bytes(b"definitely not an image")
    result = asyncio.run(compose_async(RenderRequest(text=URL, color=COLOR, logo=pending)))
    assert result.logo_error is not None
    assert result.png_bytes == compose(request_a).png_bytes


def test_failed_logo_in_sync_path_also_falls_back(request_a):
    pending = PendingRaster.from_bytes(b"")
    with pytest.raises(LogoDecodeFailure):
        asyncio.run(pending.wait())
    result = compose(RenderRequest(text=URL, color=COLOR, logo=pending))
    assert result.logo_error
    assert result.png_bytes == compose(request_a).png_bytes


def test_sync_compose_refuses_unresolved_logo(red_logo_bytes):
    pending = PendingRaster.from_bytes(red_logo_bytes)
    with pytest.raises(InvalidInput):
        compose(RenderRequest(text=URL, color=COLOR, logo=pending))


def test_logo_passes_run_after_qr_and_caption(monkeypatch, red_logo_bytes):
    events = []

    def record(name, fn):
        def wrapper(*args, **kwargs):
            events.append(name)
            return fn(*args, **kwargs)
        return wrapper

    for name in ("draw_border", "draw_card", "draw_qr", "draw_caption", "draw_logo"):
        monkeypatch.setattr(compositor, name, record(name, getattr(compositor, name)))

    pending = PendingRaster.from_bytes(red_logo_bytes)
    original_wait = pending.wait

    async def traced_wait():
        events.append("logo_awaited")
        return await original_wait()

    monkeypatch.setattr(pending, "wait", traced_wait)

    req = RenderRequest(text=URL, color=COLOR, logo=pending, caption=Caption(text="hi"))
    asyncio.run(compose_async(req))
    assert events == ["draw_border", "draw_card", "draw_qr", "draw_caption", "logo_awaited", "draw_logo"]


def test_each_render_owns_its_surface(request_a):
    async def both():
        return await asyncio.gather(compose_async(request_a), compose_async(request_a))

    a, b = asyncio.run(both())
    assert a.image is not b.image
    assert a.png_bytes == b.png_bytes


def test_custom_layout_is_respected():
    layout = Layout(qr_box_size=100, padding=20)
    result = compose(RenderRequest(text="x", color="#000000", layout=layout, scale=2))
    assert result.size == (280, 280)
    assert math.isclose(layout.canvas_size * 2, result.size[0])


def test_each_pass_is_audited_in_order(caplog, red_logo):
    caplog.set_level(logging.DEBUG, logger="qrcard")
    compose(RenderRequest(text=URL, color=COLOR, logo=red_logo, caption=Caption(text="hi")))
    passes = [r.ctx["name"] for r in caplog.records if getattr(r, "event", None) == "compose.pass"]
    assert passes == ["border", "card", "qr", "caption", "logo_shadow", "logo_clip", "logo_ring"]


def test_caption_pass_not_audited_without_caption(caplog, request_a):
    caplog.set_level(logging.DEBUG, logger="qrcard")
    compose(request_a)
    passes = [r.ctx["name"] for r in caplog.records if getattr(r, "event", None) == "compose.pass"]
    assert passes == ["border", "card", "qr"]


def test_passes_paint_on_the_event_loop_thread(monkeypatch, red_logo_bytes):
    painting_threads = set()

    def record(fn):
        def wrapper(*args, **kwargs):
            painting_threads.add(threading.get_ident())
            return fn(*args, **kwargs)
        return wrapper

    for name in ("draw_border", "draw_card", "draw_qr", "draw_caption", "draw_logo"):
        monkeypatch.setattr(compositor, name, record(getattr(compositor, name)))

    async def run():
        loop_thread = threading.get_ident()
        req = RenderRequest(text=URL, color=COLOR, logo=PendingRaster.from_bytes(red_logo_bytes),
                            caption=Caption(text="hi"))
        await compose_async(req)
        return loop_thread

    loop_thread = asyncio.run(run())
    assert painting_threads == {loop_thread}
