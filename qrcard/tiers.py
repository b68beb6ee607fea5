"""Resolution tiers: the on-screen preview and the high-resolution export.

Both tiers share one Layout; only the scale and the QR raster fidelity
differ. The export tier asks the QR Matrix Source for a raster at the full
export size instead of upscaling the preview raster.
"""

import asyncio
import dataclasses
from dataclasses import dataclass

from qrcard.compositor import WHITE, compose, compose_async
from qrcard.errors import InvalidInput
from qrcard.generator import QRMatrixSource
from qrcard.logging import audit, get_logger, trace
from qrcard.models import CompositeResult, RenderRequest

log = get_logger("tiers")

EXPORT_SCALE = 4


@dataclass(frozen=True)
class RenderTier:
    name: str
    scale: int
    refetch_qr: bool


PREVIEW = RenderTier("preview", 1, False)
EXPORT = RenderTier("export", EXPORT_SCALE, True)

TIERS = {t.name: t for t in (PREVIEW, EXPORT)}


def tier_for(name: str, scale: int | None = None) -> RenderTier:
    """Look up a tier by name, optionally overriding its scale."""
    try:
        tier = TIERS[name]
    except KeyError:
        raise InvalidInput(f"Unknown render tier {name!r}; expected one of {sorted(TIERS)}") from None
    if scale is not None:
        if scale < 1:
            raise InvalidInput(f"Scale must be a positive integer, got {scale}")
        tier = dataclasses.replace(tier, scale=scale)
    return tier


@trace
def render_preview(request: RenderRequest, source: QRMatrixSource | None = None) -> CompositeResult:
    """Synchronous preview render at scale 1.

    The QR raster is rendered at the on-screen box size. A pending logo must
    have finished decoding (see ``compose``).
    """
    source = source or QRMatrixSource("H")
    request = request.with_scale(PREVIEW.scale)
    qr = source.render(request.text, request.layout.qr_box_size, fg_color=request.color, bg_color=WHITE)
    return compose(request, qr_image=qr, tier=PREVIEW.name)


@trace
async def render_export(request: RenderRequest, scale: int = EXPORT_SCALE,
                        source: QRMatrixSource | None = None) -> CompositeResult:
    """High-resolution export: a fresh QR raster at ``qr_box_size * scale``.

    Waits for the QR render to complete before compositing, then for the logo
    decode before the logo passes.
    """
    tier = tier_for(EXPORT.name, scale)
    source = source or QRMatrixSource("H")
    request = request.with_scale(tier.scale)
    qr = await source.render_async(
        request.text, request.layout.qr_box_size * tier.scale,
        fg_color=request.color, bg_color=WHITE,
    )
    audit("export.qr_ready", logger=log, scale=tier.scale, qr_px=qr.size[0])
    return await compose_async(request, qr_image=qr, source=source, tier=tier.name)


async def render_tier_async(request: RenderRequest, tier: RenderTier,
                            source: QRMatrixSource | None = None) -> CompositeResult:
    if tier.refetch_qr:
        return await render_export(request, scale=tier.scale, source=source)

    source = source or QRMatrixSource("H")
    request = request.with_scale(tier.scale)
    qr = source.render(request.text, request.layout.qr_box_size, fg_color=request.color, bg_color=WHITE)
    return await compose_async(request, qr_image=qr, source=source, tier=tier.name)


def download(request: RenderRequest, tier: RenderTier = PREVIEW,
             source: QRMatrixSource | None = None) -> CompositeResult:
    """Produce the saveable artifact for *tier*, blocking until it is ready.

    For use outside a running event loop (CLI, scripts).
    """
    return asyncio.run(render_tier_async(request, tier, source=source))
