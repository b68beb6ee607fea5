"""Scan verification and tier consistency checks for finished cards."""

import time
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image, ImageOps
from skimage.metrics import structural_similarity

from qrcard.logging import audit, get_logger, trace
from qrcard.models import CompositeResult, Layout

log = get_logger("verify")


@dataclass
class ScanResult:
    """Result of a single scan attempt."""
    success: bool
    decoded_data: str | None = None
    decode_time_ms: float = 0.0
    decoder: str = ""
    error: str | None = None


def flatten(image: Image.Image, background: str = "#ffffff") -> Image.Image:
    """Composite an RGBA card onto an opaque background."""
    rgba = image.convert("RGBA")
    base = Image.new("RGBA", rgba.size, background)
    base.alpha_composite(rgba)
    return base.convert("RGB")


@trace
def prepare_for_scan(card: CompositeResult | Image.Image, layout: Layout | None = None,
                     scale: int | None = None) -> Image.Image:
    """Crop the QR box out of a card and give it a white quiet zone.

    The card's own padding is narrower than the quiet zone scanners expect,
    and the coloured border sits right outside it.
    """
    layout = layout or Layout()
    if isinstance(card, CompositeResult):
        scale = scale or card.scale
        image = card.image
    else:
        image = card
        scale = scale or max(1, image.size[0] // layout.canvas_size)

    flat = flatten(image)
    start = layout.padding * scale
    end = start + layout.qr_box_size * scale
    qr = flat.crop((start, start, end, end))
    quiet = max(8, (layout.qr_box_size * scale) // 6)
    return ImageOps.expand(qr, border=quiet, fill="white")


def _read_pyzbar(image: Image.Image) -> str | None:
    from pyzbar.pyzbar import decode as pyzbar_decode

    symbols = pyzbar_decode(image.convert("RGB"))
    return symbols[0].data.decode("utf-8", errors="replace") if symbols else None


def _read_opencv(image: Image.Image) -> str | None:
    gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    data, _points, _ = cv2.QRCodeDetector().detectAndDecode(gray)
    return data or None


def scan_with(decoder: str, read, image: Image.Image) -> ScanResult:
    """Time one decoder over a prepared card crop and audit the outcome.

    Decoder errors, including a missing native library, become a failed
    ScanResult so one broken decoder does not stop the others.
    """
    start = time.perf_counter()
    try:
        data = read(image)
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        audit("scan.error", logger=log, decoder=decoder, error=str(e), time_ms=round(elapsed, 1))
        return ScanResult(success=False, decode_time_ms=elapsed, decoder=decoder, error=str(e))

    elapsed = (time.perf_counter() - start) * 1000
    if data:
        result = ScanResult(success=True, decoded_data=data, decode_time_ms=elapsed, decoder=decoder)
    else:
        result = ScanResult(success=False, decode_time_ms=elapsed, decoder=decoder,
                            error="No QR code detected")
    audit("scan.verified", logger=log, decoder=decoder, success=result.success,
          time_ms=round(elapsed, 1), data=(data or "")[:80])
    return result


@trace
def scan_pyzbar(image: Image.Image) -> ScanResult:
    """Scan a card crop with ZBar."""
    return scan_with("pyzbar/zbar", _read_pyzbar, image)


@trace
def scan_opencv(image: Image.Image) -> ScanResult:
    """Scan a card crop with OpenCV's QR detector."""
    return scan_with("opencv", _read_opencv, image)


SCANNERS = {"opencv": scan_opencv, "pyzbar": scan_pyzbar}


@trace
def verify(image: Image.Image, expected_data: str | None = None,
           decoders: tuple[str, ...] = ("opencv", "pyzbar")) -> list[ScanResult]:
    """Run the selected decoders on an already prepared image.

    A decode that does not match *expected_data* counts as a failure.
    """
    results = []
    for name in decoders:
        result = SCANNERS[name](image)
        if result.success and expected_data and result.decoded_data != expected_data:
            result.success = False
            result.error = f"Data mismatch: got '{result.decoded_data}', expected '{expected_data}'"
        results.append(result)
    return results


@trace
def verify_card(card: CompositeResult, expected_data: str | None = None,
                decoders: tuple[str, ...] = ("opencv", "pyzbar"),
                layout: Layout | None = None) -> list[ScanResult]:
    """Crop, pad and scan a finished card."""
    return verify(prepare_for_scan(card, layout), expected_data=expected_data, decoders=decoders)


def downscale(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Area-average *image* down to *size* (for comparing tiers)."""
    return image.convert("RGBA").resize(size, Image.BOX)


@trace
def tier_similarity(preview: Image.Image, export: Image.Image) -> float:
    """SSIM (0.0-1.0) between a preview card and an export card brought to preview size."""
    small = downscale(export, preview.size)
    a = np.array(flatten(preview).convert("L"))
    b = np.array(flatten(small).convert("L"))
    score = structural_similarity(a, b, data_range=255)
    score = max(0.0, min(1.0, float(score)))
    audit("tiers.compared", logger=log, preview=f"{preview.size[0]}", export=f"{export.size[0]}",
          ssim=round(score, 4))
    return score


def mean_abs_diff(a: Image.Image, b: Image.Image) -> float:
    """Mean absolute per-channel difference between two same-size images."""
    arr_a = np.asarray(a.convert("RGBA"), dtype=np.int16)
    arr_b = np.asarray(b.convert("RGBA"), dtype=np.int16)
    return float(np.abs(arr_a - arr_b).mean())
