"""qrcard CLI: render styled QR cards and check that they scan."""

import argparse
import sys
from pathlib import Path

from PIL import Image

from qrcard.errors import QRCardError
from qrcard.logging import audit, get_logger, setup_logging

log = get_logger("cli")


def _build_request(args):
    from qrcard.logo import PendingRaster
    from qrcard.models import Caption, RenderRequest

    logo = PendingRaster.from_file(args.logo) if args.logo else None
    caption = None
    if args.caption:
        caption = Caption(text=args.caption, font_family=args.font, font_size_px=args.font_size)
    color = args.color if args.color.startswith("#") else f"#{args.color}"
    return RenderRequest(text=args.text, color=color, logo=logo, caption=caption)


def cmd_render(args):
    """Render a QR card to PNG."""
    from qrcard.tiers import download, tier_for

    if not args.text:
        # Nothing to encode: never invoke the compositor, never write a file.
        print("Enter text to generate a QR code.", file=sys.stderr)
        sys.exit(1)

    request = _build_request(args)
    tier = tier_for(args.tier, args.scale)
    result = download(request, tier)

    if args.data_uri:
        print(result.data_uri)
        return

    output = Path(args.output) if args.output else Path(result.filename)
    path = result.save(output.parent, output.name)
    print(f"Saved: {path} ({result.size[0]}x{result.size[1]}, tier={result.tier})")
    if result.logo_error:
        print(f"  Logo skipped: {result.logo_error}")


def cmd_verify(args):
    """Scan a rendered card."""
    from qrcard.verify import prepare_for_scan, verify

    img = Image.open(args.image)
    results = verify(prepare_for_scan(img), expected_data=args.expected)

    all_pass = True
    for r in results:
        status = "PASS" if r.success else "FAIL"
        if not r.success:
            all_pass = False
        print(f"  [{r.decoder:12s}] {status} | {r.decode_time_ms:6.1f}ms | {r.decoded_data or r.error}")

    sys.exit(0 if all_pass else 1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qrcard", description="Styled QR cards with logo and caption")

    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")
    parser.add_argument("--json-logs", action="store_true", help="JSON log lines on the console")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- render ---
    p_render = subparsers.add_parser("render", help="Render a QR card PNG")
    p_render.add_argument("text", help="Text or URL to encode")
    p_render.add_argument("-o", "--output", default=None, help="Output file path (default: qr-custom.png)")
    p_render.add_argument("-c", "--color", default="#144da3", help="Foreground colour, '#RRGGBB'")
    p_render.add_argument("--logo", default=None, help="Logo image file")
    p_render.add_argument("--caption", default=None, help="Caption text under the QR box")
    p_render.add_argument("--font", default="DejaVuSans.ttf", help="Caption font file or name")
    p_render.add_argument("--font-size", type=float, default=12, help="Caption font size in preview pixels")
    p_render.add_argument("--tier", default="preview", choices=["preview", "export"], help="Resolution tier")
    p_render.add_argument("--scale", type=int, default=None, help="Override the tier's scale factor")
    p_render.add_argument("--data-uri", action="store_true", help="Print a data URI instead of saving")

    # --- verify ---
    p_ver = subparsers.add_parser("verify", help="Scan a rendered card")
    p_ver.add_argument("image", help="Path to a rendered card PNG")
    p_ver.add_argument("--expected", default=None, help="Expected decoded data (fails if mismatch)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    level = "DEBUG" if args.verbose else "INFO"
    setup_logging(level=level, log_file=args.log_file, json_format=args.json_logs)
    audit("cli.start", logger=log, command=args.command, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "render": cmd_render,
        "verify": cmd_verify,
    }
    try:
        commands[args.command](args)
    except QRCardError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
