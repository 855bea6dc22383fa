"""qrgen CLI: encode, render and serve QR codes."""

import argparse
import json
import sys
from pathlib import Path

from qrgen.config import Settings
from qrgen.errors import QRGenError
from qrgen.logging import audit, get_logger, setup_logging

log = get_logger("cli")


def _load_data(args):
    """Payload data from ``--data-file`` or the positional argument (JSON or plain string)."""
    raw = Path(args.data_file).read_text() if args.data_file else args.data
    if raw is None:
        raise SystemExit("either DATA or --data-file is required")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    # "12345" is a phone number, not a JSON number
    return data if isinstance(data, dict) else raw


def _style(args) -> dict:
    style = {
        "size": args.size,
        "error_correction": args.ecc,
        "format": args.format,
        "foreground": args.fg,
        "background": args.bg,
    }
    if args.logo_url:
        style["logo"] = {"url": args.logo_url, "max_size": args.logo_size, "position": args.logo_position}
    return style


def cmd_encode(args):
    """Print the encoded content for a payload."""
    from qrgen.encoder import encode_content

    print(encode_content(args.type, _load_data(args)))


def cmd_estimate(args):
    """Estimate version and grid size for a piece of content."""
    from qrgen.capacity import estimate

    est = estimate(args.content, args.ecc)
    print(f"Length:   {est.length}")
    print(f"Version:  {est.version} ({est.modules}x{est.modules} modules, ECC {args.ecc})")
    print(f"Capacity: {est.capacity} alphanumeric characters{'' if est.fits else ' (exceeded)'}")


def cmd_generate(args, settings):
    """Generate a QR code image."""
    from qrgen.models import request_from_dict
    from qrgen.service import build_service

    service = build_service(settings)
    request = request_from_dict({
        "type": args.type,
        "mode": "dynamic" if args.dynamic else "static",
        "data": _load_data(args),
        "style": _style(args),
        "name": args.name,
    })
    result = service.generate(request, args.actor)

    output = Path(args.output or f"output/{result.id}.{result.format.value}")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(service.image_bytes(result.id))

    print(f"Generated: {output} ({result.size}x{result.size}, {result.byte_size} bytes)")
    print(f"  Version: {result.version} ({result.modules}x{result.modules}), ECC: {result.error_correction}")
    print(f"  Took:    {result.elapsed_ms:.1f}ms")
    if result.short_url:
        print(f"  Short:   {result.short_url}")


def cmd_batch(args, settings):
    """Generate every row of a CSV import."""
    from qrgen.batch import BatchCoordinator, requests_from_csv
    from qrgen.service import build_service

    requests = requests_from_csv(Path(args.csv).read_text())
    service = build_service(settings)
    coordinator = BatchCoordinator(service, settings.batch_max_concurrency, settings.batch_timeout)
    outcome = coordinator.generate_batch(
        requests, args.actor, max_concurrency=args.concurrency, timeout=args.timeout,
    )

    out_dir = Path(args.output)
    out_dir.mkdir(parents=True, exist_ok=True)
    for s in outcome.successful:
        path = out_dir / f"{s.index:03d}_{s.result.id}.{s.result.format.value}"
        path.write_bytes(service.image_bytes(s.result.id))
        print(f"  [{s.index:3d}] OK   {path}")
    for f in outcome.failed:
        print(f"  [{f.index:3d}] FAIL {f.reason}")
    print(f"{len(outcome.successful)}/{outcome.total} generated.")
    sys.exit(0 if not outcome.failed else 1)


def cmd_verify(args):
    """Verify a QR code image."""
    from qrgen.verify import verify

    r = verify(Path(args.image).read_bytes(), expected_data=args.expected)
    status = "PASS" if r.success else "FAIL"
    print(f"  [{r.decoder:12s}] {status} | {r.decode_time_ms:6.1f}ms | {r.decoded_data or r.error}")
    sys.exit(0 if r.success else 1)


def cmd_serve(args, settings):
    """Start the HTTP server."""
    from qrgen.server import create_app
    from qrgen.service import build_service

    app = create_app(build_service(settings), settings.batch_max_concurrency, settings.batch_timeout)
    print(f"Starting qrgen server on http://{args.host}:{args.port}")
    print(f"Base URL: {settings.public_base_url}")
    app.run(host=args.host, port=args.port, debug=args.debug)


def _add_payload_args(p):
    p.add_argument("type", help="QR type (url, vcard, wifi, ...)")
    p.add_argument("data", nargs="?", default=None, help="Payload as JSON, or a bare string for single-field types")
    p.add_argument("--data-file", default=None, help="Read the payload JSON from a file")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="qrgen", description="qrgen: typed QR code generation")

    # Global logging flags
    parser.add_argument("-V", "--verbose", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-file", default=None, help="Write JSON logs to file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- encode ---
    p_enc = subparsers.add_parser("encode", help="Print the encoded content of a payload")
    _add_payload_args(p_enc)

    # --- generate ---
    p_gen = subparsers.add_parser("generate", help="Generate a QR code image")
    _add_payload_args(p_gen)
    p_gen.add_argument("-o", "--output", default=None, help="Output file path")
    p_gen.add_argument("-s", "--size", type=int, default=512, help="Image side in pixels (64-2048)")
    p_gen.add_argument("-e", "--ecc", default="M", choices=["L", "M", "Q", "H"], help="Error correction level")
    p_gen.add_argument("-f", "--format", default="png", choices=["png", "svg"], help="Image format")
    p_gen.add_argument("--fg", default="#000000", help="Foreground colour (hex)")
    p_gen.add_argument("--bg", default="#ffffff", help="Background colour (hex)")
    p_gen.add_argument("--logo-url", default=None, help="Logo to place on the code (PNG output only)")
    p_gen.add_argument("--logo-size", type=int, default=None, help="Logo side in pixels (max 20%% of size)")
    p_gen.add_argument("--logo-position", default="center",
                       choices=["center", "top-left", "top-right", "bottom-left", "bottom-right"])
    p_gen.add_argument("--dynamic", action="store_true", help="Encode a short URL instead of the content")
    p_gen.add_argument("--name", default=None, help="Display name")
    p_gen.add_argument("--actor", default="cli", help="Actor id recorded with the code")

    # --- batch ---
    p_batch = subparsers.add_parser("batch", help="Generate QR codes from a CSV file")
    p_batch.add_argument("csv", help="CSV with name,type,data[,mode,tags] columns")
    p_batch.add_argument("-o", "--output", default="output/batch", help="Output directory")
    p_batch.add_argument("-c", "--concurrency", type=int, default=None, help="Items generated at once")
    p_batch.add_argument("-t", "--timeout", type=float, default=None, help="Per-item timeout in seconds")
    p_batch.add_argument("--actor", default="cli", help="Actor id recorded with the codes")

    # --- estimate ---
    p_est = subparsers.add_parser("estimate", help="Estimate QR version for some content")
    p_est.add_argument("content", help="Content to measure")
    p_est.add_argument("-e", "--ecc", default="M", choices=["L", "M", "Q", "H"])

    # --- verify ---
    p_ver = subparsers.add_parser("verify", help="Verify a QR code image")
    p_ver.add_argument("image", help="Path to QR code image")
    p_ver.add_argument("--expected", default=None, help="Expected decoded data (fails if mismatch)")

    # --- serve ---
    p_serve = subparsers.add_parser("serve", help="Start the HTTP server")
    p_serve.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    p_serve.add_argument("--port", type=int, default=8080, help="Port to listen on")
    p_serve.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        parser.error(str(exc))

    # Setup logging before any command runs
    level = "DEBUG" if args.verbose else settings.log_level
    setup_logging(level=level, log_file=args.log_file)
    audit("cli.start", logger=log, command=args.command, verbose=args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "encode": lambda: cmd_encode(args),
        "estimate": lambda: cmd_estimate(args),
        "generate": lambda: cmd_generate(args, settings),
        "batch": lambda: cmd_batch(args, settings),
        "verify": lambda: cmd_verify(args),
        "serve": lambda: cmd_serve(args, settings),
    }
    try:
        commands[args.command]()
    except QRGenError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)
    audit("cli.done", logger=log, command=args.command)


if __name__ == "__main__":
    main()
