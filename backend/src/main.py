"""Command line entry point: JPEG in, kaleidoscope JPEG out.

Usage:
    kaleido photo.jpg out.jpg -n 6 --dim 0.5 --shrink 0.3
    kaleido photos/ mosaics/            # every .jpg/.jpeg in photos/
"""

import argparse
import logging
import math
import os
import platform
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import init_diagnostics, setup_console_logging
from effects.fx import kaleidoscope
from engine.pipeline import apply_chain
from imaging.buffer import AllocationError
from imaging.codec import JPEG_QUALITY, CodecError, decode, encode
from security import (
    ALLOWED_EXTENSIONS,
    strip_pii,
    validate_chain_depth,
    validate_input_path,
    validate_output_path,
)

logger = logging.getLogger(__name__)

CONSENT_PATH = os.path.expanduser("~/.kaleido/telemetry_consent")

# Resource limits (Linux/macOS only)
MAX_MEMORY_BYTES = 4 * 1024 * 1024 * 1024  # 4 GB

DEFAULT_SLICES = kaleidoscope.PARAMS["slices"]["default"]
DEFAULT_DIM = kaleidoscope.PARAMS["dim"]["default"]
DEFAULT_SHRINK = kaleidoscope.PARAMS["shrink"]["default"]


def init_sentry():
    """Consent-gated Sentry init. Without consent the DSN stays empty (no-op client)."""
    dsn = ""
    if os.path.exists(CONSENT_PATH) and Path(CONSENT_PATH).read_text().strip() == "yes":
        dsn = os.environ.get("SENTRY_DSN", "")

    sentry_sdk.init(
        dsn=dsn,
        release=f"kaleido@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        traces_sample_rate=0.1,
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def _apply_resource_limits():
    """Cap address space. Skipped on Windows."""
    if platform.system() == "Windows":
        return
    try:
        import resource

        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        resource.setrlimit(resource.RLIMIT_AS, (MAX_MEMORY_BYTES, hard))
    except (ImportError, ValueError, OSError):
        print("WARNING: Could not set memory limit", file=sys.stderr)


def build_chain(slices: int, dim: float, shrink: float) -> list[dict]:
    return [
        {
            "effect_id": kaleidoscope.EFFECT_ID,
            "params": {"slices": slices, "dim": dim, "shrink": shrink},
        }
    ]


def collect_jobs(input_path: str, output_path: str) -> list[tuple[str, str]]:
    """Pair every input image with its output path.

    A directory input maps each image inside it to the same file name in
    the output directory.

    Raises:
        ValueError: If a directory input is paired with a non-directory output.
    """
    src = Path(input_path)
    dst = Path(output_path).absolute()
    if not src.is_dir():
        return [(str(src), str(dst))]

    if not dst.is_dir():
        raise ValueError(f"Output must be an existing directory: {output_path}")
    return [
        (str(f), str(dst / f.name))
        for f in sorted(src.iterdir())
        if f.is_file() and f.suffix.lower() in ALLOWED_EXTENSIONS
    ]


def process_file(
    input_path: str,
    output_path: str,
    chain: list[dict],
    quality: int = JPEG_QUALITY,
) -> bool:
    """Decode, transform and encode one image. Returns True on success."""
    name = os.path.basename(input_path)
    errors = validate_input_path(input_path) + validate_output_path(output_path)
    if errors:
        for err in errors:
            logger.error("%s: %s", name, err)
        return False

    try:
        buffer = decode(input_path)
    except (CodecError, AllocationError) as e:
        logger.error("%s: %s", name, e)
        return False

    result = apply_chain(buffer, chain)
    if not result.ok:
        logger.error("%s: %s failed (%s)", name, result.failed_effect, result.error)
        return False

    try:
        written = encode(output_path, buffer, quality=quality)
    except CodecError as e:
        logger.error("%s: %s", name, e)
        return False

    logger.info(
        "%s -> %s (%d bytes, %.0fms)",
        name,
        os.path.basename(output_path),
        written,
        sum(result.timings_ms.values()),
    )
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kaleido",
        description="Tile one wedge of a JPEG into an n-fold kaleidoscope mosaic",
    )
    parser.add_argument("input", help="Input JPEG file or directory of JPEGs")
    parser.add_argument("output", help="Output JPEG file or existing directory")
    parser.add_argument(
        "-n", "--slices", type=int, default=DEFAULT_SLICES, help="Number of wedge copies"
    )
    parser.add_argument(
        "--dim", type=float, default=DEFAULT_DIM, help="Background brightness factor"
    )
    parser.add_argument(
        "--shrink",
        type=float,
        default=DEFAULT_SHRINK,
        help=f"Mosaic scale, at most {kaleidoscope.MAX_SHRINK}",
    )
    parser.add_argument(
        "--quality", type=int, default=JPEG_QUALITY, help="Output JPEG quality (1-100)"
    )
    parser.add_argument("--log-dir", default=None, help="Override log directory")
    parser.add_argument(
        "--no-diagnostics",
        action="store_true",
        help="Skip file logging, crash dumps and Sentry",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    parser.add_argument("--version", action="version", version=__version__)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.slices <= 0:
        parser.error("--slices must be > 0")
    if not 0.0 <= args.shrink <= kaleidoscope.MAX_SHRINK:
        parser.error(f"--shrink must be within [0, {kaleidoscope.MAX_SHRINK}]")
    if not (math.isfinite(args.dim) and args.dim >= 0.0):
        parser.error("--dim must be a finite value >= 0")
    if not 1 <= args.quality <= 100:
        parser.error("--quality must be within [1, 100]")

    if not args.no_diagnostics:
        init_diagnostics(args.log_dir)
        init_sentry()
    setup_console_logging(args.verbose)

    if args.dim > 1.0:
        logger.warning(
            "--dim %.2f > 1.0: channel values are not clamped and will wrap", args.dim
        )

    chain = build_chain(args.slices, args.dim, args.shrink)
    depth_errors = validate_chain_depth(chain)
    if depth_errors:
        parser.error("; ".join(depth_errors))

    try:
        jobs = collect_jobs(args.input, args.output)
    except ValueError as e:
        parser.error(str(e))

    if not jobs:
        logger.error("No %s images found in %s", sorted(ALLOWED_EXTENSIONS), args.input)
        return 1

    failures = 0
    for input_path, output_path in jobs:
        if not process_file(input_path, output_path, chain, args.quality):
            failures += 1

    done = len(jobs) - failures
    print(f"Processed {done}/{len(jobs)} image(s)", flush=True)
    return 0 if failures == 0 else 1


def run():
    """Console script entry point."""
    _apply_resource_limits()
    sys.exit(main())


if __name__ == "__main__":
    run()
