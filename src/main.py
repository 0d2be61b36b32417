import argparse
import logging
import os
import sys
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import init_diagnostics
from effects import pixelsort, registry
from engine.sweep import run_sweep
from errors import PixelSortError
from imaging.codec import decode, encode, sorted_name
from security import strip_pii

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _init_sentry():
    """Consent-gated Sentry init: no DSN unless the user opted in."""
    consent_path = os.path.expanduser("~/.pixelsort/telemetry_consent")
    dsn = ""
    if os.path.exists(consent_path) and Path(consent_path).read_text().strip() == "yes":
        dsn = os.environ.get("SENTRY_DSN", "")

    sentry_sdk.init(
        dsn=dsn,
        release=f"pixelsort@{__version__}",
        environment=os.environ.get("SENTRY_ENV", "development"),
        before_send=strip_pii,
        max_breadcrumbs=50,
    )


def _number(text: str) -> float:
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None


def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--axis", choices=sorted(pixelsort.AXES), default="rows", help="scan direction"
    )
    common.add_argument(
        "--key",
        choices=[k["name"] for k in registry.list_all()],
        default="luminance",
        help="pixel property used for runs and ordering",
    )
    common.add_argument("--reverse", action="store_true", help="sort descending")
    common.add_argument(
        "--mode",
        choices=list(pixelsort.MODES),
        default="delta",
        help="delta: split where neighbours differ by more than the threshold; "
        "interval: sort spans whose key lies in THRESHOLD..UPPER",
    )
    common.add_argument("--upper", type=_number, default=None, help="interval upper bound")
    common.add_argument("--workers", type=_positive_int, default=None)
    common.add_argument("--output-dir", default=None)
    common.add_argument("-v", "--verbose", action="store_true")

    parser = argparse.ArgumentParser(
        prog="pixelsort", description="Sort pixels inside runs of each row or column."
    )
    parser.add_argument("--version", action="version", version=__version__)
    sub = parser.add_subparsers(dest="command", required=True)

    p_sort = sub.add_parser(
        "sort", parents=[common], help="sort images, writing sorted-<name> for each"
    )
    p_sort.add_argument("threshold", type=_number)
    p_sort.add_argument("images", nargs="+")

    p_sweep = sub.add_parser(
        "sweep", parents=[common], help="write one frame per threshold value"
    )
    p_sweep.add_argument("image")
    p_sweep.add_argument("--start", type=_number, default=0)
    p_sweep.add_argument("--stop", type=_number, default=255, help="inclusive")
    p_sweep.add_argument("--step", type=_number, default=1)

    return parser


def _params(args: argparse.Namespace) -> dict:
    return {
        "axis": args.axis,
        "key": args.key,
        "reverse": args.reverse,
        "mode": args.mode,
        "upper": args.upper,
    }


def _thresholds(start, stop, step) -> list:
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    values = []
    i = 0
    while start + i * step <= stop:
        values.append(start + i * step)
        i += 1
    return values


def _report(e: Exception, operation: str, path: str):
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("operation", operation)
        scope.fingerprint = [f"{operation}-failure", type(e).__name__]
        sentry_sdk.capture_exception(e, scope=scope)
    logger.error("%s failed for %s: %s", operation, path, type(e).__name__)


def cmd_sort(args: argparse.Namespace) -> int:
    params = {**_params(args), "threshold": args.threshold}
    try:
        params = pixelsort.validate_params(params)
        pixelsort.resolve_bounds(
            params["threshold"], params["key"], params["mode"], params["upper"]
        )
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE

    out_dir = Path(args.output_dir or ".")
    status = EXIT_OK
    for path in args.images:
        try:
            frame = decode(path)
            output = pixelsort.apply(frame, params, workers=args.workers)
            target = out_dir / sorted_name(path)
            encode(output, str(target))
        except PixelSortError as e:
            _report(e, "sort", path)
            print(f"ERROR: Failed to sort image {path}: {e}", file=sys.stderr)
            status = EXIT_FAILED
            continue
        print(target)
    return status


def cmd_sweep(args: argparse.Namespace) -> int:
    try:
        thresholds = _thresholds(args.start, args.stop, args.step)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        frames = run_sweep(
            args.image,
            args.output_dir,
            thresholds,
            _params(args),
            workers=args.workers,
        )
    except ValueError as e:
        # InvalidThreshold is a ValueError too
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_USAGE
    except PixelSortError as e:
        print(f"ERROR: Sweep of {args.image} failed: {e}", file=sys.stderr)
        return EXIT_FAILED

    out_dir = Path(frames[0]).parent if frames else args.output_dir
    print(f"Wrote {len(frames)} frames to {out_dir}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    init_diagnostics(verbose=args.verbose)
    _init_sentry()

    if args.command == "sort":
        return cmd_sort(args)
    return cmd_sweep(args)


if __name__ == "__main__":
    sys.exit(main())
