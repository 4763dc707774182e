"""Command line utilities for batch FIPE price lookup."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List

from .codes import NoValidCodesError, decode_upload, merge_texts
from .config import FipeConfig, coerce_positive_float, coerce_positive_int, configure_logging
from .export import render_export, summarize
from .model import FipeLookupModel

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        return coerce_positive_int(value, "value")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{value!r} is not a positive integer") from exc


def _positive_float(value: str) -> float:
    try:
        return coerce_positive_float(value, "value")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{value!r} is not a positive number") from exc


def _existing_file(value: str) -> Path:
    path = Path(value)
    if not path.is_file():
        raise argparse.ArgumentTypeError(f"{value} is not a readable file")
    return path


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    defaults = FipeConfig.from_env()
    parser = argparse.ArgumentParser(description="Batch look up FIPE vehicle prices by code")
    parser.add_argument(
        "codes",
        nargs="*",
        help="FIPE codes to look up (000000-0 or seven digits).",
    )
    parser.add_argument(
        "--file",
        dest="files",
        type=_existing_file,
        action="append",
        default=[],
        help="Text or CSV file containing codes separated by spaces, commas, semicolons or new lines. "
        "May be given more than once.",
    )
    parser.add_argument(
        "--format",
        choices=("json", "csv"),
        default="json",
        help="Output encoding for the results.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional path to write the results. If omitted results are printed to stdout.",
    )
    parser.add_argument(
        "--base-url",
        default=defaults.base_url,
        help="FIPE price API base URL; the code is appended as the last path segment.",
    )
    parser.add_argument(
        "--concurrency",
        type=_positive_int,
        default=defaults.concurrency,
        help="Maximum number of lookups running at the same time.",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=defaults.timeout,
        help="Timeout (in seconds) for each HTTP request to the FIPE API.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log each lookup to stdout.")
    return parser.parse_args(argv)


def load_texts(paths: Iterable[Path]) -> List[str]:
    return [decode_upload(path.read_bytes()) for path in paths]


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    text = merge_texts(*load_texts(args.files))
    model = FipeLookupModel(
        base_url=args.base_url,
        concurrency=args.concurrency,
        timeout=args.timeout,
    )
    try:
        results = model.batch_lookup(args.codes, text)
    except NoValidCodesError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    finally:
        model.close()

    output_text, _, _ = render_export(results, args.format)
    stats = summarize(results)
    logger.info("%d of %d code(s) returned data", stats["okCount"], stats["count"])

    if args.output:
        args.output.write_text(output_text, encoding="utf-8")
        print(f"Wrote {stats['count']} result(s) to {args.output}", file=sys.stderr)
    else:
        print(output_text)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
