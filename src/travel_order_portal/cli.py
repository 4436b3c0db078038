"""Command-line interface for exporting travel orders."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from .config import PortalConfig
from .export import OrderExportService
from .logging import setup_logging
from .models import TravelOrder


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="travel-order-export",
        description="Render a travel order JSON file as a PDF or Excel document.",
    )
    parser.add_argument("input_json", type=Path, help="Path to travel order JSON input.")
    parser.add_argument(
        "output_dir",
        type=Path,
        nargs="?",
        default=Path("."),
        help="Directory to write the document to (default: current directory).",
    )
    parser.add_argument(
        "--format",
        choices=("pdf", "excel"),
        default="pdf",
        help="Output format (default: pdf).",
    )
    parser.add_argument(
        "--include-ctt",
        action="store_true",
        help="Append the Certificate of Travel Completed page to the PDF.",
    )
    parser.add_argument("--log-level", default=None, help="Logging level name.")
    return parser


def _load_order(path: Path) -> TravelOrder:
    try:
        raw_data = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Input file not found: {path}"
        raise FileNotFoundError(msg) from exc
    except OSError as exc:
        msg = f"Unable to read input file: {path}"
        raise OSError(msg) from exc

    try:
        payload = json.loads(raw_data)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON in input file: {path}"
        raise ValueError(msg) from exc

    # API responses wrap the order in a success envelope.
    if isinstance(payload, dict) and "data" in payload:
        payload = payload["data"]
    if isinstance(payload, dict) and "travel_order" in payload:
        payload = payload["travel_order"]
    return TravelOrder.model_validate(payload)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level or PortalConfig.load().log_level)

    exporter = OrderExportService()
    try:
        order = _load_order(args.input_json)
        if args.format == "excel":
            filename, content = exporter.to_excel(order)
        else:
            filename, content = exporter.to_pdf(order, include_ctt=args.include_ctt)
        args.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = args.output_dir / filename
        output_path.write_bytes(content)
    except ValidationError as exc:
        print("Error: travel order validation failed.", file=sys.stderr)
        print(str(exc), file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Travel order written to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
