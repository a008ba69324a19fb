#!/usr/bin/env python3
"""CLI for the SIE file parser."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from sie_excel_export import export_workbook
from sie_parser import (
    ParseError,
    check_size,
    decode_sie_bytes,
    document_to_json,
    is_valid_sie_content,
    parse_sie_file,
)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Parse a SIE accounting export into JSON or an Excel workbook."
    )
    parser.add_argument("sie_path", type=Path, help="Path to SIE file")
    parser.add_argument("-o", "--output", type=Path, help="Output JSON file path")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    parser.add_argument("--xlsx", type=Path, help="Write an Excel workbook to this path instead of JSON")
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Only check that the file looks like SIE; exit status 0 if it does",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log skipped lines")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.validate_only:
            try:
                check_size(args.sie_path.stat().st_size)
                raw = args.sie_path.read_bytes()
            except OSError as exc:
                raise ParseError(f"Could not read SIE file {args.sie_path}: {exc}") from exc
            valid = is_valid_sie_content(decode_sie_bytes(raw))
            print("valid" if valid else "not a SIE file")
            return 0 if valid else 1
        document = parse_sie_file(args.sie_path)
    except ParseError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.xlsx:
        args.xlsx.write_bytes(export_workbook(document))
        return 0

    indent = 2 if args.pretty or args.output else None
    rendered = json.dumps(document_to_json(document), ensure_ascii=False, indent=indent)

    if args.output:
        args.output.write_text(rendered + ("\n" if indent is not None else ""), encoding="utf-8")
    else:
        print(rendered)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
