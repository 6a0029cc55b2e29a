#!/usr/bin/env python3
"""Convert between the lab bibliography (.bib) and the site's publications JSON."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

import publications as pubs
import pubparse as pp

logger = logging.getLogger(__name__)

BACKENDS = ("regex", "bibtexparser")


def load_bibtexparser(text: str) -> List[pp.PublicationRecord]:
    try:
        import bibtexparser
        from bibtexparser.bparser import BibTexParser
    except ImportError as exc:
        raise RuntimeError(
            "bibtexparser is required. Install with: pip install bibtexparser"
        ) from exc

    parser = BibTexParser(common_strings=True)
    parser.ignore_nonstandard_types = False
    parser.homogenize_fields = False

    bib_db = bibtexparser.loads(text, parser=parser)

    records: List[pp.PublicationRecord] = []
    for raw in bib_db.entries:
        entry_type = (raw.get("ENTRYTYPE") or "").lower().strip()
        key = (raw.get("ID") or raw.get("id") or "").strip()
        if not entry_type or not key:
            logger.warning("Skipping entry without type or key: %r", raw)
            continue
        fields: Dict[str, str] = {}
        for name, value in raw.items():
            if name in {"ENTRYTYPE", "ID"}:
                continue
            if value is None:
                continue
            fields[name.lower()] = pp.clean_field_value(pp.strip_outer_braces_quotes(str(value)))
        record = pp.record_from_fields(entry_type, key, fields)
        record.raw_bibtex = pp.generate_bibtex(record)
        records.append(record)
    return records


def read_bib_records(path: str, backend: str = "regex", strict: bool = False) -> List[pp.PublicationRecord]:
    if backend == "bibtexparser":
        with open(path, "r", encoding="utf-8") as handle:
            return load_bibtexparser(handle.read())
    return pubs.load_bib_records(path, strict=strict)


def derive_default_path(input_path: str, suffix: str) -> str:
    base = os.path.splitext(os.path.basename(input_path))[0]
    dir_path = os.path.dirname(input_path) or "."
    return os.path.join(dir_path, f"{base}{suffix}")


def write_output(text: str, path: Optional[str]) -> None:
    if not path:
        print(text)
        return
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text + "\n")


def format_line(record: pp.PublicationRecord) -> str:
    year = record.year if record.year is not None else "----"
    authors = record.author_string or "Unknown Authors"
    return f"[{year}] {record.id} ({record.type}): {record.display_title} / {authors} / {record.display_venue}"


def cmd_parse(args: argparse.Namespace) -> int:
    records = read_bib_records(args.input_bib, backend=args.backend, strict=args.strict)
    if args.highlight:
        pubs.apply_highlights(records, args.highlight)
    if args.lang:
        for record in records:
            record.display_title = pubs.resolve_language(record.title, args.lang)
            record.display_abstract = pubs.resolve_language(record.abstract, args.lang)
    payload = pubs.records_to_json(records)
    write_output(json.dumps(payload, ensure_ascii=False, indent=2), args.output)
    logger.info("Converted %d entries from %s", len(records), args.input_bib)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    records = pubs.load_json_records(args.input_json)
    output = args.output or derive_default_path(args.input_json, ".bib")
    pp.write_bibtex(output, records)
    print(f"Wrote {len(records)} entries to {output}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    records = pubs.load_publications(args.json, args.bib, strict=args.strict)
    records = pubs.prepare_publications(records, lang=args.lang, highlight_names=args.highlight)
    records = pubs.filter_by_type(records, args.type)
    records = pubs.sort_publications(records, by=args.sort)
    for record in records:
        print(format_line(record))
    print(f"Publications: {len(records)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert and inspect the lab bibliography used by the website."
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_cmd = subparsers.add_parser("parse", help="Convert a .bib file to publications JSON")
    parse_cmd.add_argument("input_bib", help="Path to input .bib file")
    parse_cmd.add_argument("-o", "--output", help="Path to output .json file (default: stdout)")
    parse_cmd.add_argument(
        "--strict",
        action="store_true",
        help="Count braces to any depth and fail on unbalanced entries",
    )
    parse_cmd.add_argument("--backend", choices=BACKENDS, default="regex", help="Parser to use")
    parse_cmd.add_argument("--highlight", nargs="*", default=[], help="Author names to highlight")
    parse_cmd.add_argument("--lang", help="Language used for display titles")
    parse_cmd.set_defaults(func=cmd_parse)

    export_cmd = subparsers.add_parser("export", help="Convert publications JSON to a .bib file")
    export_cmd.add_argument("input_json", help="Path to publications JSON")
    export_cmd.add_argument("-o", "--output", help="Path to output .bib file (default: beside the input)")
    export_cmd.set_defaults(func=cmd_export)

    list_cmd = subparsers.add_parser("list", help="List publications as the site would show them")
    list_cmd.add_argument("--json", default=pubs.DEFAULT_JSON_PATH, help="Publications JSON path")
    list_cmd.add_argument("--bib", default=pubs.DEFAULT_BIB_PATH, help="Fallback .bib path")
    list_cmd.add_argument("--strict", action="store_true", help="Strict brace checking for .bib input")
    list_cmd.add_argument("--type", default="all", help="Only show this publication type")
    list_cmd.add_argument("--sort", choices=pubs.SORT_KEYS, default="year", help="Sort order")
    list_cmd.add_argument("--lang", default="en", help="Display language")
    list_cmd.add_argument("--highlight", nargs="*", default=[], help="Author names to highlight")
    list_cmd.set_defaults(func=cmd_list)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except (RuntimeError, ValueError, OSError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
