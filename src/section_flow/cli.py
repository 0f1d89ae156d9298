from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from section_flow import api
from section_flow.export import to_view_model
from section_flow.layout import Direction
from section_flow.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="section-flow", description="Convert section documents to and from flow graphs")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    parser.add_argument("--log-file", type=Path, help="Also write a debug log to this file")
    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser("check", help="Parse a document and print its diagnostics")
    check.add_argument("file", type=Path)

    normalize = commands.add_parser("normalize", help="Parse a document and write it back in canonical form")
    normalize.add_argument("file", type=Path)
    normalize.add_argument("--name", required=True, help="Document name (first half of the root key)")
    normalize.add_argument("--version", required=True, help="Document version (second half of the root key)")
    normalize.add_argument("-o", "--output", type=Path, help="Write YAML here instead of stdout")

    layout = commands.add_parser("layout", help="Lay out a document and print node/edge view-models as JSON")
    layout.add_argument("file", type=Path)
    layout.add_argument("--direction", type=Direction.coerce, default=Direction.TB, help="TB or LR")
    layout.add_argument("-o", "--output", type=Path, help="Write JSON here instead of stdout")

    return parser.parse_args(argv)


def _emit(text: str, output: Path | None) -> None:
    if output is None:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")
        return
    output.write_text(text, encoding="utf-8")
    logger.info("wrote %s", output)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.WARNING
    setup_logging(console_level=level, file_path=args.log_file)

    try:
        result = api.load_graph(args.file)
    except OSError as exc:
        logger.error("cannot read %s: %s", args.file, exc)
        return 2

    if args.command == "check":
        for diagnostic in result.diagnostics:
            print(diagnostic)
        return 1 if result.fatal else 0

    if result.fatal:
        for diagnostic in result.diagnostics:
            print(diagnostic, file=sys.stderr)
        return 1

    if args.command == "normalize":
        _emit(api.dump_graph(result.graph, args.name, args.version), args.output)
    elif args.command == "layout":
        graph = api.layout(result.graph, args.direction)
        _emit(json.dumps(to_view_model(graph), ensure_ascii=False, indent=2), args.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
