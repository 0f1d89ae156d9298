"""Public entry points: document -> graph -> positioned graph -> document."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from section_flow.document import dump_document
from section_flow.equivalence import graphs_equivalent
from section_flow.graph import Graph
from section_flow.layout import Direction, LayoutConfig
from section_flow.layout import layout as _layout
from section_flow.loops import synthesize_loops
from section_flow.parser import ParseResult, build_graph
from section_flow.serializer import serialize as _serialize
from section_flow.validation import check_structure

logger = logging.getLogger(__name__)


def parse(document: Any) -> ParseResult:
    """Parse a flat document and normalise it: loops synthesized, structure checked.

    ``graph, diagnostics = parse(doc)`` also works. Malformed input gives a
    Start-only graph with ``fatal=True``.
    """
    result = build_graph(document)
    if result.fatal:
        return result
    result.diagnostics.extend(synthesize_loops(result.graph))
    result.diagnostics.extend(check_structure(result.graph))
    logger.info(
        "parsed document: %d node(s), %d edge(s), %d diagnostic(s)",
        len(result.graph.nodes),
        len(result.graph.edges),
        len(result.diagnostics),
    )
    return result


def layout(graph: Graph, direction: Direction | str = Direction.TB, config: LayoutConfig | None = None) -> Graph:
    return _layout(graph, direction, config)


def serialize(graph: Graph, name: str, version: str) -> dict[str, list[dict[str, Any]]]:
    return _serialize(graph, name, version)


def load_graph(path: str | Path) -> ParseResult:
    """Read a YAML/JSON document from ``path`` and parse it."""
    text = Path(path).read_text(encoding="utf-8")
    logger.debug("read %d bytes from %s", len(text), path)
    return parse(text)


def dump_graph(graph: Graph, name: str, version: str) -> str:
    """Serialize ``graph`` to YAML text."""
    return dump_document(serialize(graph, name, version))


@dataclass
class RoundTrip:
    """Outcome of parse -> serialize -> parse."""

    first: ParseResult
    document: dict[str, list[dict[str, Any]]]
    second: ParseResult
    equivalent: bool


def round_trip(document: Any, name: str, version: str) -> RoundTrip:
    first = parse(document)
    emitted = serialize(first.graph, name, version)
    second = parse(emitted)
    equivalent = graphs_equivalent(first.graph, second.graph)
    if not equivalent:
        logger.warning("round trip of %s_%s changed the graph structure", name, version)
    return RoundTrip(first=first, document=emitted, second=second, equivalent=equivalent)
