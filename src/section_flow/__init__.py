"""Section documents <-> editable flow graphs."""

from section_flow.api import RoundTrip, dump_graph, layout, load_graph, parse, round_trip, serialize
from section_flow.diagnostics import Diagnostic, DocumentError, GraphEditError, SectionFlowError
from section_flow.graph import (
    Edge,
    EdgeData,
    EndNode,
    Graph,
    LoopNode,
    Node,
    NodeKind,
    SectionNode,
    SkipNode,
    StartNode,
)
from section_flow.layout import Direction, LayoutConfig
from section_flow.parser import ParseResult

__all__ = [
    "Diagnostic",
    "Direction",
    "DocumentError",
    "Edge",
    "EdgeData",
    "EndNode",
    "Graph",
    "GraphEditError",
    "LayoutConfig",
    "LoopNode",
    "Node",
    "NodeKind",
    "ParseResult",
    "RoundTrip",
    "SectionFlowError",
    "SectionNode",
    "SkipNode",
    "StartNode",
    "dump_graph",
    "layout",
    "load_graph",
    "parse",
    "round_trip",
    "serialize",
]
