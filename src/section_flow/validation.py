"""Structural checks surfaced to the user after synthesis or an edit. Nothing is repaired."""

from __future__ import annotations

from section_flow import diagnostics as diag
from section_flow.diagnostics import Diagnostic
from section_flow.graph import Graph, Node, StartNode


def unreachable_nodes(graph: Graph) -> list[Node]:
    """Nodes not reachable from Start (reaching a loop reaches its children)."""
    start = graph.start
    if start is None:
        return list(graph.nodes)
    reachable = graph.is_reachable_from(start.id)
    return [n for n in graph.nodes if n.id not in reachable]


def check_structure(graph: Graph) -> list[Diagnostic]:
    out: list[Diagnostic] = []

    for node in unreachable_nodes(graph):
        if isinstance(node, StartNode):
            continue
        out.append(diag.warning(diag.UNREACHABLE_NODE, f"{node.kind.value} node is not reachable from start", node.id))

    for loop in graph.loops():
        if not graph.children_of(loop.id):
            out.append(diag.warning(diag.EMPTY_LOOP, "loop has no children", loop.id))
        if not graph.outgoing(loop.id):
            out.append(diag.warning(diag.LOOP_WITHOUT_EXIT, "loop has no exit edge", loop.id))

    for source_id in dict.fromkeys(e.source for e in graph.edges):
        if not graph.priorities_valid(source_id):
            out.append(diag.error(diag.PRIORITY_INVARIANT, "outgoing priorities are not 0..n-1", source_id))

    return out