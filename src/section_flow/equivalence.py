"""Structural equivalence of two graphs, independent of ids and labels.

Two graphs are equivalent when a DFS from Start (edges by priority, loop
children before loop exits) meets the same sequence of node kinds and contents,
the same edge conditions in the same priority order and the same loop
groupings. Every End node is interchangeable with any other End node carrying
the same missing label, and an empty condition equals ``"true"``.
"""

from __future__ import annotations

from typing import Any

from section_flow.graph import EndNode, Graph, LoopNode, Node, SectionNode, SkipNode, StartNode

Signature = tuple[Any, ...]


def _normalise_condition(condition: str) -> str:
    return condition.strip() or "true"


def _node_token(node: Node) -> tuple[Any, ...]:
    if isinstance(node, SectionNode):
        devices = tuple(sorted((name, tuple(sorted(fields.items()))) for name, fields in node.devices.items()))
        return ("section", node.description, node.byte_size, devices, tuple(sorted(node.variables.items())))
    if isinstance(node, SkipNode):
        return ("skip", node.byte_size)
    if isinstance(node, LoopNode):
        return ("loop", _normalise_condition(node.loop_condition))
    if isinstance(node, StartNode):
        return ("start",)
    raise TypeError(f"unexpected node type {type(node).__name__}")


def _canonical_order(graph: Graph, start: StartNode) -> list[Node]:
    order: list[Node] = []
    seen: set[str] = set()
    stack = [start.id]
    while stack:
        node_id = stack.pop()
        if node_id in seen:
            continue
        seen.add(node_id)
        node = graph.get(node_id)
        if node is None or isinstance(node, EndNode):
            continue
        order.append(node)
        successors = [c.id for c in graph.children_of(node_id)] if isinstance(node, LoopNode) else []
        successors.extend(e.target for e in graph.outgoing(node_id))
        stack.extend(reversed(successors))
    return order


def graph_signature(graph: Graph) -> Signature:
    """Hashable description of the structure reachable from Start."""
    start = graph.start
    if start is None:
        return ()
    order = _canonical_order(graph, start)
    index = {node.id: i for i, node in enumerate(order)}

    def ref(target_id: str) -> tuple[Any, ...]:
        target = graph.get(target_id)
        if isinstance(target, EndNode):
            return ("end", target.missing_label)
        if target is None:
            return ("dangling",)
        return ("node", index[target_id])

    signature = []
    for node in order:
        edges = tuple((_normalise_condition(e.condition), ref(e.target)) for e in graph.outgoing(node.id))
        children = tuple(index[c.id] for c in graph.children_of(node.id)) if isinstance(node, LoopNode) else ()
        signature.append((_node_token(node), edges, children))
    return tuple(signature)


def graphs_equivalent(a: Graph, b: Graph) -> bool:
    return graph_signature(a) == graph_signature(b)
