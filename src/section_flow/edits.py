"""Interactive edits on a normalised graph.

Every entry point validates its request (raising ``GraphEditError``), mutates
the node/edge lists in place and renumbers each source whose outgoing set it
touched before returning.
"""

from __future__ import annotations

import logging

from section_flow.diagnostics import GraphEditError
from section_flow.graph import (
    Edge,
    EndNode,
    Graph,
    LoopNode,
    Node,
    NodeKind,
    SectionNode,
    SkipNode,
    StartNode,
)
from section_flow.loops import DEFAULT_LOOP_CONDITION, wrap_self_loop

logger = logging.getLogger(__name__)

NEW_EDGE_CONDITION = "true"


# ─── Lookups ──────────────────────────────────────────────────────────────────


def _require_node(graph: Graph, node_id: str) -> Node:
    node = graph.get(node_id)
    if node is None:
        raise GraphEditError(f"unknown node {node_id!r}")
    return node


def _require_edge(graph: Graph, edge_id: str) -> Edge:
    try:
        return graph.edge(edge_id)
    except KeyError:
        raise GraphEditError(f"unknown edge {edge_id!r}") from None


def _require_loop(graph: Graph, loop_id: str) -> LoopNode:
    node = _require_node(graph, loop_id)
    if not isinstance(node, LoopNode):
        raise GraphEditError(f"{loop_id!r} is a {node.kind.value} node, not a loop")
    return node


def _kind(kind: NodeKind | str) -> NodeKind:
    try:
        return NodeKind(kind)
    except ValueError:
        raise GraphEditError(f"unknown node kind {kind!r}") from None


def _new_node(graph: Graph, kind: NodeKind, parent_id: str | None, description: str | None) -> Node:
    """Fresh node of ``kind``; Section/Skip take the next display position."""
    if kind is NodeKind.START:
        raise GraphEditError("a graph has exactly one start node; it cannot be added")
    if parent_id is not None and kind not in (NodeKind.SECTION, NodeKind.SKIP):
        raise GraphEditError(f"loops only contain section and skip nodes, not {kind.value}")

    node_id = graph.new_id(kind.value)
    index = len(graph.content_nodes())
    if kind is NodeKind.SECTION:
        return SectionNode(
            id=node_id,
            parent_id=parent_id,
            description=description or f"Section {index + 1}",
            sequence_index=index,
        )
    if kind is NodeKind.SKIP:
        return SkipNode(id=node_id, parent_id=parent_id, sequence_index=index)
    if kind is NodeKind.END:
        return EndNode(id=node_id)
    return LoopNode(id=node_id, loop_condition=DEFAULT_LOOP_CONDITION)


def _insert_child(graph: Graph, loop_id: str, node: Node) -> None:
    """Insert after the loop's current last child so siblings stay together."""
    children = graph.children_of(loop_id)
    anchor = children[-1].id if children else loop_id
    graph.add_node(node, graph.index_of(anchor) + 1)


def _append_edge(graph: Graph, source_id: str, target_id: str, condition: str) -> Edge:
    """New edge with the lowest precedence of its source."""
    edge = graph.add_edge(source_id, target_id, condition=condition)
    graph.renumber_source(source_id)
    return edge


# ─── Adding Nodes ─────────────────────────────────────────────────────────────


def add_node(graph: Graph, kind: NodeKind | str = NodeKind.SECTION, description: str | None = None) -> Node:
    """Add an unconnected top-level node.

    When Start has no outgoing edge yet, it is connected to the new node so the
    first node of an empty graph is reachable.
    """
    node = graph.add_node(_new_node(graph, _kind(kind), None, description))
    start = graph.start
    if start is not None and not graph.outgoing(start.id) and not isinstance(node, EndNode):
        _append_edge(graph, start.id, node.id, "")
        logger.debug("connected start to first node %s", node.id)
    logger.debug("added %s node %s", node.kind.value, node.id)
    return node


def add_connected_node(
    graph: Graph,
    source_id: str,
    kind: NodeKind | str = NodeKind.SECTION,
    condition: str = NEW_EDGE_CONDITION,
) -> tuple[Node, Edge]:
    """Add a node reached from ``source_id`` by a new lowest-precedence edge.

    A Section/Skip created from a loop child joins the same loop.
    """
    source = _require_node(graph, source_id)
    if isinstance(source, EndNode):
        raise GraphEditError(f"end node {source_id!r} cannot have outgoing edges")

    node_kind = _kind(kind)
    parent_id = source.parent_id if node_kind in (NodeKind.SECTION, NodeKind.SKIP) else None
    node = _new_node(graph, node_kind, parent_id, None)
    if parent_id is not None:
        _insert_child(graph, parent_id, node)
    else:
        graph.add_node(node)

    edge = _append_edge(graph, source_id, node.id, condition)
    logger.debug("added %s node %s after %s", node.kind.value, node.id, source_id)
    return node, edge


def add_child_node(graph: Graph, loop_id: str, kind: NodeKind | str = NodeKind.SECTION) -> Node:
    """Add a Section/Skip as the last child of a loop, without edges."""
    _require_loop(graph, loop_id)
    node_kind = _kind(kind)
    if node_kind not in (NodeKind.SECTION, NodeKind.SKIP):
        raise GraphEditError(f"loops only contain section and skip nodes, not {node_kind.value}")
    node = _new_node(graph, node_kind, loop_id, None)
    _insert_child(graph, loop_id, node)
    logger.debug("added child %s to %s", node.id, loop_id)
    return node


# ─── Connecting ───────────────────────────────────────────────────────────────


def connect(graph: Graph, source_id: str, target_id: str, condition: str = "") -> Edge | LoopNode:
    """Connect two nodes with a new lowest-precedence edge.

    Connecting a top-level Section/Skip to itself wraps it in a new loop
    (condition ``"true"`` unless given) and returns the loop instead.
    """
    source = _require_node(graph, source_id)
    target = _require_node(graph, target_id)

    if isinstance(source, EndNode):
        raise GraphEditError(f"end node {source_id!r} cannot have outgoing edges")
    if isinstance(target, StartNode):
        raise GraphEditError("the start node cannot be the target of an edge")

    if source_id == target_id:
        if not isinstance(source, (SectionNode, SkipNode)):
            raise GraphEditError(f"a {source.kind.value} node cannot loop to itself")
        if source.parent_id is not None:
            raise GraphEditError(f"{source_id!r} is already inside loop {source.parent_id!r}; loops do not nest")
        loop, _ = wrap_self_loop(graph, source_id, condition or DEFAULT_LOOP_CONDITION)
        logger.debug("self-connection on %s created %s", source_id, loop.id)
        return loop

    if source.parent_id == target_id or target.parent_id == source_id:
        raise GraphEditError(f"cannot connect {source_id!r} and {target_id!r}: one contains the other")
    if any(e.target == target_id for e in graph.outgoing(source_id)):
        raise GraphEditError(f"{source_id!r} is already connected to {target_id!r}")

    edge = _append_edge(graph, source_id, target_id, condition)
    logger.debug("connected %s -> %s at priority %s", source_id, target_id, edge.priority)
    return edge


def set_edge_condition(graph: Graph, edge_id: str, condition: str) -> Edge:
    edge = _require_edge(graph, edge_id)
    edge.data.condition = condition
    return edge


def set_loop_condition(graph: Graph, loop_id: str, condition: str) -> LoopNode:
    """Override a loop's condition; blank means ``"true"``."""
    loop = _require_loop(graph, loop_id)
    loop.loop_condition = condition.strip() or DEFAULT_LOOP_CONDITION
    return loop


# ─── Priorities ───────────────────────────────────────────────────────────────


def reprioritize_edge(graph: Graph, edge_id: str, new_priority: int) -> list[Edge]:
    """Move an edge to slot ``new_priority`` among its siblings; the rest keep their order.

    Returns the source's outgoing edges in their new order.
    """
    edge = _require_edge(graph, edge_id)
    ordered = graph.outgoing(edge.source)
    if not 0 <= new_priority < len(ordered):
        raise GraphEditError(f"priority {new_priority} out of range 0..{len(ordered) - 1} for {edge.source!r}")

    ordered.remove(edge)
    ordered.insert(new_priority, edge)
    for index, sibling in enumerate(ordered):
        sibling.data.priority = index
    return graph.renumber_source(edge.source)


def raise_priority(graph: Graph, edge_id: str) -> list[Edge]:
    """Swap with the sibling just before it. No-op for the default edge."""
    edge = _require_edge(graph, edge_id)
    current = graph.outgoing(edge.source).index(edge)
    if current == 0:
        return graph.outgoing(edge.source)
    return reprioritize_edge(graph, edge_id, current - 1)


def lower_priority(graph: Graph, edge_id: str) -> list[Edge]:
    """Swap with the sibling just after it. No-op for the last edge."""
    edge = _require_edge(graph, edge_id)
    siblings = graph.outgoing(edge.source)
    current = siblings.index(edge)
    if current == len(siblings) - 1:
        return siblings
    return reprioritize_edge(graph, edge_id, current + 1)


# ─── Deleting ─────────────────────────────────────────────────────────────────


def delete_edge(graph: Graph, edge_id: str) -> Edge:
    edge = _require_edge(graph, edge_id)
    graph.edges.remove(edge)
    graph.renumber_source(edge.source)
    logger.debug("deleted edge %s", edge_id)
    return edge


def delete_node(graph: Graph, node_id: str) -> list[Node]:
    """Delete a node, its children when it is a loop, and every edge touching them.

    Returns the removed nodes.
    """
    node = _require_node(graph, node_id)
    if isinstance(node, StartNode):
        raise GraphEditError("the start node cannot be deleted")

    removed = [node, *graph.children_of(node_id)] if isinstance(node, LoopNode) else [node]
    removed_ids = {n.id for n in removed}

    touched: set[str] = set()
    kept: list[Edge] = []
    for edge in graph.edges:
        if edge.source in removed_ids or edge.target in removed_ids:
            touched.add(edge.source)
        else:
            kept.append(edge)
    graph.edges[:] = kept
    graph.nodes[:] = [n for n in graph.nodes if n.id not in removed_ids]

    for source_id in touched - removed_ids:
        graph.renumber_source(source_id)

    logger.debug("deleted %s", ", ".join(sorted(removed_ids)))
    return removed
