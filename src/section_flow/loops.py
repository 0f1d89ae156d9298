"""Cycle detection and loop synthesis.

Runs once after parsing and leaves a graph whose top level is a DAG:

  1. Self-loops: every top-level Section/Skip with an edge to itself is wrapped
     in a new ``LoopNode``; the self-edge becomes the loop condition.
  2. Multi-node cycles: a DFS over the top-level graph (children projected onto
     their loop) finds a cycle; the whole strongly connected component around
     it is reparented under one new loop, children in DFS order from the
     component's entry. Internal edges stay as they are, entering edges move to
     the loop, leaving edges start from the loop.
  3. Loops are moved in front of their children in the node list.

Every wrap turns at least two top-level nodes into one, so step 2 terminates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import networkx as nx

from section_flow import diagnostics as diag
from section_flow.diagnostics import Diagnostic
from section_flow.graph import Edge, Graph, LoopNode, Node, SectionNode, SkipNode

logger = logging.getLogger(__name__)

DEFAULT_LOOP_CONDITION = "true"


@dataclass
class LoopCondition:
    """Inferred loop condition and, when the choice was a guess, why."""

    condition: str
    ambiguity: str | None = None


# ─── Self-Loops ───────────────────────────────────────────────────────────────


def wrap_self_loop(graph: Graph, node_id: str, condition: str) -> tuple[LoopNode, list[Edge]]:
    """Wrap one node in a new loop. Returns the loop and the deleted self-edges.

    The loop takes the node's place in the node list and the node follows it.
    """
    node = graph.node(node_id)
    loop = LoopNode(id=graph.new_id("loop"), loop_condition=condition.strip() or DEFAULT_LOOP_CONDITION)
    graph.add_node(loop, graph.index_of(node_id))
    node.parent_id = loop.id

    dropped = [e for e in graph.outgoing(node_id) if e.target == node_id]
    for edge in dropped:
        graph.edges.remove(edge)

    for edge in graph.edges:
        if edge.target == node_id and edge.source != loop.id:
            edge.target = loop.id
        if edge.source == node_id:
            edge.source = loop.id
    graph.renumber_source(loop.id)

    logger.debug("wrapped %s in self-loop %s (condition %r)", node_id, loop.id, loop.loop_condition)
    return loop, dropped


def _synthesize_self_loops(graph: Graph) -> list[Diagnostic]:
    out: list[Diagnostic] = []
    processed: set[str] = set()
    for node in list(graph.nodes):
        if node.id in processed or node.parent_id is not None:
            continue
        if not isinstance(node, (SectionNode, SkipNode)):
            continue
        self_edges = [e for e in graph.outgoing(node.id) if e.target == node.id]
        if not self_edges:
            continue
        _, dropped = wrap_self_loop(graph, node.id, self_edges[0].condition)
        processed.add(node.id)
        for extra in dropped[1:]:
            out.append(
                diag.warning(
                    diag.DROPPED_SELF_LOOP,
                    f"additional self-reference with condition {extra.condition!r} dropped; "
                    f"loop uses {self_edges[0].condition or DEFAULT_LOOP_CONDITION!r}",
                    object_id=node.id,
                )
            )
    return out


# ─── Cycle Detection ──────────────────────────────────────────────────────────


def _top_level_adjacency(graph: Graph) -> dict[str, list[tuple[str, Edge]]]:
    """Adjacency between top-level nodes; children stand in for their loop."""
    ids = {n.id for n in graph.nodes}
    parent = {n.id: n.parent_id for n in graph.nodes if n.parent_id in ids}

    def top(node_id: str) -> str:
        return parent.get(node_id) or node_id

    adjacency: dict[str, list[tuple[str, Edge]]] = {n.id: [] for n in graph.nodes if n.id not in parent}
    for node in graph.nodes:
        for edge in graph.outgoing(node.id):
            src, tgt = top(edge.source), top(edge.target)
            if src == tgt or src not in adjacency or tgt not in adjacency:
                continue
            adjacency[src].append((tgt, edge))
    return adjacency


def _first_cycle(adjacency: dict[str, list[tuple[str, Edge]]]) -> tuple[list[str], int, Edge] | None:
    """DFS path when the first back-edge is met, the index the cycle starts at, and that edge."""
    visited: set[str] = set()

    for root in adjacency:
        if root in visited:
            continue
        visited.add(root)
        path = [root]
        in_stack = {root}
        stack = [iter(adjacency[root])]
        while stack:
            advanced = False
            for target, edge in stack[-1]:
                if target in in_stack:
                    return path, path.index(target), edge
                if target not in visited:
                    visited.add(target)
                    in_stack.add(target)
                    path.append(target)
                    stack.append(iter(adjacency[target]))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                in_stack.discard(path.pop())
    return None


def find_cycle(graph: Graph) -> tuple[list[str], Edge] | None:
    """First cycle met by a DFS in node order, following edges by priority.

    Returns the cycle as the DFS path slice starting at the re-entered node,
    plus the back-edge that closed it.
    """
    found = _first_cycle(_top_level_adjacency(graph))
    if found is None:
        return None
    path, begin, closing_edge = found
    return path[begin:], closing_edge


def cyclic_component(graph: Graph) -> tuple[list[str], str, Edge] | None:
    """Strongly connected top-level component around the first DFS cycle.

    Returns its members (node-list order), its entry (the first member on the
    DFS path from the roots) and the back-edge that closed the cycle.
    """
    adjacency = _top_level_adjacency(graph)
    found = _first_cycle(adjacency)
    if found is None:
        return None
    path, begin, closing_edge = found

    projection: nx.DiGraph = nx.DiGraph()
    projection.add_nodes_from(adjacency)
    projection.add_edges_from((src, tgt) for src, targets in adjacency.items() for tgt, _ in targets)
    component = next(c for c in nx.strongly_connected_components(projection) if path[begin] in c)

    entry = next(node_id for node_id in path if node_id in component)
    members = [n.id for n in graph.nodes if n.id in component]
    return members, entry, closing_edge


def choose_loop_condition(closing_edge: Edge | None, entry_edges: list[Edge]) -> LoopCondition:
    """Pick a loop condition for a multi-node cycle.

    Precedence: the closing back-edge's condition; else the condition of the
    single entering edge; else the condition of the single default-priority
    entering edge; else ``"true"``. Anything after the first step is reported
    as ambiguous so the user can override it.
    """
    if closing_edge is not None and closing_edge.condition.strip():
        return LoopCondition(closing_edge.condition)

    if len(entry_edges) == 1:
        entry = entry_edges[0]
        if entry.condition.strip():
            return LoopCondition(entry.condition, f"closing edge has no condition; using entry edge {entry.id}")
        return LoopCondition(DEFAULT_LOOP_CONDITION, "closing edge and entry edge have no condition")

    if len(entry_edges) > 1:
        defaults = [e for e in entry_edges if e.data.priority == 0]
        if len(defaults) == 1 and defaults[0].condition.strip():
            return LoopCondition(
                defaults[0].condition,
                f"{len(entry_edges)} entry edges; using default-priority entry edge {defaults[0].id}",
            )
        return LoopCondition(DEFAULT_LOOP_CONDITION, f"{len(entry_edges)} entry edges with no usable condition")

    return LoopCondition(DEFAULT_LOOP_CONDITION, "no entry edge and no closing condition")


# ─── Cycle Wrapping ───────────────────────────────────────────────────────────


def _append_after(graph: Graph, source_id: str, edges: list[Edge]) -> None:
    """Give ``edges`` the lowest precedence of ``source_id``, keeping their order."""
    for edge in edges:
        edge.data.priority = None
    graph.renumber_source(source_id)
    base = len(graph.outgoing(source_id)) - len(edges)
    for offset, edge in enumerate(edges):
        edge.data.priority = base + offset
    graph.renumber_source(source_id)


def has_loop_back(graph: Graph, loop: LoopNode) -> bool:
    """True when some child already jumps to the first child under the loop condition."""
    kids = graph.children_of(loop.id)
    if not kids:
        return False
    first = kids[0].id
    return any(
        edge.target == first and (edge.condition.strip() or DEFAULT_LOOP_CONDITION) == loop.loop_condition
        for kid in kids
        for edge in graph.outgoing(kid.id)
    )


def _flatten_loop(graph: Graph, loop: LoopNode, member_ids: list[str]) -> Diagnostic:
    """Dissolve an existing loop that lies on a new cycle.

    Its children join the new cycle, entries land on its first child, exits
    leave from its last child, and its back jump becomes an internal edge from
    the last child to the first unless one is already there.
    """
    kids = graph.children_of(loop.id)
    outgoing = graph.outgoing(loop.id)
    incoming = graph.incoming(loop.id)

    if kids:
        first, last = kids[0], kids[-1]
        appended = list(outgoing)
        if not has_loop_back(graph, loop):
            appended.insert(0, graph.add_edge(last.id, first.id, condition=loop.loop_condition))
        for edge in outgoing:
            edge.source = last.id
        _append_after(graph, last.id, appended)
        for edge in incoming:
            edge.target = first.id
        member_ids.extend(k.id for k in kids)
    else:
        exit_target = outgoing[0].target if outgoing else None
        for edge in outgoing:
            graph.edges.remove(edge)
        for edge in incoming:
            if exit_target is None:
                graph.edges.remove(edge)
                graph.renumber_source(edge.source)
            else:
                edge.target = exit_target

    graph.remove_node(loop.id)
    return diag.warning(
        diag.NESTED_LOOP_FLATTENED,
        f"loop {loop.id} lies on a larger cycle; its children were merged and its "
        f"condition {loop.loop_condition!r} kept as an internal jump",
        object_id=loop.id,
    )


def _member_order(graph: Graph, entry_id: str, members: set[str]) -> list[str]:
    """Members in DFS pre-order from the entry over internal edges, by priority.

    The serializer visits a loop's children in this order, so reparsing its
    output rebuilds the same child order.
    """
    order: list[str] = []
    seen: set[str] = set()
    for root in [entry_id, *(n.id for n in graph.nodes if n.id in members)]:
        stack = [root]
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            order.append(node_id)
            stack.extend(reversed([e.target for e in graph.outgoing(node_id) if e.target in members]))
    return order


def _closing_edge(graph: Graph, order: list[str], found: Edge | None) -> Edge | None:
    """Jump into the entry from the latest member that has one; else the DFS back-edge."""
    for member in reversed(order):
        for edge in graph.outgoing(member):
            if edge.target == order[0]:
                return edge
    return found


def wrap_cycle(
    graph: Graph,
    members: list[str],
    entry_id: str,
    closing_edge: Edge | None,
) -> tuple[LoopNode, list[Diagnostic]]:
    """Reparent a strongly connected set of top-level nodes under one new loop.

    Existing loops among ``members`` are flattened first. The children follow
    DFS order from ``entry_id``, so the entry becomes the first child.
    """
    out: list[Diagnostic] = []
    insert_at = min(graph.index_of(node_id) for node_id in members)

    member_ids: list[str] = []
    for node_id in members:
        node = graph.node(node_id)
        if isinstance(node, LoopNode):
            kids = graph.children_of(node_id)
            if node_id == entry_id and kids:
                entry_id = kids[0].id
            out.append(_flatten_loop(graph, node, member_ids))
        else:
            member_ids.append(node_id)
    members_set = set(member_ids)
    if entry_id not in members_set:
        entry_id = member_ids[0]

    order = _member_order(graph, entry_id, members_set)
    closing_edge = _closing_edge(graph, order, closing_edge)

    entry_edges = [e for e in graph.edges if e.target in members_set and e.source not in members_set]
    chosen = choose_loop_condition(closing_edge, entry_edges)
    loop = LoopNode(id=graph.new_id("loop"), loop_condition=chosen.condition)
    if chosen.ambiguity:
        out.append(
            diag.warning(
                diag.AMBIGUOUS_LOOP_CONDITION,
                f"loop condition {chosen.condition!r} inferred ({chosen.ambiguity}); please verify",
                object_id=loop.id,
            )
        )

    member_nodes: list[Node] = [graph.node(m) for m in order]
    for node in member_nodes:
        graph.nodes.remove(node)
        node.parent_id = loop.id
    insert_at = min(insert_at, len(graph.nodes))
    graph.nodes[insert_at:insert_at] = [loop, *member_nodes]

    touched: set[str] = set()
    for edge in graph.edges:
        src_in = edge.source in members_set
        tgt_in = edge.target in members_set
        if tgt_in and not src_in:
            edge.target = loop.id
        elif src_in and not tgt_in:
            touched.add(edge.source)
            edge.source = loop.id
    graph.renumber_source(loop.id)
    for source_id in touched:
        graph.renumber_source(source_id)

    logger.debug(
        "wrapped %s in %s (condition %r, %d entry edges)",
        " -> ".join(order),
        loop.id,
        loop.loop_condition,
        len(entry_edges),
    )
    return loop, out


# ─── Ordering ─────────────────────────────────────────────────────────────────


def ensure_parent_order(graph: Graph) -> None:
    """Move every child directly after its loop, keeping relative order."""
    ids = {n.id for n in graph.nodes}
    children: dict[str, list[Node]] = {}
    for node in graph.nodes:
        if node.parent_id is not None and node.parent_id in ids:
            children.setdefault(node.parent_id, []).append(node)

    ordered: list[Node] = []
    for node in graph.nodes:
        if node.parent_id is not None and node.parent_id in ids:
            continue
        ordered.append(node)
        ordered.extend(children.get(node.id, []))
    graph.nodes[:] = ordered


# ─── Entry Point ──────────────────────────────────────────────────────────────


def synthesize_loops(graph: Graph) -> list[Diagnostic]:
    """Eliminate every top-level cycle in place. Idempotent on a normalised graph."""
    out = _synthesize_self_loops(graph)
    while True:
        found = cyclic_component(graph)
        if found is None:
            break
        members, entry_id, closing_edge = found
        _, notes = wrap_cycle(graph, members, entry_id, closing_edge)
        out.extend(notes)
    ensure_parent_order(graph)
    return out
