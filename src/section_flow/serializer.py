"""Graph-to-flat serializer.

A pre-order DFS from Start fixes the entry order: at every node the default
(priority 0) edge is followed first, then the other branches; a loop is entered
through its first child, then its other children, then its exits. Labels
``L1, L2, ...`` follow first-visit order. Loops emit no entry of their own;
their last child carries the jump back to the first child, unless a child
already makes it, and the exit jump(s).
"""

from __future__ import annotations

import logging
from typing import Any

from section_flow.document import (
    DESC_KEY,
    DEV_KEY,
    END_TARGET,
    LABEL_KEY,
    NEXT_KEY,
    SIZE_KEY,
    SKIP_KEY,
    VARS_KEY,
    root_key,
)
from section_flow.graph import (
    Edge,
    EndNode,
    Graph,
    LoopNode,
    Node,
    SectionNode,
    SkipNode,
    StartNode,
)
from section_flow.loops import has_loop_back

logger = logging.getLogger(__name__)

Rule = dict[str, str]


# ─── Traversal ────────────────────────────────────────────────────────────────


def _successors(graph: Graph, node: Node) -> list[str]:
    if isinstance(node, (StartNode, SectionNode, SkipNode)):
        targets = [e.target for e in graph.outgoing(node.id)]
        # A child entered directly still pulls its siblings into the output.
        if node.parent_id is not None:
            targets.append(node.parent_id)
        return targets
    if isinstance(node, LoopNode):
        children = [c.id for c in graph.children_of(node.id)]
        return children + [e.target for e in graph.outgoing(node.id)]
    if isinstance(node, EndNode):
        return []
    raise TypeError(f"unknown node type {type(node).__name__}")


def visit_order(graph: Graph) -> list[str]:
    """Section/Skip ids in first-visit order of the DFS from Start."""
    start = graph.start
    if start is None:
        logger.warning("graph has no start node; nothing to serialize")
        return []

    order: list[str] = []
    visited: set[str] = set()
    stack = [start.id]
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        node = graph.get(node_id)
        if node is None:
            logger.warning("edge points at unknown node %s; skipped", node_id)
            continue
        visited.add(node_id)
        if isinstance(node, (SectionNode, SkipNode)):
            order.append(node_id)
        stack.extend(reversed(_successors(graph, node)))
    return order


# ─── Rules ────────────────────────────────────────────────────────────────────


def _target_label(graph: Graph, target_id: str, labels: dict[str, str]) -> str | None:
    target = graph.get(target_id)
    if isinstance(target, EndNode):
        # An unresolved jump is written back as it was read, unless a new label took its name.
        if target.missing_label and target.missing_label not in labels.values():
            return target.missing_label
        return END_TARGET
    if isinstance(target, LoopNode):
        children = graph.children_of(target.id)
        return labels.get(children[0].id) if children else None
    if isinstance(target, (SectionNode, SkipNode)):
        return labels.get(target.id)
    return None


def _edge_rule(graph: Graph, edge: Edge, labels: dict[str, str], condition: str | None = None) -> Rule | None:
    """One ``Next`` rule for ``edge``; ``condition`` overrides the edge's own.

    An empty condition is written as ``"true"``, which the runtime reads the
    same way. Any other condition text is copied verbatim.
    """
    label = _target_label(graph, edge.target, labels)
    if label is None:
        logger.warning("dropping rule %s -> %s: target has no label", edge.source, edge.target)
        return None
    return {"condition": condition if condition is not None else (edge.condition or "true"), "target": label}


def _loop_closing_rules(graph: Graph, node: Node, labels: dict[str, str]) -> list[Rule]:
    """Jump back to the loop's first child, then the exit(s), for a loop's last child.

    The jump back is left out when a child already makes it. A single exit is
    written under ``"true"``; several exits keep their own conditions, in
    priority order.
    """
    loop = graph.get(node.parent_id) if node.parent_id else None
    if not isinstance(loop, LoopNode):
        return []
    children = graph.children_of(loop.id)
    if children[-1].id != node.id:
        return []

    rules: list[Rule] = []
    first_label = labels.get(children[0].id)
    if has_loop_back(graph, loop):
        logger.debug("loop %s: jump back to %s already present", loop.id, children[0].id)
    elif first_label is None:
        logger.warning("loop %s: first child %s has no label; dropping loop-back rule", loop.id, children[0].id)
    else:
        rules.append({"condition": loop.loop_condition or "true", "target": first_label})

    exits = graph.outgoing(loop.id)
    if not exits:
        logger.debug("loop %s has no exit; no exit rule", loop.id)
        return rules
    if len(exits) == 1:
        rule = _edge_rule(graph, exits[0], labels, condition="true")
        return rules + [rule] if rule is not None else rules
    for edge in exits:
        rule = _edge_rule(graph, edge, labels)
        if rule is not None:
            rules.append(rule)
    return rules


def _entry(graph: Graph, node: SectionNode | SkipNode, labels: dict[str, str]) -> dict[str, Any]:
    if isinstance(node, SkipNode):
        entry: dict[str, Any] = {SKIP_KEY: node.byte_size, LABEL_KEY: labels[node.id]}
    else:
        entry = {DESC_KEY: node.description, SIZE_KEY: node.byte_size, LABEL_KEY: labels[node.id]}
        if node.devices:
            entry[DEV_KEY] = {name: dict(fields) for name, fields in node.devices.items()}
        if node.variables:
            entry[VARS_KEY] = dict(node.variables)
    for key, value in node.extra.items():
        entry.setdefault(key, value)

    rules: list[Rule] = []
    for edge in graph.outgoing(node.id):
        rule = _edge_rule(graph, edge, labels)
        if rule is not None:
            rules.append(rule)
    rules.extend(_loop_closing_rules(graph, node, labels))
    if rules:
        entry[NEXT_KEY] = rules
    return entry


# ─── Entry Point ──────────────────────────────────────────────────────────────


def serialize(graph: Graph, name: str, version: str) -> dict[str, list[dict[str, Any]]]:
    """Flat document ``{<name>_<version>: [entries]}``. The graph is not modified."""
    order = visit_order(graph)
    labels = {node_id: f"L{i}" for i, node_id in enumerate(order, start=1)}
    by_id = {n.id: n for n in graph.content_nodes()}

    entries = [_entry(graph, by_id[node_id], labels) for node_id in order]

    omitted = [n.id for n in graph.content_nodes() if n.id not in labels]
    if omitted:
        logger.warning("%d node(s) unreachable from start were not serialized: %s", len(omitted), ", ".join(omitted))

    logger.debug("serialized %d entries", len(entries))
    return {root_key(name, version): entries}
