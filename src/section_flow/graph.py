"""Graph model shared by the parser, loop synthesizer, layout engine and serializer.

The node list is the single source of truth. Containment is a forest of depth one:
a contained node stores the id of its ``LoopNode`` in ``parent_id`` and the
children of a loop are found by filtering, never through back-pointers.

Edge invariant (kept by ``Graph.renumber_source``): for every source the
outgoing priorities are ``0..n-1`` and only priority 0 has ``is_default``.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

import networkx as nx

START_ID = "start"


class NodeKind(str, Enum):
    START = "start"
    SECTION = "section"
    SKIP = "skip"
    END = "end"
    LOOP = "loop"


@dataclass
class Position:
    """Top-left corner. Relative to the parent box for contained nodes."""

    x: float = 0.0
    y: float = 0.0


@dataclass
class Size:
    width: float = 0.0
    height: float = 0.0


# ─── Node Variants ────────────────────────────────────────────────────────────


@dataclass
class Node:
    """Fields common to every node variant.

    ``position``, ``size`` and the two handle sides are written by the layout
    engine only. ``kind`` is a class-level discriminator so that matching on
    ``node.kind`` is exhaustive over the five variants.
    """

    kind: ClassVar[NodeKind]

    id: str
    parent_id: str | None = None
    position: Position = field(default_factory=Position)
    size: Size | None = None
    source_handle: str | None = None
    target_handle: str | None = None


@dataclass
class StartNode(Node):
    kind: ClassVar[NodeKind] = NodeKind.START


@dataclass
class SectionNode(Node):
    kind: ClassVar[NodeKind] = NodeKind.SECTION

    description: str = ""
    byte_size: int = 1
    label: str | None = None
    devices: dict[str, dict[str, str]] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)
    sequence_index: int = 0
    extra: dict[str, object] = field(default_factory=dict)


@dataclass
class SkipNode(Node):
    kind: ClassVar[NodeKind] = NodeKind.SKIP

    byte_size: int = 1
    label: str | None = None
    sequence_index: int = 0
    extra: dict[str, object] = field(default_factory=dict)


@dataclass
class EndNode(Node):
    """Terminal sink. ``missing_label`` marks a placeholder for an unresolved target."""

    kind: ClassVar[NodeKind] = NodeKind.END

    missing_label: str | None = None
    severity: str | None = None


@dataclass
class LoopNode(Node):
    kind: ClassVar[NodeKind] = NodeKind.LOOP

    loop_condition: str = "true"


ContentNode = SectionNode | SkipNode


# ─── Edges ────────────────────────────────────────────────────────────────────


@dataclass
class EdgeData:
    condition: str = ""
    priority: int | None = None
    is_default: bool = False


@dataclass
class Edge:
    id: str
    source: str
    target: str
    data: EdgeData = field(default_factory=EdgeData)

    @property
    def condition(self) -> str:
        return self.data.condition

    @property
    def priority(self) -> int | None:
        return self.data.priority


def _priority_key(edge: Edge) -> float:
    """Sort key treating a missing priority as lowest precedence."""
    return float("inf") if edge.data.priority is None else float(edge.data.priority)


# ─── Graph ────────────────────────────────────────────────────────────────────


@dataclass
class Graph:
    """Ordered node list plus edge list.

    Ids are generated from a per-graph counter so that parsing the same document
    twice yields the same ids.
    """

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False, compare=False)

    def new_id(self, prefix: str) -> str:
        existing = {n.id for n in self.nodes} | {e.id for e in self.edges}
        while True:
            candidate = f"{prefix}-{next(self._ids)}"
            if candidate not in existing:
                return candidate

    # ── Node queries ──

    @property
    def start(self) -> StartNode | None:
        for node in self.nodes:
            if isinstance(node, StartNode):
                return node
        return None

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def get(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.get(node_id) is not None

    def index_of(self, node_id: str) -> int:
        for i, node in enumerate(self.nodes):
            if node.id == node_id:
                return i
        raise KeyError(node_id)

    def children_of(self, loop_id: str) -> list[Node]:
        """Children of a loop, in node-list order (first child = loop entry)."""
        return [n for n in self.nodes if n.parent_id == loop_id]

    def top_level(self) -> list[Node]:
        return [n for n in self.nodes if n.parent_id is None]

    def loops(self) -> list[LoopNode]:
        return [n for n in self.nodes if isinstance(n, LoopNode)]

    def content_nodes(self) -> list[SectionNode | SkipNode]:
        return [n for n in self.nodes if isinstance(n, (SectionNode, SkipNode))]

    def add_node(self, node: Node, index: int | None = None) -> Node:
        if self.has_node(node.id):
            raise ValueError(f"duplicate node id {node.id!r}")
        if index is None:
            self.nodes.append(node)
        else:
            self.nodes.insert(index, node)
        return node

    def remove_node(self, node_id: str) -> Node:
        node = self.node(node_id)
        self.nodes.remove(node)
        return node

    # ── Edge queries ──

    def edge(self, edge_id: str) -> Edge:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        raise KeyError(edge_id)

    def outgoing(self, node_id: str) -> list[Edge]:
        """Outgoing edges sorted by priority (missing priority last, stable)."""
        return sorted((e for e in self.edges if e.source == node_id), key=_priority_key)

    def incoming(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def add_edge(self, source: str, target: str, condition: str = "", priority: int | None = None) -> Edge:
        """Append an edge. Callers must renumber ``source`` afterwards."""
        edge = Edge(
            id=self.new_id(f"edge-{source}-{target}"),
            source=source,
            target=target,
            data=EdgeData(condition=condition, priority=priority),
        )
        self.edges.append(edge)
        return edge

    def remove_edge(self, edge_id: str) -> Edge:
        edge = self.edge(edge_id)
        self.edges.remove(edge)
        return edge

    # ── Invariant maintenance ──

    def renumber_source(self, source_id: str) -> list[Edge]:
        """Re-establish the priority invariant for one source.

        Outgoing edges are re-sorted by their existing priority (missing = last),
        assigned ``0..n-1`` and ``is_default`` is set on priority 0 only.
        """
        ordered = self.outgoing(source_id)
        for index, edge in enumerate(ordered):
            edge.data.priority = index
            edge.data.is_default = index == 0
        return ordered

    def renumber_all(self) -> None:
        for source_id in dict.fromkeys(e.source for e in self.edges):
            self.renumber_source(source_id)

    def priorities_valid(self, source_id: str) -> bool:
        out = self.outgoing(source_id)
        priorities = [e.data.priority for e in out]
        defaults = [e for e in out if e.data.is_default]
        if not out:
            return True
        return priorities == list(range(len(out))) and len(defaults) == 1 and defaults[0].data.priority == 0

    # ── Traversal ──

    def to_digraph(self, include_containment: bool = False) -> nx.DiGraph:
        """Build a networkx view of the topology (parallel edges collapse).

        With ``include_containment`` every loop also points at its children, so
        reaching a loop counts as reaching the nodes it owns.
        """
        g: nx.DiGraph = nx.DiGraph()
        for node in self.nodes:
            g.add_node(node.id, kind=node.kind)
        for edge in self.edges:
            if edge.source in g and edge.target in g:
                g.add_edge(edge.source, edge.target)
        if include_containment:
            for node in self.nodes:
                if node.parent_id is not None and node.parent_id in g:
                    g.add_edge(node.parent_id, node.id)
        return g

    def is_reachable_from(self, start_id: str) -> set[str]:
        """Ids reachable from ``start_id`` over outgoing edges and loop containment."""
        g = self.to_digraph(include_containment=True)
        if start_id not in g:
            return set()
        return {start_id} | nx.descendants(g, start_id)
