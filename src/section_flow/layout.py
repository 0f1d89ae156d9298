"""Layout engine: layered placement of the top level, then loop interiors.

Phases:
  1. Loop sizing (estimate from child count, grown to fit the children)
  2. Cycle removal on the collapsed top level (greedy-FAS)
  3. Layer assignment (longest path from the sources)
  4. Dummy nodes for edges spanning more than one layer
  5. Crossing minimisation (barycenter heuristic)
  6. Coordinate assignment (pixels, top-left corners)
  7. Intra-loop placement (children stacked along the primary axis,
     positions relative to the loop box)

Every loop is a single opaque box in phases 2-6; edges between two children of
the same loop are left out and edges touching a child are drawn from its loop.
Only ``position``, ``size`` and the handle fields are written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import networkx as nx

from section_flow.graph import EndNode, Graph, LoopNode, Node, Position, Size, SkipNode

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Primary axis of the layout: ranks grow downwards (TB) or rightwards (LR)."""

    TB = "TB"
    LR = "LR"

    @classmethod
    def coerce(cls, value: Direction | str) -> Direction:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"unknown layout direction {value!r}; expected 'TB' or 'LR'") from None

    @property
    def is_horizontal(self) -> bool:
        return self is Direction.LR

    @property
    def handles(self) -> tuple[str, str]:
        """(source side, target side) of every node."""
        return ("right", "left") if self.is_horizontal else ("bottom", "top")


@dataclass(frozen=True)
class LayoutConfig:
    """Geometry constants, in pixels."""

    node_width: float = 180.0
    node_height: float = 75.0
    skip_height: float = 60.0
    end_width: float = 150.0
    node_spacing: float = 120.0
    rank_spacing: float = 170.0
    margin: float = 30.0
    loop_padding: float = 60.0
    child_spacing: float = 100.0
    loop_min_extent: float = 300.0
    loop_cross_slack: float = 160.0
    loop_child_estimate: float = 100.0
    empty_loop_extent: float = 200.0
    empty_loop_slack: float = 100.0


# ─── Node Sizes ───────────────────────────────────────────────────────────────


def node_size(node: Node, config: LayoutConfig) -> Size:
    """Fixed size of a non-loop node."""
    if isinstance(node, SkipNode):
        return Size(config.node_width, config.skip_height)
    if isinstance(node, EndNode):
        return Size(config.end_width, config.node_height)
    return Size(config.node_width, config.node_height)


def estimate_loop_size(child_count: int, direction: Direction, config: LayoutConfig) -> Size:
    """Box size guessed from the number of children alone."""
    if child_count == 0:
        if direction.is_horizontal:
            return Size(config.empty_loop_extent, config.node_height + config.empty_loop_slack)
        return Size(config.node_width + config.empty_loop_slack, config.empty_loop_extent)

    if direction.is_horizontal:
        width = max(config.loop_min_extent, config.node_width + child_count * config.loop_child_estimate)
        return Size(width, config.node_height + config.loop_cross_slack)
    height = max(config.loop_min_extent, config.node_height + child_count * config.loop_child_estimate)
    return Size(config.node_width + config.loop_cross_slack, height)


def required_loop_size(children: list[Node], direction: Direction, config: LayoutConfig) -> Size:
    """Smallest box holding ``children`` in a row plus padding on every side."""
    if not children:
        return Size(0.0, 0.0)
    sizes = [node_size(c, config) for c in children]
    pad = 2 * config.loop_padding
    gaps = config.child_spacing * (len(sizes) - 1)
    if direction.is_horizontal:
        return Size(sum(s.width for s in sizes) + gaps + pad, max(s.height for s in sizes) + pad)
    return Size(max(s.width for s in sizes) + pad, sum(s.height for s in sizes) + gaps + pad)


def loop_size(graph: Graph, loop: LoopNode, direction: Direction, config: LayoutConfig) -> Size:
    children = graph.children_of(loop.id)
    estimate = estimate_loop_size(len(children), direction, config)
    required = required_loop_size(children, direction, config)
    return Size(max(estimate.width, required.width), max(estimate.height, required.height))


# ─── Loop Collapse ────────────────────────────────────────────────────────────


def _owners(graph: Graph) -> dict[str, str]:
    """child id -> loop id, for children whose loop exists."""
    loop_ids = {loop.id for loop in graph.loops()}
    return {n.id: n.parent_id for n in graph.nodes if n.parent_id in loop_ids}


def collapse_loops(graph: Graph) -> nx.DiGraph:
    """Top-level working graph: one vertex per top-level node, loops opaque.

    Edges touching a child are redirected to its loop; edges inside one loop
    and parallel edges collapse away.
    """
    owners = _owners(graph)
    g: nx.DiGraph = nx.DiGraph()
    for node in graph.nodes:
        if node.id not in owners:
            g.add_node(node.id)

    for edge in graph.edges:
        src = owners.get(edge.source, edge.source)
        tgt = owners.get(edge.target, edge.target)
        if src == tgt or src not in g or tgt not in g:
            continue
        g.add_edge(src, tgt)
    return g


# ─── Cycle Removal (Greedy-FAS) ───────────────────────────────────────────────


def greedy_fas_ordering(graph: nx.DiGraph) -> list[str]:
    """Node ordering with few back-edges (Eades, Lin, Smyth 1993).

    Repeatedly:
      1. Move all sinks (out_deg == 0) to s2.
      2. Move all sources (in_deg == 0) to s1.
      3. Of the remaining nodes, move the one with max (out - in) to s1.
    Result is s1 + reversed(s2). Ties go to the earlier node in graph order.
    """
    active: dict[str, None] = dict.fromkeys(graph.nodes)
    out_deg: dict[str, int] = {n: graph.out_degree(n) for n in graph.nodes}
    in_deg: dict[str, int] = {n: graph.in_degree(n) for n in graph.nodes}

    s1: list[str] = []
    s2: list[str] = []

    def take(node: str) -> None:
        del active[node]
        for succ in graph.successors(node):
            if succ in active:
                in_deg[succ] -= 1
        for pred in graph.predecessors(node):
            if pred in active:
                out_deg[pred] -= 1

    while active:
        sinks = [n for n in active if out_deg[n] == 0]
        while sinks:
            for sink in sinks:
                take(sink)
                s2.append(sink)
            sinks = [n for n in active if out_deg[n] == 0]

        sources = [n for n in active if in_deg[n] == 0]
        while sources:
            for source in sources:
                take(source)
                s1.append(source)
            sources = [n for n in active if in_deg[n] == 0]

        if active:
            best = max(active, key=lambda n: out_deg[n] - in_deg[n])
            take(best)
            s1.append(best)

    s2.reverse()
    return s1 + s2


def remove_cycles(graph: nx.DiGraph) -> tuple[nx.DiGraph, set[tuple[str, str]]]:
    """Copy of ``graph`` with back-edges reversed and self-loops dropped.

    Returns the DAG and the reversed ``(src, tgt)`` pairs of the original graph.
    """
    if graph.number_of_nodes() == 0:
        return graph.copy(), set()

    position = {node: pos for pos, node in enumerate(greedy_fas_ordering(graph))}
    reversed_edges = {(src, tgt) for src, tgt in graph.edges() if src == tgt or position[src] > position[tgt]}

    dag: nx.DiGraph = nx.DiGraph()
    dag.add_nodes_from(graph.nodes)
    for src, tgt in graph.edges():
        if src == tgt:
            continue
        if (src, tgt) in reversed_edges:
            dag.add_edge(tgt, src)
        else:
            dag.add_edge(src, tgt)

    if reversed_edges:
        logger.debug("reversed %d back-edge(s) for layering", len(reversed_edges))
    return dag, reversed_edges


# ─── Layer Assignment ─────────────────────────────────────────────────────────


class LayerAssignment:
    """Rank of every node of a cycle-free copy of the working graph.

    Attributes:
        dag: The cycle-free graph the ranks were computed on.
        layers: Maps node id -> layer index (0 = first rank).
        layer_count: Total number of layers.
        reversed_edges: Edges reversed during cycle removal.
    """

    def __init__(
        self,
        dag: nx.DiGraph,
        layers: dict[str, int],
        layer_count: int,
        reversed_edges: set[tuple[str, str]],
    ) -> None:
        self.dag = dag
        self.layers = layers
        self.layer_count = layer_count
        self.reversed_edges = reversed_edges

    @classmethod
    def assign(cls, graph: nx.DiGraph) -> LayerAssignment:
        """Longest-path ranks by fixed-point iteration: rank[v] = max(rank[v], rank[u] + 1)."""
        dag, reversed_edges = remove_cycles(graph)
        layers: dict[str, int] = {node_id: 0 for node_id in graph.nodes}

        changed = True
        while changed:
            changed = False
            for src, tgt in dag.edges():
                if layers[tgt] < layers[src] + 1:
                    layers[tgt] = layers[src] + 1
                    changed = True

        layer_count = (max(layers.values()) + 1) if layers else 1
        return cls(dag=dag, layers=layers, layer_count=layer_count, reversed_edges=reversed_edges)


# ─── Dummy Node Insertion ─────────────────────────────────────────────────────

DUMMY_PREFIX = "__dummy_"


@dataclass
class DummyEdge:
    """Chain of dummy nodes standing in for one edge that spans several layers."""

    original_src: str
    original_tgt: str
    dummy_ids: list[str]


@dataclass
class AugmentedGraph:
    """Working graph where every edge joins adjacent layers."""

    graph: nx.DiGraph
    layers: dict[str, int]
    layer_count: int
    dummy_edges: list[DummyEdge] = field(default_factory=list)


def insert_dummy_nodes(la: LayerAssignment) -> AugmentedGraph:
    """Replace each edge u -> v with layer[v] - layer[u] > 1 by u -> d1 -> ... -> v."""
    g: nx.DiGraph = nx.DiGraph()
    g.add_nodes_from(la.dag.nodes)
    layers = dict(la.layers)
    dummy_edges: list[DummyEdge] = []

    for src, tgt in list(la.dag.edges()):
        span = layers[tgt] - layers[src]
        if span <= 1:
            g.add_edge(src, tgt)
            continue

        dummy_ids: list[str] = []
        prev = src
        for i in range(span - 1):
            dummy_id = f"{DUMMY_PREFIX}{len(dummy_edges)}_{i}"
            g.add_node(dummy_id)
            layers[dummy_id] = layers[src] + i + 1
            g.add_edge(prev, dummy_id)
            dummy_ids.append(dummy_id)
            prev = dummy_id
        g.add_edge(prev, tgt)
        dummy_edges.append(DummyEdge(original_src=src, original_tgt=tgt, dummy_ids=dummy_ids))

    layer_count = (max(layers.values()) + 1) if layers else 1
    return AugmentedGraph(graph=g, layers=layers, layer_count=layer_count, dummy_edges=dummy_edges)


# ─── Crossing Minimisation (Barycenter) ───────────────────────────────────────


def minimise_crossings(aug: AugmentedGraph, max_passes: int = 24) -> list[list[str]]:
    """Per-layer node order with few crossings.

    The initial order is the node-list order (dummies after real nodes); sweeps
    alternate top-down and bottom-up until the crossing count stops improving.
    """
    layer_count = aug.layer_count
    ordering: list[list[str]] = [[] for _ in range(layer_count)]
    for node_id, layer in aug.layers.items():
        ordering[layer].append(node_id)

    best = count_crossings(ordering, aug.graph)
    if best == 0:
        return ordering

    for _pass in range(max_passes):
        candidate = [list(layer) for layer in ordering]

        for layer_idx in range(1, layer_count):
            prev = {nid: float(i) for i, nid in enumerate(candidate[layer_idx - 1])}
            candidate[layer_idx].sort(key=lambda a, p=prev: _barycenter(a, aug.graph, p, "incoming"))

        for layer_idx in range(max(0, layer_count - 2), -1, -1):
            nxt = {nid: float(i) for i, nid in enumerate(candidate[layer_idx + 1])}
            candidate[layer_idx].sort(key=lambda a, n=nxt: _barycenter(a, aug.graph, n, "outgoing"))

        new = count_crossings(candidate, aug.graph)
        if new >= best:
            break
        ordering, best = candidate, new

    return ordering


def _barycenter(node_id: str, graph: nx.DiGraph, neighbor_pos: dict[str, float], direction: str) -> float:
    """Average position of a node's neighbours in the adjacent layer; inf when it has none there."""
    neighbors = graph.predecessors(node_id) if direction == "incoming" else graph.successors(node_id)
    positions = [neighbor_pos[nb] for nb in neighbors if nb in neighbor_pos]
    if not positions:
        return float("inf")
    return sum(positions) / len(positions)


def count_crossings(ordering: list[list[str]], graph: nx.DiGraph) -> int:
    """Edge crossings between consecutive layers (pairwise inversion count)."""
    total = 0
    for l_idx in range(len(ordering) - 1):
        tgt_pos = {nid: i for i, nid in enumerate(ordering[l_idx + 1])}
        edges: list[tuple[int, int]] = []
        for sp, src_id in enumerate(ordering[l_idx]):
            if src_id in graph:
                edges.extend((sp, tgt_pos[nb]) for nb in graph.successors(src_id) if nb in tgt_pos)
        for i in range(len(edges)):
            for j in range(i + 1, len(edges)):
                ei, ej = edges[i], edges[j]
                if (ei[0] < ej[0] and ei[1] > ej[1]) or (ei[0] > ej[0] and ei[1] < ej[1]):
                    total += 1
    return total


# ─── Coordinate Assignment ────────────────────────────────────────────────────


@dataclass
class LayoutNode:
    """A box placed in rank space: ``y`` runs along the ranks, ``x`` across them."""

    id: str
    layer: int
    order: int
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> float:
        return self.x + self.width / 2


def assign_coordinates(
    ordering: list[list[str]],
    aug: AugmentedGraph,
    sizes: dict[str, Size],
    direction: Direction,
    config: LayoutConfig,
) -> list[LayoutNode]:
    """Place every node of the augmented graph in rank space.

    For LR the boxes are rotated before placement (width <-> height); the
    caller transposes the result. Dummy nodes take no space of their own.
    """

    def dims(node_id: str) -> tuple[float, float]:
        size = sizes.get(node_id)
        if size is None:
            return (0.0, 0.0)
        return (size.height, size.width) if direction.is_horizontal else (size.width, size.height)

    gap = config.node_spacing
    layer_extent = [max((dims(n)[1] for n in layer), default=0.0) for layer in ordering]
    layer_y: list[float] = []
    y = 0.0
    for extent in layer_extent:
        layer_y.append(y)
        y += extent + config.rank_spacing

    layer_widths = [sum(dims(n)[0] for n in layer) + gap * max(0, len(layer) - 1) for layer in ordering]
    center_line = max(layer_widths, default=0.0) / 2

    nodes: list[LayoutNode] = []
    for layer_idx, layer_nodes in enumerate(ordering):
        x = center_line - layer_widths[layer_idx] / 2
        for order, node_id in enumerate(layer_nodes):
            width, height = dims(node_id)
            top = layer_y[layer_idx] + (layer_extent[layer_idx] - height) / 2
            nodes.append(LayoutNode(node_id, layer_idx, order, x, top, width, height))
            x += width + gap

    # ── Barycenter refinement: small shifts aligning a layer with its neighbours ──

    by_id = {n.id: n for n in nodes}

    for layer_idx in range(1, len(ordering)):
        pairs = [
            (by_id[node_id].center, by_id[pred].center)
            for node_id in ordering[layer_idx]
            for pred in aug.graph.predecessors(node_id)
            if not pred.startswith(DUMMY_PREFIX) and by_id[pred].layer + 1 == layer_idx
        ]
        _shift_layer(ordering[layer_idx], by_id, pairs, gap)

    for layer_idx in range(max(0, len(ordering) - 2), -1, -1):
        pairs = [
            (by_id[node_id].center, by_id[succ].center)
            for node_id in ordering[layer_idx]
            for succ in aug.graph.successors(node_id)
            if not succ.startswith(DUMMY_PREFIX) and by_id[succ].layer == layer_idx + 1
        ]
        _shift_layer(ordering[layer_idx], by_id, pairs, gap)

    if nodes:
        min_x = min(n.x for n in nodes)
        for n in nodes:
            n.x -= min_x

    return nodes


def _shift_layer(
    layer_nodes: list[str],
    by_id: dict[str, LayoutNode],
    pairs: list[tuple[float, float]],
    max_shift: float,
) -> None:
    """Shift a whole layer by the mean offset between its nodes and their neighbours."""
    if not pairs:
        return
    shift = sum(theirs for _, theirs in pairs) / len(pairs) - sum(ours for ours, _ in pairs) / len(pairs)
    if abs(shift) > max_shift:
        return
    for node_id in layer_nodes:
        by_id[node_id].x += shift


# ─── Intra-Loop Placement ─────────────────────────────────────────────────────


def place_children(graph: Graph, loop: LoopNode, direction: Direction, config: LayoutConfig) -> None:
    """Stack a loop's children along the primary axis, centred on the cross axis.

    Positions are relative to the loop's top-left corner.
    """
    box = loop.size or loop_size(graph, loop, direction, config)
    cursor = config.loop_padding
    for child in graph.children_of(loop.id):
        size = child.size or node_size(child, config)
        if direction.is_horizontal:
            child.position = Position(cursor, (box.height - size.height) / 2)
            cursor += size.width + config.child_spacing
        else:
            child.position = Position((box.width - size.width) / 2, cursor)
            cursor += size.height + config.child_spacing


# ─── Entry Point ──────────────────────────────────────────────────────────────


def layout(graph: Graph, direction: Direction | str = Direction.TB, config: LayoutConfig | None = None) -> Graph:
    """Write position, size and handle sides of every node; returns the same graph.

    Depends only on topology and node order, so repeated calls agree.
    """
    direction = Direction.coerce(direction)
    config = config or LayoutConfig()
    source_side, target_side = direction.handles

    sizes: dict[str, Size] = {}
    for node in graph.nodes:
        if isinstance(node, LoopNode):
            sizes[node.id] = loop_size(graph, node, direction, config)
        else:
            sizes[node.id] = node_size(node, config)

    working = collapse_loops(graph)
    la = LayerAssignment.assign(working)
    aug = insert_dummy_nodes(la)
    ordering = minimise_crossings(aug)
    placed = {n.id: n for n in assign_coordinates(ordering, aug, sizes, direction, config)}

    for node in graph.nodes:
        node.size = sizes[node.id]
        node.source_handle = source_side
        node.target_handle = target_side
        spot = placed.get(node.id)
        if spot is None:
            continue
        across, along = spot.x + config.margin, spot.y + config.margin
        node.position = Position(along, across) if direction.is_horizontal else Position(across, along)

    for loop in graph.loops():
        place_children(graph, loop, direction, config)

    logger.debug(
        "laid out %d node(s) in %d layer(s), %d dummy chain(s), direction %s",
        len(graph.nodes),
        la.layer_count,
        len(aug.dummy_edges),
        direction.value,
    )
    return graph
