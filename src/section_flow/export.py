"""View-model export: plain dicts (JSON-ready) for a node/edge canvas."""

from __future__ import annotations

from typing import Any

from section_flow.graph import Edge, EndNode, Graph, LoopNode, Node, SectionNode, SkipNode


def _node_data(node: Node) -> dict[str, Any]:
    data: dict[str, Any] = {"type": node.kind.value}
    if isinstance(node, SectionNode):
        data.update(desc=node.description, size=node.byte_size, displayIndex=node.sequence_index + 1)
        if node.devices:
            data["Dev"] = node.devices
        if node.variables:
            data["Vars"] = node.variables
    elif isinstance(node, SkipNode):
        data.update(size=node.byte_size, displayIndex=node.sequence_index + 1)
    elif isinstance(node, LoopNode):
        data["loopCondition"] = node.loop_condition
        if node.size is not None:
            data.update(width=node.size.width, height=node.size.height)
    elif isinstance(node, EndNode) and node.missing_label is not None:
        data.update(missingLabel=node.missing_label, severity=node.severity)
    return data


def node_view(node: Node) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": node.id,
        "type": node.kind.value,
        "position": {"x": node.position.x, "y": node.position.y},
        "data": _node_data(node),
    }
    if node.parent_id is not None:
        view["parentId"] = node.parent_id
        view["extent"] = "parent"
    if node.source_handle is not None:
        view["sourcePosition"] = node.source_handle
    if node.target_handle is not None:
        view["targetPosition"] = node.target_handle
    if isinstance(node, LoopNode) and node.size is not None:
        view["style"] = {"width": node.size.width, "height": node.size.height}
    return view


def edge_view(edge: Edge) -> dict[str, Any]:
    return {
        "id": edge.id,
        "source": edge.source,
        "target": edge.target,
        "label": edge.condition,
        "data": {
            "condition": edge.condition,
            "priority": edge.priority,
            "isDefault": edge.data.is_default,
        },
    }


def to_view_model(graph: Graph) -> dict[str, list[dict[str, Any]]]:
    """``{"nodes": [...], "edges": [...]}``; nodes keep graph order so loops precede their children."""
    return {
        "nodes": [node_view(n) for n in graph.nodes],
        "edges": [edge_view(e) for e in graph.edges],
    }
