"""Flat-to-graph parser.

Pass 1 creates one Section/Skip node per entry and builds the label map.
Pass 2 turns every ``Next`` list into prioritised edges (list order = priority),
materialising a fresh End node per ``END`` target, resolving ``DEFAULT`` to the
next entry and turning unknown labels into error sinks.
Finally a Start node is connected to the first entry.

Loop synthesis is a separate pass (see ``section_flow.loops``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from section_flow import diagnostics as diag
from section_flow.diagnostics import Diagnostic, DocumentError
from section_flow.document import (
    DEFAULT_TARGET,
    DESC_KEY,
    DEV_KEY,
    END_TARGET,
    LABEL_KEY,
    NEXT_KEY,
    SECTION_KEYS,
    SIZE_KEY,
    SKIP_KEY,
    SKIP_KEYS,
    VARS_KEY,
    load_document,
)
from section_flow.graph import START_ID, EndNode, Graph, SectionNode, SkipNode, StartNode

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """Best-effort graph plus everything worth telling the user about it.

    Iterating yields ``(graph, diagnostics)``.
    """

    graph: Graph
    diagnostics: list[Diagnostic] = field(default_factory=list)
    fatal: bool = False

    def __iter__(self) -> Iterator[Any]:
        yield self.graph
        yield self.diagnostics

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.level == diag.WARNING]


# ─── Scalar Coercion ──────────────────────────────────────────────────────────


def as_text(value: Any) -> str:
    """YAML turns ``true``/``1`` into bool/int; conditions are always strings."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _coerce_size(value: Any, index: int, key: str, out: list[Diagnostic]) -> int:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    out.append(
        diag.warning(
            diag.INVALID_SIZE,
            f"entry {index}: {key!r} must be a positive integer, got {value!r}; using 1",
            object_id=str(index),
        )
    )
    return 1


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(k): as_text(v) for k, v in value.items()}


def _device_map(value: Any) -> dict[str, dict[str, str]]:
    if not isinstance(value, Mapping):
        return {}
    return {str(name): _string_map(fields) for name, fields in value.items()}


def _label_of(item: Mapping[str, Any]) -> str | None:
    label = item.get(LABEL_KEY)
    if label is None or label == "":
        return None
    return as_text(label)


# ─── Node Construction ────────────────────────────────────────────────────────


def _make_node(index: int, item: Any, out: list[Diagnostic]) -> SectionNode | SkipNode:
    if not isinstance(item, Mapping):
        out.append(
            diag.warning(
                diag.INVALID_ENTRY,
                f"entry {index} is not a mapping ({type(item).__name__}); kept as an empty section",
                object_id=str(index),
            )
        )
        return SectionNode(id=f"section-{index}", description=f"Section {index + 1}", sequence_index=index)

    if SKIP_KEY in item:
        return SkipNode(
            id=f"skip-{index}",
            byte_size=_coerce_size(item.get(SKIP_KEY), index, SKIP_KEY, out),
            label=_label_of(item),
            sequence_index=index,
            extra={k: v for k, v in item.items() if k not in SKIP_KEYS},
        )

    desc = item.get(DESC_KEY)
    return SectionNode(
        id=f"section-{index}",
        description=as_text(desc) if desc not in (None, "") else f"Section {index + 1}",
        byte_size=_coerce_size(item.get(SIZE_KEY), index, SIZE_KEY, out),
        label=_label_of(item),
        devices=_device_map(item.get(DEV_KEY)),
        variables=_string_map(item.get(VARS_KEY)),
        sequence_index=index,
        extra={k: v for k, v in item.items() if k not in SECTION_KEYS},
    )


# ─── Target Resolution ────────────────────────────────────────────────────────


def _resolve_target(
    graph: Graph,
    source: SectionNode | SkipNode,
    target: str,
    node_ids: list[str],
    labels: dict[str, str],
    out: list[Diagnostic],
) -> str | None:
    """Map a ``Next`` target to a node id, creating End/placeholder nodes as needed.

    Returns ``None`` when the rule produces no edge (``DEFAULT`` at the last entry).
    """
    if target == END_TARGET:
        return graph.add_node(EndNode(id=graph.new_id("end"))).id

    if target == DEFAULT_TARGET:
        next_index = source.sequence_index + 1
        if next_index < len(node_ids):
            return node_ids[next_index]
        logger.debug("DEFAULT at last entry %s: no continuation", source.id)
        return None

    if source.label is not None and target == source.label:
        logger.debug("self-reference on label %r at %s", target, source.id)
        return source.id

    if target in labels:
        return labels[target]

    out.append(
        diag.warning(
            diag.UNRESOLVED_LABEL,
            f"entry {source.sequence_index} jumps to undefined label {target!r}",
            object_id=target,
        )
    )
    placeholder = EndNode(id=graph.new_id(f"missing-{target}"), missing_label=target, severity=diag.ERROR)
    return graph.add_node(placeholder).id


def _add_rules(
    graph: Graph,
    source: SectionNode | SkipNode,
    rules: list[Any],
    node_ids: list[str],
    labels: dict[str, str],
    out: list[Diagnostic],
) -> None:
    for priority, rule in enumerate(rules):
        if not isinstance(rule, Mapping) or rule.get("target") in (None, ""):
            out.append(
                diag.warning(
                    diag.INVALID_RULE,
                    f"entry {source.sequence_index}: rule {priority} has no target; ignored",
                    object_id=source.id,
                )
            )
            continue
        target_id = _resolve_target(graph, source, as_text(rule["target"]), node_ids, labels, out)
        if target_id is None:
            continue
        graph.add_edge(source.id, target_id, condition=as_text(rule.get("condition")), priority=priority)
    graph.renumber_source(source.id)


# ─── Entry Point ──────────────────────────────────────────────────────────────


def build_graph(document: Any) -> ParseResult:
    """Parse a flat document (text or mapping) into an unnormalised graph.

    Malformed shape never raises: the result holds a Start-only graph and
    ``fatal=True``.
    """
    graph = Graph()
    graph.add_node(StartNode(id=START_ID))

    try:
        _, entries = load_document(document)
    except DocumentError as exc:
        logger.warning("malformed document: %s", exc)
        return ParseResult(graph=graph, diagnostics=[diag.error(diag.MALFORMED_DOCUMENT, str(exc))], fatal=True)

    out: list[Diagnostic] = []
    content: list[SectionNode | SkipNode] = []
    labels: dict[str, str] = {}

    for index, item in enumerate(entries):
        node = _make_node(index, item, out)
        graph.add_node(node)
        content.append(node)
        if node.label is None:
            continue
        if node.label in labels:
            out.append(
                diag.warning(
                    diag.DUPLICATE_LABEL,
                    f"label {node.label!r} defined more than once; entry {index} wins",
                    object_id=node.label,
                )
            )
        labels[node.label] = node.id
        logger.debug("label %r -> %s", node.label, node.id)

    node_ids = [n.id for n in content]
    last = len(entries) - 1
    for index, item in enumerate(entries):
        source = content[index]
        rules = item.get(NEXT_KEY) if isinstance(item, Mapping) else None
        if rules is not None and not isinstance(rules, list):
            out.append(
                diag.warning(diag.INVALID_RULE, f"entry {index}: 'Next' must be a list; ignored", object_id=source.id)
            )
            rules = None
        if not rules:
            if index != last:
                out.append(
                    diag.warning(
                        diag.MISSING_NEXT,
                        f"entry {index} has no Next rules and is not the last entry",
                        object_id=source.id,
                    )
                )
            continue
        _add_rules(graph, source, rules, node_ids, labels, out)

    if node_ids:
        graph.add_edge(START_ID, node_ids[0])
        graph.renumber_source(START_ID)

    logger.debug("parsed %d entries into %d nodes / %d edges", len(entries), len(graph.nodes), len(graph.edges))
    return ParseResult(graph=graph, diagnostics=out)

