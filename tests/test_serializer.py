"""Tests for serializer.py: DFS order, label regeneration, loop re-expansion."""

from __future__ import annotations

import logging

from section_flow.api import parse
from section_flow.equivalence import graph_signature
from section_flow.graph import Graph, LoopNode
from section_flow.serializer import serialize, visit_order

# ─── Helpers ──────────────────────────────────────────────────────────────────


def rule(target: str, condition: str = "true") -> dict[str, str]:
    return {"condition": condition, "target": target}


def doc(*entries: dict) -> dict:
    return {"proto_1": list(entries)}


def entries_of(graph: Graph) -> list[dict]:
    return serialize(graph, "proto", "1")["proto_1"]


def snapshot(graph: Graph) -> tuple:
    nodes = [(n.id, n.parent_id, n.position, n.size) for n in graph.nodes]
    edges = [(e.id, e.source, e.target, e.condition, e.priority, e.data.is_default) for e in graph.edges]
    return nodes, edges, graph_signature(graph)


SELF_LOOP = doc({"desc": "A", "size": 1, "Label": "A", "Next": [rule("A", "x>0"), rule("END")]})

TWO_NODE_CYCLE = doc(
    {"desc": "A", "size": 1, "Label": "A", "Next": [rule("DEFAULT")]},
    {"desc": "B", "size": 1, "Label": "B", "Next": [rule("A", "x<3"), rule("END")]},
)

BRANCHING = doc(
    {"desc": "A", "size": 1, "Label": "A", "Next": [rule("C", "x"), rule("DEFAULT")]},
    {"desc": "B", "size": 2, "Label": "B", "Next": [rule("END")]},
    {"desc": "C", "size": 3, "Label": "C", "Next": [rule("END")]},
)

MULTI_EXIT = doc(
    {"desc": "A", "size": 1, "Label": "A", "Next": [rule("B"), rule("END", "err")]},
    {"desc": "B", "size": 1, "Label": "B", "Next": [rule("A", "x"), rule("END")]},
)

BRANCH_IN_CYCLE = doc(
    {"desc": "A", "size": 1, "Label": "A", "Next": [rule("B"), rule("C", "c")]},
    {"desc": "B", "size": 1, "Label": "B", "Next": [rule("D")]},
    {"desc": "C", "size": 1, "Label": "C", "Next": [rule("D")]},
    {"desc": "D", "size": 1, "Label": "D", "Next": [rule("A", "x"), rule("END")]},
)


# ─── Output Shape ─────────────────────────────────────────────────────────────


class TestShape:
    def test_root_key(self):
        """The root key is <name>_<version>."""
        graph, _ = parse(BRANCHING)
        assert list(serialize(graph, "modbus", "7")) == ["modbus_7"]

    def test_empty_graph(self):
        """A start-only graph serializes to an empty list."""
        graph, _ = parse(None)
        assert serialize(graph, "p", "1") == {"p_1": []}

    def test_key_order(self):
        """Section keys come out as desc, size, Label, Dev, Vars, extras, Next."""
        entry = {
            "Next": [rule("END")],
            "Vars": {"v": "a"},
            "Points": 5,
            "Dev": {"d": {"k": "1"}},
            "size": 2,
            "desc": "s",
        }
        graph, _ = parse(doc(entry))
        [out] = entries_of(graph)
        assert list(out) == ["desc", "size", "Label", "Dev", "Vars", "Points", "Next"]
        assert out["Dev"] == {"d": {"k": "1"}}
        assert out["Points"] == 5

    def test_skip_entry(self):
        """Skip entries carry only skip, Label and Next."""
        graph, _ = parse(doc({"desc": "a", "size": 1, "Next": [rule("DEFAULT")]}, {"skip": 4, "Next": [rule("END")]}))
        assert entries_of(graph)[1] == {"skip": 4, "Label": "L2", "Next": [rule("END")]}

    def test_no_next_when_no_edges(self):
        """A terminal section has no Next key."""
        graph, _ = parse(doc({"desc": "a", "size": 1}))
        assert entries_of(graph) == [{"desc": "a", "size": 1, "Label": "L1"}]

    def test_empty_condition_written_as_true(self):
        """An edge without a condition is written with condition 'true'."""
        graph, _ = parse(doc({"desc": "a", "size": 1, "Next": [{"target": "END"}]}))
        assert entries_of(graph)[0]["Next"] == [rule("END")]

    def test_graph_not_mutated(self):
        """Serializing leaves nodes and edges untouched."""
        graph, _ = parse(TWO_NODE_CYCLE)
        before = snapshot(graph)
        serialize(graph, "p", "1")
        assert snapshot(graph) == before


# ─── Traversal Order ──────────────────────────────────────────────────────────


class TestOrder:
    def test_default_edge_first(self):
        """The default branch is emitted before lower-precedence branches."""
        graph, _ = parse(BRANCHING)
        out = entries_of(graph)
        assert [e["desc"] for e in out] == ["A", "C", "B"]
        assert [e["Label"] for e in out] == ["L1", "L2", "L3"]
        assert out[0]["Next"] == [rule("L2", "x"), rule("L3")]

    def test_visit_order_ids(self):
        """visit_order lists content ids in first-visit order."""
        graph, _ = parse(BRANCHING)
        assert visit_order(graph) == ["section-0", "section-2", "section-1"]

    def test_unreachable_omitted_with_warning(self, caplog):
        """Nodes not reachable from start are left out and logged."""
        graph, _ = parse(doc({"desc": "a", "size": 1, "Next": [rule("END")]}, {"desc": "b", "size": 1}))
        with caplog.at_level(logging.WARNING, logger="section_flow.serializer"):
            out = entries_of(graph)
        assert [e["desc"] for e in out] == ["a"]
        assert "section-1" in caplog.text


# ─── Loops ────────────────────────────────────────────────────────────────────


class TestLoops:
    def test_self_loop_scenario(self):
        """A self-loop comes back as a self-jump under the loop condition plus a 'true' exit to END."""
        graph, _ = parse(SELF_LOOP)
        assert entries_of(graph) == [
            {"desc": "A", "size": 1, "Label": "L1", "Next": [rule("L1", "x>0"), rule("END")]},
        ]

    def test_two_node_cycle(self):
        """The closing edge is not repeated; the exit follows it."""
        graph, _ = parse(TWO_NODE_CYCLE)
        assert entries_of(graph) == [
            {"desc": "A", "size": 1, "Label": "L1", "Next": [rule("L2")]},
            {"desc": "B", "size": 1, "Label": "L2", "Next": [rule("L1", "x<3"), rule("END")]},
        ]

    def test_edge_into_loop_targets_first_child(self):
        """An edge to a loop is written as a jump to its first child."""
        graph, _ = parse(
            doc(
                {"desc": "P", "size": 1, "Next": [rule("DEFAULT")]},
                {"desc": "A", "size": 1, "Label": "A", "Next": [rule("A", "again"), rule("END")]},
            )
        )
        out = entries_of(graph)
        assert out[0]["Next"] == [rule("L2")]

    def test_loop_without_exit(self):
        """No exit rule is invented for a loop with no way out."""
        graph, _ = parse(doc({"desc": "A", "size": 1, "Label": "A", "Next": [rule("A", "x")]}))
        assert entries_of(graph)[0]["Next"] == [rule("L1", "x")]

    def test_loop_exit_to_section(self):
        """The exit rule names the section after the loop, which is emitted after the children."""
        graph, _ = parse(
            doc(
                {"desc": "A", "size": 1, "Label": "A", "Next": [rule("A", "more"), rule("DEFAULT")]},
                {"desc": "Z", "size": 1, "Next": [rule("END")]},
            )
        )
        out = entries_of(graph)
        assert [e["desc"] for e in out] == ["A", "Z"]
        assert out[0]["Next"] == [rule("L1", "more"), rule("L2")]

    def test_several_exits_keep_conditions(self):
        """With more than one exit, each is written under its own condition, in priority order."""
        graph, _ = parse(MULTI_EXIT)
        out = entries_of(graph)
        assert out[0]["Next"] == [rule("L2")]
        assert out[1]["Next"] == [rule("L1", "x"), rule("END", "err"), rule("END")]

    def test_branch_inside_cycle(self):
        """Children come out in visit order; the last one carries the exit, the jump back is written once."""
        graph, _ = parse(BRANCH_IN_CYCLE)
        out = entries_of(graph)
        assert [e["desc"] for e in out] == ["A", "B", "D", "C"]
        assert out[0]["Next"] == [rule("L2"), rule("L4", "c")]
        assert out[2]["Next"] == [rule("L1", "x")]
        assert out[3]["Next"] == [rule("L3"), rule("END")]


class TestUnresolvedTargets:
    def test_missing_label_written_back(self):
        """A jump to an undefined label keeps its original target text."""
        graph, _ = parse(doc({"desc": "a", "size": 1, "Next": [rule("nowhere", "c")]}))
        assert entries_of(graph)[0]["Next"] == [rule("nowhere", "c")]

    def test_missing_label_clashing_with_new_label(self):
        """If a regenerated label takes the missing name, the jump becomes END."""
        graph, _ = parse(doc({"desc": "a", "size": 1, "Next": [rule("L1", "c")]}))
        assert entries_of(graph)[0]["Next"] == [rule("END", "c")]

    def test_empty_loop_target_dropped(self, caplog):
        """An edge into a loop with no children cannot be written and is dropped."""
        graph, _ = parse(SELF_LOOP)
        graph.node("section-0").parent_id = None
        graph.edges.clear()
        [loop] = graph.loops()
        graph.add_edge("start", "section-0")
        graph.add_edge("section-0", loop.id, condition="x")
        graph.renumber_all()
        with caplog.at_level(logging.WARNING, logger="section_flow.serializer"):
            out = entries_of(graph)
        assert "Next" not in out[0]
        assert "dropping rule" in caplog.text

    def test_unwritable_loop_exit_dropped(self, caplog):
        """One of several exits that cannot be written is dropped with a warning; the rest stay."""
        graph, _ = parse(MULTI_EXIT)
        [loop] = graph.loops()
        graph.add_node(LoopNode(id="hole"))
        graph.outgoing(loop.id)[0].target = "hole"
        with caplog.at_level(logging.WARNING, logger="section_flow.serializer"):
            out = entries_of(graph)
        assert out[1]["Next"] == [rule("L1", "x"), rule("END")]
        assert "dropping rule" in caplog.text
