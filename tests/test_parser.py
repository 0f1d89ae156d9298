"""Tests for parser.py: entries to nodes, Next rules to prioritised edges, parse warnings."""

from __future__ import annotations

from section_flow import diagnostics as diag
from section_flow.graph import START_ID, EndNode, Graph, SectionNode, SkipNode
from section_flow.parser import ParseResult, as_text, build_graph

# ─── Helpers ──────────────────────────────────────────────────────────────────


def rule(target: str, condition: str = "true") -> dict[str, str]:
    return {"condition": condition, "target": target}


def section(desc: str, label: str | None = None, *rules: dict[str, str], size: int = 1) -> dict:
    entry: dict = {"desc": desc, "size": size}
    if label is not None:
        entry["Label"] = label
    if rules:
        entry["Next"] = list(rules)
    return entry


COERCION_TEXT = """\
p_1:
  - desc: a
    size: 1
    Next:
      - {condition: true, target: END}
      - {condition: 3, target: END}
      - {target: END}
"""


def doc(*entries: dict) -> dict:
    return {"proto_1": list(entries)}


def codes(result: ParseResult) -> list[str]:
    return [d.code for d in result.diagnostics]


def targets(graph: Graph, source_id: str) -> list[tuple[str, str, int | None]]:
    return [(e.target, e.condition, e.priority) for e in graph.outgoing(source_id)]


def ends(graph: Graph) -> list[EndNode]:
    return [n for n in graph.nodes if isinstance(n, EndNode)]


# ─── Basic Shape ──────────────────────────────────────────────────────────────


class TestEmptyAndMalformed:
    def test_empty_document_is_start_only(self):
        """No entries: just the start node, no edges, no diagnostics."""
        for source in (None, "", {}, {"proto_1": []}):
            result = build_graph(source)
            assert [n.id for n in result.graph.nodes] == [START_ID]
            assert result.graph.edges == []
            assert result.diagnostics == []
            assert not result.fatal

    def test_root_not_mapping_is_fatal(self):
        """A list root gives a start-only graph with the fatal flag."""
        result = build_graph("- desc: a\n  size: 1\n")
        assert result.fatal
        assert [n.id for n in result.graph.nodes] == [START_ID]
        assert codes(result) == [diag.MALFORMED_DOCUMENT]
        assert result.diagnostics[0].is_error

    def test_value_not_list_is_fatal(self):
        """A mapping under the root key is malformed, never raised."""
        result = build_graph({"proto_1": {"desc": "a"}})
        assert result.fatal
        assert codes(result) == [diag.MALFORMED_DOCUMENT]

    def test_unpacks_to_graph_and_diagnostics(self):
        """ParseResult iterates as (graph, diagnostics)."""
        graph, diagnostics = build_graph(doc(section("a")))
        assert isinstance(graph, Graph)
        assert diagnostics == []

    def test_start_connects_to_first_entry(self):
        """Start has exactly one default edge, to entry 0."""
        graph, _ = build_graph(doc(section("a"), section("b")))
        edges = graph.outgoing(START_ID)
        assert [(e.target, e.priority, e.data.is_default) for e in edges] == [("section-0", 0, True)]

    def test_dynamic_root_key(self):
        """The root key text does not matter."""
        graph, _ = build_graph({"weird key 99": [section("a")]})
        assert [n.id for n in graph.content_nodes()] == ["section-0"]


class TestNodes:
    def test_section_fields(self):
        """desc, size, Label, Dev and Vars land on the section node."""
        entry = section("temp", "T", size=4)
        entry["Dev"] = {"sensor": {"addr": "0x10", "scale": 2}}
        entry["Vars"] = {"t": "raw * 0.1"}
        graph, _ = build_graph(doc(entry))
        node = graph.node("section-0")
        assert isinstance(node, SectionNode)
        assert node.description == "temp"
        assert node.byte_size == 4
        assert node.label == "T"
        assert node.devices == {"sensor": {"addr": "0x10", "scale": "2"}}
        assert node.variables == {"t": "raw * 0.1"}
        assert node.sequence_index == 0

    def test_skip_entry(self):
        """An entry with a skip key becomes a skip node sized by that key."""
        graph, _ = build_graph(doc(section("a", None, rule("DEFAULT")), {"skip": 6, "Label": "S"}))
        node = graph.node("skip-1")
        assert isinstance(node, SkipNode)
        assert node.byte_size == 6
        assert node.label == "S"
        assert node.sequence_index == 1

    def test_missing_desc_defaults(self):
        """A section without desc is called 'Section <n>'."""
        graph, _ = build_graph(doc({"size": 1}, {"size": 1}))
        assert graph.node("section-1").description == "Section 2"

    def test_invalid_size_warns(self):
        """Non-positive or non-numeric sizes become 1 with a warning."""
        result = build_graph(doc({"desc": "a", "size": 0}, {"desc": "b", "size": "x"}, {"skip": "3"}))
        assert result.graph.node("section-0").byte_size == 1
        assert result.graph.node("section-1").byte_size == 1
        assert result.graph.node("skip-2").byte_size == 3
        assert codes(result).count(diag.INVALID_SIZE) == 2

    def test_unknown_keys_kept(self):
        """Keys the parser does not know are carried on the node."""
        entry = section("a")
        entry["Points"] = [1, 2]
        graph, _ = build_graph(doc(entry))
        assert graph.node("section-0").extra == {"Points": [1, 2]}

    def test_non_mapping_entry(self):
        """A scalar entry becomes an empty section plus a warning."""
        result = build_graph(doc("oops"))
        assert isinstance(result.graph.node("section-0"), SectionNode)
        assert diag.INVALID_ENTRY in codes(result)


# ─── Next Rules ───────────────────────────────────────────────────────────────


class TestRules:
    def test_list_order_is_priority(self):
        """Rules become edges with priority equal to their list position."""
        graph, _ = build_graph(
            doc(
                section("a", "A", rule("C", "x > 1"), rule("B")),
                section("b", "B", rule("END")),
                section("c", "C", rule("END")),
            )
        )
        assert targets(graph, "section-0") == [("section-2", "x > 1", 0), ("section-1", "true", 1)]
        assert [e.data.is_default for e in graph.outgoing("section-0")] == [True, False]

    def test_each_end_is_a_fresh_node(self):
        """Every END target materializes its own End node."""
        graph, _ = build_graph(
            doc(
                section("a", "A", rule("END", "x"), rule("B")),
                section("b", "B", rule("END")),
            )
        )
        assert len(ends(graph)) == 2
        assert all(n.missing_label is None for n in ends(graph))

    def test_default_goes_to_next_entry(self):
        """DEFAULT resolves to the following entry."""
        graph, _ = build_graph(doc(section("a", None, rule("DEFAULT")), section("b", None, rule("END"))))
        assert targets(graph, "section-0") == [("section-1", "true", 0)]

    def test_default_at_last_entry(self):
        """DEFAULT at the end yields no edge and no warning."""
        result = build_graph(doc(section("a", None, rule("DEFAULT"))))
        assert result.graph.outgoing("section-0") == []
        assert result.diagnostics == []

    def test_self_reference_becomes_self_edge(self):
        """A jump to the entry's own label is a plain self-edge at this stage."""
        graph, _ = build_graph(doc(section("a", "A", rule("A", "x>0"), rule("END"))))
        assert graph.outgoing("section-0")[0].target == "section-0"

    def test_condition_coercion(self):
        """YAML booleans and numbers become strings; a missing condition is empty."""
        graph, _ = build_graph(COERCION_TEXT)
        assert [e.condition for e in graph.outgoing("section-0")] == ["true", "3", ""]

    def test_rule_without_target(self):
        """A rule with no target is skipped with a warning; priorities stay contiguous."""
        result = build_graph(doc(section("a", None, {"condition": "x"}, rule("END"))))
        assert codes(result) == [diag.INVALID_RULE]
        assert [e.priority for e in result.graph.outgoing("section-0")] == [0]

    def test_next_not_a_list(self):
        """A scalar Next is ignored with a warning."""
        result = build_graph(doc({"desc": "a", "size": 1, "Next": "END"}))
        assert diag.INVALID_RULE in codes(result)
        assert result.graph.outgoing("section-0") == []


# ─── Parse Warnings ───────────────────────────────────────────────────────────


class TestWarnings:
    def test_unresolved_label(self):
        """An unknown target gives a warning and an error-severity sink, never an exception."""
        result = build_graph(doc(section("a", "A", rule("nowhere"))))
        assert codes(result) == [diag.UNRESOLVED_LABEL]
        assert result.diagnostics[0].object_id == "nowhere"
        [sink] = ends(result.graph)
        assert sink.missing_label == "nowhere"
        assert sink.severity == "error"
        assert result.graph.outgoing("section-0")[0].target == sink.id

    def test_duplicate_label_last_wins(self):
        """A label defined twice warns and resolves to the later entry."""
        result = build_graph(
            doc(
                section("a", "X", rule("DEFAULT")),
                section("b", "X", rule("DEFAULT")),
                section("c", None, rule("X")),
            )
        )
        assert codes(result) == [diag.DUPLICATE_LABEL]
        assert targets(result.graph, "section-2") == [("section-1", "true", 0)]

    def test_missing_next_on_inner_entry(self):
        """Only non-last entries without rules are reported."""
        result = build_graph(doc(section("a"), section("b")))
        assert codes(result) == [diag.MISSING_NEXT]
        assert result.diagnostics[0].object_id == "section-0"
        assert result.graph.outgoing("section-0") == []

    def test_warnings_property(self):
        """warnings filters out errors."""
        result = build_graph(doc(section("a"), section("b", None, rule("gone"))))
        assert {d.code for d in result.warnings} == {diag.MISSING_NEXT, diag.UNRESOLVED_LABEL}


class TestAsText:
    def test_scalars(self):
        """None is empty, booleans are lowercase, the rest is str()."""
        assert as_text(None) == ""
        assert as_text(False) == "false"
        assert as_text(2.5) == "2.5"
        assert as_text("x") == "x"
