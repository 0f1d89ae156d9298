"""Tests for cli.py: check / normalize / layout subcommands and exit codes."""

from __future__ import annotations

import json
import logging

import pytest
import yaml

from section_flow import diagnostics as diag
from section_flow.cli import main, parse_args
from section_flow.layout import Direction

# ─── Helpers ──────────────────────────────────────────────────────────────────


def rule(target: str, condition: str = "true") -> dict[str, str]:
    return {"condition": condition, "target": target}


CYCLE = {
    "proto_1": [
        {"desc": "A", "size": 1, "Label": "A", "Next": [rule("DEFAULT")]},
        {"desc": "B", "size": 1, "Label": "B", "Next": [rule("A", "x<3"), rule("END")]},
    ]
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def write_doc(tmp_path):
    def _write(document, name: str = "doc.yaml"):
        path = tmp_path / name
        text = document if isinstance(document, str) else yaml.safe_dump(document, sort_keys=False)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


# ─── Argument Parsing ─────────────────────────────────────────────────────────


class TestParseArgs:
    def test_direction_coerced(self):
        """--direction accepts lowercase and yields a Direction."""
        args = parse_args(["layout", "f.yaml", "--direction", "lr"])
        assert args.direction is Direction.LR

    def test_bad_direction(self):
        """An unknown direction is a usage error."""
        with pytest.raises(SystemExit) as excinfo:
            parse_args(["layout", "f.yaml", "--direction", "diagonal"])
        assert excinfo.value.code == 2

    def test_normalize_needs_name_and_version(self):
        """normalize requires --name and --version."""
        with pytest.raises(SystemExit):
            parse_args(["normalize", "f.yaml"])

    def test_verbose_and_quiet_exclusive(self):
        """-v and -q cannot be combined."""
        with pytest.raises(SystemExit):
            parse_args(["-v", "-q", "check", "f.yaml"])


# ─── check ────────────────────────────────────────────────────────────────────


class TestCheck:
    def test_clean_document(self, write_doc, capsys):
        """A clean document prints nothing and exits 0."""
        assert main(["check", str(write_doc(CYCLE))]) == 0
        assert capsys.readouterr().out == ""

    def test_warnings_printed(self, write_doc, capsys):
        """Warnings are listed but do not fail the command."""
        path = write_doc({"p_1": [{"desc": "a", "size": 1, "Next": [rule("nowhere")]}]})
        assert main(["check", str(path)]) == 0
        out = capsys.readouterr().out
        assert diag.UNRESOLVED_LABEL in out
        assert "nowhere" in out

    def test_malformed_fails(self, write_doc, capsys):
        """A malformed document exits 1."""
        assert main(["check", str(write_doc("- just\n- a list\n"))]) == 1
        assert diag.MALFORMED_DOCUMENT in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        """An unreadable file exits 2."""
        assert main(["-q", "check", str(tmp_path / "absent.yaml")]) == 2


# ─── normalize ────────────────────────────────────────────────────────────────


class TestNormalize:
    def test_to_stdout(self, write_doc, capsys):
        """The canonical document is printed as YAML under <name>_<version>."""
        assert main(["normalize", str(write_doc(CYCLE)), "--name", "meter", "--version", "3"]) == 0
        document = yaml.safe_load(capsys.readouterr().out)
        assert list(document) == ["meter_3"]
        assert [entry["Label"] for entry in document["meter_3"]] == ["L1", "L2"]

    def test_to_file(self, write_doc, tmp_path):
        """-o writes the YAML to a file."""
        target = tmp_path / "out.yaml"
        assert main(["normalize", str(write_doc(CYCLE)), "--name", "p", "--version", "1", "-o", str(target)]) == 0
        assert yaml.safe_load(target.read_text(encoding="utf-8"))["p_1"][1]["Next"] == [
            rule("L1", "x<3"),
            rule("END"),
        ]

    def test_malformed_fails(self, write_doc, capsys):
        """Nothing is written for a malformed document; the reason goes to stderr."""
        assert main(["normalize", str(write_doc("42\n")), "--name", "p", "--version", "1"]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert diag.MALFORMED_DOCUMENT in captured.err


# ─── layout ───────────────────────────────────────────────────────────────────


class TestLayout:
    def test_json_view_model(self, write_doc, capsys):
        """layout prints nodes and edges as JSON."""
        assert main(["layout", str(write_doc(CYCLE))]) == 0
        model = json.loads(capsys.readouterr().out)
        assert {"nodes", "edges"} == set(model)
        assert any(view["type"] == "loop" for view in model["nodes"])
        assert {view["sourcePosition"] for view in model["nodes"]} == {"bottom"}

    def test_left_to_right(self, write_doc, capsys):
        """--direction LR puts handles on the sides."""
        assert main(["layout", str(write_doc(CYCLE)), "--direction", "LR"]) == 0
        model = json.loads(capsys.readouterr().out)
        assert {view["sourcePosition"] for view in model["nodes"]} == {"right"}
        assert {view["targetPosition"] for view in model["nodes"]} == {"left"}

    def test_log_file(self, write_doc, tmp_path):
        """--log-file collects debug output."""
        log_path = tmp_path / "logs" / "run.log"
        assert main(["--log-file", str(log_path), "layout", str(write_doc(CYCLE)), "-o", str(tmp_path / "o.json")]) == 0
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "laid out" in log_path.read_text(encoding="utf-8")
