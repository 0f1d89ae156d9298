"""Warnings and errors returned as data, never raised across the public API."""

from __future__ import annotations

from dataclasses import dataclass

INFO = "info"
WARNING = "warning"
ERROR = "error"

# Parse warnings
DUPLICATE_LABEL = "duplicate-label"
UNRESOLVED_LABEL = "unresolved-label"
MISSING_NEXT = "missing-next"
INVALID_ENTRY = "invalid-entry"
INVALID_SIZE = "invalid-size"
INVALID_RULE = "invalid-rule"
MALFORMED_DOCUMENT = "malformed-document"

# Structural warnings
UNREACHABLE_NODE = "unreachable-node"
LOOP_WITHOUT_EXIT = "loop-without-exit"
EMPTY_LOOP = "empty-loop"
AMBIGUOUS_LOOP_CONDITION = "ambiguous-loop-condition"
NESTED_LOOP_FLATTENED = "nested-loop-flattened"
DROPPED_SELF_LOOP = "dropped-self-loop"
PRIORITY_INVARIANT = "priority-invariant"


@dataclass
class Diagnostic:
    level: str
    code: str
    message: str
    object_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.level == ERROR

    def __str__(self) -> str:
        where = f" [{self.object_id}]" if self.object_id else ""
        return f"{self.level}: {self.code}{where}: {self.message}"


def warning(code: str, message: str, object_id: str | None = None) -> Diagnostic:
    return Diagnostic(level=WARNING, code=code, message=message, object_id=object_id)


def error(code: str, message: str, object_id: str | None = None) -> Diagnostic:
    return Diagnostic(level=ERROR, code=code, message=message, object_id=object_id)


class SectionFlowError(Exception):
    """Base class for errors raised by section_flow."""


class DocumentError(SectionFlowError):
    """The flat document does not have the ``{key: [entries]}`` shape."""


class GraphEditError(SectionFlowError, ValueError):
    """An interactive edit was rejected; the graph is left unchanged."""
