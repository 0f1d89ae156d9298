"""Flat document I/O: ``{<root key>: [entry, ...]}`` as YAML (or JSON) text or a mapping.

The root key is an opaque identifier (``<name>_<version>`` when written by the
serializer); readers only ever look at the first key.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import yaml

from section_flow.diagnostics import DocumentError

logger = logging.getLogger(__name__)

END_TARGET = "END"
DEFAULT_TARGET = "DEFAULT"

SKIP_KEY = "skip"
DESC_KEY = "desc"
SIZE_KEY = "size"
LABEL_KEY = "Label"
DEV_KEY = "Dev"
VARS_KEY = "Vars"
NEXT_KEY = "Next"

SECTION_KEYS = (DESC_KEY, SIZE_KEY, LABEL_KEY, DEV_KEY, VARS_KEY, NEXT_KEY)
SKIP_KEYS = (SKIP_KEY, LABEL_KEY, NEXT_KEY)


def root_key(name: str, version: str) -> str:
    return f"{name}_{version}"


def _load_text(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DocumentError(f"document is not valid YAML/JSON: {exc}") from exc


def load_document(source: str | bytes | Mapping[str, Any] | None) -> tuple[str | None, list[Any]]:
    """Return ``(root_key, entries)`` for a document.

    ``None``, blank text and an empty mapping are an empty document. Anything
    that is not a mapping, or whose first value is not a list, raises
    ``DocumentError``, as does a byte string that is not UTF-8.
    """
    if isinstance(source, bytes):
        try:
            source = source.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DocumentError(f"document is not valid UTF-8: {exc}") from exc
    parsed = _load_text(source) if isinstance(source, str) else source

    if parsed is None:
        return None, []
    if not isinstance(parsed, Mapping):
        raise DocumentError(f"document root must be a mapping, got {type(parsed).__name__}")
    if not parsed:
        logger.debug("document has no keys, treating as empty")
        return None, []

    key = next(iter(parsed))
    entries = parsed[key]
    if entries is None:
        return str(key), []
    if not isinstance(entries, list):
        raise DocumentError(f"value under root key {key!r} must be a list, got {type(entries).__name__}")
    logger.debug("extracted %d entries under root key %r", len(entries), key)
    return str(key), entries


def dump_document(document: Mapping[str, Any]) -> str:
    """Dump a document as block-style YAML, keeping key order and long lines."""
    return yaml.safe_dump(
        dict(document),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )


def same_document(a: str | Mapping[str, Any] | None, b: str | Mapping[str, Any] | None) -> bool:
    """True when both documents load to the same content, whatever the formatting."""
    if a == b:
        return True
    try:
        left = _load_text(a) if isinstance(a, str) else a
        right = _load_text(b) if isinstance(b, str) else b
    except DocumentError:
        logger.debug("document comparison failed to load one side", exc_info=True)
        return False
    return left == right
