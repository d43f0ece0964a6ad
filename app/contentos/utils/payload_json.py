"""Utilities for reading automation-service response bodies and for stable JSON."""

from __future__ import annotations
import json
import re
from typing import Any, Iterable, Optional


def _strip_code_fences(text: str) -> str:
    """Remove surrounding ```...``` fences (with or without 'json') if present."""
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = re.sub(r"^```[A-Za-z0-9_-]*\s*", "", t, flags=re.DOTALL)
        t = re.sub(r"\s*```$", "", t, flags=re.DOTALL)
    return t.strip()


def parse_body(text: str) -> Optional[Any]:
    """
    Parse a response body as JSON.
    - Tolerates code fences around the document.
    - Returns None when the body is empty or not JSON (callers keep the raw text).
    """
    if not text or not text.strip():
        return None
    try:
        return json.loads(_strip_code_fences(text))
    except json.JSONDecodeError:
        return None


def find_first_string(value: Any, preferred_keys: Iterable[str] = ()) -> str:
    """
    Depth-first search for the first non-empty string. In every mapping the
    preferred keys are searched first (in the given order), then the rest.
    """
    preferred = tuple(preferred_keys)
    visited: set[int] = set()

    def _walk(node: Any) -> str:
        if not node:
            return ""
        if isinstance(node, str):
            return node
        if not isinstance(node, (dict, list)):
            return ""
        if id(node) in visited:
            return ""
        visited.add(id(node))

        if isinstance(node, list):
            for item in node:
                found = _walk(item)
                if found:
                    return found
            return ""

        for key in preferred:
            if key in node:
                found = _walk(node[key])
                if found:
                    return found
        for key, item in node.items():
            if key in preferred:
                continue
            found = _walk(item)
            if found:
                return found
        return ""

    return _walk(value)


def canonical_dumps(value: Any) -> str:
    """Byte-stable serialization used for change detection."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
