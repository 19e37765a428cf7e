"""Lenient JSON recovery for model responses that were asked to return JSON."""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY = re.compile(r'^(\s*)([A-Za-z_][A-Za-z0-9_]*)(":\s)', re.MULTILINE)
_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _from_code_block(text: str) -> Optional[Dict[str, Any]]:
    match = _CODE_BLOCK.search(text)
    return _loads_object(match.group(1).strip()) if match else None


def _from_object_match(text: str) -> Optional[Dict[str, Any]]:
    match = _OBJECT.search(text)
    return _loads_object(match.group(0)) if match else None


def _direct(text: str) -> Optional[Dict[str, Any]]:
    return _loads_object(text.strip())


def _from_brace_slice(text: str) -> Optional[Dict[str, Any]]:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(repair_json(text[start : end + 1]))


def _close_truncated(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    if start == -1:
        return None
    candidate = repair_json(text[start:].rstrip().rstrip(","))
    missing_brackets = candidate.count("[") - candidate.count("]")
    missing_braces = candidate.count("{") - candidate.count("}")
    if missing_braces <= 0 or missing_braces > 3 or missing_brackets < 0:
        return None
    return _loads_object(candidate + "]" * missing_brackets + "}" * missing_braces)


_METHODS: List[Callable[[str], Optional[Dict[str, Any]]]] = [
    _from_code_block,
    _from_object_match,
    _direct,
    _from_brace_slice,
    _close_truncated,
]


def repair_json(text: str) -> str:
    """Fix the two slips models make most: trailing commas and half-quoted keys."""

    text = _UNQUOTED_KEY.sub(r'\1"\2\3', text)
    return _TRAILING_COMMA.sub(r"\1", text)


def parse_json_payload(text: str) -> Optional[Dict[str, Any]]:
    """Return the first JSON object recoverable from ``text``, or ``None``.

    Tries, in order: a fenced code block, the widest ``{...}`` span, the whole
    text, a repaired first-to-last brace slice, and finally closing up to three
    braces left open by a truncated response.
    """

    if not text:
        return None
    for method in _METHODS:
        payload = method(text)
        if payload is not None:
            return payload
    return None


def mine_labelled_values(text: str, labels: Iterable[str]) -> Dict[str, str]:
    """Pull ``label: value`` pairs out of text that is JSON-ish at best.

    Matches quoted or bare labels followed by ``:`` or ``=`` and captures a
    quoted string, a number, or the rest of the line.
    """

    found: Dict[str, str] = {}
    for label in labels:
        pattern = re.compile(
            r'["\']?\b' + re.escape(label) + r'\b["\']?\s*[:=]\s*(?:"([^"]*)"|\'([^\']*)\'|([^,\n}\]]+))',
            re.IGNORECASE,
        )
        match = pattern.search(text)
        if not match:
            continue
        value = next(group for group in match.groups() if group is not None).strip()
        if value:
            found[label] = value
    return found


def parse_amount(value: Any) -> Optional[float]:
    """Best-effort numeric read of ``10000``, ``"₹10,000"`` or ``"USD 1,250.50"``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _NUMBER.search(value)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


__all__ = ["mine_labelled_values", "parse_amount", "parse_json_payload", "repair_json"]
