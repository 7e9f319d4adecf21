"""Parser for the relaxed-JSON fragment Raydium logs on pool initialisation.

The AMM program prints a line such as::

    Program log: initialize2: InitializeInstruction2 { nonce: 254, open_time: 1700000000,
    init_pc_amount: 5000, init_coin_amount: 7000 }

Keys are bare identifiers, so the fragment is not valid JSON. The scanner below
quotes every identifier that sits in key position (right after ``{`` or ``,``
and right before ``:``) and leaves string literals alone; the balanced object
is then handed to :mod:`json`.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Optional

from ..models.schemas import LpInitLog

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_WHITESPACE = " \t\r\n"
LP_INIT_FIELDS = ("nonce", "open_time", "init_pc_amount", "init_coin_amount")


class MalformedLogFragment(ValueError):
    """Raised when a log fragment cannot be turned into a structured record."""


def find_log_entry(marker: str, log_lines: Iterable[str]) -> Optional[str]:
    """Return the first log line containing ``marker``."""

    for line in log_lines:
        if marker in line:
            return line
    return None


def _balanced_object(text: str) -> str:
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[: index + 1]
    raise MalformedLogFragment("Unbalanced braces in log fragment")


def quote_bare_keys(relaxed: str) -> str:
    """Rewrite ``{key: 1}`` style objects into strict JSON key syntax."""

    out = []
    index = 0
    length = len(relaxed)
    in_string = False
    expecting_key = False
    while index < length:
        char = relaxed[index]
        if in_string:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(relaxed[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
            index += 1
            continue
        if char == '"':
            in_string = True
            expecting_key = False
            out.append(char)
            index += 1
            continue
        if char in "{,":
            expecting_key = True
            out.append(char)
            index += 1
            continue
        if char in _WHITESPACE:
            out.append(char)
            index += 1
            continue
        if expecting_key:
            match = _IDENTIFIER_RE.match(relaxed, index)
            if match:
                cursor = match.end()
                while cursor < length and relaxed[cursor] in _WHITESPACE:
                    cursor += 1
                if cursor < length and relaxed[cursor] == ":":
                    out.append(f'"{match.group(0)}"')
                    index = match.end()
                    expecting_key = False
                    continue
        expecting_key = False
        out.append(char)
        index += 1
    return "".join(out)


def parse_relaxed_object(fragment: str) -> Dict[str, Any]:
    """Parse the first relaxed-JSON object found in ``fragment``."""

    start = fragment.find("{")
    if start < 0:
        raise MalformedLogFragment("Log fragment has no opening brace")
    relaxed = _balanced_object(fragment[start:])
    try:
        payload = json.loads(quote_bare_keys(relaxed))
    except json.JSONDecodeError as exc:
        raise MalformedLogFragment(f"Log fragment is not valid after key quoting: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedLogFragment("Log fragment did not decode to an object")
    return payload


def parse_lp_init_log(fragment: str) -> LpInitLog:
    """Parse the ``initialize2`` log fragment into an :class:`LpInitLog`."""

    payload = parse_relaxed_object(fragment)
    values: Dict[str, int] = {}
    for key in LP_INIT_FIELDS:
        value = payload.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedLogFragment(f"Log fragment field '{key}' missing or not an integer")
        values[key] = value
    return LpInitLog(**values)


__all__ = [
    "LP_INIT_FIELDS",
    "MalformedLogFragment",
    "find_log_entry",
    "parse_lp_init_log",
    "parse_relaxed_object",
    "quote_bare_keys",
]
