"""
JSON extraction from model output.

Models wrap JSON in markdown fences, prepend prose, leave raw newlines inside
string values, add trailing commas and get cut off at the token limit. The
cleaning steps run in a fixed order, and truncation repair is attempted only
after a plain parse fails.
"""

import json
import re
from typing import Any, List, Optional, Tuple

from vbs.exceptions import JSONExtractionError
from vbs.logging_config import logger


_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    text = _FENCE_OPEN.sub("", text, count=1)
    return _FENCE_CLOSE.sub("", text, count=1)


def escape_control_chars(text: str) -> str:
    """Escape raw control characters that sit inside string literals"""
    out: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
                continue
            elif ord(ch) < 0x20:
                out.append(f"\\u{ord(ch):04x}")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket (outside strings)"""
    out: List[str] = []
    in_string = False
    escaped = False
    pending_comma: Optional[int] = None

    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            continue

        if ch == '"':
            in_string = True
            pending_comma = None
        elif ch == ",":
            pending_comma = len(out)
        elif ch in "}]":
            if pending_comma is not None:
                del out[pending_comma]
            pending_comma = None
        elif not ch.isspace():
            pending_comma = None
        out.append(ch)
    return "".join(out)


def clean_json_text(text: str) -> str:
    """BOM, fences, leading prose, control characters, trailing commas"""
    text = text.lstrip("\ufeff").strip()
    text = strip_code_fences(text)

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if starts:
        text = text[min(starts):]

    text = escape_control_chars(text)
    return strip_trailing_commas(text)


def repair_truncated_json(text: str) -> str:
    """Cut at the last complete value and close the open brackets.

    The walk tracks string state and a bracket stack. A position is safe when
    everything before it forms complete values: just after an opening
    bracket, just after a closed container or string value, or just before a
    separating comma. Object keys are never safe cut points.
    """
    stack: List[str] = []
    after_colon: List[bool] = []
    in_string = False
    escaped = False
    string_is_key = False
    last_safe: Optional[Tuple[int, Tuple[str, ...]]] = None

    def mark(pos: int) -> None:
        nonlocal last_safe
        last_safe = (pos, tuple(stack))

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                if not string_is_key:
                    mark(i + 1)
            continue

        if ch == '"':
            in_string = True
            string_is_key = bool(stack) and stack[-1] == "{" and not after_colon[-1]
        elif ch in "{[":
            stack.append(ch)
            after_colon.append(False)
            mark(i + 1)
        elif ch in "}]":
            if not stack:
                break
            stack.pop()
            after_colon.pop()
            mark(i + 1)
            if not stack:
                # Root value closed; anything after it is trailing prose
                break
        elif ch == ":":
            if after_colon:
                after_colon[-1] = True
        elif ch == ",":
            mark(i)
            if after_colon:
                after_colon[-1] = False

    if last_safe is None:
        raise JSONExtractionError(text, "no complete value to recover")

    pos, open_brackets = last_safe
    repaired = text[:pos].rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1].rstrip()
    return repaired + "".join(_CLOSERS[b] for b in reversed(open_brackets))


def extract_json(text: str) -> Any:
    """Parse model output as JSON, repairing truncation when needed"""
    if not text or not text.strip():
        raise JSONExtractionError(text or "", "empty response")

    cleaned = clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as first_error:
        logger.debug(f"Plain JSON parse failed ({first_error}); attempting truncation repair")
        try:
            repaired = repair_truncated_json(cleaned)
            data = json.loads(strip_trailing_commas(repaired))
        except (json.JSONDecodeError, JSONExtractionError) as repair_error:
            logger.warning(f"JSON repair failed: {repair_error}")
            raise JSONExtractionError(text, str(first_error)) from repair_error

        logger.warning(
            f"Recovered truncated JSON ({len(cleaned)} -> {len(repaired)} chars)",
            extra={"event_type": "json_repair"}
        )
        return data
