"""JSON extraction from free-form model replies.

Models wrap JSON in prose, code fences and comments, and occasionally emit
JavaScript or Python literals. `extract_json` tries progressively more
invasive strategies and raises `JSONExtractionError` when none succeeds.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


class JSONExtractionError(ValueError):
    """No valid JSON could be recovered from a reply."""


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_GREEDY_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")
_LEADING_RE = re.compile(r"^[^{\[]*")
_TRAILING_RE = re.compile(r"[^}\]]*$")

_INVISIBLE_RE = re.compile(r"[\u200B-\u200D\uFEFF]")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)\s*:")

LITERAL_FIXES: list[tuple[re.Pattern, str]] = [
    (re.compile(r":\s*undefined\b"), ": null"),
    (re.compile(r":\s*NaN\b"), ": null"),
    (re.compile(r":\s*-Infinity\b"), ": -999999999"),
    (re.compile(r":\s*Infinity\b"), ": 999999999"),
    (re.compile(r":\s*True\b"), ": true"),
    (re.compile(r":\s*False\b"), ": false"),
    (re.compile(r":\s*None\b"), ": null"),
    (re.compile(r":\s*NULL\b"), ": null"),
]


def _try_parse(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False, None


def _balanced_span(text: str) -> str | None:
    """First complete ``{...}`` or ``[...]`` span, honouring string literals."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
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
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _normalize_quotes_and_comments(text: str) -> str:
    """Drop // and /* */ comments and turn single-quoted strings into JSON strings.

    Works outside string literals only, so URLs and apostrophes inside
    double-quoted values are preserved.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    quote: str | None = None

    while i < n:
        char = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if quote == '"':
            out.append(char)
            if char == "\\" and nxt:
                out.append(nxt)
                i += 1
            elif char == '"':
                quote = None
        elif quote == "'":
            if char == "\\" and nxt == "'":
                out.append("'")
                i += 1
            elif char == "\\" and nxt:
                out.append(char + nxt)
                i += 1
            elif char == '"':
                out.append('\\"')
            elif char == "'":
                out.append('"')
                quote = None
            else:
                out.append(char)
        elif char == "/" and nxt == "/":
            end = text.find("\n", i)
            i = n if end < 0 else end
            continue
        elif char == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        elif char == '"':
            quote = '"'
            out.append(char)
        elif char == "'":
            quote = "'"
            out.append('"')
        else:
            out.append(char)
        i += 1

    return "".join(out)


def clean_json_text(text: str) -> str:
    """Strip leading and trailing non-JSON characters."""
    return _TRAILING_RE.sub("", _LEADING_RE.sub("", text)).strip()


def fix_common_json_issues(text: str) -> str:
    """Repair syntax that models commonly get wrong."""
    fixed = _INVISIBLE_RE.sub("", text)
    fixed = _normalize_quotes_and_comments(fixed)
    fixed = _TRAILING_COMMA_RE.sub(r"\1", fixed)
    fixed = _UNQUOTED_KEY_RE.sub(r'\1"\2":', fixed)
    for pattern, replacement in LITERAL_FIXES:
        fixed = pattern.sub(replacement, fixed)
    return fixed.strip()


def extract_json(text: str) -> Any:
    """Recover a JSON value from a model reply.

    Strategies, in order:
    1. Parse the text directly.
    2. Parse the first fenced code block.
    3. Parse the first balanced ``{...}``/``[...]`` span, then the widest one.
    4. Strip leading/trailing non-JSON characters.
    5. Fix common syntax issues (BOM, comments, trailing commas, unquoted
       keys, single quotes, JS/Python literals).

    Raises:
        JSONExtractionError: If no strategy yields valid JSON.
    """
    if not isinstance(text, str):
        raise JSONExtractionError(f"Expected text, got {type(text).__name__}")

    ok, value = _try_parse(text)
    if ok:
        return value

    fence = _FENCE_RE.search(text)
    if fence:
        ok, value = _try_parse(fence.group(1).strip())
        if ok:
            return value
        logger.debug(f"Failed to parse JSON from code block: {fence.group(1)[:100]}")

    span = _balanced_span(text)
    if span:
        ok, value = _try_parse(span)
        if ok:
            return value

    greedy = _GREEDY_RE.search(text)
    if greedy:
        ok, value = _try_parse(greedy.group(1))
        if ok:
            return value

    source = fence.group(1) if fence else text
    cleaned = clean_json_text(source)
    if cleaned and cleaned != text:
        ok, value = _try_parse(cleaned)
        if ok:
            return value

    fixed = fix_common_json_issues(cleaned or source)
    ok, value = _try_parse(fixed)
    if ok:
        logger.debug("Recovered JSON after syntax fixes")
        return value

    raise JSONExtractionError(f"Failed to extract valid JSON from text: {text[:200]}...")


__all__ = [
    "JSONExtractionError",
    "clean_json_text",
    "fix_common_json_issues",
    "extract_json",
]
