"""JSON recovery helpers for model replies.

Collaborators are asked for JSON but routinely wrap it in prose, markdown
fences or ``<<<JSON>>>`` delimiters, and sometimes emit ``//`` comments or
trailing commas. :func:`safe_loads` tries the cheap parse first and then
works through progressively looser extraction strategies:

1. direct :func:`json.loads` after a UTF-8 round-trip,
2. the body between ``<<<JSON>>>`` and ``<<<END_JSON>>>`` markers,
3. the body of the first fenced code block,
4. the first balanced ``{...}`` or ``[...]`` span in the text.

Each candidate is also retried after :func:`strip_json_noise`.
"""
import json
import re
from typing import Any, Iterator, Optional

_DELIMITED = re.compile(r"<<<JSON>>>\s*(.*?)\s*<<<(?:END_JSON|/JSON)>>>", re.DOTALL)
_FENCED = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)\n?```", re.DOTALL)
_LINE_COMMENT = re.compile(r'("(?:\\.|[^"\\])*")|//[^\n]*')
_BLOCK_COMMENT = re.compile(r'("(?:\\.|[^"\\])*")|/\*.*?\*/', re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def clean_json(raw: str) -> str:
    """Strip markdown code-fence wrappers from a model JSON response."""
    if not raw:
        return raw
    text = re.sub(r"^\s*```[a-zA-Z]*\s*\n?", "", raw.strip())
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


def strip_json_noise(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments outside strings and trailing commas."""
    keep_strings = lambda m: m.group(1) or ""
    text = _BLOCK_COMMENT.sub(keep_strings, text)
    text = _LINE_COMMENT.sub(keep_strings, text)
    return _TRAILING_COMMA.sub(r"\1", text)


def _balanced_span(text: str) -> Optional[str]:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    return None


def _candidates(raw: str) -> Iterator[str]:
    yield raw
    delimited = _DELIMITED.search(raw)
    if delimited:
        yield delimited.group(1)
    fenced = _FENCED.search(raw)
    if fenced:
        yield fenced.group(1)
    yield clean_json(raw)
    span = _balanced_span(raw)
    if span:
        yield span


def safe_loads(raw: str, ctx: str = "unknown") -> Any:
    """Parse *raw* as JSON with resilient pre-processing for common model quirks.

    Args:
        raw: Raw string from a model reply that is expected to hold JSON.
        ctx: Caller-context label included in the error message.

    Returns:
        The parsed Python object (dict, list, etc.).

    Raises:
        json.JSONDecodeError: If no extraction strategy yields valid JSON.
    """
    if raw is None:
        raise json.JSONDecodeError(f"[{ctx}] empty reply", "", 0)
    text = raw.encode("utf-8", "ignore").decode("utf-8")
    last_error = None
    for candidate in _candidates(text):
        for body in (candidate, strip_json_noise(candidate)):
            try:
                return json.loads(body)
            except json.JSONDecodeError as e:
                last_error = e
    raise json.JSONDecodeError(f"[{ctx}] no JSON found: {last_error.msg if last_error else 'empty'}",
                               text, last_error.pos if last_error else 0)


def extract_code(raw: str) -> str:
    """Return the body of the first fenced code block, or the stripped reply."""
    if not raw:
        return ""
    fenced = re.search(r"```[a-zA-Z0-9_+-]*\s*\n(.*?)```", raw, re.DOTALL)
    if fenced:
        return fenced.group(1).rstrip() + "\n"
    return raw.strip() + "\n" if raw.strip() else ""
