"""Recover structured JSON from generator output.

The generator is asked for pure JSON but regularly returns markdown fences,
bare keys, single quotes, trailing commas, missing separators or a body cut
off mid-object. Each fix below is a pure ``str -> str`` transform that only
rewrites text outside double-quoted string literals; they run in order on
every pass and parsing is retried after each pass. When the last pass still
fails, json_repair gets one try on the cleaned text.
"""

from __future__ import annotations

import functools
import json
import re
import sys
from typing import Any, Callable, List, Optional, Tuple

import json_repair

MAX_REPAIR_PASSES = 5
JSON_REPAIR_MAX_CHARS = 150000

_IDENTIFIER = r"[a-zA-Z_$][a-zA-Z0-9_$]*"
_STRING = r'"(?:[^"\\]|\\.)*"'
# A string literal, or an unterminated one running to the end of the text
_STRING_OR_TAIL = re.compile(r'"(?:[^"\\]|\\.)*(?:"|\\?\Z)')
_PLACEHOLDER = re.compile(r'"\x00(\d+)\x00"')


class JSONRecoveryError(ValueError):
    """Raised when the text is still not valid JSON after every repair pass."""

    def __init__(self, message: str, passes: int):
        super().__init__(message)
        self.passes = passes


def clean_model_output(raw: str) -> str:
    """Strip code fences and anything outside the outermost braces."""
    text = (raw or "").strip()
    text = re.sub(r"```(?:json|JSON)?\s*\n?", "", text)
    text = text.replace("```", "").strip()

    first = text.find("{")
    if first > 0:
        text = text[first:]
    last = text.rfind("}")
    if 0 <= last < len(text) - 1 and _is_balanced(text[: last + 1]):
        text = text[: last + 1]
    return text.strip()


def _is_balanced(text: str) -> bool:
    return not _open_containers(text)[0]


def outside_strings(transform: Callable[[str], str]) -> Callable[[str], str]:
    """Run a regex transform with every double-quoted literal masked out."""

    @functools.wraps(transform)
    def wrapper(text: str) -> str:
        literals: List[str] = []

        def mask(match: re.Match) -> str:
            literals.append(match.group(0))
            return f'"\x00{len(literals) - 1}\x00"'

        masked = _STRING_OR_TAIL.sub(mask, text)
        return _PLACEHOLDER.sub(lambda m: literals[int(m.group(1))], transform(masked))

    return wrapper


@outside_strings
def normalize_single_quotes(text: str) -> str:
    """Single-quoted tokens in structural positions become double-quoted.

    Apostrophes inside words ("Mom's") are left alone.
    """
    return re.sub(
        r"(?P<pre>[\[{:,]\s*)'(?P<body>[^'\"\n]*)'(?=\s*[,\]}:])",
        lambda m: f'{m.group("pre")}"{m.group("body")}"',
        text,
    )


@outside_strings
def quote_bare_keys(text: str) -> str:
    """{name: 1} -> {"name": 1}, including keys at line start and after } or ]."""
    text = re.sub(rf"([{{,]\s*)({_IDENTIFIER})\s*:", r'\1"\2":', text)
    text = re.sub(rf"^(\s*)({_IDENTIFIER})\s*:", r'\1"\2":', text, flags=re.MULTILINE)
    text = re.sub(rf"([\]}}])\s*({_IDENTIFIER})\s*:", r'\1,"\2":', text)
    return text


@outside_strings
def strip_trailing_commas(text: str) -> str:
    """[1, 2,] -> [1, 2]"""
    return re.sub(r",(\s*[}\]])", r"\1", text)


@outside_strings
def insert_missing_separators(text: str) -> str:
    """Add commas between adjacent strings, arrays or objects."""
    text = re.sub(rf"({_STRING})\s+({_STRING})", r"\1, \2", text)
    text = re.sub(r"\]\s*\[", "], [", text)
    text = re.sub(r"\}\s*\{", "}, {", text)
    return text


def _open_containers(text: str) -> Tuple[List[str], bool]:
    """Stack of unclosed '{'/'[' (outside strings) and whether a string is open."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
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
            stack.append(char)
        elif char in "}]" and stack:
            stack.pop()
    return stack, in_string


def close_unbalanced(text: str) -> str:
    """Close an unterminated string and any unclosed brackets, innermost first."""
    stack, in_string = _open_containers(text)
    if in_string:
        text += '"'
    if not stack:
        return text
    text = re.sub(r"[,:\s]+$", "", text)
    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return text + closers


REPAIR_PASSES: List[Callable[[str], str]] = [
    normalize_single_quotes,
    quote_bare_keys,
    strip_trailing_commas,
    insert_missing_separators,
]


def _try_parse(text: str) -> Tuple[Optional[Any], Optional[str]]:
    try:
        return json.loads(text), None
    except json.JSONDecodeError as exc:
        return None, str(exc)


def _json_repair_fallback(text: str) -> Optional[Any]:
    """Last resort: json_repair, accepted only when it yields a non-empty object."""
    if not text or len(text) >= JSON_REPAIR_MAX_CHARS:
        print(f"      - Skipping json_repair (input size: {len(text)} chars)", file=sys.stderr)
        return None
    try:
        potential = json_repair.repair_json(text, return_objects=True)
    except Exception as exc:
        print(f"      - json_repair failed: {exc}", file=sys.stderr)
        return None
    if isinstance(potential, dict) and potential:
        print(f"      - json_repair SUCCESS, keys: {list(potential.keys())}", file=sys.stderr)
        return potential
    return None


def repair_json_text(text: str, max_passes: int = MAX_REPAIR_PASSES) -> Tuple[str, Any, int]:
    """Repair text until it parses.

    Returns:
        (repaired_text, parsed_object, passes_used); passes_used is 0 when
        the input already parsed.

    Raises:
        JSONRecoveryError: If the text does not parse after max_passes passes
            and json_repair cannot recover an object either
    """
    parsed, error = _try_parse(text)
    if error is None:
        return text, parsed, 0

    repaired = text
    for pass_number in range(1, max_passes + 1):
        for transform in REPAIR_PASSES:
            repaired = transform(repaired)
        if pass_number == max_passes:
            repaired = close_unbalanced(repaired)

        parsed, error = _try_parse(repaired)
        if error is None:
            return repaired, parsed, pass_number

    recovered = _json_repair_fallback(text)
    if recovered is not None:
        return json.dumps(recovered), recovered, max_passes

    raise JSONRecoveryError(f"JSON still invalid after {max_passes} repair passes: {error}", max_passes)


def parse_model_json(raw: str, max_passes: int = MAX_REPAIR_PASSES) -> Tuple[Any, int]:
    """Clean and parse generator output.

    Returns:
        (parsed_object, repair_passes_used)

    Raises:
        JSONRecoveryError: If the output cannot be recovered
    """
    _, parsed, passes = repair_json_text(clean_model_output(raw), max_passes=max_passes)
    return parsed, passes
