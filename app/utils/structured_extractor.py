"""
Structured output extraction for LLM responses.

Turns raw model text into a validated pydantic object:

1. strip one enclosing fenced block (```json ... ```), whatever its language tag
2. cut the text from the first { to the last }
3. run the repair passes in order (trailing commas, bare scalar values,
   missing closers); each pass is a pure str -> str function that only adds
   quotes/closers or removes stray commas, never content
4. json.loads + model_validate

Failures raise MalformedOutputError whose `kind` tells the caller what went
wrong: "empty", "not-json", "too-short", "parse-failure" or "schema-mismatch".
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

T = TypeVar("T", bound=BaseModel)

MIN_MEANINGFUL_LENGTH = 50

_OPENING_FENCE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?\s*```\s*$")
_BARE_LITERAL = re.compile(r"^(true|false|null|-?\d+(\.\d+)?([eE][+-]?\d+)?)$")


class MalformedOutputError(Exception):
    KINDS = ("empty", "not-json", "too-short", "parse-failure", "schema-mismatch")

    def __init__(self, kind: str, message: str, *, raw: Optional[str] = None):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown malformed output kind: {kind}")
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.raw = raw

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


def _scan(text: str) -> Iterator[Tuple[int, str, bool]]:
    """Yield (index, char, inside_string) for every character of `text`."""
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            yield i, ch, True
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            yield i, ch, True
            continue
        yield i, ch, False


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _OPENING_FENCE.sub("", text, count=1)
        text = _CLOSING_FENCE.sub("", text, count=1)
    elif text.endswith("```"):
        text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def _is_open(text: str) -> bool:
    depth = 0
    for _, ch, in_string in _scan(text):
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
    return depth > 0


def slice_object(text: str) -> str:
    """
    Return the text from the first { to the last }.

    With no } after the first {, or when the object is still open at the
    last } (output cut off mid-object), everything from the first { is kept
    so the closer pass can finish it.
    """
    start = text.find("{")
    if start == -1:
        return text
    end = text.rfind("}")
    if end < start or _is_open(text[start:end + 1]):
        return text[start:].rstrip()
    return text[start:end + 1]


# -------------------------
# Repair passes
# -------------------------
def remove_trailing_commas(text: str) -> str:
    """Drop commas directly followed by } or ], or by nothing but whitespace."""
    out = []
    n = len(text)
    for i, ch, in_string in _scan(text):
        if not in_string and ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j == n or text[j] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def quote_bare_values(text: str) -> str:
    """Quote unquoted scalar values after a key, leaving true/false/null and numbers alone."""
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue
        out.append(ch)
        i += 1
        if ch != ":":
            continue
        j = i
        while j < n and text[j] in " \t":
            j += 1
        if j >= n or text[j] in '"{[\n\r,}]':
            continue
        k = j
        while k < n and text[k] not in ',}]\n\r"':
            k += 1
        if k < n and text[k] == '"':
            # mixed quoted/unquoted text, too ambiguous to touch
            continue
        raw = text[j:k]
        token = raw.strip()
        if not token or _BARE_LITERAL.match(token):
            continue
        out.append(text[i:j])
        out.append(json.dumps(token))
        out.append(raw[len(raw.rstrip()):])
        i = k
    return "".join(out)


def close_unbalanced(text: str) -> str:
    """Append the closers for every still-open { or [ in nesting order."""
    stack: List[str] = []
    for _, ch, in_string in _scan(text):
        if in_string:
            continue
        if ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack and {"}": "{", "]": "["}[ch] == stack[-1]:
            stack.pop()
    if not stack:
        return text
    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return text.rstrip() + closers


DEFAULT_REPAIR_PASSES: Sequence[Callable[[str], str]] = (
    remove_trailing_commas,
    quote_bare_values,
    close_unbalanced,
)


class StructuredExtractor:
    def __init__(self, repair_passes: Optional[Sequence[Callable[[str], str]]] = None):
        self.repair_passes = list(DEFAULT_REPAIR_PASSES if repair_passes is None else repair_passes)

    def repair(self, text: str) -> str:
        for repair_pass in self.repair_passes:
            text = repair_pass(text)
        return text

    def extract_json(self, text: str) -> Dict[str, Any]:
        if text is None or not text.strip():
            raise MalformedOutputError("empty", "AI returned empty response.", raw=text)

        logger.debug("Raw AI response (truncated): %s", text[:500])
        body = strip_code_fence(text)
        if not body:
            raise MalformedOutputError("empty", "AI returned an empty code block.", raw=text)
        if "{" not in body:
            raise MalformedOutputError("not-json", "AI did not return JSON format.", raw=text)

        candidate = self.repair(slice_object(body))
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            if len(candidate) < MIN_MEANINGFUL_LENGTH:
                raise MalformedOutputError(
                    "too-short",
                    "AI response was too short. The model may have been interrupted.",
                    raw=text,
                ) from e
            raise MalformedOutputError("parse-failure", f"AI returned malformed JSON: {e}", raw=text) from e

        if not isinstance(parsed, dict):
            raise MalformedOutputError("not-json", "AI response is not a JSON object.", raw=text)
        return parsed

    def extract(self, text: str, model: Type[T]) -> T:
        parsed = self.extract_json(text)
        try:
            return model.model_validate(parsed)
        except ValidationError as e:
            raise MalformedOutputError(
                "schema-mismatch",
                f"AI JSON does not match {model.__name__}: {e.error_count()} invalid field(s)",
                raw=text,
            ) from e
