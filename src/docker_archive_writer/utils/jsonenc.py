"""Deterministic JSON encoding for archive metadata.

Legacy layer IDs are digests of serialized JSON, so the bytes written here
must be stable and must match what older tools produce for the same data:

- compact output, no whitespace between tokens
- mapping keys sorted, unless an ordered (struct-like) encoding is requested
- non-ASCII text written as UTF-8, while ``<``, ``>``, ``&``, U+2028 and
  U+2029 are written as ``\\u`` escapes
- raw values taken from an image configuration are copied verbatim (only
  compacted), keeping their inner key order, number literals and escapes
"""

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from ..exceptions import SerializationError

_WHITESPACE = re.compile(r"[ \t\n\r]*")

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_HTML_PATTERN = re.compile("[<>&\u2028\u2029]")


def _escape_html(text: str) -> str:
    return _HTML_PATTERN.sub(lambda m: _HTML_ESCAPES[m.group(0)], text)


def compact(raw: str) -> str:
    """Remove insignificant whitespace from a JSON document.

    String contents are kept as written, except for the HTML-sensitive
    characters which are escaped.
    """
    out = []
    in_string = False
    escaped = False
    for ch in raw:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            out.append(_HTML_ESCAPES.get(ch, ch))
        elif ch in " \t\n\r":
            continue
        else:
            if ch == '"':
                in_string = True
            out.append(ch)
    return "".join(out)


class RawJSON:
    """A pre-encoded JSON value, written to the output as-is after compaction."""

    __slots__ = ("text",)

    def __init__(self, raw: str) -> None:
        self.text = compact(raw)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawJSON):
            return NotImplemented
        return self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        return f"RawJSON({self.text!r})"


def encode_string(value: str) -> str:
    """Encode a string as a JSON string literal."""
    return _escape_html(json.dumps(value, ensure_ascii=False))


def _encode(value: Any, sort_keys: bool, out: list[str]) -> None:
    if isinstance(value, RawJSON):
        out.append(value.text)
    elif value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, str):
        out.append(encode_string(value))
    elif isinstance(value, int):
        out.append(str(int(value)))
    elif isinstance(value, float):
        try:
            out.append(json.dumps(value, allow_nan=False))
        except ValueError as e:
            raise SerializationError(f"unsupported value: {value!r}") from e
    elif isinstance(value, Mapping):
        keys = list(value.keys())
        for key in keys:
            if not isinstance(key, str):
                raise SerializationError(f"unsupported mapping key: {key!r}")
        if sort_keys:
            keys.sort()
        out.append("{")
        for i, key in enumerate(keys):
            if i:
                out.append(",")
            out.append(encode_string(key))
            out.append(":")
            _encode(value[key], sort_keys, out)
        out.append("}")
    elif isinstance(value, Iterable) and not isinstance(value, (bytes, bytearray)):
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _encode(item, sort_keys, out)
        out.append("]")
    else:
        raise SerializationError(f"unsupported type: {type(value).__name__}")


def marshal(value: Any, sort_keys: bool = True) -> bytes:
    """Serialize value to compact UTF-8 JSON bytes.

    Args:
        value: Mappings, sequences, strings, numbers, booleans, None and
            RawJSON values
        sort_keys: Sort mapping keys (map semantics). When False, mapping
            keys are written in insertion order (struct semantics).

    Returns:
        Encoded JSON

    Raises:
        SerializationError: If the value contains something JSON cannot hold
    """
    out: list[str] = []
    _encode(value, sort_keys, out)
    return "".join(out).encode("utf-8")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON literal {name}")


def _skip_whitespace(text: str, idx: int) -> int:
    return _WHITESPACE.match(text, idx).end()


def extract_raw_fields(data: bytes) -> dict[str, RawJSON]:
    """Split a JSON object into its top-level members, keeping raw values.

    Args:
        data: UTF-8 encoded JSON object (a JSON null is treated as empty)

    Returns:
        Mapping of member name to its raw value; for repeated names the
        last occurrence wins

    Raises:
        SerializationError: If data is not a valid JSON object
    """
    try:
        text = data.decode("utf-8")
        parsed = json.loads(text, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise SerializationError(f"unmarshaling config: {e}") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise SerializationError(
            f"unmarshaling config: expected a JSON object, got {type(parsed).__name__}"
        )

    decoder = json.JSONDecoder()
    fields: dict[str, RawJSON] = {}
    # json.loads succeeded, so the structure below is well-formed.
    idx = _skip_whitespace(text, 0) + 1
    idx = _skip_whitespace(text, idx)
    if text[idx] == "}":
        return fields
    while True:
        key, idx = decoder.raw_decode(text, idx)
        idx = _skip_whitespace(text, idx) + 1  # ':'
        idx = _skip_whitespace(text, idx)
        _, end = decoder.raw_decode(text, idx)
        fields[key] = RawJSON(text[idx:end])
        idx = _skip_whitespace(text, end)
        if text[idx] != ",":
            break
        idx = _skip_whitespace(text, idx + 1)
    return fields
