"""
Turn an arbitrary EXIF tag tree into a JSON-safe value for the raw_exif column.

The walk classifies every node into a `TagKind` and dispatches to exactly one
handler. Handlers return a `NodeResult`: `Ok` carries the sanitized value,
`Degraded` carries a marker string that replaces the node in its parent. Values
are contained by `_visit` and keys by `_key_name`, so one bad value or key costs
one marker, never the record. Keys that collide once sanitized are suffixed
(`Make`, `Make#2`) rather than overwritten.

`sanitize` never raises.
"""

from __future__ import annotations

import base64
import dataclasses
import datetime as dt
import enum
import json
import logging
import math
import numbers
import re
from collections.abc import Mapping, Set
from dataclasses import dataclass
from typing import Any, Callable, Union

LOGGER = logging.getLogger(__name__)

MAX_INLINE_BYTES = 1024
MAX_DEPTH = 64
# Integers beyond this lose precision in JSON consumers that use doubles.
MAX_SAFE_INTEGER = 2**53 - 1

SanitizedValue = Union[None, str, int, float, bool, list["SanitizedValue"], dict[str, "SanitizedValue"]]
KeyPath = tuple[str, ...]

# C0, DEL, C1 and lone surrogates
_CONTROL_CHARS = re.compile("[\u0000-\u001f\u007f-\u009f\ud800-\udfff]")
_BACKSLASH_RUN = re.compile(r"\\+")
# Escapes json.dumps emits for control characters, preceded by an even run of backslashes.
_SERIALIZED_CONTROL = re.compile(r"(?<!\\)((?:\\\\)*)\\(?:u00(?:[01][0-9a-fA-F]|7[fF]|[89][0-9a-fA-F])|[bfnrt])")
_RAW_SERIALIZED_CONTROL = re.compile("[\u007f-\u009f]")


class TagKind(enum.Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    BIG_INTEGER = "big_integer"
    STRING = "string"
    BYTES = "bytes"
    DATE = "date"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    CALLABLE = "callable"
    OTHER = "other"


@dataclass(frozen=True)
class Ok:
    value: SanitizedValue


@dataclass(frozen=True)
class Degraded:
    marker: str

    @property
    def value(self) -> str:
        return self.marker


NodeResult = Union[Ok, Degraded]


def classify(value: Any) -> TagKind:
    """Map a raw tag value onto the closed set of kinds the sanitizer handles."""
    if value is None:
        return TagKind.NULL
    if isinstance(value, bool):
        return TagKind.BOOL
    if isinstance(value, int) and not isinstance(value, enum.Enum):
        return TagKind.BIG_INTEGER if abs(value) > MAX_SAFE_INTEGER else TagKind.NUMBER
    if isinstance(value, float):
        return TagKind.NUMBER
    if isinstance(value, str):
        return TagKind.STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return TagKind.BYTES
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return TagKind.DATE
    if isinstance(value, Mapping):
        return TagKind.MAPPING
    if isinstance(value, (list, tuple, Set)):
        return TagKind.SEQUENCE
    if callable(value) and not dataclasses.is_dataclass(value):
        return TagKind.CALLABLE
    return TagKind.OTHER


def sanitize_string(value: str) -> str:
    """Strip control characters, escape backslashes, trim.

    Backslash runs of odd length gain one backslash, so an already escaped
    string passes through unchanged.
    """
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _BACKSLASH_RUN.sub(lambda m: m.group(0) + "\\" * (len(m.group(0)) % 2), cleaned)
    return cleaned.strip()


def _describe(value: Any) -> str:
    try:
        text = str(value)
    except Exception:
        text = object.__repr__(value)
    return f"[{type(value).__name__}: {text}]"


def _error_text(exc: BaseException) -> str:
    try:
        return sanitize_string(str(exc))
    except Exception:
        return type(exc).__name__


def _key_name(key: Any) -> str:
    """Sanitized string form of a mapping key; unprintable keys get a marker name."""
    try:
        return sanitize_string(key if isinstance(key, str) else str(key))
    except Exception as exc:
        return f"[Error: {_error_text(exc)}]"


def _unique_name(out: Mapping[str, Any], name: str, path: KeyPath) -> str:
    """Suffix `#2`, `#3`, ... when an earlier key already sanitized to `name`."""
    if name not in out:
        return name
    counter = 2
    while f"{name}#{counter}" in out:
        counter += 1
    LOGGER.warning("Key %r collides under %s, storing as %s#%d", name, "/".join(path) or "<root>", name, counter)
    return f"{name}#{counter}"


def _round_trip(value: Any) -> Any:
    """Reduce a non-plain object to plain structure; raises when it has none."""
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        # Pillow's IFDRational and friends
        return float(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if hasattr(value, "tolist"):
        return value.tolist()
    if hasattr(value, "__dict__") and not isinstance(value, type):
        public = {k: v for k, v in vars(value).items() if not k.startswith("_")}
        if public:
            return public
    return json.loads(json.dumps(value))


class DataSanitizer:
    """Recursive, type-dispatching walk producing JSON-safe values."""

    def __init__(self, max_inline_bytes: int = MAX_INLINE_BYTES, max_depth: int = MAX_DEPTH) -> None:
        self.max_inline_bytes = max_inline_bytes
        self.max_depth = max_depth
        self._handlers: dict[TagKind, Callable[[Any, KeyPath, frozenset[int]], NodeResult]] = {
            TagKind.NULL: self._null,
            TagKind.BOOL: self._passthrough,
            TagKind.NUMBER: self._number,
            TagKind.BIG_INTEGER: self._big_integer,
            TagKind.STRING: self._string,
            TagKind.BYTES: self._bytes,
            TagKind.DATE: self._date,
            TagKind.SEQUENCE: self._sequence,
            TagKind.MAPPING: self._mapping,
            TagKind.CALLABLE: self._callable,
            TagKind.OTHER: self._other,
        }

    @property
    def handled_kinds(self) -> frozenset[TagKind]:
        return frozenset(self._handlers)

    def sanitize(self, raw: Any) -> SanitizedValue:
        try:
            result = self._visit(raw, (), frozenset())
            if isinstance(result, Degraded) and isinstance(raw, Mapping):
                LOGGER.error("EXIF tag tree could not be walked, storing fallback: %s", result.marker)
                return self._fallback(raw, result.marker)
            return self._validate(result.value)
        except Exception as exc:
            LOGGER.error("EXIF sanitization failed, storing fallback: %s", exc)
            return self._fallback(raw, str(exc))

    def _visit(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        if len(path) > self.max_depth:
            return Degraded("[MaxDepth]")
        try:
            return self._handlers[classify(value)](value, path, seen)
        except Exception as exc:
            LOGGER.warning("Sanitizing %s failed: %s", "/".join(path) or "<root>", exc)
            return Degraded(f"[Error: {_error_text(exc)}]")

    def _null(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        return Ok(None)

    def _passthrough(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        return Ok(value)

    def _number(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        if isinstance(value, float) and not math.isfinite(value):
            return Ok(None)
        return Ok(float(value) if isinstance(value, float) else int(value))

    def _big_integer(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        return Ok(str(int(value)))

    def _string(self, value: str, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        return Ok(sanitize_string(value))

    def _bytes(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        data = bytes(value)
        if len(data) < self.max_inline_bytes:
            return Ok({"type": "buffer", "data": base64.b64encode(data).decode("ascii"), "length": len(data)})
        return Ok({"type": "buffer", "length": len(data), "description": "too large to store"})

    def _date(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        return Ok(value.isoformat())

    def _sequence(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        if id(value) in seen:
            return Degraded("[Circular]")
        inner = seen | {id(value)}
        items = sorted(value, key=repr) if isinstance(value, Set) else value
        return Ok([self._visit(item, (*path, str(index)), inner).value for index, item in enumerate(items)])

    def _mapping(self, value: Mapping[Any, Any], path: KeyPath, seen: frozenset[int]) -> NodeResult:
        if id(value) in seen:
            return Degraded("[Circular]")
        inner = seen | {id(value)}
        out: dict[str, SanitizedValue] = {}
        for key in list(value.keys()):
            name = _unique_name(out, _key_name(key), path)
            try:
                item = value[key]
            except Exception as exc:
                out[name] = f"[Error: {_error_text(exc)}]"
                continue
            out[name] = self._visit(item, (*path, name), inner).value
        return Ok(out)

    def _callable(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        name = getattr(value, "__qualname__", None) or getattr(value, "__name__", None) or type(value).__name__
        return Ok(sanitize_string(f"[Function: {name}]"))

    def _other(self, value: Any, path: KeyPath, seen: frozenset[int]) -> NodeResult:
        if id(value) in seen:
            return Degraded("[Circular]")
        try:
            plain = _round_trip(value)
        except Exception:
            return Ok(sanitize_string(_describe(value)))
        if classify(plain) is TagKind.OTHER:
            return Ok(sanitize_string(_describe(value)))
        return self._visit(plain, path, seen | {id(value)})

    def _validate(self, result: SanitizedValue) -> SanitizedValue:
        """Serialize once more and strip any control characters that slipped through."""
        text = json.dumps(result, ensure_ascii=False, allow_nan=False, default=_describe)
        cleaned = _SERIALIZED_CONTROL.sub(r"\1", text)
        cleaned = _RAW_SERIALIZED_CONTROL.sub("", cleaned)
        if cleaned != text:
            LOGGER.warning("Stripped residual control characters from sanitized EXIF")
        return json.loads(cleaned)

    def _fallback(self, raw: Any, message: str) -> dict[str, SanitizedValue]:
        try:
            keys = [_key_name(key) for key in raw.keys()] if isinstance(raw, Mapping) else []
        except Exception:
            keys = []
        return {
            "error": "sanitization failed",
            "message": sanitize_string(message),
            "keys": keys,
        }


_DEFAULT = DataSanitizer()


def sanitize(raw: Any) -> SanitizedValue:
    """Sanitize with default limits; see `DataSanitizer`."""
    return _DEFAULT.sanitize(raw)
