"""Attribute grammar for the actor macros."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Optional

from ..constants import MACRO_ACTOR, MACRO_EXPORT, MACRO_PAYLOAD, MACRO_STATE, U64_MAX
from .diagnostics import Diagnostic, ErrorCatalog
from .syntax import ParseError, tokenize


class AttrError(ErrorCatalog):
    UNKNOWN_ATTRIBUTE = "unknown attribute '{0}'"
    UNKNOWN_CODEC = "unknown codec '{0}'"
    UNKNOWN_DISPATCH = "unknown dispatch method '{0}'"
    INVALID_CODEC_FORMAT = "invalid codec format, {0}"
    INVALID_DISPATCH_FORMAT = "invalid dispatch method format, {0}"
    INVALID_BINDING_VALUE = "invalid binding value"
    INVALID_NUMERIC_VALUE = "invalid numeric value, '{0}'"
    EXPECTED = "expected {0}"


class Codec(Enum):
    """Serialization format of persisted and wire structures."""

    DAG_CBOR = "dag-cbor"

    @classmethod
    def default(cls):
        return cls.DAG_CBOR

    @classmethod
    def from_str(cls, value, span=None):
        for member in cls:
            if member.value == value:
                return member
        raise AttrError.UNKNOWN_CODEC.diagnostic(value, span=span)


class Dispatch(Enum):
    """How the generated entry point selects a method."""

    NUMERIC = "method-num"

    @classmethod
    def default(cls):
        return cls.NUMERIC

    @classmethod
    def from_str(cls, value, span=None):
        for member in cls:
            if member.value == value:
                return member
        raise AttrError.UNKNOWN_DISPATCH.diagnostic(value, span=span)

    @property
    def binding_shape(self):
        return "u64"


@dataclass(frozen=True)
class NumericBinding:
    value: int

    def __post_init__(self):
        if not 0 <= self.value <= U64_MAX:
            raise ValueError(f"numeric binding out of range: {self.value}")

    def __str__(self):
        return str(self.value)


@dataclass(frozen=True)
class CodecAttribute:
    value: Codec = Codec.DAG_CBOR
    span: Optional[tuple] = None


@dataclass(frozen=True)
class DispatchAttribute:
    value: Dispatch = Dispatch.NUMERIC
    span: Optional[tuple] = None


@dataclass(frozen=True)
class BindingAttribute:
    value: NumericBinding
    span: Optional[tuple] = None


class AttrTarget(Enum):
    STATE = MACRO_STATE
    PAYLOAD = MACRO_PAYLOAD
    ACTOR = MACRO_ACTOR
    EXPORT = MACRO_EXPORT


class AttributeSet:
    """Ordered attributes of one declaration; lookups honor the first of a kind."""

    def __init__(self, attributes=(), target: Optional[AttrTarget] = None):
        self.attributes = list(attributes)
        self.target = target

    def first(self, kind):
        for attr in self.attributes:
            if isinstance(attr, kind):
                return attr
        return None

    @property
    def codec(self) -> Codec:
        attr = self.first(CodecAttribute)
        return attr.value if attr else Codec.default()

    @property
    def dispatch(self) -> Dispatch:
        attr = self.first(DispatchAttribute)
        return attr.value if attr else Dispatch.default()

    @property
    def binding(self) -> Optional[NumericBinding]:
        attr = self.first(BindingAttribute)
        return attr.value if attr else None

    def __iter__(self):
        return iter(self.attributes)

    def __len__(self):
        return len(self.attributes)

    def __repr__(self):  # pragma: no cover - representation helper
        return f"AttributeSet({self.target}, {self.attributes!r})"


_ESCAPE = re.compile(r"\\(?:x([0-9a-fA-F]{2})|u\{([0-9a-fA-F][0-9a-fA-F_]{0,7})\}|\n\s*|(.))", re.S)
_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", "0": "\0", "'": "'", '"': '"'}


def _unescape(match):
    byte, unicode, simple = match.groups()
    if byte is not None:
        return chr(int(byte, 16))
    if unicode is not None:
        value = int(unicode.replace("_", ""), 16)
        return chr(value) if value <= 0x10FFFF else match.group(0)
    if simple is None:
        # line continuation
        return ""
    return _SIMPLE_ESCAPES.get(simple, match.group(0))


def _string_value(token):
    text = token.text
    raw = re.match(r'r(#*)"', text)
    if raw:
        return text[len(raw.group(0)) : len(text) - 1 - len(raw.group(1))]
    return _ESCAPE.sub(_unescape, text[1:-1])


_INT_SUFFIX = re.compile(r"(?:[iu](?:8|16|32|64|128|size))$")


def parse_int_literal(text):
    """Value of a Rust integer literal, ignoring separators and type suffix."""

    body = _INT_SUFFIX.sub("", text).replace("_", "")
    for prefix, base in (("0x", 16), ("0o", 8), ("0b", 2)):
        if body.startswith(prefix):
            return int(body[2:], base)
    return int(body, 10)


def _parse_codec(token, span):
    if token.kind != "str" or token.text.startswith("b"):
        raise AttrError.INVALID_CODEC_FORMAT.diagnostic("expected a string literal", span=span)
    return CodecAttribute(Codec.from_str(_string_value(token), span=span), span)


def _parse_dispatch(token, span):
    if token.kind != "str" or token.text.startswith("b"):
        raise AttrError.INVALID_DISPATCH_FORMAT.diagnostic(
            "expected a string literal", span=span
        )
    return DispatchAttribute(Dispatch.from_str(_string_value(token), span=span), span)


def _parse_binding(token, span):
    if token.kind != "int":
        raise AttrError.INVALID_BINDING_VALUE.diagnostic(span=span)
    try:
        value = parse_int_literal(token.text)
    except ValueError:
        raise AttrError.INVALID_NUMERIC_VALUE.diagnostic(token.text, span=span) from None
    if value > U64_MAX:
        raise AttrError.INVALID_NUMERIC_VALUE.diagnostic(token.text, span=span)
    return BindingAttribute(NumericBinding(value), span)


_TARGET_KEYS = {
    AttrTarget.STATE: {"codec": _parse_codec},
    AttrTarget.PAYLOAD: {"codec": _parse_codec},
    AttrTarget.ACTOR: {"dispatch": _parse_dispatch},
    AttrTarget.EXPORT: {"binding": _parse_binding, "method_num": _parse_binding},
}


def parse_attributes(text, target, offset=0):
    """Parse a ``key = literal`` list into an :class:`AttributeSet`.

    ``offset`` shifts reported spans so they point into the enclosing
    declaration source.
    """

    target = AttrTarget(target)
    try:
        tokens = tokenize(text or "")
    except ParseError as err:
        if err.span is not None:
            err.span = (err.span[0] + offset, err.span[1] + offset)
        raise Diagnostic.from_parse_error(err) from err

    def span_of(tok):
        return (tok.start + offset, tok.end + offset)

    end_span = (len(text or "") + offset, len(text or "") + offset)
    keys = _TARGET_KEYS[target]
    attributes = []
    pos = 0
    while pos < len(tokens):
        key = tokens[pos]
        if key.kind != "ident":
            raise AttrError.EXPECTED.diagnostic("an attribute name", span=span_of(key))
        handler = keys.get(key.text)
        if handler is None:
            raise AttrError.UNKNOWN_ATTRIBUTE.diagnostic(key.text, span=span_of(key))
        pos += 1
        if pos >= len(tokens) or not tokens[pos].is_punct("="):
            span = span_of(tokens[pos]) if pos < len(tokens) else end_span
            raise AttrError.EXPECTED.diagnostic(f"'=' after '{key.text}'", span=span)
        pos += 1
        if pos >= len(tokens):
            raise AttrError.EXPECTED.diagnostic("a literal value", span=end_span)
        value = tokens[pos]
        span = (key.start + offset, value.end + offset)
        if value.is_punct("-") and pos + 1 < len(tokens):
            pos += 1
            span = (key.start + offset, tokens[pos].end + offset)
            value = tokens[pos]
            if handler is _parse_binding:
                raise AttrError.INVALID_BINDING_VALUE.diagnostic(span=span)
        attributes.append(handler(value, span))
        pos += 1
        if pos < len(tokens):
            if not tokens[pos].is_punct(","):
                raise AttrError.EXPECTED.diagnostic(
                    "',' between attributes", span=span_of(tokens[pos])
                )
            pos += 1
    return AttributeSet(attributes, target)


__all__ = [
    "AttrError",
    "AttrTarget",
    "AttributeSet",
    "BindingAttribute",
    "Codec",
    "CodecAttribute",
    "Dispatch",
    "DispatchAttribute",
    "NumericBinding",
    "parse_attributes",
    "parse_int_literal",
]
