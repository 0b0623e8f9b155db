"""Span-aware diagnostics raised by the macro front end."""
from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator, Optional


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


class ErrorCatalog(Enum):
    """Base for per-namespace message catalogs.

    Members hold a ``str.format`` template; ``format`` fills it and
    ``diagnostic`` wraps the result in a leaf :class:`Diagnostic` tagged with
    the member as its code.
    """

    def format(self, *args):
        return self.value.format(*args)

    def diagnostic(self, *args, span=None):
        return Diagnostic(self.format(*args), span, code=self)


class DiagnosticPanic(RuntimeError):
    """Raised by :meth:`Diagnostic.panic` with the first leaf message."""


def rust_string_literal(text):
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


class Diagnostic(Exception):
    """Either a single message (leaf) or an aggregate of diagnostics."""

    def __init__(
        self,
        message: Optional[str] = None,
        span: Optional[tuple[int, int]] = None,
        *,
        severity: Severity = Severity.ERROR,
        code=None,
        children: Optional[Iterable["Diagnostic"]] = None,
    ):
        if children is not None:
            children = tuple(children)
            if not children:
                raise ValueError("aggregate diagnostic requires at least one child")
            if message is not None or span is not None:
                raise ValueError("aggregate diagnostic cannot carry its own message")
        elif message is None:
            raise ValueError("leaf diagnostic requires a message")
        super().__init__(message if children is None else children[0].first_message())
        self.message = message
        self.span = span
        self.severity = severity
        self.code = code
        self.children = children

    # -- constructors -----------------------------------------------------

    @classmethod
    def error(cls, text, code=None):
        return cls(text, code=code)

    @classmethod
    def span_error(cls, span, text, code=None):
        return cls(text, span, code=code)

    @classmethod
    def warning(cls, text, span=None, code=None):
        return cls(text, span, severity=Severity.WARNING, code=code)

    @classmethod
    def from_list(cls, items):
        """Aggregate ``items``; an empty list means success and yields ``None``."""

        items = list(items)
        if not items:
            return None
        if len(items) == 1:
            return items[0]
        return cls(children=items)

    @classmethod
    def from_parse_error(cls, err):
        from .syntax import ParseError

        if isinstance(err, cls):
            return err
        if isinstance(err, ParseError):
            return cls(err.message, err.span, code=err.kind)
        raise TypeError(f"cannot build a diagnostic from {type(err).__name__}")

    # -- inspection -------------------------------------------------------

    @property
    def is_aggregate(self):
        return self.children is not None

    def leaves(self) -> Iterator["Diagnostic"]:
        if self.children is None:
            yield self
            return
        for child in self.children:
            yield from child.leaves()

    def errors(self):
        return [leaf for leaf in self.leaves() if leaf.severity is Severity.ERROR]

    def warnings(self):
        return [leaf for leaf in self.leaves() if leaf.severity is Severity.WARNING]

    @property
    def has_errors(self):
        return bool(self.errors())

    def messages(self):
        return [leaf.message for leaf in self.leaves()]

    def first_message(self):
        return next(self.leaves()).message

    def panic(self):
        """Raise :class:`DiagnosticPanic` carrying the first leaf message."""

        raise DiagnosticPanic(self.first_message())

    # -- rendering --------------------------------------------------------

    def relocate(self, offset_of):
        """Copy with every span mapped through ``offset_of``."""

        if self.children is not None:
            return Diagnostic(children=[child.relocate(offset_of) for child in self.children])
        span = self.span
        if span is not None:
            span = (offset_of(span[0]), offset_of(span[1]))
        return Diagnostic(self.message, span, severity=self.severity, code=self.code)

    def render(self, source=None):
        """Emit one ``compile_error!`` directive per error leaf.

        With ``source``, each message is prefixed by the ``line:col`` of
        its span.
        """

        directives = [
            f"compile_error ! {{ {rust_string_literal(_position(leaf, source) + leaf.message)} }}"
            for leaf in self.errors()
        ]
        return " ".join(directives)

    def describe(self, source=None):
        """Human readable ``line:col: severity: message`` lines."""

        return "\n".join(
            f"{_position(leaf, source)}{leaf.severity.value}: {leaf.message}"
            for leaf in self.leaves()
        )

    def __repr__(self):  # pragma: no cover - representation helper
        if self.children is None:
            return f"Diagnostic({self.severity.value}: {self.message!r})"
        return f"Diagnostic({list(self.children)!r})"


def line_column(source, offset):
    """Translate a character offset into a 1-based (line, column) pair."""

    offset = max(0, min(offset, len(source)))
    line = source.count("\n", 0, offset) + 1
    last_newline = source.rfind("\n", 0, offset)
    return line, offset - last_newline


def _position(leaf, source):
    if leaf.span is None or source is None:
        return ""
    line, col = line_column(source, leaf.span[0])
    return f"{line}:{col}: "


__all__ = [
    "Diagnostic",
    "DiagnosticPanic",
    "ErrorCatalog",
    "Severity",
    "line_column",
    "rust_string_literal",
]
