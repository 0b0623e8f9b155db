"""Tokenizer and recursive-descent parser for Rust item declarations.

Only the subset the actor macros consume is modelled in detail: outer
attributes, visibility, generics, structures, implementation blocks with
their method signatures, and the full type grammar. Function bodies,
expressions and every other item kind are kept as opaque source spans.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Optional

from .diagnostics import ErrorCatalog


class SyntaxErrorKind(ErrorCatalog):
    UNEXPECTED_TOKEN = "expected {0}, found '{1}'"
    UNEXPECTED_EOF = "unexpected end of input, expected {0}"
    UNTERMINATED = "unterminated {0}"
    UNEXPECTED_CHAR = "unexpected character '{0}'"
    UNBALANCED = "unbalanced delimiter '{0}'"
    TRAILING = "unexpected tokens after item: '{0}'"


class ParseError(Exception):
    """Raised when declaration text cannot be tokenized or parsed."""

    def __init__(self, kind, *args, span=None):
        self.kind = kind
        self.message = kind.format(*args)
        self.span = span
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int

    def is_punct(self, text):
        return self.kind == "punct" and self.text == text

    def is_ident(self, text=None):
        return self.kind == "ident" and (text is None or self.text == text)


_IDENT = re.compile(r"(?:r#)?[A-Za-z_][A-Za-z0-9_]*")
_NUMBER = re.compile(
    r"0x[0-9a-fA-F_]+(?:[iu](?:8|16|32|64|128|size))?"
    r"|0o[0-7_]+(?:[iu](?:8|16|32|64|128|size))?"
    r"|0b[01_]+(?:[iu](?:8|16|32|64|128|size))?"
    r"|[0-9][0-9_]*(?:\.[0-9][0-9_]*)?(?:[eE][+-]?[0-9_]+)?(?:[A-Za-z_][A-Za-z0-9_]*)?"
)
_RAW_STRING = re.compile(r'b?r(#*)"')
_MULTI_PUNCT = ("..=", "...", "::", "->", "=>", "..")
_SINGLE_PUNCT = set("#!()[]{}<>,;:=&*+-/%^|?@.$~")
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}


def _skip_block_comment(text, start):
    depth = 0
    i = start
    while i < len(text):
        if text.startswith("/*", i):
            depth += 1
            i += 2
        elif text.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    raise ParseError(SyntaxErrorKind.UNTERMINATED, "block comment", span=(start, len(text)))


def _scan_quoted(text, start, quote):
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        i += 1
    what = "string literal" if quote == '"' else "character literal"
    raise ParseError(SyntaxErrorKind.UNTERMINATED, what, span=(start, len(text)))


def tokenize(text):
    """Split ``text`` into tokens, dropping whitespace and comments."""

    tokens = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
            continue
        if text.startswith("/*", i):
            i = _skip_block_comment(text, i)
            continue

        raw = _RAW_STRING.match(text, i)
        if raw:
            closing = '"' + raw.group(1)
            end = text.find(closing, raw.end())
            if end < 0:
                raise ParseError(SyntaxErrorKind.UNTERMINATED, "raw string literal", span=(i, n))
            end += len(closing)
            tokens.append(Token("str", text[i:end], i, end))
            i = end
            continue
        if ch == '"' or text.startswith('b"', i):
            body = i + (2 if ch == "b" else 1)
            end = _scan_quoted(text, body, '"')
            tokens.append(Token("str", text[i:end], i, end))
            i = end
            continue
        if text.startswith("b'", i):
            end = _scan_quoted(text, i + 2, "'")
            tokens.append(Token("char", text[i:end], i, end))
            i = end
            continue
        if ch == "'":
            if i + 1 < n and text[i + 1] == "\\":
                end = _scan_quoted(text, i + 1, "'")
                tokens.append(Token("char", text[i:end], i, end))
                i = end
                continue
            if i + 2 < n and text[i + 2] == "'":
                tokens.append(Token("char", text[i : i + 3], i, i + 3))
                i += 3
                continue
            ident = _IDENT.match(text, i + 1)
            if ident:
                tokens.append(Token("lifetime", text[i : ident.end()], i, ident.end()))
                i = ident.end()
                continue
            raise ParseError(SyntaxErrorKind.UNEXPECTED_CHAR, ch, span=(i, i + 1))
        if ch.isdigit():
            number = _NUMBER.match(text, i)
            literal = number.group(0)
            kind = "int"
            if not literal.startswith(("0x", "0o", "0b")) and re.match(
                r"[0-9_]+(?:\.|[eE])", literal
            ):
                kind = "float"
            if re.search(r"f(?:32|64)$", literal) and not literal.startswith("0x"):
                kind = "float"
            tokens.append(Token(kind, literal, i, number.end()))
            i = number.end()
            continue
        ident = _IDENT.match(text, i)
        if ident:
            tokens.append(Token("ident", ident.group(0), i, ident.end()))
            i = ident.end()
            continue
        for punct in _MULTI_PUNCT:
            if text.startswith(punct, i):
                tokens.append(Token("punct", punct, i, i + len(punct)))
                i += len(punct)
                break
        else:
            if ch not in _SINGLE_PUNCT:
                raise ParseError(SyntaxErrorKind.UNEXPECTED_CHAR, ch, span=(i, i + 1))
            tokens.append(Token("punct", ch, i, i + 1))
            i += 1
    return tokens


_TIGHT_AFTER = {"::", "(", "[", "<", "&", "*", "#", "!", "'", "$"}
_TIGHT_BEFORE = {"::", ",", ";", ")", "]", ">", "<", "(", ".", ":", "?"}


def join_tokens(tokens):
    """Render a token run as normalized text."""

    parts = []
    prev = None
    for tok in tokens:
        if prev is not None:
            tight = (
                (prev.kind == "punct" and prev.text in _TIGHT_AFTER)
                or (tok.kind == "punct" and tok.text in _TIGHT_BEFORE)
            )
            if tok.is_punct("(") and prev.kind == "punct" and prev.text not in _TIGHT_AFTER:
                tight = False
            if tok.kind == "punct" and tok.text in {"->", "=", "+", "=>"}:
                tight = False
            if prev.kind == "punct" and prev.text in {"->", "=", "+", "=>", ",", ";", ":"}:
                tight = False
            if tok.is_punct(":") or tok.is_punct("!") and prev.kind == "ident":
                tight = True
            if not tight:
                parts.append(" ")
        parts.append(tok.text)
        prev = tok
    return "".join(parts)


# ---------------------------------------------------------------------------
# Syntax tree
# ---------------------------------------------------------------------------


@dataclass
class Node:
    span: tuple = field(default=(0, 0), repr=False, compare=False, kw_only=True)


@dataclass
class Attribute(Node):
    path: list
    style: str = "outer"
    kind: str = "word"
    args_text: str = ""
    args_span: Optional[tuple] = None
    text: str = ""

    @property
    def name(self):
        return self.path[-1]


@dataclass
class Visibility(Node):
    kind: str = "inherited"
    text: str = ""

    @property
    def is_public(self):
        return self.kind == "public"


@dataclass
class GenericParam(Node):
    kind: str
    name: str


@dataclass
class Generics(Node):
    params: list = field(default_factory=list)
    where_clause: str = ""

    @property
    def is_empty(self):
        return not self.params


# -- types -------------------------------------------------------------------


@dataclass
class Type(Node):
    pass


@dataclass
class GenericLifetime(Node):
    name: str


@dataclass
class GenericType(Node):
    ty: Type


@dataclass
class GenericBinding(Node):
    name: str
    ty: Type


@dataclass
class GenericConstraint(Node):
    name: str
    bounds: list


@dataclass
class GenericConst(Node):
    expr: str


@dataclass
class AngleBracketed(Node):
    args: list


@dataclass
class Parenthesized(Node):
    inputs: list
    output: Optional[Type] = None


@dataclass
class PathSegment(Node):
    ident: str
    arguments: object = None


@dataclass
class QSelf(Node):
    ty: Type
    trait: Optional["TypePath"] = None


@dataclass
class TypePath(Type):
    segments: list
    leading_colon: bool = False
    qself: Optional[QSelf] = None


@dataclass
class TraitBound(Node):
    path: TypePath
    modifier: str = ""
    for_lifetimes: str = ""


@dataclass
class LifetimeBound(Node):
    name: str


@dataclass
class TypeArray(Type):
    elem: Type
    length: str


@dataclass
class TypeSlice(Type):
    elem: Type


@dataclass
class TypeParen(Type):
    elem: Type


@dataclass
class TypeTuple(Type):
    elems: list


@dataclass
class TypeReference(Type):
    elem: Type
    lifetime: Optional[str] = None
    mutable: bool = False


@dataclass
class TypePtr(Type):
    elem: Type
    mutable: bool = False


@dataclass
class TypeNever(Type):
    pass


@dataclass
class TypeInfer(Type):
    pass


@dataclass
class TypeImplTrait(Type):
    bounds: list


@dataclass
class TypeTraitObject(Type):
    bounds: list
    dyn: bool = True


@dataclass
class TypeBareFn(Type):
    inputs: list
    output: Optional[Type]
    text: str


@dataclass
class TypeMacro(Type):
    path: TypePath
    text: str


@dataclass
class TypeGroup(Type):
    """Type wrapped in invisible delimiters by a macro expansion."""

    elem: Type


@dataclass
class TypeVerbatim(Type):
    text: str


# -- items -------------------------------------------------------------------


@dataclass
class Field(Node):
    attrs: list
    vis: Visibility
    name: Optional[str]
    ty: Type


@dataclass
class ItemStruct(Node):
    attrs: list
    vis: Visibility
    name: str
    generics: Generics
    fields: list
    style: str
    text: str = ""


@dataclass
class PatIdent(Node):
    name: str
    mutable: bool = False
    by_ref: bool = False
    subpattern: Optional[str] = None


@dataclass
class PatOther(Node):
    text: str


@dataclass
class Receiver(Node):
    attrs: list
    reference: bool
    mutable: bool
    lifetime: Optional[str] = None
    ty: Optional[Type] = None
    text: str = ""


@dataclass
class TypedArg(Node):
    attrs: list
    pat: object
    ty: Type


@dataclass
class ImplMethod(Node):
    attrs: list
    vis: Visibility
    name: str
    generics: Generics
    inputs: list
    output: Optional[Type]
    qualifiers: list = field(default_factory=list)
    text: str = ""


@dataclass
class ImplOther(Node):
    attrs: list
    kind: str
    text: str


@dataclass
class ItemImpl(Node):
    attrs: list
    generics: Generics
    self_ty: Type
    trait: Optional[TypePath] = None
    negative: bool = False
    unsafe: bool = False
    items: list = field(default_factory=list)
    text: str = ""


@dataclass
class ItemOther(Node):
    attrs: list
    vis: Visibility
    kind: str
    name: Optional[str]
    text: str = ""


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

_TERMINATED_BY_SEMI = {"const", "static", "use", "type", "crate"}
_ITEM_QUALIFIERS = ("async", "unsafe", "extern", "default")
_FN_QUALIFIERS = ("fn", "unsafe", "async", "extern")
_ITEM_KINDS = _TERMINATED_BY_SEMI | {"fn", "enum", "trait", "mod", "union", "macro", "extern"}


class Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = tokenize(source)
        self.pos = 0

    # -- cursor helpers ---------------------------------------------------

    def peek(self, offset=0) -> Optional[Token]:
        index = self.pos + offset
        if index < len(self.tokens):
            return self.tokens[index]
        return None

    def at(self, text, offset=0):
        tok = self.peek(offset)
        return tok is not None and tok.kind in ("punct", "ident") and tok.text == text

    def at_end(self):
        return self.pos >= len(self.tokens)

    def bump(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_EOF,
                "a token",
                span=(len(self.source), len(self.source)),
            )
        self.pos += 1
        return tok

    def eat(self, text):
        if self.at(text):
            return self.bump()
        return None

    def expect(self, text, what=None):
        tok = self.peek()
        if tok is None:
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_EOF,
                what or f"'{text}'",
                span=(len(self.source), len(self.source)),
            )
        if not self.at(text):
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_TOKEN,
                what or f"'{text}'",
                tok.text,
                span=(tok.start, tok.end),
            )
        return self.bump()

    def expect_ident(self, what="an identifier"):
        tok = self.peek()
        if tok is None:
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_EOF,
                what,
                span=(len(self.source), len(self.source)),
            )
        if tok.kind != "ident":
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_TOKEN, what, tok.text, span=(tok.start, tok.end)
            )
        return self.bump()

    def error(self, what):
        tok = self.peek()
        if tok is None:
            return ParseError(
                SyntaxErrorKind.UNEXPECTED_EOF,
                what,
                span=(len(self.source), len(self.source)),
            )
        return ParseError(
            SyntaxErrorKind.UNEXPECTED_TOKEN, what, tok.text, span=(tok.start, tok.end)
        )

    def last_end(self):
        if self.pos == 0:
            return 0
        return self.tokens[self.pos - 1].end

    def span_from(self, start_tok):
        return (start_tok.start, self.last_end())

    def slice(self, span):
        return self.source[span[0] : span[1]]

    def skip_group(self):
        """Consume a balanced delimited group; returns its tokens."""

        open_tok = self.bump()
        if open_tok.text not in _OPENERS:
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_TOKEN,
                "a delimiter",
                open_tok.text,
                span=(open_tok.start, open_tok.end),
            )
        stack = [_OPENERS[open_tok.text]]
        collected = [open_tok]
        while stack:
            tok = self.peek()
            if tok is None:
                raise ParseError(
                    SyntaxErrorKind.UNBALANCED,
                    open_tok.text,
                    span=(open_tok.start, len(self.source)),
                )
            self.pos += 1
            collected.append(tok)
            if tok.kind != "punct":
                continue
            if tok.text in _OPENERS:
                stack.append(_OPENERS[tok.text])
            elif tok.text in _CLOSERS:
                if tok.text != stack[-1]:
                    raise ParseError(
                        SyntaxErrorKind.UNBALANCED, tok.text, span=(tok.start, tok.end)
                    )
                stack.pop()
        return collected

    def collect_until(self, stops, angle=False):
        """Consume tokens up to a depth-zero stop token (not consumed)."""

        collected = []
        angle_depth = 0
        while True:
            tok = self.peek()
            if tok is None:
                return collected
            if tok.kind == "punct":
                if angle_depth == 0 and tok.text in stops:
                    return collected
                if tok.text in _OPENERS:
                    collected.extend(self.skip_group())
                    continue
                if tok.text in _CLOSERS:
                    return collected
                if angle and tok.text == "<":
                    angle_depth += 1
                elif angle and tok.text == ">":
                    if angle_depth == 0:
                        return collected
                    angle_depth -= 1
            collected.append(self.bump())

    # -- attributes and visibility ----------------------------------------

    def parse_attributes(self, inner_only=False):
        attrs = []
        while self.at("#") and (not inner_only or self.at("!", 1)):
            start = self.bump()
            style = "outer"
            if self.eat("!"):
                style = "inner"
            self.expect("[")
            path = self.parse_simple_path()
            kind = "word"
            args_text = ""
            args_span = None
            if self.peek() is not None and self.peek().text in _OPENERS and self.peek().kind == "punct":
                group = self.skip_group()
                kind = "list"
                args_span = (group[0].end, group[-1].start)
                args_text = self.slice(args_span)
            elif self.eat("="):
                value = self.collect_until({"]"})
                kind = "name_value"
                if value:
                    args_span = (value[0].start, value[-1].end)
                    args_text = self.slice(args_span)
            self.expect("]")
            span = self.span_from(start)
            attrs.append(
                Attribute(
                    path,
                    style,
                    kind,
                    args_text,
                    args_span,
                    self.slice(span),
                    span=span,
                )
            )
        return attrs

    def parse_simple_path(self):
        segments = []
        self.eat("::")
        segments.append(self.expect_ident("an attribute path").text)
        while self.at("::"):
            self.bump()
            segments.append(self.expect_ident("a path segment").text)
        return segments

    def parse_visibility(self):
        tok = self.peek()
        if tok is None or not tok.is_ident("pub"):
            if tok is not None and tok.is_ident("crate") and not self.at("::", 1):
                self.bump()
                return Visibility("restricted", "crate", span=(tok.start, tok.end))
            return Visibility("inherited", "", span=(0, 0))
        self.bump()
        if self.at("("):
            inner = self.peek(1)
            restricted = inner is not None and (
                (inner.text in ("crate", "self", "super") and self.at(")", 2))
                or inner.text == "in"
            )
            if restricted:
                self.skip_group()
                span = self.span_from(tok)
                return Visibility("restricted", join_tokens(self.tokens_in(span)), span=span)
        return Visibility("public", "pub", span=(tok.start, tok.end))

    def tokens_in(self, span):
        return [t for t in self.tokens if t.start >= span[0] and t.end <= span[1]]

    # -- generics ---------------------------------------------------------

    def parse_generics(self):
        generics = Generics(span=(0, 0))
        if not self.at("<"):
            return generics
        start = self.bump()
        params = []
        while not self.at(">"):
            self.parse_attributes()
            tok = self.peek()
            if tok is None:
                raise self.error("a generic parameter")
            if tok.kind == "lifetime":
                self.bump()
                params.append(GenericParam("lifetime", tok.text, span=(tok.start, tok.end)))
            elif tok.is_ident("const"):
                self.bump()
                name = self.expect_ident("a const parameter name")
                params.append(GenericParam("const", name.text, span=self.span_from(tok)))
            else:
                name = self.expect_ident("a generic parameter")
                params.append(GenericParam("type", name.text, span=(name.start, name.end)))
            self.collect_until({",", ">"}, angle=True)
            if not self.eat(","):
                break
        self.expect(">", "'>' to close generic parameters")
        generics.params = params
        generics.span = self.span_from(start)
        return generics

    def parse_where_clause(self, generics):
        if not self.at("where"):
            return
        self.bump()
        clause = self.collect_until({"{", ";"})
        generics.where_clause = join_tokens(clause)

    # -- types ------------------------------------------------------------

    def parse_type(self, allow_plus=True) -> Type:
        tok = self.peek()
        if tok is None:
            raise self.error("a type")

        if tok.is_punct("("):
            self.bump()
            if self.eat(")"):
                return TypeTuple([], span=self.span_from(tok))
            first = self.parse_type()
            if self.eat(")"):
                return TypeParen(first, span=self.span_from(tok))
            elems = [first]
            while self.eat(","):
                if self.at(")"):
                    break
                elems.append(self.parse_type())
            self.expect(")", "')' to close tuple type")
            return TypeTuple(elems, span=self.span_from(tok))

        if tok.is_punct("["):
            self.bump()
            elem = self.parse_type()
            if self.eat("]"):
                return TypeSlice(elem, span=self.span_from(tok))
            self.expect(";", "';' or ']' in array type")
            length = self.collect_until({"]"})
            if not length:
                raise self.error("an array length")
            self.expect("]")
            return TypeArray(elem, join_tokens(length), span=self.span_from(tok))

        if tok.is_punct("&"):
            self.bump()
            lifetime = None
            if self.peek() is not None and self.peek().kind == "lifetime":
                lifetime = self.bump().text
            mutable = self.eat("mut") is not None
            elem = self.parse_type(allow_plus=False)
            return TypeReference(elem, lifetime, mutable, span=self.span_from(tok))

        if tok.is_punct("*"):
            self.bump()
            if self.eat("mut"):
                mutable = True
            elif self.eat("const"):
                mutable = False
            else:
                raise self.error("'const' or 'mut' in pointer type")
            elem = self.parse_type(allow_plus=False)
            return TypePtr(elem, mutable, span=self.span_from(tok))

        if tok.is_punct("!"):
            self.bump()
            return TypeNever(span=self.span_from(tok))

        if tok.is_ident("_"):
            self.bump()
            return TypeInfer(span=self.span_from(tok))

        if tok.is_ident("impl"):
            self.bump()
            bounds = self.parse_bounds(allow_plus)
            return TypeImplTrait(bounds, span=self.span_from(tok))

        if tok.is_ident("dyn"):
            self.bump()
            bounds = self.parse_bounds(allow_plus)
            return TypeTraitObject(bounds, True, span=self.span_from(tok))

        if tok.kind == "ident" and (
            tok.text in ("fn", "unsafe", "extern") or (tok.text == "for" and self._for_fn())
        ):
            return self.parse_bare_fn()

        if tok.is_ident("for") or tok.is_punct("?"):
            bounds = self.parse_bounds(allow_plus)
            return TypeTraitObject(bounds, False, span=self.span_from(tok))

        if tok.is_punct("<") or tok.is_punct("::") or (
            tok.kind == "ident" and tok.text not in ("mut", "const", "where", "as")
        ):
            path = self.parse_type_path()
            if self.at("!") and self.peek(1) is not None and self.peek(1).text in _OPENERS:
                self.bump()
                self.skip_group()
                span = self.span_from(tok)
                return TypeMacro(path, join_tokens(self.tokens_in(span)), span=span)
            if allow_plus and self.at("+"):
                bounds = [TraitBound(path, span=path.span)]
                while self.eat("+"):
                    if self._at_bound():
                        bounds.append(self.parse_bound())
                return TypeTraitObject(bounds, False, span=self.span_from(tok))
            return path

        verbatim = self.collect_until({",", ")", "]", ">", ";", "=", "{", "}"})
        if not verbatim:
            raise self.error("a type")
        span = (verbatim[0].start, verbatim[-1].end)
        return TypeVerbatim(join_tokens(verbatim), span=span)

    def _for_fn(self):
        offset = 1
        if not self.at("<", offset):
            return False
        depth = 0
        while True:
            tok = self.peek(offset)
            if tok is None:
                return False
            if tok.is_punct("<"):
                depth += 1
            elif tok.is_punct(">"):
                depth -= 1
                if depth == 0:
                    nxt = self.peek(offset + 1)
                    return nxt is not None and nxt.text in ("fn", "unsafe", "extern")
            offset += 1

    def parse_type_path(self) -> TypePath:
        start = self.peek()
        qself = None
        leading_colon = False
        if self.at("<"):
            qstart = self.bump()
            qty = self.parse_type()
            trait = None
            if self.eat("as"):
                trait = self.parse_type_path()
            self.expect(">", "'>' to close qualified path")
            qself = QSelf(qty, trait, span=self.span_from(qstart))
            self.expect("::", "'::' after qualified path")
        else:
            leading_colon = self.eat("::") is not None

        segments = []
        while True:
            ident = self.expect_ident("a path segment")
            arguments = None
            if self.at("::") and self.at("<", 1):
                self.bump()
            if self.at("<"):
                arguments = self.parse_angle_arguments()
            elif self.at("(") and ident.text[:1].isupper():
                arguments = self.parse_paren_arguments()
            segments.append(PathSegment(ident.text, arguments, span=self.span_from(ident)))
            if self.at("::") and self.peek(1) is not None and self.peek(1).kind == "ident":
                self.bump()
                continue
            break
        return TypePath(segments, leading_colon, qself, span=self.span_from(start))

    def parse_angle_arguments(self):
        start = self.expect("<")
        args = []
        while not self.at(">"):
            tok = self.peek()
            if tok is None:
                raise self.error("'>' to close generic arguments")
            if tok.kind == "lifetime":
                self.bump()
                args.append(GenericLifetime(tok.text, span=(tok.start, tok.end)))
            elif tok.kind in ("int", "float", "str", "char") or tok.is_punct("-") or tok.is_punct("{"):
                expr = self.collect_until({",", ">"})
                args.append(GenericConst(join_tokens(expr), span=(expr[0].start, expr[-1].end)))
            elif tok.is_ident("true") or tok.is_ident("false"):
                self.bump()
                args.append(GenericConst(tok.text, span=(tok.start, tok.end)))
            elif tok.kind == "ident" and self.at("=", 1):
                self.bump()
                self.bump()
                ty = self.parse_type()
                args.append(GenericBinding(tok.text, ty, span=self.span_from(tok)))
            elif tok.kind == "ident" and self.at(":", 1):
                self.bump()
                self.bump()
                bounds = self.parse_bounds(True)
                args.append(GenericConstraint(tok.text, bounds, span=self.span_from(tok)))
            else:
                ty = self.parse_type()
                args.append(GenericType(ty, span=ty.span))
            if not self.eat(","):
                break
        self.expect(">", "'>' to close generic arguments")
        return AngleBracketed(args, span=self.span_from(start))

    def parse_paren_arguments(self):
        start = self.expect("(")
        inputs = []
        while not self.at(")"):
            inputs.append(self.parse_type())
            if not self.eat(","):
                break
        self.expect(")", "')' to close parenthesized arguments")
        output = None
        if self.eat("->"):
            output = self.parse_type(allow_plus=False)
        return Parenthesized(inputs, output, span=self.span_from(start))

    def _at_bound(self):
        tok = self.peek()
        if tok is None:
            return False
        return (
            tok.kind == "lifetime"
            or tok.is_punct("?")
            or tok.is_punct("::")
            or tok.is_punct("(")
            or (tok.kind == "ident" and tok.text not in ("where", "as"))
        )

    def parse_bound(self):
        tok = self.peek()
        if tok is not None and tok.kind == "lifetime":
            self.bump()
            return LifetimeBound(tok.text, span=(tok.start, tok.end))
        if self.at("("):
            self.bump()
            bound = self.parse_bound()
            self.expect(")")
            return bound
        modifier = ""
        if self.eat("?"):
            modifier = "?"
        for_lifetimes = ""
        if self.at("for") and self.at("<", 1):
            self.bump()
            group = self.collect_angle_group()
            for_lifetimes = join_tokens(group)
        path = self.parse_type_path()
        return TraitBound(path, modifier, for_lifetimes, span=self.span_from(tok))

    def collect_angle_group(self):
        collected = [self.expect("<")]
        depth = 1
        while depth:
            tok = self.bump()
            collected.append(tok)
            if tok.is_punct("<"):
                depth += 1
            elif tok.is_punct(">"):
                depth -= 1
        return collected

    def parse_bounds(self, allow_plus):
        bounds = []
        while self._at_bound():
            bounds.append(self.parse_bound())
            if not allow_plus or not self.eat("+"):
                break
        if not bounds:
            raise self.error("a trait bound")
        return bounds

    def parse_bare_fn(self):
        start = self.peek()
        if self.at("for"):
            self.bump()
            self.collect_angle_group()
        self.eat("unsafe")
        if self.eat("extern"):
            if self.peek() is not None and self.peek().kind == "str":
                self.bump()
        self.expect("fn", "'fn' in function pointer type")
        self.expect("(", "'(' in function pointer type")
        inputs = []
        while not self.at(")"):
            if self.eat("..."):
                break
            tok = self.peek()
            if tok is not None and tok.kind == "ident" and self.at(":", 1):
                self.bump()
                self.bump()
            inputs.append(self.parse_type())
            if not self.eat(","):
                break
        self.expect(")", "')' in function pointer type")
        output = None
        if self.eat("->"):
            output = self.parse_type(allow_plus=False)
        span = self.span_from(start)
        return TypeBareFn(inputs, output, join_tokens(self.tokens_in(span)), span=span)

    # -- items ------------------------------------------------------------

    def parse_item(self):
        start = self.peek()
        if start is None:
            raise self.error("an item")
        attrs = self.parse_attributes()
        vis = self.parse_visibility()
        tok = self.peek()
        if tok is None:
            raise self.error("an item")
        if tok.is_ident("struct"):
            item = self.parse_struct(attrs, vis)
        elif tok.is_ident("impl") or (
            tok.text in ("unsafe", "default") and self.at("impl", 1)
        ) or (tok.is_ident("default") and self.at("unsafe", 1) and self.at("impl", 2)):
            item = self.parse_impl(attrs)
        else:
            item = self.parse_other_item(attrs, vis)
        item.span = self.span_from(start)
        item.text = self.slice(item.span)
        return item

    def parse_struct(self, attrs, vis):
        self.expect("struct")
        name = self.expect_ident("a structure name").text
        generics = self.parse_generics()
        self.parse_where_clause(generics)
        if self.at("{"):
            fields = self.parse_named_fields()
            style = "named"
        elif self.at("("):
            fields = self.parse_tuple_fields()
            style = "tuple"
            self.parse_where_clause(generics)
            self.expect(";", "';' after tuple structure")
        else:
            self.expect(";", "'{', '(' or ';' after structure name")
            fields = []
            style = "unit"
        return ItemStruct(attrs, vis, name, generics, fields, style)

    def parse_named_fields(self):
        self.expect("{")
        fields = []
        while not self.at("}"):
            start = self.peek()
            attrs = self.parse_attributes()
            vis = self.parse_visibility()
            name = self.expect_ident("a field name").text
            self.expect(":", "':' after field name")
            ty = self.parse_type()
            fields.append(Field(attrs, vis, name, ty, span=self.span_from(start)))
            if not self.eat(","):
                break
        self.expect("}", "'}' to close structure fields")
        return fields

    def parse_tuple_fields(self):
        self.expect("(")
        fields = []
        while not self.at(")"):
            start = self.peek()
            attrs = self.parse_attributes()
            vis = self.parse_visibility()
            ty = self.parse_type()
            fields.append(Field(attrs, vis, None, ty, span=self.span_from(start)))
            if not self.eat(","):
                break
        self.expect(")", "')' to close tuple fields")
        return fields

    def parse_impl(self, attrs):
        self.eat("default")
        unsafe = self.eat("unsafe") is not None
        self.expect("impl")
        generics = Generics(span=(0, 0))
        if self.at("<") and not (self.peek(1) is not None and self.peek(1).is_punct("<")):
            generics = self.parse_generics()
        negative = False
        if self.at("!") and self.peek(1) is not None and self.peek(1).kind == "ident":
            self.bump()
            negative = True
        first = self.parse_type(allow_plus=False)
        trait = None
        if self.eat("for"):
            if not isinstance(first, TypePath):
                raise ParseError(
                    SyntaxErrorKind.UNEXPECTED_TOKEN,
                    "a trait path",
                    self.slice(first.span),
                    span=first.span,
                )
            trait = first
            self_ty = self.parse_type(allow_plus=False)
        else:
            if negative:
                raise self.error("'for' after negative trait")
            self_ty = first
        self.parse_where_clause(generics)
        self.expect("{", "'{' to open implementation body")
        self.parse_attributes(inner_only=True)
        items = []
        while not self.at("}"):
            if self.at_end():
                raise self.error("'}' to close implementation body")
            items.append(self.parse_impl_item())
        self.expect("}")
        return ItemImpl(attrs, generics, self_ty, trait, negative, unsafe, items)

    def parse_impl_item(self):
        start = self.peek()
        attrs = self.parse_attributes()
        vis = self.parse_visibility()
        self.eat("default")
        qualifiers = []
        offset = 0
        while True:
            tok = self.peek(offset)
            if tok is None:
                break
            if tok.text in ("const", "async", "unsafe") and tok.kind == "ident":
                offset += 1
                continue
            if tok.is_ident("extern"):
                offset += 1
                nxt = self.peek(offset)
                if nxt is not None and nxt.kind == "str":
                    offset += 1
                continue
            break
        if self.at("fn", offset):
            for _ in range(offset):
                qualifiers.append(self.bump().text)
            item = self.parse_method(attrs, vis, qualifiers)
        else:
            tok = self.peek()
            kind = "macro" if tok is not None and self.at("!", 1) else (tok.text if tok else "item")
            if kind == "macro":
                self.collect_until({";", "{"})
                if self.at("{"):
                    self.skip_group()
                self.eat(";")
            else:
                self.collect_until({";"})
                self.expect(";", "';' after implementation item")
            item = ImplOther(attrs, kind, "")
        item.span = self.span_from(start)
        item.text = self.slice(item.span)
        return item

    def parse_method(self, attrs, vis, qualifiers):
        self.expect("fn")
        name = self.expect_ident("a method name").text
        generics = self.parse_generics()
        self.expect("(", "'(' to open method parameters")
        inputs = []
        while not self.at(")"):
            inputs.append(self.parse_fn_arg())
            if not self.eat(","):
                break
        self.expect(")", "')' to close method parameters")
        output = None
        if self.eat("->"):
            output = self.parse_type(allow_plus=True)
        self.parse_where_clause(generics)
        if self.at("{"):
            self.skip_group()
        else:
            self.expect(";", "method body or ';'")
        return ImplMethod(attrs, vis, name, generics, inputs, output, qualifiers)

    def parse_fn_arg(self):
        start = self.peek()
        attrs = self.parse_attributes()
        first = self.peek()
        if first is None:
            raise self.error("a method parameter")

        if first.is_punct("&"):
            offset = 1
            lifetime = None
            tok = self.peek(offset)
            if tok is not None and tok.kind == "lifetime":
                lifetime = tok.text
                offset += 1
            mutable = self.at("mut", offset)
            if mutable:
                offset += 1
            if self.at("self", offset) and not self.at("::", offset + 1):
                for _ in range(offset + 1):
                    self.bump()
                span = self.span_from(first)
                return Receiver(
                    attrs, True, mutable, lifetime, None, self.slice(span), span=span
                )

        mutable = False
        offset = 0
        if first.is_ident("mut") and self.at("self", 1):
            mutable = True
            offset = 1
        if self.at("self", offset) and not self.at("::", offset + 1):
            for _ in range(offset + 1):
                self.bump()
            ty = None
            if self.eat(":"):
                ty = self.parse_type()
            span = self.span_from(first)
            return Receiver(attrs, False, mutable, None, ty, self.slice(span), span=span)

        pat = self.parse_pattern()
        self.expect(":", "':' after parameter pattern")
        ty = self.parse_type()
        return TypedArg(attrs, pat, ty, span=self.span_from(start))

    def parse_pattern(self):
        start = self.peek()
        by_ref = False
        mutable = False
        offset = 0
        if self.at("ref"):
            by_ref = True
            offset += 1
        if self.at("mut", offset):
            mutable = True
            offset += 1
        tok = self.peek(offset)
        nxt = self.peek(offset + 1)
        simple = (
            tok is not None
            and tok.kind == "ident"
            and tok.text != "_"
            and (nxt is None or nxt.text in (":", "@") and nxt.kind == "punct")
        )
        if simple:
            for _ in range(offset + 1):
                self.bump()
            subpattern = None
            if self.eat("@"):
                sub = self.collect_until({":"})
                subpattern = join_tokens(sub)
            return PatIdent(tok.text, mutable, by_ref, subpattern, span=self.span_from(start))
        collected = self.collect_until({":"})
        if not collected:
            raise self.error("a parameter pattern")
        return PatOther(join_tokens(collected), span=self.span_from(start))

    def parse_other_item(self, attrs, vis):
        offset = 0
        while True:
            tok = self.peek(offset)
            nxt = self.peek(offset + 1)
            if tok is None:
                raise self.error("an item")
            if tok.kind == "str" and offset and self.at("extern", offset - 1):
                offset += 1
                continue
            if tok.kind == "ident" and tok.text in _ITEM_QUALIFIERS:
                offset += 1
                continue
            if tok.is_ident("const") and nxt is not None and nxt.text in _FN_QUALIFIERS:
                offset += 1
                continue
            break

        keyword = self.peek(offset)
        after = self.peek(offset + 1)
        name = after.text if after is not None and after.kind == "ident" else None
        kind = keyword.text
        if keyword.is_punct("{") and offset and self.at("extern", offset - 1):
            kind = "extern"
        elif keyword.is_punct("{") and offset > 1 and self.at("extern", offset - 2):
            kind = "extern"
        elif keyword.kind == "ident" and self.at("!", offset + 1):
            kind = "macro"
            name = keyword.text
        if kind not in _ITEM_KINDS:
            raise ParseError(
                SyntaxErrorKind.UNEXPECTED_TOKEN,
                "an item",
                keyword.text,
                span=(keyword.start, keyword.end),
            )

        if kind in _TERMINATED_BY_SEMI:
            self.collect_until({";"})
            self.expect(";", f"';' after {kind} item")
            return ItemOther(attrs, vis, kind, name)

        while True:
            cur = self.peek()
            if cur is None:
                raise self.error(f"a body for {kind} item")
            if cur.is_punct(";"):
                self.bump()
                break
            if cur.is_punct("{"):
                self.skip_group()
                if kind == "macro":
                    self.eat(";")
                break
            if cur.kind == "punct" and cur.text in _OPENERS:
                self.skip_group()
                continue
            if cur.kind == "punct" and cur.text in _CLOSERS:
                raise ParseError(
                    SyntaxErrorKind.UNBALANCED, cur.text, span=(cur.start, cur.end)
                )
            self.bump()
        return ItemOther(attrs, vis, kind, name)


# ---------------------------------------------------------------------------
# Public boundary
# ---------------------------------------------------------------------------


def parse_item(text):
    """Parse exactly one item declaration."""

    parser = Parser(text)
    item = parser.parse_item()
    if not parser.at_end():
        tok = parser.peek()
        raise ParseError(
            SyntaxErrorKind.TRAILING,
            parser.slice((tok.start, len(text))).strip()[:40],
            span=(tok.start, len(text)),
        )
    return item


def parse_file(text):
    """Parse a sequence of items."""

    parser = Parser(text)
    parser.parse_attributes(inner_only=True)
    items = []
    while not parser.at_end():
        items.append(parser.parse_item())
    return items


def parse_type(text):
    parser = Parser(text)
    ty = parser.parse_type()
    if not parser.at_end():
        tok = parser.peek()
        raise ParseError(
            SyntaxErrorKind.TRAILING, tok.text, span=(tok.start, len(text))
        )
    return ty


def parse(text):
    """``parse(text) -> DeclarationNode`` boundary used by the macro hooks."""

    return parse_item(text)


def _render_args(arguments):
    if arguments is None:
        return ""
    if isinstance(arguments, AngleBracketed):
        return "<" + ", ".join(render(arg) for arg in arguments.args) + ">"
    text = "(" + ", ".join(render_type(t) for t in arguments.inputs) + ")"
    if arguments.output is not None:
        text += " -> " + render_type(arguments.output)
    return text


def _render_bound(bound):
    if isinstance(bound, LifetimeBound):
        return bound.name
    prefix = bound.modifier
    if bound.for_lifetimes:
        prefix += f"for{bound.for_lifetimes} "
    return prefix + render_type(bound.path)


def render_type(ty):
    """Normalized source text for a type node."""

    if isinstance(ty, TypePath):
        prefix = ""
        if ty.qself is not None:
            inner = render_type(ty.qself.ty)
            if ty.qself.trait is not None:
                inner += " as " + render_type(ty.qself.trait)
            prefix = f"<{inner}>::"
        elif ty.leading_colon:
            prefix = "::"
        return prefix + "::".join(
            seg.ident + _render_args(seg.arguments) for seg in ty.segments
        )
    if isinstance(ty, TypeArray):
        return f"[{render_type(ty.elem)}; {ty.length}]"
    if isinstance(ty, TypeSlice):
        return f"[{render_type(ty.elem)}]"
    if isinstance(ty, TypeParen):
        return f"({render_type(ty.elem)})"
    if isinstance(ty, TypeTuple):
        if len(ty.elems) == 1:
            return f"({render_type(ty.elems[0])},)"
        return "(" + ", ".join(render_type(e) for e in ty.elems) + ")"
    if isinstance(ty, TypeReference):
        text = "&"
        if ty.lifetime:
            text += ty.lifetime + " "
        if ty.mutable:
            text += "mut "
        return text + render_type(ty.elem)
    if isinstance(ty, TypePtr):
        return ("*mut " if ty.mutable else "*const ") + render_type(ty.elem)
    if isinstance(ty, TypeNever):
        return "!"
    if isinstance(ty, TypeInfer):
        return "_"
    if isinstance(ty, TypeImplTrait):
        return "impl " + " + ".join(_render_bound(b) for b in ty.bounds)
    if isinstance(ty, TypeTraitObject):
        bounds = " + ".join(_render_bound(b) for b in ty.bounds)
        return f"dyn {bounds}" if ty.dyn else bounds
    if isinstance(ty, (TypeBareFn, TypeMacro, TypeVerbatim)):
        return ty.text
    if isinstance(ty, TypeGroup):
        return render_type(ty.elem)
    raise TypeError(f"not a type node: {type(ty).__name__}")


def render(node):
    """``render(node) -> text``: items keep their source text, types normalize."""

    if isinstance(node, Type):
        return render_type(node)
    if isinstance(node, GenericLifetime):
        return node.name
    if isinstance(node, GenericType):
        return render_type(node.ty)
    if isinstance(node, GenericBinding):
        return f"{node.name} = {render_type(node.ty)}"
    if isinstance(node, GenericConstraint):
        return f"{node.name}: " + " + ".join(_render_bound(b) for b in node.bounds)
    if isinstance(node, GenericConst):
        return node.expr
    if isinstance(node, (TraitBound, LifetimeBound)):
        return _render_bound(node)
    if isinstance(node, PatIdent):
        text = ("ref " if node.by_ref else "") + ("mut " if node.mutable else "") + node.name
        if node.subpattern:
            text += f" @ {node.subpattern}"
        return text
    if isinstance(node, PatOther):
        return node.text
    if hasattr(node, "text"):
        return node.text
    raise TypeError(f"cannot render {type(node).__name__}")


__all__ = [
    "Attribute",
    "AngleBracketed",
    "Field",
    "GenericBinding",
    "GenericConst",
    "GenericConstraint",
    "GenericLifetime",
    "GenericParam",
    "GenericType",
    "Generics",
    "ImplMethod",
    "ImplOther",
    "ItemImpl",
    "ItemOther",
    "ItemStruct",
    "LifetimeBound",
    "Parenthesized",
    "ParseError",
    "Parser",
    "PatIdent",
    "PatOther",
    "PathSegment",
    "QSelf",
    "Receiver",
    "SyntaxErrorKind",
    "Token",
    "TraitBound",
    "Type",
    "TypeArray",
    "TypeBareFn",
    "TypeGroup",
    "TypeImplTrait",
    "TypeInfer",
    "TypeMacro",
    "TypeNever",
    "TypeParen",
    "TypePath",
    "TypePtr",
    "TypeReference",
    "TypeSlice",
    "TypeTraitObject",
    "TypeTuple",
    "TypeVerbatim",
    "TypedArg",
    "Visibility",
    "join_tokens",
    "parse",
    "parse_file",
    "parse_item",
    "parse_type",
    "render",
    "render_type",
    "tokenize",
]
