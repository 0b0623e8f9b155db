"""Macro expansion hooks: declaration text in, generated Rust text out."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Optional

from ..constants import INVOKE_SYMBOL, MACRO_ACTOR, MACRO_PAYLOAD, MACRO_STATE, SDK_CRATE
from .analyzer import macro_parse
from .attrs import AttributeSet, AttrTarget, parse_attributes
from .codegen import emit_actor_implementation, emit_payload_struct, emit_state_struct
from .diagnostics import Diagnostic
from .glue import GlueModule, lower_actor_implementation, lower_state_struct
from .model import Program
from .syntax import ParseError, parse, parse_file

logger = logging.getLogger(__name__)


class MacroType(Enum):
    STATE = MACRO_STATE
    PAYLOAD = MACRO_PAYLOAD
    ACTOR = MACRO_ACTOR


@dataclass
class Expansion:
    """Result of expanding one annotated item."""

    source: str
    program: Program
    module: GlueModule
    warnings: list = field(default_factory=list)


@dataclass
class FileExpansion:
    source: str
    program: Program
    diagnostics: list = field(default_factory=list)

    @property
    def ok(self):
        return not any(diag.has_errors for diag in self.diagnostics)


def _parse_item(item_text):
    try:
        return parse(item_text)
    except ParseError as err:
        raise Diagnostic.from_parse_error(err) from err


def expand_item(
    macro_type,
    attr_text,
    item_text,
    program: Optional[Program] = None,
    sdk=SDK_CRATE,
    symbol=INVOKE_SYMBOL,
) -> Expansion:
    """Expand one item, raising :class:`Diagnostic` on failure.

    ``attr_text`` may also be an already parsed :class:`AttributeSet`.
    Spans of raised diagnostics point into ``item_text``, except for
    attribute errors, which point into ``attr_text``.
    """

    macro_type = MacroType(macro_type)
    target = AttrTarget(macro_type.value)
    if isinstance(attr_text, AttributeSet):
        attrs = attr_text
    else:
        attrs = parse_attributes(attr_text, target)
    item = _parse_item(item_text)
    program = program if program is not None else Program()
    try:
        node = macro_parse(item, program, target, attrs)
    except ValueError as err:
        raise Diagnostic.span_error(item.span, str(err)) from err

    original = item_text.strip()
    module = GlueModule(program)
    warnings = []
    if macro_type is MacroType.STATE:
        iface = lower_state_struct(node)
        module.state_interfaces.append(iface)
        source = emit_state_struct(original, iface, sdk)
    elif macro_type is MacroType.PAYLOAD:
        source = emit_payload_struct(original, sdk)
    else:
        table = lower_actor_implementation(node, symbol)
        module.dispatch_table = table
        source = emit_actor_implementation(original, table, sdk)
        for binding, methods in node.binding_collisions().items():
            warnings.append(
                Diagnostic.warning(
                    f"binding {binding} is shared by {', '.join(methods)}; "
                    f"'{methods[0]}' is dispatched"
                )
            )

    logger.debug("expanded #[%s] on %s", macro_type.value, getattr(node, "source_name", "?"))
    return Expansion(source, program, module, warnings)


def expand(macro_type, attr_text, item_text, **kwargs) -> str:
    """Host hook: generated text, or ``compile_error!`` directives on failure.

    Each directive is prefixed with the ``line:col`` of the error in the
    text it was found in.
    """

    macro_type = MacroType(macro_type)
    try:
        attrs = parse_attributes(attr_text, AttrTarget(macro_type.value))
    except Diagnostic as diag:
        logger.debug("attributes of #[%s] rejected: %s", macro_type.value, diag.messages())
        return diag.render(attr_text)
    try:
        return expand_item(macro_type, attrs, item_text, **kwargs).source
    except Diagnostic as diag:
        logger.debug("expansion of #[%s] failed: %s", macro_type.value, diag.messages())
        return diag.render(item_text)


def _macro_attribute(item):
    names = {member.value for member in MacroType}
    for attr in item.attrs:
        if attr.name in names:
            return attr
    return None


def _item_to_file(start, attr_span):
    """Map offsets in an item with its macro attribute cut out back into the file."""

    cut = attr_span[0] - start
    removed = attr_span[1] - attr_span[0]

    def to_file(pos):
        return start + pos + (removed if pos >= cut else 0)

    return to_file


def expand_file(text, sdk=SDK_CRATE, symbol=INVOKE_SYMBOL) -> FileExpansion:
    """Expand every annotated item of a source file independently.

    A failing item is replaced by its diagnostics; its siblings still
    expand. Diagnostic spans point into ``text``.
    """

    try:
        items = parse_file(text)
    except ParseError as err:
        diag = Diagnostic.from_parse_error(err)
        return FileExpansion(diag.render(text), Program(), [diag])

    program = Program()
    chunks = []
    diagnostics = []
    for item in items:
        attr = _macro_attribute(item)
        if attr is None:
            chunks.append(item.text)
            continue
        start, end = item.span
        item_text = text[start : attr.span[0]] + text[attr.span[1] : end]
        try:
            if attr.kind == "name_value":
                raise Diagnostic.span_error(
                    attr.span, f"expected attribute arguments in parentheses: #[{attr.name}(...)]"
                )
            args_start = attr.args_span[0] if attr.args_span else attr.span[1]
            attrs = parse_attributes(attr.args_text, AttrTarget(attr.name), offset=args_start)
            try:
                expansion = expand_item(
                    attr.name, attrs, item_text, program=program, sdk=sdk, symbol=symbol
                )
            except Diagnostic as diag:
                raise diag.relocate(_item_to_file(start, attr.span)) from diag
        except Diagnostic as diag:
            logger.debug("#[%s] item at offset %d failed: %s", attr.name, start, diag.messages())
            diagnostics.append(diag)
            chunks.append(diag.render(text))
            continue
        diagnostics.extend(expansion.warnings)
        chunks.append(expansion.source)
    return FileExpansion("\n\n".join(chunks) + "\n", program, diagnostics)


__all__ = [
    "Expansion",
    "FileExpansion",
    "MacroType",
    "expand",
    "expand_file",
    "expand_item",
]
