"""Declaration analyzer and entry-point classifier."""
from __future__ import annotations

import logging

from ..constants import MACRO_EXPORT
from .attrs import AttrTarget, AttributeSet, Dispatch, NumericBinding, parse_attributes
from .diagnostics import Diagnostic, ErrorCatalog
from .model import (
    ActorEntryPoint,
    ActorImplementation,
    MethodArgument,
    Mutability,
    PayloadStruct,
    Program,
    StateStruct,
    StateStructField,
)
from .syntax import (
    GenericBinding,
    GenericConst,
    GenericConstraint,
    GenericLifetime,
    GenericType,
    ImplMethod,
    ItemImpl,
    ItemStruct,
    Parenthesized,
    PatIdent,
    Receiver,
    TypeArray,
    TypeBareFn,
    TypeGroup,
    TypeImplTrait,
    TypeInfer,
    TypeMacro,
    TypeNever,
    TypeParen,
    TypePath,
    TypePtr,
    TypeReference,
    TypeSlice,
    TypeTraitObject,
    TypeTuple,
    TypeVerbatim,
    render_type,
)

logger = logging.getLogger(__name__)


class StateError(ErrorCatalog):
    GENERICS_ON_STRUCTURE = (
        "structure with #[fvm_state] cannot have lifetime or type parameters."
    )
    NOT_A_STRUCTURE = "#[fvm_state] should be used with a structure."


class PayloadError(ErrorCatalog):
    GENERICS_ON_STRUCTURE = (
        "structure with #[fvm_payload] cannot have lifetime or type parameters."
    )
    NOT_A_STRUCTURE = "#[fvm_payload] should be used with a structure."


class ActorError(ErrorCatalog):
    GENERICS_ON_INTERFACE = (
        "implementation with #[fvm_actor] cannot have lifetime or type parameters."
    )
    UNEXPECTED_IMPLEMENTATION_TYPE = (
        "expected implementation for type with no leading colon, 1 path segment, "
        "and no angle bracketed or parenthesized path arguments with #[fvm_actor]"
    )
    NOT_AN_IMPLEMENTATION = "#[fvm_actor] can only be applied to an implementation"


class ExportError(ErrorCatalog):
    MISSING_BINDING = "binding should be specified on method '{0}'"
    GENERICS_ON_ENTRY_POINT = (
        "'{0}' can not be used as an entry point. "
        "Methods with #[fvm_export] cannot have lifetime or type parameters."
    )
    VISIBILITY_NOT_PUBLIC = (
        "'{0}' can not be used as an entry point. "
        "Methods with #[fvm_export] should be public."
    )
    UNEXPECTED_ARG_TYPE = (
        "{0}, '{1}', can not be used as a type for an entry point argument."
    )
    UNHANDLED_TYPE = (
        "'{0}' can not be interpreted and thus can not be used as a type "
        "for an entry point argument."
    )
    UNEXPECTED_ARG_RECEIVER = (
        "'self' should only be used as first argument for an entry point argument."
    )
    EXPECTED_BINDING_TO_NEW_VARIABLE = (
        "expected binding to variable when parsing method arguments."
    )
    MISMATCHED_DISPATCH_BINDING = (
        "binding for method '{0}' does not match dispatch method, expected {1}"
    )
    EXPECTED_ATTRIBUTE_ARGUMENTS = (
        "expected attribute arguments in parentheses: #[fvm_export(...)]"
    )


# Category label for every argument type shape that cannot be decoded from
# a parameter block.
REJECTED_TYPE_LABELS = {
    TypeBareFn: "a bare function type",
    TypeGroup: "a type contained within invisible delimiters",
    TypeImplTrait: "an impl type",
    TypeInfer: "the infer type",
    TypeMacro: "a macro",
    TypeNever: "the never type",
    TypePtr: "a pointer type",
    TypeReference: "a referenced type",
    TypeSlice: "a slice type",
    TypeTraitObject: "a trait object type",
}

REJECTED_ARGUMENT_LABELS = {
    GenericLifetime: "a type with specified lifetime",
    GenericConstraint: "a constraint type",
    GenericConst: "a const expression",
}

PARENTHESIZED_LABEL = "arguments of a function path segment"


# ---------------------------------------------------------------------------
# Structures
# ---------------------------------------------------------------------------


def _convert_fields(item):
    fields = []
    for index, fld in enumerate(item.fields):
        if not fld.vis.is_public:
            continue
        name = fld.name if fld.name is not None else str(index)
        fields.append(StateStructField(name, name, item.name, render_type(fld.ty)))
    return fields


def convert_state_struct(item: ItemStruct, attrs: AttributeSet) -> StateStruct:
    """Build a :class:`StateStruct` from a structure declaration."""

    if not item.generics.is_empty:
        raise StateError.GENERICS_ON_STRUCTURE.diagnostic(span=item.generics.span)
    return StateStruct(item.name, item.name, _convert_fields(item), attrs.codec)


def convert_payload_struct(item: ItemStruct, attrs: AttributeSet) -> PayloadStruct:
    if not item.generics.is_empty:
        raise PayloadError.GENERICS_ON_STRUCTURE.diagnostic(span=item.generics.span)
    return PayloadStruct(item.name, item.name, attrs.codec)


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def _implementation_name(item: ItemImpl):
    ty = item.self_ty
    simple = (
        isinstance(ty, TypePath)
        and ty.qself is None
        and not ty.leading_colon
        and len(ty.segments) == 1
        and ty.segments[0].arguments is None
    )
    if not simple:
        raise ActorError.UNEXPECTED_IMPLEMENTATION_TYPE.diagnostic(span=ty.span)
    return ty.segments[0].ident


def export_attribute(method: ImplMethod):
    """The entry-point attribute of ``method``, matched on its last path segment."""

    for attr in method.attrs:
        if attr.name == MACRO_EXPORT:
            return attr
    return None


def export_attributes(attr) -> AttributeSet:
    if attr.kind != "list":
        raise ExportError.EXPECTED_ATTRIBUTE_ARGUMENTS.diagnostic(span=attr.span)
    return parse_attributes(attr.args_text, AttrTarget.EXPORT, offset=attr.args_span[0])


def convert_actor_implementation(item: ItemImpl, attrs: AttributeSet) -> ActorImplementation:
    """Classify every exported method of an implementation block.

    Methods without the export attribute, and non-method items, are left
    alone. Failures from several methods are reported together.
    """

    if not item.generics.is_empty:
        raise ActorError.GENERICS_ON_INTERFACE.diagnostic(span=item.generics.span)
    name = _implementation_name(item)
    dispatch = attrs.dispatch

    entry_points = []
    failures = []
    for member in item.items:
        if not isinstance(member, ImplMethod):
            continue
        attr = export_attribute(member)
        if attr is None:
            continue
        try:
            method_attrs = export_attributes(attr)
            entry_points.append(convert_entry_point(member, dispatch, method_attrs))
        except Diagnostic as diag:
            failures.append(diag)

    error = Diagnostic.from_list(failures)
    if error is not None:
        raise error

    implementation = ActorImplementation(name, name, dispatch, entry_points)
    for binding, methods in implementation.binding_collisions().items():
        logger.warning(
            "binding %d on '%s' is shared by %s; the first declared method wins",
            binding,
            name,
            ", ".join(methods),
        )
    return implementation


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def infer_mutability(method: ImplMethod) -> Mutability:
    """Pure without a receiver, Write for a mutable receiver, View otherwise."""

    if not method.inputs or not isinstance(method.inputs[0], Receiver):
        return Mutability.PURE
    receiver = method.inputs[0]
    if receiver.ty is not None and isinstance(receiver.ty, TypeReference):
        mutable = receiver.ty.mutable
    else:
        mutable = receiver.mutable
    return Mutability.WRITE if mutable else Mutability.VIEW


def convert_entry_point(method: ImplMethod, dispatch: Dispatch, attrs: AttributeSet) -> ActorEntryPoint:
    """Validate one exported method and build its entry point."""

    name = method.name
    if not method.generics.is_empty:
        raise ExportError.GENERICS_ON_ENTRY_POINT.diagnostic(name, span=method.generics.span)
    if not method.vis.is_public:
        raise ExportError.VISIBILITY_NOT_PUBLIC.diagnostic(name, span=method.span)

    binding = attrs.binding
    if binding is None:
        raise ExportError.MISSING_BINDING.diagnostic(name, span=method.span)

    mutability = infer_mutability(method)
    returns = method.output is not None

    inputs = method.inputs
    if inputs and isinstance(inputs[0], Receiver):
        inputs = inputs[1:]
    arguments = tuple(convert_argument(arg) for arg in inputs)

    if dispatch is Dispatch.NUMERIC and not isinstance(binding, NumericBinding):
        raise ExportError.MISMATCHED_DISPATCH_BINDING.diagnostic(
            name, dispatch.binding_shape, span=method.span
        )

    entry = ActorEntryPoint(name, name, binding, mutability, returns, arguments)
    logger.debug(
        "entry point %s -> %d (%s, returns=%s, %d args)",
        name,
        binding.value,
        mutability.value,
        returns,
        len(arguments),
    )
    return entry


def convert_argument(arg) -> MethodArgument:
    if isinstance(arg, Receiver):
        raise ExportError.UNEXPECTED_ARG_RECEIVER.diagnostic(span=arg.span)
    if not isinstance(arg.pat, PatIdent):
        raise ExportError.EXPECTED_BINDING_TO_NEW_VARIABLE.diagnostic(span=arg.pat.span)
    descriptor = convert_type(arg.ty)
    return MethodArgument(arg.pat.name, arg.pat.mutable, descriptor)


def convert_type(ty) -> str:
    """Check that ``ty`` can be decoded from a parameter block.

    Compound types are checked element by element. Returns the normalized
    type text used as the argument's type descriptor.
    """

    if isinstance(ty, (TypeArray, TypeParen)):
        convert_type(ty.elem)
        return render_type(ty)
    if isinstance(ty, TypeTuple):
        for elem in ty.elems:
            convert_type(elem)
        return render_type(ty)
    if isinstance(ty, TypePath):
        _check_path(ty)
        return render_type(ty)
    if isinstance(ty, TypeVerbatim):
        raise ExportError.UNHANDLED_TYPE.diagnostic(ty.text, span=ty.span)
    label = REJECTED_TYPE_LABELS.get(type(ty))
    if label is None:
        raise ExportError.UNHANDLED_TYPE.diagnostic(render_type(ty), span=ty.span)
    raise ExportError.UNEXPECTED_ARG_TYPE.diagnostic(label, render_type(ty), span=ty.span)


def _check_path(path: TypePath):
    if path.qself is not None:
        convert_type(path.qself.ty)
    for segment in path.segments:
        arguments = segment.arguments
        if arguments is None:
            continue
        if isinstance(arguments, Parenthesized):
            raise ExportError.UNEXPECTED_ARG_TYPE.diagnostic(
                PARENTHESIZED_LABEL, render_type(path), span=path.span
            )
        for arg in arguments.args:
            label = REJECTED_ARGUMENT_LABELS.get(type(arg))
            if label is not None:
                raise ExportError.UNEXPECTED_ARG_TYPE.diagnostic(
                    label, render_type(path), span=path.span
                )
            if isinstance(arg, GenericType):
                convert_type(arg.ty)
            elif isinstance(arg, GenericBinding):
                convert_type(arg.ty)


# ---------------------------------------------------------------------------
# Dispatch on macro kind
# ---------------------------------------------------------------------------


def macro_parse(item, program: Program, target, attrs: AttributeSet = None):
    """Convert ``item`` for the macro ``target`` and record it in ``program``."""

    target = AttrTarget(target)
    attrs = attrs if attrs is not None else AttributeSet(target=target)
    if target is AttrTarget.STATE:
        if not isinstance(item, ItemStruct):
            raise StateError.NOT_A_STRUCTURE.diagnostic(span=item.span)
        return program.add_state_struct(convert_state_struct(item, attrs))
    if target is AttrTarget.PAYLOAD:
        if not isinstance(item, ItemStruct):
            raise PayloadError.NOT_A_STRUCTURE.diagnostic(span=item.span)
        return program.add_payload_struct(convert_payload_struct(item, attrs))
    if target is AttrTarget.ACTOR:
        if not isinstance(item, ItemImpl):
            raise ActorError.NOT_AN_IMPLEMENTATION.diagnostic(span=item.span)
        return program.set_actor_implementation(convert_actor_implementation(item, attrs))
    raise ValueError(f"{target.value} is not an item-level macro")


__all__ = [
    "ActorError",
    "ExportError",
    "PARENTHESIZED_LABEL",
    "PayloadError",
    "REJECTED_ARGUMENT_LABELS",
    "REJECTED_TYPE_LABELS",
    "StateError",
    "convert_actor_implementation",
    "convert_argument",
    "convert_entry_point",
    "convert_payload_struct",
    "convert_state_struct",
    "convert_type",
    "export_attribute",
    "export_attributes",
    "infer_mutability",
    "macro_parse",
]
