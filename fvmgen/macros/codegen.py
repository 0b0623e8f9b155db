"""Rust emission for lowered glue IR."""
from __future__ import annotations

from ..constants import DIGEST_SIZE, SDK_CRATE
from .diagnostics import rust_string_literal
from .glue import DispatchTable, GlueBlock, StateInterface


def emit_derive_markers(sdk=SDK_CRATE):
    """Ordered-tuple serde derives attached to state and payload structures."""

    return (
        f"#[derive({sdk}::encoding::tuple::Serialize_tuple, "
        f"{sdk}::encoding::tuple::Deserialize_tuple)]\n"
        f'#[serde(crate = "{sdk}::encoding::serde")]'
    )


def _abort_call(spec, sdk, with_err=True):
    code = f"{sdk}::shared::error::ExitCode::{spec.exit_code_name}.value()"
    if with_err and spec.with_detail:
        message = f'Some(format!("{spec.message}: {{:?}}", err).as_str())'
    else:
        message = f"Some({rust_string_literal(spec.message)})"
    return f"{sdk}::syscall::vm::abort({code}, {message})"


class _Writer:
    def __init__(self, indent=0):
        self.lines = []
        self.level = indent

    def line(self, text=""):
        self.lines.append(("    " * self.level + text) if text else "")

    def open(self, text):
        self.line(text)
        self.level += 1

    def close(self, text="}"):
        self.level -= 1
        self.line(text)

    def text(self):
        return "\n".join(self.lines)


def _match_result(w, binding, expr, ok_pattern, ok_value, spec, sdk, annotation=""):
    w.open(f"let {binding}{annotation} = match {expr} {{")
    w.line(f"Ok({ok_pattern}) => {ok_value},")
    w.line(f"Err(err) => {_abort_call(spec, sdk)},")
    w.close("};")


# ---------------------------------------------------------------------------
# State objects
# ---------------------------------------------------------------------------


def _emit_state_block(w, block: GlueBlock, sdk):
    for instr in block.instructions:
        op = instr.op
        if op == "GET_ROOT":
            _match_result(
                w, instr.id, f"{sdk}::syscall::sself::root()", "root", "root", instr.abort(), sdk
            )
        elif op == "GET_BLOCK":
            root = instr.args[0]
            w.open(
                f"fn get_block<S: {sdk}::encoding::CborStore>(store: &S, cid: &{sdk}::cid::Cid) -> Vec<u8> {{"
            )
            w.open("match store.get(cid) {")
            w.line("Ok(Some(block)) => block,")
            w.line(f"Ok(None) => {_abort_call(instr.abort('missing'), sdk, with_err=False)},")
            w.line(f"Err(err) => {_abort_call(instr.abort(), sdk)},")
            w.close()
            w.close()
            w.line(f"let {instr.id} = get_block(&{sdk}::state::cbor::CborBlockstore, &{root});")
        elif op == "DECODE_STATE":
            _match_result(
                w,
                instr.id,
                f"{sdk}::encoding::from_slice(&{instr.args[0]})",
                "state",
                "state",
                instr.abort(),
                sdk,
                annotation=": Self",
            )
        elif op == "ENCODE_STATE":
            _match_result(
                w, instr.id, f"{sdk}::encoding::to_vec(self)", "bytes", "bytes", instr.abort(), sdk
            )
        elif op == "PUT_BLOCK":
            size = instr.metadata.get("digest_size", DIGEST_SIZE)
            w.open(f"let {instr.id} = match {sdk}::syscall::ipld::put(")
            w.line(f"{sdk}::cid::Code::Blake2b256.into(),")
            w.line(f"{size},")
            w.line(f"{sdk}::encoding::DAG_CBOR,")
            w.line(f"{instr.args[0]}.as_slice(),")
            w.close(") {")
            w.level += 1
            w.line("Ok(cid) => cid,")
            w.line(f"Err(err) => {_abort_call(instr.abort(), sdk)},")
            w.close("};")
        elif op == "SET_ROOT":
            w.open(f"if let Err(err) = {sdk}::syscall::sself::set_root(&{instr.args[0]}) {{")
            w.line(f"{_abort_call(instr.abort(), sdk)};")
            w.close()
        elif op == "RETURN":
            w.line(instr.args[0])
        else:
            raise ValueError(f"unexpected state instruction: {op}")


def emit_state_object(iface: StateInterface, sdk=SDK_CRATE):
    """``StateObject`` implementation with generated ``load`` and ``save``."""

    w = _Writer()
    w.open(f"impl {sdk}::state::StateObject for {iface.state.export_name} {{")
    w.open("fn load() -> Self {")
    _emit_state_block(w, iface.load, sdk)
    w.close()
    w.line()
    w.open(f"fn save(&self) -> {sdk}::cid::Cid {{")
    _emit_state_block(w, iface.save, sdk)
    w.close()
    w.close()
    return w.text()


def emit_state_struct(item_text, iface: StateInterface, sdk=SDK_CRATE):
    return "\n".join([emit_derive_markers(sdk), item_text, "", emit_state_object(iface, sdk)])


def emit_payload_struct(item_text, sdk=SDK_CRATE):
    return "\n".join([emit_derive_markers(sdk), item_text])


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _tuple(items):
    if len(items) == 1:
        return f"({items[0]},)"
    return "(" + ", ".join(items) + ")"


def _emit_case(w, block: GlueBlock, state_type, sdk):
    names = {}
    for instr in block.instructions:
        op = instr.op
        if op == "FETCH_PARAMS":
            _match_result(
                w,
                instr.id,
                f"{sdk}::syscall::message::params_raw(params_pointer)",
                "(_, raw)",
                "raw",
                instr.abort(),
                sdk,
            )
        elif op == "DECODE_ARGS":
            arguments = instr.metadata["arguments"]
            locals_ = ["arg_" + arg["name"].removeprefix("r#") for arg in arguments]
            patterns = [
                ("mut " if arg["mutable"] else "") + name
                for arg, name in zip(arguments, locals_)
            ]
            types = [arg["type"] for arg in arguments]
            names[instr.id] = locals_
            _match_result(
                w,
                _tuple(patterns),
                f"{sdk}::encoding::from_slice(&{instr.args[0]})",
                "args",
                "args",
                instr.abort(),
                sdk,
                annotation=": " + _tuple(types),
            )
        elif op == "LOAD_STATE":
            binding = "mut state" if instr.metadata.get("mutable") else "state"
            w.line(
                f"let {binding}: {state_type} = "
                f"<{state_type} as {sdk}::state::StateObject>::load();"
            )
            names[instr.id] = "state"
        elif op == "CALL":
            method = instr.metadata["method"]
            call_args = []
            receiver = None
            for arg in instr.args:
                resolved = names.get(arg, arg)
                if resolved == "state":
                    receiver = resolved
                elif isinstance(resolved, list):
                    call_args.extend(resolved)
            target = f"{receiver}.{method}" if receiver else f"{state_type}::{method}"
            call = f"{target}({', '.join(call_args)})"
            if instr.metadata.get("returns"):
                w.line(f"let {instr.id} = {call};")
            else:
                w.line(f"{call};")
        elif op == "ENCODE_RESULT":
            _match_result(
                w,
                instr.id,
                f"{sdk}::encoding::RawBytes::serialize(&{instr.args[0]})",
                "bytes",
                "bytes",
                instr.abort(),
                sdk,
            )
        elif op == "SAVE_STATE":
            w.line(f"<{state_type} as {sdk}::state::StateObject>::save(&state);")
        elif op == "RETURN":
            w.line(f"Some({instr.args[0]})" if instr.args else "None")
        else:
            raise ValueError(f"unexpected dispatch instruction: {op}")


def emit_dispatch_table(table: DispatchTable, sdk=SDK_CRATE):
    """Exported entry point matching on the invocation's method number."""

    state_type = table.state_type
    w = _Writer()
    w.line("#[no_mangle]")
    w.line("#[allow(unused_variables)]")
    w.open(f"pub fn {table.symbol}(params_pointer: u32) -> u32 {{")
    w.open(
        f"let ret: Option<{sdk}::encoding::RawBytes> = "
        f"match {sdk}::syscall::message::method_number() {{"
    )
    for case in table.cases:
        w.open(f"{case.binding} => {{")
        _emit_case(w, case.block, state_type, sdk)
        w.close()
    w.line(f"_ => {_abort_call(table.default_abort, sdk, with_err=False)},")
    w.close("};")
    w.open("match ret {")
    w.line(f"None => {sdk}::syscall::NO_DATA_BLOCK_ID,")
    w.open(
        f"Some(v) => match {sdk}::syscall::ipld::put_block({sdk}::encoding::DAG_CBOR, v.bytes()) {{"
    )
    w.line("Ok(id) => id,")
    w.line(f"Err(err) => {_abort_call(table.result_abort, sdk)},")
    w.close("},")
    w.close()
    w.close()
    return w.text()


def emit_actor_implementation(item_text, table: DispatchTable, sdk=SDK_CRATE):
    return "\n".join([item_text, "", emit_dispatch_table(table, sdk)])


__all__ = [
    "emit_actor_implementation",
    "emit_derive_markers",
    "emit_dispatch_table",
    "emit_payload_struct",
    "emit_state_object",
    "emit_state_struct",
]
