"""Glue IR: the runtime steps generated for state objects and dispatch."""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from ..constants import (
    BLAKE2B_256,
    DAG_CBOR,
    DIGEST_SIZE,
    EXIT_CODE_NAMES,
    INVOKE_SYMBOL,
    USR_ILLEGAL_STATE,
    USR_SERIALIZATION,
    USR_UNHANDLED_MESSAGE,
)
from .model import ActorEntryPoint, ActorImplementation, Mutability, Program, StateStruct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AbortSpec:
    """Exit code and message used when a glue step fails."""

    exit_code: int
    message: str
    with_detail: bool = True

    @property
    def exit_code_name(self):
        return EXIT_CODE_NAMES[self.exit_code]

    def format(self, detail=None):
        if self.with_detail and detail is not None:
            return f"{self.message}: {detail}"
        return self.message


STATE_ABORTS = {
    "root": AbortSpec(USR_ILLEGAL_STATE, "failed to get root"),
    "missing": AbortSpec(USR_ILLEGAL_STATE, "state does not exist", with_detail=False),
    "get": AbortSpec(USR_ILLEGAL_STATE, "failed to get state"),
    "decode": AbortSpec(USR_SERIALIZATION, "failed to deserialize state"),
    "encode": AbortSpec(USR_SERIALIZATION, "failed to serialize state"),
    "put": AbortSpec(USR_SERIALIZATION, "failed to store initial state"),
    "set_root": AbortSpec(USR_ILLEGAL_STATE, "failed to set root cid"),
}

DISPATCH_ABORTS = {
    "params": AbortSpec(USR_SERIALIZATION, "failed to receive params"),
    "decode": AbortSpec(USR_SERIALIZATION, "failed to deserialize params"),
    "encode": AbortSpec(USR_SERIALIZATION, "failed to serialize return value"),
    "put": AbortSpec(USR_SERIALIZATION, "failed to store return value"),
    "unhandled": AbortSpec(USR_UNHANDLED_MESSAGE, "unrecognized method", with_detail=False),
}


class GlueInstruction:
    """One fallible runtime step."""

    def __init__(self, id, op, args=None, metadata=None, aborts=None):
        self.id = id
        self.op = op
        self.args = args or []
        self.metadata = metadata or {}
        self.aborts = aborts or {}

    def abort(self, kind="error"):
        return self.aborts[kind]

    def to_dict(self):
        return {
            "id": self.id,
            "op": self.op,
            "args": list(self.args),
            "metadata": dict(self.metadata),
            "aborts": {
                kind: {"exit_code": spec.exit_code, "message": spec.message}
                for kind, spec in self.aborts.items()
            },
        }

    def __repr__(self):  # pragma: no cover - representation helper
        args = ", ".join(str(arg) for arg in self.args)
        suffix = ""
        if self.aborts:
            suffix = " !" + ",".join(
                f"{kind}:{spec.exit_code_name}" for kind, spec in self.aborts.items()
            )
        return f"{self.id} = {self.op}({args}){suffix}"


class GlueBlock:
    """Linear instruction sequence for one generated function body."""

    def __init__(self, name):
        self.name = name
        self.instructions: list[GlueInstruction] = []
        self.next_id = 0

    def new_id(self):
        vid = f"g{self.next_id}"
        self.next_id += 1
        return vid

    def emit(self, op, args=None, metadata=None, aborts=None):
        vid = self.new_id()
        self.instructions.append(GlueInstruction(vid, op, args, metadata, aborts))
        return vid

    @property
    def ops(self):
        return [instr.op for instr in self.instructions]

    def find(self, op):
        for instr in self.instructions:
            if instr.op == op:
                return instr
        return None

    def to_dict(self):
        return {
            "name": self.name,
            "instructions": [instr.to_dict() for instr in self.instructions],
        }

    def __repr__(self):  # pragma: no cover - debugging helper
        return "\n".join([f"{self.name}:"] + [f"  {instr!r}" for instr in self.instructions])


class StateInterface:
    """Load and save bodies generated for one state structure."""

    def __init__(self, state: StateStruct, load: GlueBlock, save: GlueBlock):
        self.state = state
        self.load = load
        self.save = save

    @property
    def name(self):
        return self.state.source_name

    def to_dict(self):
        return {
            "state": self.state.source_name,
            "load": self.load.to_dict(),
            "save": self.save.to_dict(),
        }


class DispatchCase:
    def __init__(self, entry: ActorEntryPoint, block: GlueBlock):
        self.entry = entry
        self.block = block

    @property
    def binding(self):
        return self.entry.binding.value

    def to_dict(self):
        return {"binding": self.binding, "method": self.entry.method_name, "body": self.block.to_dict()}


class DispatchTable:
    """Multiplexing entry point keyed by the numeric method selector."""

    def __init__(self, implementation: ActorImplementation, symbol=INVOKE_SYMBOL):
        self.implementation = implementation
        self.symbol = symbol
        self.cases: list[DispatchCase] = []
        self.default_abort = DISPATCH_ABORTS["unhandled"]
        self.result_abort = DISPATCH_ABORTS["put"]

    @property
    def state_type(self):
        return self.implementation.source_name

    def case_for(self, selector) -> Optional[DispatchCase]:
        """First case bound to ``selector``, mirroring match-arm order."""

        for case in self.cases:
            if case.binding == selector:
                return case
        return None

    @property
    def bindings(self):
        return [case.binding for case in self.cases]

    def to_dict(self):
        return {
            "symbol": self.symbol,
            "implementation": self.implementation.source_name,
            "cases": [case.to_dict() for case in self.cases],
            "default": {
                "exit_code": self.default_abort.exit_code,
                "message": self.default_abort.message,
            },
        }


class GlueModule:
    """Everything generated for one program."""

    def __init__(self, program: Program):
        self.program = program
        self.state_interfaces: list[StateInterface] = []
        self.dispatch_table: Optional[DispatchTable] = None

    def state_interface(self, name):
        for iface in self.state_interfaces:
            if iface.name == name:
                return iface
        return None

    def to_dict(self):
        return {
            "state_interfaces": [iface.to_dict() for iface in self.state_interfaces],
            "dispatch_table": (
                self.dispatch_table.to_dict() if self.dispatch_table is not None else None
            ),
        }


# ---------------------------------------------------------------------------
# Lowering
# ---------------------------------------------------------------------------


def lower_state_struct(state: StateStruct) -> StateInterface:
    """Lower a state structure into load/save instruction sequences."""

    load = GlueBlock(f"{state.source_name}::load")
    root = load.emit("GET_ROOT", aborts={"error": STATE_ABORTS["root"]})
    block = load.emit(
        "GET_BLOCK",
        [root],
        aborts={"missing": STATE_ABORTS["missing"], "error": STATE_ABORTS["get"]},
    )
    value = load.emit(
        "DECODE_STATE",
        [block],
        metadata={"state": state.source_name, "codec": state.codec.value},
        aborts={"error": STATE_ABORTS["decode"]},
    )
    load.emit("RETURN", [value])

    save = GlueBlock(f"{state.source_name}::save")
    encoded = save.emit(
        "ENCODE_STATE",
        ["self"],
        metadata={"state": state.source_name, "codec": state.codec.value},
        aborts={"error": STATE_ABORTS["encode"]},
    )
    cid = save.emit(
        "PUT_BLOCK",
        [encoded],
        metadata={"codec": DAG_CBOR, "hash": BLAKE2B_256, "digest_size": DIGEST_SIZE},
        aborts={"error": STATE_ABORTS["put"]},
    )
    save.emit("SET_ROOT", [cid], aborts={"error": STATE_ABORTS["set_root"]})
    save.emit("RETURN", [cid])

    logger.debug("lowered state interface for %s", state.source_name)
    return StateInterface(state, load, save)


def lower_entry_point(entry: ActorEntryPoint, state_type: str) -> GlueBlock:
    """Lower one entry point into its dispatch arm body."""

    block = GlueBlock(entry.method_name)
    call_args = []
    if entry.arguments:
        params = block.emit("FETCH_PARAMS", aborts={"error": DISPATCH_ABORTS["params"]})
        decoded = block.emit(
            "DECODE_ARGS",
            [params],
            metadata={"arguments": [arg.to_dict() for arg in entry.arguments]},
            aborts={"error": DISPATCH_ABORTS["decode"]},
        )
        call_args.append(decoded)

    state = None
    if entry.mutability.loads_state:
        state = block.emit(
            "LOAD_STATE",
            metadata={"state": state_type, "mutable": entry.mutability is Mutability.WRITE},
        )

    result = block.emit(
        "CALL",
        ([state] if state else []) + call_args,
        metadata={
            "method": entry.method_name,
            "receiver": entry.mutability.value,
            "returns": entry.returns,
            "state": state_type,
        },
    )

    returned = []
    if entry.returns:
        returned.append(
            block.emit("ENCODE_RESULT", [result], aborts={"error": DISPATCH_ABORTS["encode"]})
        )
    if entry.mutability.saves_state:
        block.emit("SAVE_STATE", [state], metadata={"state": state_type})
    block.emit("RETURN", returned)
    return block


def lower_actor_implementation(implementation: ActorImplementation, symbol=INVOKE_SYMBOL) -> DispatchTable:
    """One dispatch case per entry point, in declaration order."""

    table = DispatchTable(implementation, symbol)
    for entry in implementation.entry_points:
        table.cases.append(DispatchCase(entry, lower_entry_point(entry, implementation.source_name)))
    logger.debug(
        "lowered dispatch table for %s with bindings %s",
        implementation.source_name,
        table.bindings,
    )
    return table


def lower_program(program: Program, symbol=INVOKE_SYMBOL) -> GlueModule:
    module = GlueModule(program)
    for state in program.state_structs:
        module.state_interfaces.append(lower_state_struct(state))
    if program.actor_implementation is not None:
        module.dispatch_table = lower_actor_implementation(program.actor_implementation, symbol)
    return module


__all__ = [
    "AbortSpec",
    "DISPATCH_ABORTS",
    "DispatchCase",
    "DispatchTable",
    "GlueBlock",
    "GlueInstruction",
    "GlueModule",
    "STATE_ABORTS",
    "StateInterface",
    "lower_actor_implementation",
    "lower_entry_point",
    "lower_program",
    "lower_state_struct",
]
