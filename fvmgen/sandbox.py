"""In-memory actor sandbox that executes lowered glue IR.

The sandbox stands in for the virtual machine the generated Rust runs on:
a content-addressed block store, a state-root slot, a parameter block
registry and the method selector of the current invocation. ``GlueVM``
walks the same instruction sequences the Rust emitter consumes, so the
abort classes and messages observed here are the ones the generated code
raises.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field, fields, is_dataclass, make_dataclass
import hashlib
import logging
from typing import Callable, Optional

import cbor2

from .constants import (
    BLAKE2B_256,
    DAG_CBOR,
    DIGEST_SIZE,
    EXIT_CODE_NAMES,
    NO_DATA_BLOCK_ID,
)
from .macros.glue import DispatchTable, GlueBlock, GlueModule, StateInterface
from .macros.model import StateStruct

logger = logging.getLogger(__name__)


class ActorAbort(Exception):
    """The actor aborted with ``exit_code``; the invocation ends."""

    def __init__(self, exit_code, message=None):
        super().__init__(f"{EXIT_CODE_NAMES.get(exit_code, exit_code)}: {message}")
        self.exit_code = exit_code
        self.message = message


class SyscallError(Exception):
    def __init__(self, errno, detail=""):
        super().__init__(f"{errno}: {detail}" if detail else errno)
        self.errno = errno
        self.detail = detail


class BlockstoreError(Exception):
    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind

    @classmethod
    def invalid_cid(cls, errno, cid):
        return cls("InvalidCid", f"get failed with {errno} on CID '{cid}'")

    @classmethod
    def mismatched_cid(cls, expected, actual):
        return cls("MismatchedCid", f"put block with cid {expected} but has cid {actual}")

    @classmethod
    def put_failed(cls, errno):
        return cls("PutFailed", f"put failed with {errno}")


# ---------------------------------------------------------------------------
# Content addressing
# ---------------------------------------------------------------------------


def _varint(value):
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


@dataclass(frozen=True)
class Cid:
    """CIDv1 with an explicit codec and multihash."""

    codec: int
    hash_code: int
    digest: bytes
    version: int = 1

    @classmethod
    def for_block(cls, codec, data, hash_code=BLAKE2B_256, size=DIGEST_SIZE):
        if hash_code != BLAKE2B_256:
            raise ValueError(f"unsupported multihash code 0x{hash_code:x}")
        digest = hashlib.blake2b(bytes(data), digest_size=size).digest()
        return cls(codec, hash_code, digest)

    def to_bytes(self):
        return (
            _varint(self.version)
            + _varint(self.codec)
            + _varint(self.hash_code)
            + _varint(len(self.digest))
            + self.digest
        )

    def __str__(self):
        encoded = base64.b32encode(self.to_bytes()).decode("ascii")
        return "b" + encoded.lower().rstrip("=")


class MemoryBlockstore:
    """Dictionary backed block store keyed by :class:`Cid`."""

    def __init__(self):
        self.blocks: dict[Cid, bytes] = {}

    def __contains__(self, cid):
        return cid in self.blocks

    def __len__(self):
        return len(self.blocks)

    def get(self, cid) -> Optional[bytes]:
        if not isinstance(cid, Cid):
            raise BlockstoreError.invalid_cid("IllegalArgument", cid)
        return self.blocks.get(cid)

    def put(self, hash_code, codec, data, size=DIGEST_SIZE) -> Cid:
        try:
            cid = Cid.for_block(codec, data, hash_code, size)
        except ValueError as err:
            raise BlockstoreError.put_failed("IllegalArgument") from err
        self.blocks[cid] = bytes(data)
        return cid

    def put_keyed(self, cid: Cid, data):
        actual = self.put(cid.hash_code, cid.codec, data, len(cid.digest))
        if actual != cid:
            raise BlockstoreError.mismatched_cid(cid, actual)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _tuple_encoder(encoder, value):
    # Structures travel as ordered tuples of their field values.
    if is_dataclass(value) and not isinstance(value, type):
        encoder.encode([getattr(value, f.name) for f in fields(value)])
        return
    raise cbor2.CBOREncodeTypeError(f"cannot serialize type {type(value).__name__}")


def encode(value) -> bytes:
    return cbor2.dumps(value, default=_tuple_encoder)


def decode(data):
    return cbor2.loads(bytes(data))


def python_field_name(name):
    return f"field_{name}" if name.isdigit() else name


def make_state_class(state: StateStruct, namespace=None):
    """Python stand-in for a state structure, one attribute per field."""

    spec = [
        (python_field_name(f.field_name), object, field(default=None)) for f in state.fields
    ]
    return make_dataclass(state.source_name, spec, namespace=namespace)


def decode_struct(cls, data):
    values = decode(data)
    if not isinstance(values, list):
        raise TypeError(f"expected a tuple for {cls.__name__}, found {type(values).__name__}")
    return cls(*values)


# ---------------------------------------------------------------------------
# Virtual machine surface
# ---------------------------------------------------------------------------


class Sandbox:
    """Syscall surface seen by one actor."""

    def __init__(self, blockstore=None):
        self.blockstore = blockstore if blockstore is not None else MemoryBlockstore()
        self.root: Optional[Cid] = None
        self.blocks: dict[int, bytes] = {}
        self.next_block_id = NO_DATA_BLOCK_ID + 1
        self.method_number = None
        self.log: list[str] = []

    # -- syscalls ---------------------------------------------------------

    def sself_root(self) -> Cid:
        if self.root is None:
            raise SyscallError("IllegalOperation", "actor has no state root")
        return self.root

    def set_root(self, cid: Cid):
        if cid not in self.blockstore:
            raise SyscallError("NotFound", f"block {cid} is not in the store")
        self.root = cid

    def put_block(self, codec, data) -> int:
        block_id = self.next_block_id
        self.next_block_id += 1
        self.blocks[block_id] = bytes(data)
        return block_id

    def get_block(self, block_id) -> bytes:
        if block_id == NO_DATA_BLOCK_ID or block_id not in self.blocks:
            raise SyscallError("InvalidHandle", f"no block with id {block_id}")
        return self.blocks[block_id]

    def params_raw(self, params_pointer) -> bytes:
        return self.get_block(params_pointer)

    # -- helpers ----------------------------------------------------------

    def put_params(self, args) -> int:
        """Store ``args`` (a tuple, or ``None`` for no data) as a parameter block."""

        if args is None:
            return NO_DATA_BLOCK_ID
        return self.put_block(DAG_CBOR, encode(tuple(args)))


class GlueVM:
    """Interpreter for glue blocks against a :class:`Sandbox`."""

    def __init__(
        self,
        sandbox: Sandbox,
        state_interface: Optional[StateInterface] = None,
        state_class=None,
        methods: Optional[dict[str, Callable]] = None,
    ):
        self.sandbox = sandbox
        self.state_interface = state_interface
        if state_class is None and state_interface is not None:
            state_class = make_state_class(state_interface.state)
        self.state_class = state_class
        self.methods = methods if methods is not None else {}
        self.params_pointer = NO_DATA_BLOCK_ID

    def execute(self, block: GlueBlock, bindings=None):
        env = dict(bindings or {})
        for instr in block.instructions:
            if instr.op == "RETURN":
                return env[instr.args[0]] if instr.args else None
            env[instr.id] = self._apply_operation(instr, env)
            self.sandbox.log.append(f"{instr.op}:{instr.id}")
        return None

    # -- state objects ----------------------------------------------------

    def load_state(self):
        if self.state_interface is None:
            raise RuntimeError("no state interface bound to this VM")
        return self.execute(self.state_interface.load)

    def save_state(self, state) -> Cid:
        if self.state_interface is None:
            raise RuntimeError("no state interface bound to this VM")
        return self.execute(self.state_interface.save, {"self": state})

    # -- internal helpers -------------------------------------------------

    def _abort(self, spec, err=None):
        message = spec.format(err) if err is not None else spec.format()
        logger.debug("abort %s: %s", spec.exit_code_name, message)
        self.sandbox.log.append(f"ABORT:{spec.exit_code}")
        raise ActorAbort(spec.exit_code, message)

    def _apply_operation(self, instr, env):
        op = instr.op
        args = [env[a] if a in env else a for a in instr.args]

        if op == "GET_ROOT":
            try:
                return self.sandbox.sself_root()
            except SyscallError as err:
                self._abort(instr.abort(), err)
        if op == "GET_BLOCK":
            try:
                data = self.sandbox.blockstore.get(args[0])
            except BlockstoreError as err:
                self._abort(instr.abort(), err)
            if data is None:
                self._abort(instr.abort("missing"))
            return data
        if op == "DECODE_STATE":
            try:
                return decode_struct(self.state_class, args[0])
            except (ValueError, TypeError) as err:
                self._abort(instr.abort(), err)
        if op == "ENCODE_STATE":
            try:
                return encode(args[0])
            except (ValueError, TypeError) as err:
                self._abort(instr.abort(), err)
        if op == "PUT_BLOCK":
            meta = instr.metadata
            try:
                return self.sandbox.blockstore.put(
                    meta.get("hash", BLAKE2B_256),
                    meta.get("codec", DAG_CBOR),
                    args[0],
                    meta.get("digest_size", DIGEST_SIZE),
                )
            except BlockstoreError as err:
                self._abort(instr.abort(), err)
        if op == "SET_ROOT":
            try:
                self.sandbox.set_root(args[0])
            except SyscallError as err:
                self._abort(instr.abort(), err)
            return None
        if op == "FETCH_PARAMS":
            try:
                return self.sandbox.params_raw(self.params_pointer)
            except SyscallError as err:
                self._abort(instr.abort(), err)
        if op == "DECODE_ARGS":
            expected = len(instr.metadata["arguments"])
            try:
                values = decode(args[0])
            except ValueError as err:
                self._abort(instr.abort(), err)
            if not isinstance(values, list) or len(values) != expected:
                self._abort(instr.abort(), f"expected a tuple of {expected} values, found {values!r}")
            return values
        if op == "LOAD_STATE":
            return self.load_state()
        if op == "CALL":
            return self._call(instr, env)
        if op == "ENCODE_RESULT":
            try:
                return encode(args[0])
            except (ValueError, TypeError) as err:
                self._abort(instr.abort(), err)
        if op == "SAVE_STATE":
            return self.save_state(args[0])

        raise ValueError(f"unknown glue instruction: {op}")

    def _call(self, instr, env):
        method = instr.metadata["method"]
        try:
            fn = self.methods[method]
        except KeyError:
            raise RuntimeError(f"no stand-in registered for method '{method}'") from None
        call_args = []
        for arg in instr.args:
            value = env[arg]
            if isinstance(value, list):
                call_args.extend(value)
            else:
                call_args.append(value)
        return fn(*call_args)


def run_dispatch(vm: GlueVM, table: DispatchTable, method_number, params_pointer=NO_DATA_BLOCK_ID):
    """Execute the exported entry point for one invocation.

    Returns the block id of the encoded return value, or
    ``NO_DATA_BLOCK_ID`` when the method returns nothing.
    """

    sandbox = vm.sandbox
    sandbox.method_number = method_number
    vm.params_pointer = params_pointer
    logger.debug("invoke %s(method=%s, params=%s)", table.symbol, method_number, params_pointer)

    case = table.case_for(method_number)
    if case is None:
        vm._abort(table.default_abort)
    ret = vm.execute(case.block)
    if ret is None:
        return NO_DATA_BLOCK_ID
    return sandbox.put_block(DAG_CBOR, ret)


class SandboxActor:
    """A generated actor bound to Python stand-ins for its methods."""

    def __init__(self, module: GlueModule, methods, sandbox=None, state_class=None):
        if module.dispatch_table is None:
            raise ValueError("glue module has no dispatch table")
        self.module = module
        self.table = module.dispatch_table
        self.sandbox = sandbox if sandbox is not None else Sandbox()
        self.vm = GlueVM(
            self.sandbox,
            module.state_interface(self.table.state_type),
            state_class,
            methods,
        )

    @property
    def state_class(self):
        return self.vm.state_class

    def invoke(self, method_number, args=None) -> int:
        params_pointer = self.sandbox.put_params(args)
        return run_dispatch(self.vm, self.table, method_number, params_pointer)

    def call(self, method_number, *args):
        """Invoke and decode the returned block, ``None`` for no data."""

        block_id = self.invoke(method_number, args if args else None)
        if block_id == NO_DATA_BLOCK_ID:
            return None
        return decode(self.sandbox.get_block(block_id))

    def load_state(self):
        return self.vm.load_state()

    def save_state(self, state):
        return self.vm.save_state(state)


__all__ = [
    "ActorAbort",
    "BlockstoreError",
    "Cid",
    "GlueVM",
    "MemoryBlockstore",
    "Sandbox",
    "SandboxActor",
    "SyscallError",
    "decode",
    "decode_struct",
    "encode",
    "make_state_class",
    "python_field_name",
    "run_dispatch",
]
