from dataclasses import dataclass

import pytest

from fvmgen.constants import (
    BLAKE2B_256,
    DAG_CBOR,
    NO_DATA_BLOCK_ID,
    USR_ILLEGAL_STATE,
    USR_SERIALIZATION,
    USR_UNHANDLED_MESSAGE,
)
from fvmgen.macros.glue import lower_program
from fvmgen.macros.hooks import expand_file
from fvmgen.macros.model import StateStruct, StateStructField
from fvmgen.sandbox import (
    ActorAbort,
    BlockstoreError,
    Cid,
    MemoryBlockstore,
    Sandbox,
    SandboxActor,
    decode,
    encode,
    make_state_class,
)


COUNTER = """
#[fvm_state]
pub struct State {
    pub value: u64,
}

#[fvm_actor]
impl State {
    #[fvm_export(binding = 1)]
    pub fn new() -> Self {
        State { value: 0 }
    }

    #[fvm_export(binding = 2)]
    pub fn add(&mut self, value: u64) {
        self.value += value
    }

    #[fvm_export(binding = 3)]
    pub fn read(&self) -> u64 {
        self.value
    }
}
"""


def _module(text):
    result = expand_file(text)
    assert result.ok
    return lower_program(result.program)


@pytest.fixture
def actor():
    methods = {}
    counter = SandboxActor(_module(COUNTER), methods)
    State = counter.state_class

    def add(state, value):
        state.value += value

    methods.update(
        new=lambda: State(value=0),
        add=add,
        read=lambda state: state.value,
    )
    return counter


def test_cid_layout():
    cid = Cid.for_block(DAG_CBOR, b"hello")
    raw = cid.to_bytes()
    assert raw[:6] == b"\x01\x71\xa0\xe4\x02\x20"
    assert len(raw) == 38
    assert str(cid).startswith("bafy2bzace")
    assert Cid.for_block(DAG_CBOR, b"hello") == cid
    with pytest.raises(ValueError):
        Cid.for_block(DAG_CBOR, b"hello", hash_code=0x12)


def test_blockstore():
    store = MemoryBlockstore()
    cid = store.put(BLAKE2B_256, DAG_CBOR, b"data")
    assert cid in store
    assert len(store) == 1
    assert store.get(cid) == b"data"
    assert store.get(Cid.for_block(DAG_CBOR, b"other")) is None

    with pytest.raises(BlockstoreError, match="on CID 'nope'") as excinfo:
        store.get("nope")
    assert excinfo.value.kind == "InvalidCid"

    with pytest.raises(BlockstoreError) as excinfo:
        store.put_keyed(cid, b"different")
    assert excinfo.value.kind == "MismatchedCid"

    with pytest.raises(BlockstoreError, match="put failed with IllegalArgument"):
        store.put(0x12, DAG_CBOR, b"data")


def test_structures_encode_as_tuples():
    @dataclass
    class Pair:
        left: int
        right: str

    assert decode(encode(Pair(1, "x"))) == [1, "x"]
    assert decode(encode((1, 2))) == [1, 2]


def test_tuple_state_fields_get_python_names():
    Pair = make_state_class(
        StateStruct("Pair", "Pair", [StateStructField("0", "0", "Pair", "u64")])
    )
    assert Pair(5).field_0 == 5
    assert Pair.__name__ == "Pair"


def test_counter_round_trip(actor):
    assert actor.call(1) == [0]

    actor.save_state(actor.state_class(value=5))
    assert actor.call(2, 7) is None
    assert actor.load_state().value == 12
    assert actor.call(3) == 12
    assert "GET_ROOT:g0" in actor.sandbox.log
    assert "SET_ROOT:g2" in actor.sandbox.log


def test_view_methods_leave_the_root_alone(actor):
    root = actor.save_state(actor.state_class(value=3))
    actor.call(3)
    assert actor.sandbox.root == root


def test_unknown_selector(actor):
    with pytest.raises(ActorAbort) as excinfo:
        actor.call(42)
    assert excinfo.value.exit_code == USR_UNHANDLED_MESSAGE
    assert excinfo.value.message == "unrecognized method"
    assert str(excinfo.value) == "USR_UNHANDLED_MESSAGE: unrecognized method"


def test_missing_root(actor):
    with pytest.raises(ActorAbort) as excinfo:
        actor.call(3)
    assert excinfo.value.exit_code == USR_ILLEGAL_STATE
    assert excinfo.value.message.startswith("failed to get root: ")


def test_root_without_block(actor):
    actor.sandbox.root = Cid.for_block(DAG_CBOR, b"never stored")
    with pytest.raises(ActorAbort) as excinfo:
        actor.call(3)
    assert excinfo.value.exit_code == USR_ILLEGAL_STATE
    assert excinfo.value.message == "state does not exist"


@pytest.mark.parametrize("data", [b"\x01", encode([1, 2])])
def test_corrupt_state(actor, data):
    sandbox = actor.sandbox
    sandbox.set_root(sandbox.blockstore.put(BLAKE2B_256, DAG_CBOR, data))
    with pytest.raises(ActorAbort) as excinfo:
        actor.call(3)
    assert excinfo.value.exit_code == USR_SERIALIZATION
    assert excinfo.value.message.startswith("failed to deserialize state: ")
    assert sandbox.log[-1] == f"ABORT:{USR_SERIALIZATION}"


def test_failed_state_store(actor, monkeypatch):
    def refuse(*args, **kwargs):
        raise BlockstoreError.put_failed("LimitExceeded")

    monkeypatch.setattr(actor.sandbox.blockstore, "put", refuse)
    with pytest.raises(ActorAbort) as excinfo:
        actor.save_state(actor.state_class(value=1))
    assert excinfo.value.exit_code == USR_SERIALIZATION
    assert excinfo.value.message == "failed to store initial state: put failed with LimitExceeded"
    assert actor.sandbox.root is None


def test_missing_params(actor):
    with pytest.raises(ActorAbort) as excinfo:
        actor.invoke(2)
    assert excinfo.value.exit_code == USR_SERIALIZATION
    assert excinfo.value.message.startswith("failed to receive params: ")


def test_wrong_arity(actor):
    actor.save_state(actor.state_class(value=0))
    with pytest.raises(ActorAbort) as excinfo:
        actor.call(2, 1, 2)
    assert excinfo.value.exit_code == USR_SERIALIZATION
    assert excinfo.value.message == (
        "failed to deserialize params: expected a tuple of 1 values, found [1, 2]"
    )


def test_set_root_requires_a_stored_block():
    sandbox = Sandbox()
    with pytest.raises(Exception, match="NotFound"):
        sandbox.set_root(Cid.for_block(DAG_CBOR, b"x"))
    assert sandbox.put_params(None) == NO_DATA_BLOCK_ID
    block_id = sandbox.put_params((1,))
    assert decode(sandbox.params_raw(block_id)) == [1]


def test_colliding_bindings_run_the_first_method():
    calls = []
    module = _module(
        "#[fvm_actor]\n"
        "impl S {\n"
        "    #[fvm_export(binding = 1)] pub fn a() {}\n"
        "    #[fvm_export(binding = 1)] pub fn b() {}\n"
        "}\n"
    )
    actor = SandboxActor(
        module, {"a": lambda: calls.append("a"), "b": lambda: calls.append("b")}
    )
    assert actor.invoke(1) == NO_DATA_BLOCK_ID
    assert calls == ["a"]


def test_actor_requires_a_dispatch_table():
    with pytest.raises(ValueError, match="no dispatch table"):
        SandboxActor(_module("#[fvm_state]\npub struct S { pub a: u64 }\n"), {})


def test_missing_stand_in(actor):
    del actor.vm.methods["new"]
    with pytest.raises(RuntimeError, match="no stand-in registered for method 'new'"):
        actor.call(1)


def test_state_class_covers_public_fields_only():
    module = _module("#[fvm_state]\npub struct S { pub a: u64, secret: u8, pub b: u64 }\n")
    State = make_state_class(module.state_interfaces[0].state)
    assert decode(encode(State(a=1, b=2))) == [1, 2]
    with pytest.raises(TypeError):
        State(a=1, secret=3, b=2)
