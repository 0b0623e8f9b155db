from fvmgen.macros.codegen import (
    emit_derive_markers,
    emit_dispatch_table,
    emit_payload_struct,
    emit_state_object,
)
from fvmgen.macros.glue import (
    DISPATCH_ABORTS,
    STATE_ABORTS,
    lower_actor_implementation,
    lower_state_struct,
)
from fvmgen.macros.hooks import expand_item
from fvmgen.macros.model import StateStruct, StateStructField


ACTOR = """
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


def _dispatch_text():
    return expand_item("fvm_actor", "", ACTOR).module.dispatch_table


def _arm(text, binding, next_marker):
    start = text.index(f"{binding} => {{")
    return text[start : text.index(next_marker, start)]


def test_derive_markers():
    assert emit_derive_markers() == (
        "#[derive(fvm_rs_sdk::encoding::tuple::Serialize_tuple, "
        "fvm_rs_sdk::encoding::tuple::Deserialize_tuple)]\n"
        '#[serde(crate = "fvm_rs_sdk::encoding::serde")]'
    )


def test_state_lowering_steps():
    iface = lower_state_struct(StateStruct("State", "State", [StateStructField("value", "value", "State", "u64")]))
    assert iface.load.ops == ["GET_ROOT", "GET_BLOCK", "DECODE_STATE", "RETURN"]
    assert iface.save.ops == ["ENCODE_STATE", "PUT_BLOCK", "SET_ROOT", "RETURN"]
    assert iface.load.find("GET_BLOCK").abort("missing") is STATE_ABORTS["missing"]
    assert iface.save.find("PUT_BLOCK").metadata == {"codec": 0x71, "hash": 0xB220, "digest_size": 32}


def test_state_object_text():
    source = expand_item("fvm_state", "", "pub struct State {\n    pub value: u64,\n}").source

    assert source.startswith(emit_derive_markers() + "\npub struct State {\n    pub value: u64,\n}\n")
    assert "impl fvm_rs_sdk::state::StateObject for State {" in source
    assert "fn load() -> Self {" in source
    assert "fn save(&self) -> fvm_rs_sdk::cid::Cid {" in source
    assert "let g0 = match fvm_rs_sdk::syscall::sself::root() {" in source
    assert (
        "Err(err) => fvm_rs_sdk::syscall::vm::abort("
        "fvm_rs_sdk::shared::error::ExitCode::USR_ILLEGAL_STATE.value(), "
        'Some(format!("failed to get root: {:?}", err).as_str())),'
    ) in source
    assert (
        "Ok(None) => fvm_rs_sdk::syscall::vm::abort("
        "fvm_rs_sdk::shared::error::ExitCode::USR_ILLEGAL_STATE.value(), "
        'Some("state does not exist")),'
    ) in source
    assert (
        "fn get_block<S: fvm_rs_sdk::encoding::CborStore>"
        "(store: &S, cid: &fvm_rs_sdk::cid::Cid) -> Vec<u8> {"
    ) in source
    assert "match store.get(cid) {" in source
    assert "Ok(Some(block)) => block," in source
    assert "let g1 = get_block(&fvm_rs_sdk::state::cbor::CborBlockstore, &g0);" in source
    assert "CborBlockstore.get(" not in source
    assert "let g2: Self = match fvm_rs_sdk::encoding::from_slice(&g1) {" in source
    assert "USR_SERIALIZATION.value(), Some(format!(\"failed to deserialize state: {:?}\"" in source
    assert "let g0 = match fvm_rs_sdk::encoding::to_vec(self) {" in source
    assert "fvm_rs_sdk::cid::Code::Blake2b256.into()," in source
    assert "failed to store initial state" in source
    assert "if let Err(err) = fvm_rs_sdk::syscall::sself::set_root(&g1) {" in source
    assert "failed to set root cid" in source
    assert source.rstrip().endswith("}")


def test_state_object_respects_sdk_override():
    iface = lower_state_struct(StateStruct("Counter", "Counter"))
    text = emit_state_object(iface, sdk="crate")
    assert text.startswith("impl crate::state::StateObject for Counter {")
    assert "fvm_rs_sdk" not in text


def test_payload_expansion_only_adds_derives():
    item = "pub struct Transfer {\n    pub to: u64,\n}"
    expansion = expand_item("fvm_payload", "", item)
    assert expansion.source == emit_derive_markers() + "\n" + item
    assert expansion.module.dispatch_table is None
    assert expansion.module.state_interfaces == []


def test_dispatch_lowering_by_mutability():
    table = _dispatch_text()
    assert table.bindings == [1, 2, 3]
    assert table.case_for(1).block.ops == ["CALL", "ENCODE_RESULT", "RETURN"]
    assert table.case_for(2).block.ops == [
        "FETCH_PARAMS",
        "DECODE_ARGS",
        "LOAD_STATE",
        "CALL",
        "SAVE_STATE",
        "RETURN",
    ]
    assert table.case_for(3).block.ops == ["LOAD_STATE", "CALL", "ENCODE_RESULT", "RETURN"]
    assert table.case_for(4) is None
    assert table.default_abort is DISPATCH_ABORTS["unhandled"]


def test_dispatch_table_text():
    text = emit_dispatch_table(_dispatch_text())

    assert text.startswith("#[no_mangle]\n#[allow(unused_variables)]\npub fn invoke(params_pointer: u32) -> u32 {")
    assert (
        "let ret: Option<fvm_rs_sdk::encoding::RawBytes> = "
        "match fvm_rs_sdk::syscall::message::method_number() {"
    ) in text
    assert (
        "_ => fvm_rs_sdk::syscall::vm::abort("
        "fvm_rs_sdk::shared::error::ExitCode::USR_UNHANDLED_MESSAGE.value(), "
        'Some("unrecognized method")),'
    ) in text
    assert "None => fvm_rs_sdk::syscall::NO_DATA_BLOCK_ID," in text
    assert (
        "Some(v) => match fvm_rs_sdk::syscall::ipld::put_block("
        "fvm_rs_sdk::encoding::DAG_CBOR, v.bytes()) {"
    ) in text
    assert "failed to store return value" in text

    pure = _arm(text, 1, "2 => {")
    assert "let g0 = State::new();" in pure
    assert "RawBytes::serialize(&g0)" in pure
    assert "load()" not in pure
    assert "save(&state)" not in pure
    assert pure.rstrip().endswith("}")

    write = _arm(text, 2, "3 => {")
    assert "fvm_rs_sdk::syscall::message::params_raw(params_pointer)" in write
    assert "let (arg_value,): (u64,) = match fvm_rs_sdk::encoding::from_slice(&g0) {" in write
    assert "failed to deserialize params" in write
    assert "let mut state: State = <State as fvm_rs_sdk::state::StateObject>::load();" in write
    assert "state.add(arg_value);" in write
    assert "<State as fvm_rs_sdk::state::StateObject>::save(&state);" in write
    assert "None" in write

    view = _arm(text, 3, "_ =>")
    assert "let state: State = <State as fvm_rs_sdk::state::StateObject>::load();" in view
    assert "let g1 = state.read();" in view
    assert "save(&state)" not in view
    assert "Some(g2)" in view


def test_mutable_and_multiple_arguments_decode_into_a_tuple():
    table = expand_item(
        "fvm_actor",
        "",
        "impl S {\n"
        "    #[fvm_export(binding = 7)]\n"
        "    pub fn put(mut key: String, value: Vec<u8>) {}\n"
        "}",
    ).module.dispatch_table
    text = emit_dispatch_table(table, sdk="sdk")
    assert "let (mut arg_key, arg_value): (String, Vec<u8>) = match sdk::encoding::from_slice(&g0) {" in text
    assert "S::put(arg_key, arg_value);" in text


def test_collisions_emit_both_arms_in_order():
    implementation = expand_item(
        "fvm_actor",
        "",
        "impl S {\n"
        "    #[fvm_export(binding = 1)] pub fn a() {}\n"
        "    #[fvm_export(binding = 1)] pub fn b() {}\n"
        "}",
    ).program.actor_implementation
    table = lower_actor_implementation(implementation, symbol="entry")
    text = emit_dispatch_table(table)
    assert text.count("1 => {") == 2
    assert text.index("S::a();") < text.index("S::b();")
    assert "pub fn entry(params_pointer: u32) -> u32 {" in text
    assert table.case_for(1).entry.method_name == "a"


def test_raw_identifier_arguments_get_plain_locals():
    table = expand_item(
        "fvm_actor",
        "",
        "impl S {\n"
        "    #[fvm_export(binding = 2)]\n"
        "    pub fn f(&mut self, r#type: u64) {}\n"
        "}",
    ).module.dispatch_table
    text = emit_dispatch_table(table)
    assert "let (arg_type,): (u64,) = match fvm_rs_sdk::encoding::from_slice(&g0) {" in text
    assert "state.f(arg_type);" in text
    assert "r#" not in text


def test_payload_struct_with_sdk_override():
    item = "pub struct Transfer {\n    pub to: u64,\n}"
    text = emit_payload_struct(item, sdk="sdk")
    assert text == emit_derive_markers("sdk") + "\n" + item
    assert "fvm_rs_sdk" not in text
