import pytest

from fvmgen.macros.diagnostics import Diagnostic, Severity
from fvmgen.macros.hooks import MacroType, expand, expand_file, expand_item


EXAMPLE_FILE = """
use fvm_rs_sdk::actor::{fvm_actor, fvm_export};
use fvm_rs_sdk::state::*;

#[derive(Clone, Debug, Default)]
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


def test_expand_returns_generated_text():
    item = "pub struct State {\n    pub value: u64,\n}"
    text = expand(MacroType.STATE, "", item)
    assert item in text
    assert "impl fvm_rs_sdk::state::StateObject for State {" in text


def test_expand_renders_attribute_errors():
    text = expand("fvm_state", 'codec = "json"', "pub struct S { pub a: u64 }")
    assert text == "compile_error ! { \"1:1: unknown codec 'json'\" }"


def test_expand_renders_declaration_errors():
    assert expand("fvm_actor", "", "pub struct S;") == (
        'compile_error ! { "1:1: #[fvm_actor] can only be applied to an implementation" }'
    )
    assert expand("fvm_payload", "", "impl S {}") == (
        'compile_error ! { "1:1: #[fvm_payload] should be used with a structure." }'
    )


def test_expand_renders_syntax_errors():
    text = expand("fvm_state", "", 'pub struct S { a: "x }')
    assert text == 'compile_error ! { "1:20: unterminated string literal" }'


def test_expand_renders_every_failing_method():
    text = expand(
        "fvm_actor",
        "",
        "impl S {\n"
        "    #[fvm_export(binding = 1)] fn a(&self) {}\n"
        "    #[fvm_export] pub fn b(&self) {}\n"
        "}",
    )
    assert text == (
        'compile_error ! { "2:5: \'a\' can not be used as an entry point. '
        'Methods with #[fvm_export] should be public." } '
        'compile_error ! { "3:5: expected attribute arguments in parentheses: #[fvm_export(...)]" }'
    )


def test_expand_item_raises_diagnostics():
    with pytest.raises(Diagnostic, match="unknown attribute 'binding'"):
        expand_item("fvm_actor", "binding = 1", "impl S {}")
    with pytest.raises(ValueError):
        expand_item("fvm_export", "", "fn f() {}")


def test_expand_item_keeps_original_declaration_first():
    item = "impl State {\n    #[fvm_export(binding = 3)]\n    pub fn read(&self) -> u64 { self.value }\n}"
    expansion = expand_item(MacroType.ACTOR, 'dispatch = "method-num"', "\n" + item + "\n")
    assert expansion.source.startswith(item + "\n\n#[no_mangle]")
    assert expansion.program.actor_implementation.source_name == "State"
    assert expansion.module.dispatch_table.bindings == [3]
    assert expansion.warnings == []


def test_expand_item_warns_on_binding_collisions():
    expansion = expand_item(
        "fvm_actor",
        "",
        "impl S {\n"
        "    #[fvm_export(binding = 4)] pub fn a() {}\n"
        "    #[fvm_export(binding = 4)] pub fn b() {}\n"
        "}",
    )
    (warning,) = expansion.warnings
    assert warning.severity is Severity.WARNING
    assert warning.message == "binding 4 is shared by a, b; 'a' is dispatched"


def test_expand_item_uses_overrides():
    source = expand_item(
        "fvm_actor",
        "",
        "impl S {\n    #[fvm_export(binding = 1)] pub fn a() {}\n}",
        sdk="sdk",
        symbol="dispatch",
    ).source
    assert "pub fn dispatch(params_pointer: u32) -> u32 {" in source
    assert "fvm_rs_sdk" not in source


def test_expand_file_sdk_example():
    result = expand_file(EXAMPLE_FILE)
    assert result.ok
    assert result.diagnostics == []
    assert [s.source_name for s in result.program.state_structs] == ["State"]
    assert result.program.actor_implementation.source_name == "State"

    source = result.source
    assert source.startswith("use fvm_rs_sdk::actor::{fvm_actor, fvm_export};\n\nuse fvm_rs_sdk::state::*;")
    assert "#[fvm_state]" not in source
    assert "#[fvm_actor]" not in source
    assert "#[derive(Clone, Debug, Default)]" in source
    assert "#[fvm_export(binding = 2)]" in source
    assert source.index("impl fvm_rs_sdk::state::StateObject for State {") < source.index(
        "pub fn invoke(params_pointer: u32) -> u32 {"
    )


def test_expand_file_isolates_failing_items():
    result = expand_file(
        "#[fvm_state(codec = \"json\")]\n"
        "pub struct Broken { pub a: u64 }\n"
        "\n"
        "#[fvm_payload]\n"
        "pub struct Params { pub to: u64 }\n"
    )
    assert not result.ok
    assert [d.first_message() for d in result.diagnostics] == ["unknown codec 'json'"]
    assert result.source.startswith("compile_error ! { \"1:13: unknown codec 'json'\" }\n\n")
    assert "pub struct Params { pub to: u64 }" in result.source
    assert [p.source_name for p in result.program.payload_structs] == ["Params"]


def test_expand_file_rejects_a_second_actor():
    result = expand_file("#[fvm_actor]\nimpl A {}\n\n#[fvm_actor]\nimpl B {}\n")
    assert not result.ok
    assert result.diagnostics[0].first_message() == "program already holds actor implementation 'A'"
    assert result.program.actor_implementation.source_name == "A"


def test_expand_file_requires_parenthesized_arguments():
    result = expand_file('#[fvm_state = "x"]\npub struct S;\n')
    assert result.diagnostics[0].first_message() == (
        "expected attribute arguments in parentheses: #[fvm_state(...)]"
    )


def test_expand_file_reports_syntax_errors():
    result = expand_file("pub struct {")
    assert not result.ok
    assert result.source.startswith("compile_error ! {")


def test_expand_file_carries_collision_warnings():
    result = expand_file(
        "#[fvm_actor]\n"
        "impl S {\n"
        "    #[fvm_export(binding = 1)] pub fn a() {}\n"
        "    #[fvm_export(binding = 1)] pub fn b() {}\n"
        "}\n"
    )
    assert result.ok
    assert [d.severity for d in result.diagnostics] == [Severity.WARNING]


def test_expand_reports_positions_within_the_item():
    text = expand(
        "fvm_actor",
        "",
        "impl S {\n  #[fvm_export(binding = 1)]\n  fn f(&self) {}\n}",
    )
    assert text == (
        'compile_error ! { "2:3: \'f\' can not be used as an entry point. '
        'Methods with #[fvm_export] should be public." }'
    )


def test_expand_file_maps_item_spans_back_to_the_file():
    text = (
        "#[fvm_actor]\n"
        "impl S {\n"
        "    #[fvm_export(binding = 1)] fn a(&self) {}\n"
        "}\n"
    )
    result = expand_file(text)
    (diag,) = result.diagnostics
    assert diag.span[0] == 26
    assert text[diag.span[0] :].startswith("#[fvm_export(binding = 1)] fn a")
    assert result.source.startswith('compile_error ! { "3:5: \'a\' can not be used')


def test_expand_file_maps_spans_after_a_leading_attribute():
    text = "#[derive(Debug)]\n#[fvm_state]\npub struct S<T> { pub a: T }\n"
    result = expand_file(text)
    (diag,) = result.diagnostics
    assert text[diag.span[0] :].startswith("<T>")
    assert result.source.startswith('compile_error ! { "3:13: ')
