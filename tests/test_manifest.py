import json

import pytest

import fvmgen.macros

from fvmgen.macros.hooks import expand_file
from fvmgen.macros.manifest import (
    build_interface_document,
    canonicalize_interface,
    diff_interfaces,
    export_interface,
    hash_interface_document,
    load_interface_document,
    verify_interface_document,
)


def _counter(add_binding=2, with_read=True):
    read = (
        "    #[fvm_export(binding = 3)]\n"
        "    pub fn read(&self) -> u64 { self.value }\n"
        if with_read
        else ""
    )
    text = (
        "#[fvm_state]\n"
        "pub struct State { pub value: u64 }\n"
        "\n"
        "#[fvm_actor]\n"
        "impl State {\n"
        f"    #[fvm_export(binding = {add_binding})]\n"
        "    pub fn add(&mut self, value: u64) { self.value += value }\n"
        f"{read}"
        "}\n"
    )
    result = expand_file(text)
    assert result.ok
    return result.program


def test_document_layout():
    doc = build_interface_document(_counter())
    assert set(doc) == {"fvmgen_version", "timestamp", "program", "glue", "digest"}
    assert doc["timestamp"].endswith("Z")
    assert doc["program"]["actor_implementation"]["name"] == "State"
    assert [c["binding"] for c in doc["glue"]["dispatch_table"]["cases"]] == [2, 3]
    assert doc["glue"]["state_interfaces"][0]["state"] == "State"


def test_digest_ignores_volatile_keys():
    first = build_interface_document(_counter())
    second = build_interface_document(_counter())
    second["timestamp"] = "1970-01-01T00:00:00Z"
    assert first["digest"] == second["digest"]
    assert "timestamp" not in canonicalize_interface(first)

    changed = build_interface_document(_counter(add_binding=5))
    assert changed["digest"] != first["digest"]


def test_diff_interfaces():
    base = build_interface_document(_counter())
    assert diff_interfaces(base, build_interface_document(_counter())) == []

    rebound = diff_interfaces(base, build_interface_document(_counter(add_binding=5)))
    assert rebound == ["~ 'add' binding: 2 vs 5"]

    shrunk = diff_interfaces(base, build_interface_document(_counter(with_read=False)))
    assert shrunk == ["- entry point 'read' removed"]


def test_write_and_load(tmp_path, capsys):
    path = tmp_path / "interface.json"
    doc = export_interface(_counter(), str(path))
    assert "✓ Interface manifest exported" in capsys.readouterr().out
    assert load_interface_document(str(path)) == doc

    tampered = json.loads(path.read_text())
    tampered["program"]["actor_implementation"]["entry_points"][0]["binding"] = 9
    path.write_text(json.dumps(tampered))
    with pytest.raises(ValueError, match="digest mismatch"):
        load_interface_document(str(path))


def test_missing_digest():
    with pytest.raises(ValueError, match="missing digest"):
        verify_interface_document({"program": {}})


def test_edited_document_fails_digest_check():
    doc = build_interface_document(_counter())
    assert verify_interface_document(doc)

    edited = json.loads(json.dumps(doc))
    edited["program"]["state_structs"][0]["fields"] = []
    with pytest.raises(ValueError, match="digest mismatch"):
        verify_interface_document(edited)


def test_manifests_carry_no_signature():
    doc = build_interface_document(_counter())
    assert "signature" not in doc
    assert not hasattr(fvmgen.macros, "sign_interface_document")
    assert not hasattr(fvmgen.macros, "verify_interface_signature")
