"""Interface manifest serialization helpers."""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import json

from ..constants import MANIFEST_FILE, MANIFEST_VERSION
from .glue import GlueModule, lower_program


def build_interface_document(program, module: GlueModule = None):
    """Create an in-memory interface manifest for ``program``."""

    module = module if module is not None else lower_program(program)
    doc = {
        "fvmgen_version": MANIFEST_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "program": program.to_dict(),
        "glue": module.to_dict(),
    }
    doc["digest"] = hash_interface_document(doc)
    return doc


def write_interface_document(doc, filename=MANIFEST_FILE):
    """Persist an interface manifest to disk."""

    with open(filename, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)
    print(f"  ✓ Interface manifest exported → {filename}")
    return doc


def export_interface(program, filename=MANIFEST_FILE):
    doc = build_interface_document(program)
    return write_interface_document(doc, filename)


def load_interface_document(filename):
    """Load a manifest and check its embedded digest."""

    with open(filename, "r", encoding="utf-8") as f:
        doc = json.load(f)
    verify_interface_document(doc)
    return doc


def canonicalize_interface(doc):
    """
    Normalize a manifest so that identical interfaces produce identical
    JSON regardless of key order. Volatile keys are dropped.
    """

    def sort_dict(d):
        if isinstance(d, dict):
            return {k: sort_dict(v) for k, v in sorted(d.items())}
        elif isinstance(d, list):
            return [sort_dict(x) for x in d]
        else:
            return d

    stable = {k: v for k, v in doc.items() if k not in ("timestamp", "digest")}
    return sort_dict(stable)


def hash_interface_document(doc):
    """SHA-256 over the canonical program payload of a manifest."""

    canon = canonicalize_interface(doc)
    data = json.dumps(canon, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def verify_interface_document(doc):
    if "digest" not in doc:
        raise ValueError("interface manifest missing digest")
    expected = hash_interface_document(doc)
    if doc["digest"] != expected:
        raise ValueError("interface manifest digest mismatch")
    return True


def _entry_points(doc):
    actor = doc["program"].get("actor_implementation") or {}
    return {entry["method"]: entry for entry in actor.get("entry_points", [])}


def diff_interfaces(doc_a, doc_b):
    """Describe how two manifests differ; an empty list means identical."""

    if hash_interface_document(doc_a) == hash_interface_document(doc_b):
        return []

    changes = []
    a, b = _entry_points(doc_a), _entry_points(doc_b)
    for name in sorted(a.keys() - b.keys()):
        changes.append(f"- entry point '{name}' removed")
    for name in sorted(b.keys() - a.keys()):
        changes.append(f"+ entry point '{name}' added")
    for name in sorted(a.keys() & b.keys()):
        for key in ("binding", "mutability", "returns", "arguments"):
            if a[name][key] != b[name][key]:
                changes.append(f"~ '{name}' {key}: {a[name][key]} vs {b[name][key]}")

    states_a = {s["name"]: s for s in doc_a["program"]["state_structs"]}
    states_b = {s["name"]: s for s in doc_b["program"]["state_structs"]}
    for name in sorted(states_a.keys() ^ states_b.keys()):
        changes.append(f"~ state '{name}' only in one interface")
    for name in sorted(states_a.keys() & states_b.keys()):
        if states_a[name] != states_b[name]:
            changes.append(f"~ state '{name}' layout differs")

    if not changes:
        changes.append("~ generated glue differs")
    return changes


__all__ = [
    "build_interface_document",
    "canonicalize_interface",
    "diff_interfaces",
    "export_interface",
    "hash_interface_document",
    "load_interface_document",
    "verify_interface_document",
    "write_interface_document",
]
