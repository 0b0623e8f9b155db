"""In-memory program model assembled by the declaration analyzer."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .attrs import Codec, Dispatch, NumericBinding


class Mutability(Enum):
    """How an entry point touches persisted actor state."""

    PURE = "pure"
    VIEW = "view"
    WRITE = "write"

    @property
    def loads_state(self):
        return self is not Mutability.PURE

    @property
    def saves_state(self):
        return self is Mutability.WRITE


@dataclass(frozen=True)
class MethodArgument:
    name: str
    mutable: bool
    type_descriptor: str

    def to_dict(self):
        return {
            "name": self.name,
            "mutable": self.mutable,
            "type": self.type_descriptor,
        }


@dataclass(frozen=True)
class ActorEntryPoint:
    method_name: str
    export_name: str
    binding: NumericBinding
    mutability: Mutability
    returns: bool
    arguments: tuple = ()

    def to_dict(self):
        return {
            "method": self.method_name,
            "export_name": self.export_name,
            "binding": self.binding.value,
            "mutability": self.mutability.value,
            "returns": self.returns,
            "arguments": [arg.to_dict() for arg in self.arguments],
        }


@dataclass
class ActorImplementation:
    source_name: str
    export_name: str
    dispatch_strategy: Dispatch = Dispatch.NUMERIC
    entry_points: list = field(default_factory=list)

    def binding_collisions(self):
        """Bindings claimed by more than one entry point, in declaration order."""

        seen: dict[int, list[str]] = {}
        for entry in self.entry_points:
            seen.setdefault(entry.binding.value, []).append(entry.method_name)
        return {binding: names for binding, names in seen.items() if len(names) > 1}

    def entry_point(self, binding):
        value = binding.value if isinstance(binding, NumericBinding) else binding
        for entry in self.entry_points:
            if entry.binding.value == value:
                return entry
        return None

    def to_dict(self):
        return {
            "name": self.source_name,
            "export_name": self.export_name,
            "dispatch": self.dispatch_strategy.value,
            "entry_points": [entry.to_dict() for entry in self.entry_points],
        }


@dataclass
class StateStructField:
    field_name: str
    export_name: str
    owning_struct: str
    type_descriptor: str

    def to_dict(self):
        return {
            "name": self.field_name,
            "export_name": self.export_name,
            "type": self.type_descriptor,
        }


@dataclass
class StateStruct:
    source_name: str
    export_name: str
    fields: list = field(default_factory=list)
    codec: Codec = Codec.DAG_CBOR

    @property
    def field_names(self):
        return [f.field_name for f in self.fields]

    def to_dict(self):
        return {
            "name": self.source_name,
            "export_name": self.export_name,
            "codec": self.codec.value,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class PayloadStruct:
    source_name: str
    export_name: str
    codec: Codec = Codec.DAG_CBOR

    def to_dict(self):
        return {
            "name": self.source_name,
            "export_name": self.export_name,
            "codec": self.codec.value,
        }


class Program:
    """Declarations compiled by one expansion pass."""

    def __init__(self):
        self.state_structs: list[StateStruct] = []
        self.payload_structs: list[PayloadStruct] = []
        self.actor_implementation: Optional[ActorImplementation] = None

    def add_state_struct(self, state):
        self.state_structs.append(state)
        return state

    def add_payload_struct(self, payload):
        self.payload_structs.append(payload)
        return payload

    def set_actor_implementation(self, implementation):
        if self.actor_implementation is not None:
            raise ValueError(
                "program already holds actor implementation "
                f"'{self.actor_implementation.source_name}'"
            )
        self.actor_implementation = implementation
        return implementation

    def state_struct(self, name):
        for state in self.state_structs:
            if state.source_name == name:
                return state
        return None

    @property
    def is_empty(self):
        return not (
            self.state_structs or self.payload_structs or self.actor_implementation
        )

    def to_dict(self):
        return {
            "state_structs": [s.to_dict() for s in self.state_structs],
            "payload_structs": [p.to_dict() for p in self.payload_structs],
            "actor_implementation": (
                self.actor_implementation.to_dict()
                if self.actor_implementation is not None
                else None
            ),
        }

    def __repr__(self):  # pragma: no cover - debugging helper
        return (
            f"Program(states={len(self.state_structs)}, "
            f"payloads={len(self.payload_structs)}, "
            f"actor={self.actor_implementation is not None})"
        )


__all__ = [
    "ActorEntryPoint",
    "ActorImplementation",
    "MethodArgument",
    "Mutability",
    "PayloadStruct",
    "Program",
    "StateStruct",
    "StateStructField",
]
