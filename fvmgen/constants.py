"""Shared constant values for the fvmgen compiler and sandbox."""

SDK_CRATE = "fvm_rs_sdk"
INVOKE_SYMBOL = "invoke"

MACRO_STATE = "fvm_state"
MACRO_PAYLOAD = "fvm_payload"
MACRO_ACTOR = "fvm_actor"
MACRO_EXPORT = "fvm_export"

# Exit codes reserved for user-level aborts by the actor runtime.
USR_ILLEGAL_STATE = 20
USR_SERIALIZATION = 21
USR_UNHANDLED_MESSAGE = 22

EXIT_CODE_NAMES = {
    USR_ILLEGAL_STATE: "USR_ILLEGAL_STATE",
    USR_SERIALIZATION: "USR_SERIALIZATION",
    USR_UNHANDLED_MESSAGE: "USR_UNHANDLED_MESSAGE",
}

NO_DATA_BLOCK_ID = 0

DAG_CBOR = 0x71
BLAKE2B_256 = 0xB220
DIGEST_SIZE = 32

U64_MAX = 2**64 - 1

MANIFEST_VERSION = "0.1"
MANIFEST_FILE = "actor.interface.json"

__all__ = [
    "SDK_CRATE",
    "INVOKE_SYMBOL",
    "MACRO_STATE",
    "MACRO_PAYLOAD",
    "MACRO_ACTOR",
    "MACRO_EXPORT",
    "USR_ILLEGAL_STATE",
    "USR_SERIALIZATION",
    "USR_UNHANDLED_MESSAGE",
    "EXIT_CODE_NAMES",
    "NO_DATA_BLOCK_ID",
    "DAG_CBOR",
    "BLAKE2B_256",
    "DIGEST_SIZE",
    "U64_MAX",
    "MANIFEST_VERSION",
    "MANIFEST_FILE",
]
