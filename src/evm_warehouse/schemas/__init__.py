from . import arrow, evm, types
from .evm import BLOCKS, RECEIPTS, TRANSACTIONS
from .types import EntitySchema, FieldSpec, get_schema, list_kinds, register_schema

__all__ = [
    "arrow",
    "evm",
    "types",
    "BLOCKS",
    "TRANSACTIONS",
    "RECEIPTS",
    "EntitySchema",
    "FieldSpec",
    "get_schema",
    "list_kinds",
    "register_schema",
]
