from typing import Any, Dict, List

import pyarrow as pa

from .types import (
    ArrayOf,
    Boolean,
    EntitySchema,
    HexString,
    SemanticType,
    SignedInteger,
    StructOf,
    Text,
    Timestamp,
    WideInteger,
)

TIMESTAMP_TYPE = pa.timestamp("us", tz="UTC")

_INTEGER_TYPES = {
    8: pa.int8(),
    16: pa.int16(),
    32: pa.int32(),
    64: pa.int64(),
}


def semantic_type_to_arrow(st: SemanticType) -> pa.DataType:
    if isinstance(st, SignedInteger):
        return _INTEGER_TYPES[st.width]
    elif isinstance(st, (WideInteger, Text, HexString)):
        # wide integers stay text end to end so 256-bit values keep full precision
        return pa.string()
    elif isinstance(st, Boolean):
        return pa.bool_()
    elif isinstance(st, Timestamp):
        return TIMESTAMP_TYPE
    elif isinstance(st, ArrayOf):
        return pa.list_(semantic_type_to_arrow(st.element))
    elif isinstance(st, StructOf):
        return pa.struct(
            [
                pa.field(f.name, semantic_type_to_arrow(f.type), nullable=f.nullable)
                for f in st.fields
            ]
        )
    else:
        raise Exception(f"Unimplemented semantic type: {st}")


def entity_arrow_schema(schema: EntitySchema) -> pa.Schema:
    return pa.schema(
        [
            pa.field(f.name, semantic_type_to_arrow(f.type), nullable=f.nullable)
            for f in schema.fields
        ]
    )


def records_to_table(records: List[Dict[str, Any]], schema: EntitySchema) -> pa.Table:
    arrow_schema = entity_arrow_schema(schema)

    if not records:
        return arrow_schema.empty_table()

    return pa.Table.from_pylist(records, schema=arrow_schema)


__all__ = [
    "TIMESTAMP_TYPE",
    "semantic_type_to_arrow",
    "entity_arrow_schema",
    "records_to_table",
]
