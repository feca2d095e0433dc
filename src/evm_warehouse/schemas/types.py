import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_INTEGER_WIDTHS = (8, 16, 32, 64)


class SemanticType:
    """Base class for registry field types"""


@dataclass(frozen=True)
class SignedInteger(SemanticType):
    width: int = 64

    def __post_init__(self):
        if self.width not in SUPPORTED_INTEGER_WIDTHS:
            raise ValueError(f"unsupported integer width: {self.width}")

    @property
    def min_value(self) -> int:
        return -(1 << (self.width - 1))

    @property
    def max_value(self) -> int:
        return (1 << (self.width - 1)) - 1

    def __str__(self) -> str:
        return f"int{self.width}"


@dataclass(frozen=True)
class WideInteger(SemanticType):
    """Integer that may exceed 64 bits, stored as exact decimal text"""

    def __str__(self) -> str:
        return "wide_integer"


@dataclass(frozen=True)
class Text(SemanticType):
    def __str__(self) -> str:
        return "text"


@dataclass(frozen=True)
class HexString(SemanticType):
    """0x-prefixed lower-case hex text, fixed length when num_bytes is set"""

    num_bytes: Optional[int] = None

    def __str__(self) -> str:
        if self.num_bytes is None:
            return "hex"
        return f"hex({self.num_bytes})"


@dataclass(frozen=True)
class Boolean(SemanticType):
    def __str__(self) -> str:
        return "boolean"


@dataclass(frozen=True)
class Timestamp(SemanticType):
    def __str__(self) -> str:
        return "timestamp"


@dataclass(frozen=True)
class ArrayOf(SemanticType):
    element: SemanticType

    def __str__(self) -> str:
        return f"array<{self.element}>"


@dataclass(frozen=True)
class StructOf(SemanticType):
    fields: Tuple["FieldSpec", ...]

    def __str__(self) -> str:
        inner = ", ".join(str(f) for f in self.fields)
        return f"struct<{inner}>"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: SemanticType
    nullable: bool = False
    # raw keys accepted in place of `name`, checked in order
    aliases: Tuple[str, ...] = ()

    @property
    def source_keys(self) -> Tuple[str, ...]:
        return (self.name,) + self.aliases

    def __str__(self) -> str:
        suffix = "?" if self.nullable else ""
        return f"{self.name}: {self.type}{suffix}"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "type": str(self.type),
            "nullable": self.nullable,
        }
        if self.aliases:
            out["aliases"] = list(self.aliases)
        return out


@dataclass(frozen=True)
class EntitySchema:
    """Canonical typed layout of one entity kind and its warehouse table"""

    kind: str
    table_name: str
    fields: Tuple[FieldSpec, ...]
    unique_key: str
    watermark: str
    order_by: Tuple[str, ...]

    def __post_init__(self):
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate field names in schema {self.kind}")

        by_name = {f.name: f for f in self.fields}

        for col in (self.unique_key, self.watermark, *self.order_by):
            if col not in by_name:
                raise ValueError(f"schema {self.kind} references unknown field {col}")

        for col in (self.unique_key, self.watermark):
            if by_name[col].nullable:
                raise ValueError(f"schema {self.kind}: {col} can't be nullable")

        if not isinstance(by_name[self.watermark].type, Timestamp):
            raise ValueError(f"schema {self.kind}: watermark must be a timestamp")

        if not self.order_by or self.order_by[-1] != self.unique_key:
            raise ValueError(
                f"schema {self.kind}: order_by must end with the unique key {self.unique_key}"
            )

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def field(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"schema {self.kind} has no field {name}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "table_name": self.table_name,
            "unique_key": self.unique_key,
            "watermark": self.watermark,
            "order_by": list(self.order_by),
            "fields": [f.to_dict() for f in self.fields],
        }


_REGISTRY: Dict[str, EntitySchema] = {}


def register_schema(schema: EntitySchema, replace: bool = False) -> None:
    if schema.kind in _REGISTRY and not replace:
        raise ValueError(f"entity kind {schema.kind} is already registered")

    logger.debug(f"registering schema for entity kind {schema.kind}")

    _REGISTRY[schema.kind] = schema


def get_schema(kind: str) -> EntitySchema:
    try:
        return _REGISTRY[kind]
    except KeyError:
        raise ConfigError(
            f"unknown entity kind: {kind}. Known kinds: {', '.join(list_kinds())}"
        ) from None


def list_kinds() -> List[str]:
    return sorted(_REGISTRY.keys())
