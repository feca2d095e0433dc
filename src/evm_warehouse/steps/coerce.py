import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ..errors import CoercionError
from ..schemas.types import (
    ArrayOf,
    Boolean,
    EntitySchema,
    FieldSpec,
    HexString,
    SemanticType,
    SignedInteger,
    StructOf,
    Text,
    Timestamp,
    WideInteger,
)
from ..sources.jsonl import FieldState, FieldValue, RawRecord, lookup

logger = logging.getLogger(__name__)

DEFAULT_MAX_REJECTION_SAMPLES = 10

_DECIMAL_RE = re.compile(r"([+-]?)([0-9]+)")
_HEX_DIGITS_RE = re.compile(r"[0-9a-fA-F]*")
_HEX_QUANTITY_RE = re.compile(r"0[xX]([0-9a-fA-F]+)")


@dataclass(frozen=True)
class Rejection:
    location: str
    field: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"location": self.location, "field": self.field, "reason": self.reason}


@dataclass
class CoercionResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    rejected: int = 0
    samples: List[Rejection] = field(default_factory=list)
    max_samples: int = DEFAULT_MAX_REJECTION_SAMPLES

    @property
    def coerced(self) -> int:
        return len(self.records)

    def reject(self, raw: RawRecord, error: CoercionError) -> None:
        self.rejected += 1
        if len(self.samples) < self.max_samples:
            self.samples.append(Rejection(raw.location, error.field, error.reason))

    def extend(self, other: "CoercionResult") -> None:
        """Append a later batch, keeping source order and the sample cap"""
        self.records.extend(other.records)
        self.rejected += other.rejected
        room = self.max_samples - len(self.samples)
        if room > 0:
            self.samples.extend(other.samples[:room])


def coerce_records(
    raws: Iterable[RawRecord],
    schema: EntitySchema,
    max_samples: int = DEFAULT_MAX_REJECTION_SAMPLES,
) -> CoercionResult:
    result = CoercionResult(max_samples=max_samples)

    for raw in raws:
        try:
            result.records.append(coerce_record(raw, schema))
        except CoercionError as e:
            logger.debug(f"rejected {schema.kind} record at {raw.location}: {e}")
            result.reject(raw, e)

    return result


def coerce_record(raw: RawRecord, schema: EntitySchema) -> Dict[str, Any]:
    return _coerce_fields(raw.fields, schema.fields, "")


def _coerce_fields(
    mapping: Mapping[str, Any], fields: Sequence[FieldSpec], path: str
) -> Dict[str, Any]:
    out = {}

    for spec in fields:
        field_path = f"{path}.{spec.name}" if path else spec.name
        out[spec.name] = coerce_field(lookup(mapping, spec.source_keys), spec, field_path)

    return out


def coerce_field(fv: FieldValue, spec: FieldSpec, path: str) -> Any:
    if fv.is_missing:
        if spec.nullable:
            return None
        if fv.state == FieldState.ABSENT:
            raise CoercionError(path, "missing required field")
        raise CoercionError(path, "required field is null")

    return coerce_value(fv.value, spec.type, path)


def coerce_value(value: Any, st: SemanticType, path: str) -> Any:
    if isinstance(st, WideInteger):
        return _coerce_wide_integer(value, path)
    elif isinstance(st, SignedInteger):
        return _coerce_signed_integer(value, st, path)
    elif isinstance(st, HexString):
        return _coerce_hex(value, st, path)
    elif isinstance(st, Text):
        if not isinstance(value, str):
            raise CoercionError(path, f"expected string, got {_json_type(value)}")
        return value
    elif isinstance(st, Boolean):
        # 0/1 substitutes are rejected, not reinterpreted
        if value is True or value is False:
            return value
        raise CoercionError(path, f"expected true or false, got {_json_type(value)}")
    elif isinstance(st, Timestamp):
        return _coerce_timestamp(value, path)
    elif isinstance(st, ArrayOf):
        return _coerce_array(value, st, path)
    elif isinstance(st, StructOf):
        if not isinstance(value, dict):
            raise CoercionError(path, f"expected object, got {_json_type(value)}")
        return _coerce_fields(value, st.fields, path)
    else:
        raise Exception(f"Unimplemented semantic type: {st}")


def _coerce_wide_integer(value: Any, path: str) -> str:
    if isinstance(value, bool):
        raise CoercionError(path, "expected integer, got boolean")

    if isinstance(value, int):
        return str(value)

    if not isinstance(value, str):
        raise CoercionError(path, f"expected integer, got {_json_type(value)}")

    m = _DECIMAL_RE.fullmatch(value)
    if m is None:
        raise CoercionError(path, f"non-digit characters in integer {value!r}")

    sign, digits = m.groups()
    digits = digits.lstrip("0") or "0"
    if sign == "-" and digits != "0":
        return f"-{digits}"

    return digits


def _coerce_signed_integer(value: Any, st: SignedInteger, path: str) -> int:
    if isinstance(value, bool):
        raise CoercionError(path, "expected integer, got boolean")

    quantity = _HEX_QUANTITY_RE.fullmatch(value) if isinstance(value, str) else None
    if quantity is not None:
        # RPC quantities such as log_index come hex encoded
        value = int(quantity.group(1), 16)
    elif isinstance(value, str):
        value = _coerce_wide_integer(value, path)
        # anything this long can't fit 64 bits, skip the int() conversion
        if len(value.lstrip("-")) > 20:
            raise CoercionError(path, f"out of range for {st}")
        value = int(value)
    elif not isinstance(value, int):
        raise CoercionError(path, f"expected integer, got {_json_type(value)}")

    if value < st.min_value or value > st.max_value:
        raise CoercionError(path, f"out of range for {st}")

    return value


def _coerce_hex(value: Any, st: HexString, path: str) -> str:
    if not isinstance(value, str):
        raise CoercionError(path, f"expected hex string, got {_json_type(value)}")

    if not value.startswith(("0x", "0X")):
        raise CoercionError(path, "hex string must start with 0x")

    body = value[2:]
    if _HEX_DIGITS_RE.fullmatch(body) is None:
        raise CoercionError(path, "non-hex characters in hex string")

    if st.num_bytes is not None and len(body) != st.num_bytes * 2:
        raise CoercionError(
            path, f"expected {st.num_bytes} bytes, got {len(body)} hex digits"
        )

    return "0x" + body.lower()


def _coerce_timestamp(value: Any, path: str) -> datetime:
    if isinstance(value, bool):
        raise CoercionError(path, "expected timestamp, got boolean")

    if isinstance(value, int):
        if value < 0:
            raise CoercionError(path, "negative unix timestamp")
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise CoercionError(path, f"unix timestamp out of range: {value}") from None

    if not isinstance(value, str):
        raise CoercionError(path, f"expected timestamp, got {_json_type(value)}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise CoercionError(path, f"unparseable timestamp {value!r}") from None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def _coerce_array(value: Any, st: ArrayOf, path: str) -> List[Any]:
    if not isinstance(value, list):
        raise CoercionError(path, f"expected array, got {_json_type(value)}")

    out = []
    for i, element in enumerate(value):
        element_path = f"{path}[{i}]"
        if element is None:
            raise CoercionError(element_path, "null array element")
        out.append(coerce_value(element, st.element, element_path))

    return out


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


__all__ = [
    "DEFAULT_MAX_REJECTION_SAMPLES",
    "Rejection",
    "CoercionResult",
    "coerce_records",
    "coerce_record",
    "coerce_field",
    "coerce_value",
]
