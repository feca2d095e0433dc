import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple, Union

from ..errors import SourceReadError

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS = ("*.json", "*.jsonl", "*.ndjson")


class FieldState(str, Enum):
    PRESENT = "present"
    NULL = "null"
    ABSENT = "absent"


@dataclass(frozen=True)
class FieldValue:
    """Raw value of one field; absent and JSON null are different states"""

    state: FieldState
    value: Any = None

    @property
    def is_missing(self) -> bool:
        return self.state != FieldState.PRESENT


ABSENT = FieldValue(FieldState.ABSENT)
NULL = FieldValue(FieldState.NULL)


def lookup(mapping: Mapping[str, Any], keys: Sequence[str]) -> FieldValue:
    for key in keys:
        if key in mapping:
            value = mapping[key]
            if value is None:
                return NULL
            return FieldValue(FieldState.PRESENT, value)

    return ABSENT


@dataclass(frozen=True)
class RawRecord:
    source: str
    line_number: int
    fields: Dict[str, Any]

    @property
    def location(self) -> str:
        return f"{self.source}:{self.line_number}"

    def lookup(self, keys: Sequence[str]) -> FieldValue:
        return lookup(self.fields, keys)


class JsonlSource:
    """Newline-delimited JSON files of one entity kind.

    Iterating the source reads every matching file in file-name order. Each
    iteration starts again from the first file, so a failed load can simply
    iterate again.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        entity_kind: str,
        patterns: Tuple[str, ...] = DEFAULT_PATTERNS,
    ):
        self.directory = Path(directory)
        self.entity_kind = entity_kind
        self.patterns = patterns

    def files(self) -> List[Path]:
        if not self.directory.is_dir():
            raise SourceReadError(
                f"source directory for {self.entity_kind} does not exist: {self.directory}"
            )

        matched = set()
        for pattern in self.patterns:
            matched.update(p for p in self.directory.glob(pattern) if p.is_file())

        return sorted(matched, key=lambda p: p.name)

    def __iter__(self) -> Iterator[RawRecord]:
        files = self.files()

        logger.debug(
            f"reading {len(files)} files for {self.entity_kind} from {self.directory}"
        )

        for path in files:
            yield from read_file(path)


def read_file(path: Path) -> Iterator[RawRecord]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                yield RawRecord(
                    source=str(path),
                    line_number=line_number,
                    fields=parse_line(path, line, line_number),
                )
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(f"failed to read {path}: {e}") from e


def parse_line(path: Path, line: str, line_number: int) -> Dict[str, Any]:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as e:
        raise SourceReadError(
            f"invalid JSON at {path}:{line_number}: {e.msg}"
        ) from e
    except ValueError as e:
        # e.g. integer literals above the interpreter's digit limit
        raise SourceReadError(f"invalid JSON at {path}:{line_number}: {e}") from e

    if not isinstance(payload, dict):
        raise SourceReadError(
            f"expected a JSON object at {path}:{line_number}, got {type(payload).__name__}"
        )

    return payload


__all__ = [
    "DEFAULT_PATTERNS",
    "FieldState",
    "FieldValue",
    "ABSENT",
    "NULL",
    "lookup",
    "RawRecord",
    "JsonlSource",
    "read_file",
]
