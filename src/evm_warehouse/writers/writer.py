import logging

from ..config import (
    ClickHouseWriterConfig,
    DuckdbWriterConfig,
    Writer,
    WriterKind,
)
from . import clickhouse, duckdb
from .base import DataWriter

logger = logging.getLogger(__name__)


def create_writer(writer: Writer) -> DataWriter:
    match writer.kind:
        case WriterKind.CLICKHOUSE:
            assert isinstance(writer.config, ClickHouseWriterConfig)
            return clickhouse.Writer(writer.config)
        case WriterKind.DUCKDB:
            assert isinstance(writer.config, DuckdbWriterConfig)
            return duckdb.Writer(writer.config)
        case _:
            raise ValueError(f"Invalid writer kind: {writer.kind}")
