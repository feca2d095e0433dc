import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set, TypeVar, cast as type_cast

import duckdb
import pyarrow as pa

from ..config import DuckdbWriterConfig
from ..errors import WriteError
from ..schemas.arrow import entity_arrow_schema
from ..schemas.types import EntitySchema
from ..steps.plan import from_epoch_us
from .base import DataWriter

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOAD_VIEW = "__load_data"
KEYS_VIEW = "__candidate_keys"


def pyarrow_type_to_duckdb(dt: pa.DataType) -> str:
    if pa.types.is_boolean(dt):
        return "BOOLEAN"
    elif pa.types.is_int8(dt):
        return "TINYINT"
    elif pa.types.is_int16(dt):
        return "SMALLINT"
    elif pa.types.is_int32(dt):
        return "INTEGER"
    elif pa.types.is_int64(dt):
        return "BIGINT"
    elif pa.types.is_uint8(dt):
        return "UTINYINT"
    elif pa.types.is_uint16(dt):
        return "USMALLINT"
    elif pa.types.is_uint32(dt):
        return "UINTEGER"
    elif pa.types.is_uint64(dt):
        return "UBIGINT"
    elif pa.types.is_float32(dt):
        return "FLOAT"
    elif pa.types.is_float64(dt):
        return "DOUBLE"
    elif pa.types.is_string(dt) or pa.types.is_large_string(dt):
        return "VARCHAR"
    elif pa.types.is_binary(dt) or pa.types.is_large_binary(dt):
        return "BLOB"
    elif pa.types.is_timestamp(dt):
        dt = type_cast(pa.TimestampType, dt)
        return "TIMESTAMPTZ" if dt.tz is not None else "TIMESTAMP"
    elif pa.types.is_date32(dt):
        return "DATE"
    elif pa.types.is_list(dt) or pa.types.is_large_list(dt):
        dt = type_cast(pa.ListType, dt)
        return f"{pyarrow_type_to_duckdb(dt.value_type)}[]"
    elif pa.types.is_struct(dt):
        dt = type_cast(pa.StructType, dt)
        fields = [f'"{field.name}" {pyarrow_type_to_duckdb(field.type)}' for field in list(dt)]
        return f"STRUCT({', '.join(fields)})"
    elif pa.types.is_decimal(dt):
        dt = type_cast(pa.Decimal128Type, dt)
        return f"DECIMAL({dt.precision}, {dt.scale})"
    else:
        raise Exception(f"Unimplemented pyarrow type: {dt}")


def create_table_sql(table_name: str, schema: EntitySchema, if_not_exists: bool = False) -> str:
    columns = []

    for field in entity_arrow_schema(schema):
        col_def = f'"{field.name}" {pyarrow_type_to_duckdb(field.type)}'
        if not field.nullable:
            col_def += " NOT NULL"
        columns.append(col_def)

    # duckdb has no partitions; the primary key enforces uniqueness at the storage layer
    columns.append(f'PRIMARY KEY ("{schema.unique_key}")')

    exists = "IF NOT EXISTS " if if_not_exists else ""

    return f"""
    CREATE TABLE {exists}"{table_name}" (
        {", ".join(columns)}
    )
    """


class Writer(DataWriter):
    def __init__(self, config: DuckdbWriterConfig):
        if config.connection is not None:
            self.connection = config.connection
            self.owns_connection = False
            self._name = f"duckdb:{id(config.connection)}"
        else:
            self.connection = duckdb.connect(config.path)
            self.owns_connection = True
            self._name = f"duckdb:{config.path}"

    @property
    def name(self) -> str:
        return self._name

    async def _run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        # each operation gets its own cursor so pipelines can share the database across threads
        try:
            cursor = self.connection.cursor()
        except duckdb.Error as e:
            raise WriteError(f"duckdb error: {e}") from e

        def run() -> T:
            try:
                return fn(cursor)
            finally:
                cursor.close()

        try:
            return await asyncio.to_thread(run)
        except asyncio.CancelledError:
            # stop the statement in the worker thread so its transaction rolls back
            try:
                cursor.interrupt()
            except duckdb.ConnectionException:
                logger.debug("cursor already closed when interrupting")
            raise
        except duckdb.Error as e:
            raise WriteError(f"duckdb error: {e}") from e

    def _table_exists_impl(self, cursor: duckdb.DuckDBPyConnection, table_name: str) -> bool:
        try:
            cursor.table(table_name)
            return True
        except duckdb.CatalogException:
            return False

    async def table_exists(self, table_name: str) -> bool:
        return await self._run(lambda cur: self._table_exists_impl(cur, table_name))

    async def max_watermark(self, table_name: str, column: str) -> Optional[datetime]:
        def impl(cursor: duckdb.DuckDBPyConnection) -> Optional[datetime]:
            if not self._table_exists_impl(cursor, table_name):
                return None
            row = cursor.execute(
                f'SELECT epoch_us(max("{column}")) FROM "{table_name}"'
            ).fetchone()
            if row is None or row[0] is None:
                return None
            return from_epoch_us(row[0])

        return await self._run(impl)

    async def existing_keys(
        self, table_name: str, key: str, candidates: List[str]
    ) -> Set[str]:
        if not candidates:
            return set()

        keys = pa.table({"key": pa.array(candidates, type=pa.string())})

        def impl(cursor: duckdb.DuckDBPyConnection) -> Set[str]:
            if not self._table_exists_impl(cursor, table_name):
                return set()
            cursor.register(KEYS_VIEW, keys)
            try:
                rows = cursor.execute(
                    f'SELECT "{key}" FROM "{table_name}" WHERE "{key}" IN (SELECT key FROM {KEYS_VIEW})'
                ).fetchall()
            finally:
                cursor.unregister(KEYS_VIEW)
            return {row[0] for row in rows}

        return await self._run(impl)

    def _insert(self, cursor: duckdb.DuckDBPyConnection, table_name: str, data: pa.Table) -> None:
        if data.num_rows == 0:
            return
        cursor.register(LOAD_VIEW, data)
        try:
            cursor.execute(f'INSERT INTO "{table_name}" SELECT * FROM {LOAD_VIEW}')
        finally:
            cursor.unregister(LOAD_VIEW)

    def _in_transaction(
        self, cursor: duckdb.DuckDBPyConnection, fn: Callable[[], None]
    ) -> None:
        cursor.begin()
        try:
            fn()
        except BaseException:
            cursor.rollback()
            raise
        cursor.commit()

    async def replace_table(
        self, table_name: str, data: pa.Table, schema: EntitySchema
    ) -> None:
        data = data.select(schema.field_names)

        def impl(cursor: duckdb.DuckDBPyConnection) -> None:
            def replace() -> None:
                cursor.execute(f'DROP TABLE IF EXISTS "{table_name}"')
                cursor.execute(create_table_sql(table_name, schema))
                self._insert(cursor, table_name, data)

            # the drop, create and insert commit together or not at all
            self._in_transaction(cursor, replace)

        logger.debug(f"replacing table {table_name} with {data.num_rows} rows")

        await self._run(impl)

    async def append(self, table_name: str, data: pa.Table, schema: EntitySchema) -> None:
        data = data.select(schema.field_names)

        def impl(cursor: duckdb.DuckDBPyConnection) -> None:
            def append() -> None:
                cursor.execute(create_table_sql(table_name, schema, if_not_exists=True))
                self._insert(cursor, table_name, data)

            self._in_transaction(cursor, append)

        logger.debug(f"appending {data.num_rows} rows to {table_name}")

        await self._run(impl)

    async def close(self) -> None:
        if self.owns_connection:
            self.connection.close()
