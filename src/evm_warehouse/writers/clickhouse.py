import asyncio
import inspect
import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, cast as type_cast

import clickhouse_connect
from clickhouse_connect.driver.asyncclient import AsyncClient
from clickhouse_connect.driver.exceptions import ClickHouseError
import pyarrow as pa

from ..config import ClickHouseWriterConfig
from ..errors import WriteError
from ..schemas.arrow import entity_arrow_schema
from ..schemas.types import EntitySchema
from ..steps.plan import from_epoch_us
from .base import DataWriter

logger = logging.getLogger(__name__)

STAGING_SUFFIX = "__staging"
KEY_LOOKUP_CHUNK = 10_000


def pyarrow_type_to_clickhouse(dt: pa.DataType) -> str:
    if pa.types.is_boolean(dt):
        return "Bool"
    elif pa.types.is_int8(dt):
        return "Int8"
    elif pa.types.is_int16(dt):
        return "Int16"
    elif pa.types.is_int32(dt):
        return "Int32"
    elif pa.types.is_int64(dt):
        return "Int64"
    elif pa.types.is_uint8(dt):
        return "UInt8"
    elif pa.types.is_uint16(dt):
        return "UInt16"
    elif pa.types.is_uint32(dt):
        return "UInt32"
    elif pa.types.is_uint64(dt):
        return "UInt64"
    elif pa.types.is_float32(dt):
        return "Float32"
    elif pa.types.is_float64(dt):
        return "Float64"
    elif pa.types.is_string(dt) or pa.types.is_large_string(dt):
        return "String"
    elif pa.types.is_binary(dt) or pa.types.is_large_binary(dt):
        return "String"  # ClickHouse uses String for binary data too
    elif pa.types.is_date32(dt):
        return "Date"
    elif pa.types.is_timestamp(dt):
        dt = type_cast(pa.TimestampType, dt)
        precision = {"s": 0, "ms": 3, "us": 6, "ns": 9}[dt.unit]
        if dt.tz is not None:
            return f"DateTime64({precision}, '{dt.tz}')"
        return f"DateTime64({precision})"
    elif pa.types.is_list(dt) or pa.types.is_large_list(dt):
        dt = type_cast(pa.ListType, dt)
        # array elements are never null
        return f"Array({pyarrow_type_to_clickhouse(dt.value_type)})"
    elif pa.types.is_struct(dt):
        dt = type_cast(pa.StructType, dt)
        fields = [f"`{field.name}` {clickhouse_column_type(field)}" for field in list(dt)]
        return f"Tuple({', '.join(fields)})"
    elif pa.types.is_decimal(dt):
        dt = type_cast(pa.Decimal128Type, dt)
        return f"Decimal({dt.precision}, {dt.scale})"
    else:
        raise Exception(f"Unimplemented pyarrow type: {dt}")


def clickhouse_column_type(field: pa.Field) -> str:
    ch_type = pyarrow_type_to_clickhouse(field.type)

    # Array and Tuple can't be wrapped in Nullable, a null list is stored empty
    if field.nullable and not (
        pa.types.is_list(field.type)
        or pa.types.is_large_list(field.type)
        or pa.types.is_struct(field.type)
    ):
        return f"Nullable({ch_type})"

    return ch_type


def create_table_sql(
    table_name: str,
    schema: EntitySchema,
    engine: str = "MergeTree()",
    codec: Optional[Dict[str, str]] = None,
) -> str:
    codec = codec or {}
    columns = []

    for field in entity_arrow_schema(schema):
        col_def = f"`{field.name}` {clickhouse_column_type(field)}"

        if field.name in codec:
            col_def += f" CODEC({codec[field.name]})"

        columns.append(col_def)

    order_by = ", ".join(f"`{name}`" for name in schema.order_by)

    return f"""
    CREATE TABLE {table_name} (
        {", ".join(columns)}
    ) ENGINE = {engine}
    PARTITION BY toYYYYMM(`{schema.watermark}`)
    ORDER BY ({order_by})
    """


class Writer(DataWriter):
    def __init__(self, config: ClickHouseWriterConfig):
        self.config = config
        self.client: Optional[AsyncClient] = config.client
        self.owns_client = config.client is None
        self.engine = config.engine
        self.codec = config.codec
        self._client_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return f"clickhouse:{self.config.host}:{self.config.port}/{self.config.database}"

    async def _get_client(self) -> AsyncClient:
        async with self._client_lock:
            if self.client is None:
                logger.debug(f"connecting to clickhouse at {self.config.host}:{self.config.port}")
                try:
                    self.client = await clickhouse_connect.get_async_client(
                        host=self.config.host,
                        port=self.config.port,
                        username=self.config.username,
                        password=self.config.password,
                        database=self.config.database,
                        secure=self.config.secure,
                    )
                except ClickHouseError as e:
                    raise WriteError(f"failed to connect to clickhouse: {e}") from e
            return self.client

    def _qualified(self, table_name: str) -> str:
        return f"`{self.config.database}`.`{table_name}`"

    async def _command(self, sql: str) -> None:
        client = await self._get_client()
        logger.debug(f"running command: {sql}")
        try:
            await client.command(sql)
        except ClickHouseError as e:
            raise WriteError(f"clickhouse command failed: {e}") from e

    async def _query(self, sql: str, parameters: Optional[Dict] = None) -> List[tuple]:
        client = await self._get_client()
        try:
            res = await client.query(sql, parameters=parameters)
        except ClickHouseError as e:
            raise WriteError(f"clickhouse query failed: {e}") from e
        return res.result_rows

    async def _insert(self, table_name: str, data: pa.Table) -> None:
        if data.num_rows == 0:
            return
        client = await self._get_client()
        try:
            await client.insert_arrow(table_name, data, database=self.config.database)
        except ClickHouseError as e:
            raise WriteError(f"insert into {table_name} failed: {e}") from e

    async def table_exists(self, table_name: str) -> bool:
        rows = await self._query(
            "SELECT count() > 0 AS table_exists FROM system.tables "
            "WHERE database = {database:String} AND name = {table:String}",
            parameters={"database": self.config.database, "table": table_name},
        )

        return bool(rows[0][0])

    async def _create_table(self, table_name: str, schema: EntitySchema) -> None:
        # codec options are keyed by the logical table name
        codec = self.codec.get(table_name.removesuffix(STAGING_SUFFIX))
        await self._command(
            create_table_sql(self._qualified(table_name), schema, self.engine, codec)
        )

    async def max_watermark(self, table_name: str, column: str) -> Optional[datetime]:
        if not await self.table_exists(table_name):
            return None

        # max() of an empty table is the epoch, so the row count tells them apart
        rows = await self._query(
            f"SELECT count(), toUnixTimestamp64Micro(max(`{column}`)) FROM {self._qualified(table_name)}"
        )
        count, value = rows[0]
        if count == 0 or value is None:
            return None

        return from_epoch_us(int(value))

    async def existing_keys(
        self, table_name: str, key: str, candidates: List[str]
    ) -> Set[str]:
        if not candidates or not await self.table_exists(table_name):
            return set()

        found: Set[str] = set()
        for start in range(0, len(candidates), KEY_LOOKUP_CHUNK):
            chunk = candidates[start : start + KEY_LOOKUP_CHUNK]
            rows = await self._query(
                f"SELECT `{key}` FROM {self._qualified(table_name)} "
                f"WHERE has({{keys:Array(String)}}, `{key}`)",
                parameters={"keys": chunk},
            )
            found.update(row[0] for row in rows)

        return found

    async def replace_table(
        self, table_name: str, data: pa.Table, schema: EntitySchema
    ) -> None:
        data = data.select(schema.field_names)
        staging = f"{table_name}{STAGING_SUFFIX}"

        await self._command(f"DROP TABLE IF EXISTS {self._qualified(staging)}")
        await self._create_table(staging, schema)

        try:
            await self._insert(staging, data)

            # readers see either the old table or the new one, never a partial build
            if await self.table_exists(table_name):
                await self._command(
                    f"EXCHANGE TABLES {self._qualified(staging)} AND {self._qualified(table_name)}"
                )
            else:
                await self._command(
                    f"RENAME TABLE {self._qualified(staging)} TO {self._qualified(table_name)}"
                )
        finally:
            # after an exchange this drops the previous contents
            await self._command(f"DROP TABLE IF EXISTS {self._qualified(staging)}")

        logger.debug(f"replaced table {table_name} with {data.num_rows} rows")

    async def append(self, table_name: str, data: pa.Table, schema: EntitySchema) -> None:
        data = data.select(schema.field_names)

        if not await self.table_exists(table_name):
            await self._create_table(table_name, schema)
        else:
            logger.debug(f"table {table_name} already exists so skipping creation")

        await self._insert(table_name, data)

        logger.debug(f"appended {data.num_rows} rows to {table_name}")

    async def close(self) -> None:
        if self.owns_client and self.client is not None:
            res = self.client.close()
            # close() is a coroutine on newer clickhouse-connect releases
            if inspect.isawaitable(res):
                await res
            self.client = None
