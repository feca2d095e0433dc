import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from clickhouse_connect.driver.asyncclient import AsyncClient as ClickHouseClient
import duckdb

logger = logging.getLogger(__name__)


class WriterKind(str, Enum):
    CLICKHOUSE = "clickhouse"
    DUCKDB = "duckdb"


class LoadMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL_REFRESH = "full-refresh"


@dataclass
class DuckdbWriterConfig:
    path: str = ":memory:"
    # an existing connection takes precedence over `path`
    connection: Optional[duckdb.DuckDBPyConnection] = None


@dataclass
class ClickHouseWriterConfig:
    host: str = field(default_factory=lambda: os.environ.get("CLICKHOUSE_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.environ.get("CLICKHOUSE_PORT", "8123")))
    username: str = field(default_factory=lambda: os.environ.get("CLICKHOUSE_USER", "default"))
    password: str = field(default_factory=lambda: os.environ.get("CLICKHOUSE_PASSWORD", ""))
    database: str = field(default_factory=lambda: os.environ.get("CLICKHOUSE_DATABASE", "default"))
    secure: bool = False
    engine: str = "MergeTree()"
    codec: Dict[str, Dict[str, str]] = field(default_factory=dict)
    client: Optional[ClickHouseClient] = None


@dataclass
class Writer:
    kind: WriterKind
    config: ClickHouseWriterConfig | DuckdbWriterConfig


@dataclass
class Pipeline:
    entity: str
    source_dir: str
    table: Optional[str] = None
    mode: LoadMode = LoadMode.INCREMENTAL
    strict_watermark: bool = False
    # seconds, None waits forever
    timeout: Optional[float] = None
    batch_size: int = 5000
    max_rejection_samples: int = 10
    file_patterns: List[str] = field(
        default_factory=lambda: ["*.json", "*.jsonl", "*.ndjson"]
    )


@dataclass
class Config:
    project_name: str
    writer: Writer
    pipelines: Dict[str, Pipeline]
    description: Optional[str] = None
