from . import schemas
from .config import Config, LoadMode, Pipeline, Writer, WriterKind
from .errors import (
    ConfigError,
    CoercionError,
    LoadTimeoutError,
    SourceReadError,
    WarehouseError,
    WatermarkOrderError,
    WriteError,
)
from .parser import parse_config
from .pipeline import run_pipeline, run_pipelines
from .report import RunReport, RunStatus

__all__ = [
    "schemas",
    "Config",
    "LoadMode",
    "Pipeline",
    "Writer",
    "WriterKind",
    "WarehouseError",
    "ConfigError",
    "SourceReadError",
    "CoercionError",
    "WatermarkOrderError",
    "WriteError",
    "LoadTimeoutError",
    "parse_config",
    "run_pipeline",
    "run_pipelines",
    "RunReport",
    "RunStatus",
]
