import copy
import logging
import os
import re
from enum import Enum
from typing import Any, Dict, Optional, Union

import dacite
import yaml
from dotenv import load_dotenv

from .config import (
    ClickHouseWriterConfig,
    Config,
    DuckdbWriterConfig,
    Pipeline,
    Writer,
    WriterKind,
)
from .errors import ConfigError
from .schemas import get_schema

logger = logging.getLogger(__name__)

_ENV_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_DACITE_CONFIG = dacite.Config(cast=[Enum, int, float], strict=True)

_WRITER_CONFIG_TYPES = {
    WriterKind.CLICKHOUSE: ClickHouseWriterConfig,
    WriterKind.DUCKDB: DuckdbWriterConfig,
}


def expand_env(value: Any) -> Any:
    """Replace ${VAR} and ${VAR:-default} in every string of a parsed document"""
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    if not isinstance(value, str):
        return value

    def replace(m: re.Match) -> str:
        name, default = m.group(1), m.group(2)
        env_value = os.environ.get(name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ConfigError(f"environment variable {name} is not set")

    return _ENV_VAR_RE.sub(replace, value)


def prepare_config(raw_config: Dict) -> Dict:
    """Fill pipeline defaults that depend on the schema registry"""
    config = copy.deepcopy(raw_config)

    pipelines = config.get("pipelines") or {}
    if not isinstance(pipelines, dict) or not pipelines:
        raise ConfigError("config must define at least one pipeline")

    for pipeline_name, pipeline in pipelines.items():
        if not isinstance(pipeline, dict):
            raise ConfigError(f"pipeline {pipeline_name} must be a mapping")

        # pipelines named after an entity kind may omit `entity`
        pipeline.setdefault("entity", pipeline_name)
        schema = get_schema(pipeline["entity"])
        if pipeline.get("table") is None:
            pipeline["table"] = schema.table_name

    return config


def build_writer(raw_writer: Dict) -> Writer:
    if not isinstance(raw_writer, dict) or "kind" not in raw_writer:
        raise ConfigError("writer must be a mapping with a `kind`")

    try:
        kind = WriterKind(raw_writer["kind"])
    except ValueError:
        raise ConfigError(f"Invalid writer kind: {raw_writer['kind']}") from None

    writer_config = dacite.from_dict(
        data_class=_WRITER_CONFIG_TYPES[kind],
        data=raw_writer.get("config") or {},
        config=_DACITE_CONFIG,
    )

    return Writer(kind=kind, config=writer_config)


def config_from_dict(raw_config: Dict) -> Config:
    if not isinstance(raw_config, dict):
        raise ConfigError("config must be a mapping")

    prepared = prepare_config(expand_env(raw_config))

    try:
        pipelines = {
            name: dacite.from_dict(data_class=Pipeline, data=p, config=_DACITE_CONFIG)
            for name, p in prepared["pipelines"].items()
        }
        writer = build_writer(prepared.get("writer", {"kind": WriterKind.DUCKDB.value}))
    except (dacite.DaciteError, ValueError, TypeError) as e:
        raise ConfigError(f"invalid config: {e}") from e

    for name, pipeline in pipelines.items():
        if pipeline.batch_size <= 0:
            raise ConfigError(f"pipeline {name}: batch_size must be positive")
        if pipeline.timeout is not None and pipeline.timeout <= 0:
            raise ConfigError(f"pipeline {name}: timeout must be positive")
        if pipeline.max_rejection_samples < 0:
            raise ConfigError(f"pipeline {name}: max_rejection_samples can't be negative")

    project_name = prepared.get("project_name")
    if not project_name:
        raise ConfigError("config must set project_name")

    return Config(
        project_name=project_name,
        description=prepared.get("description"),
        writer=writer,
        pipelines=pipelines,
    )


def parse_config(config_path: Union[str, os.PathLike], env_file: Optional[str] = None) -> Config:
    """Parse configuration from YAML file"""
    load_dotenv(env_file)

    try:
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error parsing config file {config_path}: {e}") from e

    config = config_from_dict(raw_config)

    logger.info(
        f"parsed config {config.project_name} with pipelines: {', '.join(config.pipelines)}"
    )

    return config


__all__ = ["parse_config", "config_from_dict", "expand_env", "prepare_config"]
