from pathlib import Path

import pytest

from evm_warehouse.config import (
    ClickHouseWriterConfig,
    DuckdbWriterConfig,
    LoadMode,
    WriterKind,
)
from evm_warehouse.errors import ConfigError
from evm_warehouse.parser import config_from_dict, expand_env, parse_config

CONFIG_YAML = """
project_name: chain
writer:
  kind: duckdb
  config:
    path: ${WAREHOUSE_PATH:-warehouse.duckdb}
pipelines:
  blocks:
    source_dir: raw_data/blocks
  txs:
    entity: transactions
    source_dir: raw_data/transactions
    table: eth_transactions
    mode: full-refresh
    strict_watermark: true
    timeout: 600
    batch_size: 100
"""


def test_parse_config(tmp_path, monkeypatch):
    monkeypatch.delenv("WAREHOUSE_PATH", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = parse_config(path)

    assert config.project_name == "chain"
    assert config.writer.kind == WriterKind.DUCKDB
    assert isinstance(config.writer.config, DuckdbWriterConfig)
    assert config.writer.config.path == "warehouse.duckdb"

    blocks = config.pipelines["blocks"]
    assert blocks.entity == "blocks"
    assert blocks.table == "blocks"
    assert blocks.mode == LoadMode.INCREMENTAL
    assert blocks.timeout is None

    txs = config.pipelines["txs"]
    assert txs.entity == "transactions"
    assert txs.table == "eth_transactions"
    assert txs.mode == LoadMode.FULL_REFRESH
    assert txs.strict_watermark is True
    assert txs.timeout == 600
    assert txs.batch_size == 100


def test_env_expansion(monkeypatch):
    monkeypatch.setenv("WAREHOUSE_PATH", "/data/w.duckdb")
    monkeypatch.delenv("NOT_SET", raising=False)

    assert expand_env({"a": ["${WAREHOUSE_PATH}", 1]}) == {"a": ["/data/w.duckdb", 1]}
    assert expand_env("${NOT_SET:-fallback}") == "fallback"

    with pytest.raises(ConfigError, match="NOT_SET"):
        expand_env("${NOT_SET}")


def test_clickhouse_writer_from_env(monkeypatch):
    monkeypatch.setenv("CLICKHOUSE_HOST", "ch.internal")
    monkeypatch.setenv("CLICKHOUSE_PORT", "9123")

    config = config_from_dict(
        {
            "project_name": "chain",
            "writer": {"kind": "clickhouse", "config": {"database": "eth"}},
            "pipelines": {"receipts": {"source_dir": "raw/receipts"}},
        }
    )

    ch = config.writer.config
    assert isinstance(ch, ClickHouseWriterConfig)
    assert (ch.host, ch.port, ch.database) == ("ch.internal", 9123, "eth")


def test_writer_defaults_to_duckdb():
    config = config_from_dict(
        {"project_name": "chain", "pipelines": {"blocks": {"source_dir": "raw/blocks"}}}
    )

    assert config.writer.kind == WriterKind.DUCKDB
    assert config.writer.config.path == ":memory:"


@pytest.mark.parametrize(
    "raw, match",
    [
        ({"project_name": "x", "pipelines": {}}, "at least one pipeline"),
        ({"project_name": "x", "pipelines": {"uncles": {"source_dir": "d"}}}, "unknown entity kind"),
        (
            {"project_name": "x", "pipelines": {"blocks": {"source_dir": "d", "mode": "sometimes"}}},
            "invalid config",
        ),
        (
            {"project_name": "x", "pipelines": {"blocks": {"source_dir": "d", "batch_size": 0}}},
            "batch_size",
        ),
        (
            {"project_name": "x", "pipelines": {"blocks": {"source_dir": "d", "unknown": 1}}},
            "invalid config",
        ),
        (
            {
                "project_name": "x",
                "writer": {"kind": "postgres"},
                "pipelines": {"blocks": {"source_dir": "d"}},
            },
            "Invalid writer kind",
        ),
        ({"pipelines": {"blocks": {"source_dir": "d"}}}, "project_name"),
    ],
)
def test_invalid_config(raw, match):
    with pytest.raises(ConfigError, match=match):
        config_from_dict(raw)


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        parse_config(tmp_path / "missing.yaml")


def test_example_config_parses(monkeypatch):
    monkeypatch.delenv("CLICKHOUSE_PORT", raising=False)
    config = parse_config(Path(__file__).parent.parent / "config.example.yaml")

    assert config.writer.kind == WriterKind.CLICKHOUSE
    assert config.writer.config.port == 8123
    assert config.writer.config.codec["transactions"] == {"input": "ZSTD(3)"}
    assert set(config.pipelines) == {"blocks", "transactions", "receipts"}
    assert config.pipelines["receipts"].strict_watermark is True
