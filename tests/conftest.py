import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import duckdb
import pytest

from evm_warehouse.config import DuckdbWriterConfig
from evm_warehouse.writers.duckdb import Writer as DuckdbWriter

MAX_UINT256 = str(2**256 - 1)


# Configure logging for tests
@pytest.fixture(autouse=True)
def configure_logging():
    # Set up logging
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


def _hash(prefix: int, n: int) -> str:
    return "0x" + f"{prefix:02x}{n:062x}"


def _address(n: int) -> str:
    return "0x" + f"{n:040x}"


@pytest.fixture
def make_block() -> Callable[..., Dict[str, Any]]:
    def make(number: int, /, **overrides) -> Dict[str, Any]:
        record = {
            "number": number,
            "hash": _hash(0xB1, number),
            "parent_hash": _hash(0xB1, number - 1) if number > 0 else _hash(0, 0),
            "datetime": 1704067200 + 12 * number,
            "base_fee_per_gas": "7",
            "gas_limit": "30000000",
            "gas_used": "21000",
            "miner": _address(0xFEE),
            "nonce": "0x0000000000000000",
            "size": 512,
            "transaction_hashes": [_hash(0x7A, number)],
            "uncles": [],
        }
        record.update(overrides)
        return record

    return make


@pytest.fixture
def make_transaction() -> Callable[..., Dict[str, Any]]:
    def make(block_number: int, /, index: int = 0, **overrides) -> Dict[str, Any]:
        record = {
            "hash": _hash(0x7A, block_number * 1000 + index),
            "block_hash": _hash(0xB1, block_number),
            "block_number": block_number,
            "datetime": 1704067200 + 12 * block_number,
            "transaction_index": index,
            "chain_id": 1,
            "from": _address(1),
            "to": _address(2),
            "gas": "21000",
            "gas_price": "1000000000",
            "value": "1",
            "nonce": "0",
            "input": "0x",
            "tx_type": 2,
        }
        record.update(overrides)
        return record

    return make


@pytest.fixture
def make_receipt() -> Callable[..., Dict[str, Any]]:
    def make(block_number: int, /, index: int = 0, **overrides) -> Dict[str, Any]:
        tx_hash = _hash(0x7A, block_number * 1000 + index)
        record = {
            "transaction_hash": tx_hash,
            "transaction_index": index,
            "block_hash": _hash(0xB1, block_number),
            "block_number": block_number,
            "datetime": 1704067200 + 12 * block_number,
            "from": _address(1),
            "to": _address(2),
            "cumulative_gas_used": "21000",
            "effective_gas_price": "1000000000",
            "gas_used": "21000",
            "status": True,
            "tx_type": 2,
            "logs": [
                {
                    "address": _address(3),
                    "topics": [_hash(0xE0, 1)],
                    "data": "0x",
                    "log_index": 0,
                    "transaction_hash": tx_hash,
                    "removed": False,
                }
            ],
        }
        record.update(overrides)
        return record

    return make


@pytest.fixture
def write_ndjson() -> Callable[..., Path]:
    def write(
        directory: Path, name: str, records: List[Any], raw_lines: Optional[List[str]] = None
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        lines = [json.dumps(r) for r in records] + list(raw_lines or [])
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return write


@pytest.fixture
def duckdb_connection():
    conn = duckdb.connect()
    yield conn
    conn.close()


@pytest.fixture
def duckdb_writer(duckdb_connection):
    return DuckdbWriter(DuckdbWriterConfig(connection=duckdb_connection))
