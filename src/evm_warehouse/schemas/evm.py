from .types import (
    ArrayOf,
    Boolean,
    EntitySchema,
    FieldSpec,
    HexString,
    SignedInteger,
    StructOf,
    Timestamp,
    WideInteger,
    register_schema,
)

ADDRESS = HexString(20)
HASH = HexString(32)
BLOOM = HexString(256)
BLOCK_NONCE = HexString(8)
HEX = HexString()
INT64 = SignedInteger(64)
WIDE = WideInteger()

LOG = StructOf(
    (
        FieldSpec("address", ADDRESS),
        FieldSpec("topics", ArrayOf(HASH)),
        FieldSpec("data", HEX),
        FieldSpec("log_index", INT64),
        FieldSpec("transaction_index", INT64, nullable=True),
        FieldSpec("block_number", INT64, nullable=True),
        FieldSpec("block_hash", HASH, nullable=True),
        FieldSpec("transaction_hash", HASH, nullable=True),
        FieldSpec("removed", Boolean(), nullable=True),
    )
)

BLOCKS = EntitySchema(
    kind="blocks",
    table_name="blocks",
    fields=(
        FieldSpec("number", INT64),
        FieldSpec("hash", HASH),
        FieldSpec("parent_hash", HASH, nullable=True),
        FieldSpec("datetime", Timestamp()),
        FieldSpec("base_fee_per_gas", WIDE, nullable=True),
        FieldSpec("difficulty", WIDE, nullable=True),
        FieldSpec("total_difficulty", WIDE, nullable=True),
        FieldSpec("extra_data", HEX, nullable=True),
        FieldSpec("gas_limit", WIDE, nullable=True),
        FieldSpec("gas_used", WIDE, nullable=True),
        FieldSpec("logs_bloom", BLOOM, nullable=True),
        FieldSpec("miner", ADDRESS, nullable=True),
        FieldSpec("mix_hash", HASH, nullable=True),
        FieldSpec("nonce", BLOCK_NONCE, nullable=True),
        FieldSpec("receipts_root", HASH, nullable=True),
        FieldSpec("sha3_uncles", HASH, nullable=True),
        FieldSpec("size", INT64, nullable=True),
        FieldSpec("state_root", HASH, nullable=True),
        FieldSpec("transactions_root", HASH, nullable=True),
        FieldSpec("transaction_hashes", ArrayOf(HASH), nullable=True),
        FieldSpec("uncles", ArrayOf(HASH), nullable=True),
    ),
    unique_key="hash",
    watermark="datetime",
    order_by=("number", "hash"),
)

TRANSACTIONS = EntitySchema(
    kind="transactions",
    table_name="transactions",
    fields=(
        FieldSpec("hash", HASH),
        FieldSpec("block_hash", HASH, nullable=True),
        FieldSpec("block_number", INT64),
        FieldSpec("datetime", Timestamp()),
        FieldSpec("transaction_index", INT64),
        FieldSpec("chain_id", INT64, nullable=True),
        FieldSpec("from", ADDRESS),
        # absent on contract creation
        FieldSpec("to", ADDRESS, nullable=True),
        FieldSpec("gas", WIDE),
        FieldSpec("gas_price", WIDE, nullable=True),
        FieldSpec("max_fee_per_gas", WIDE, nullable=True),
        FieldSpec("max_priority_fee_per_gas", WIDE, nullable=True),
        FieldSpec("value", WIDE),
        FieldSpec("nonce", WIDE),
        FieldSpec("input", HEX),
        FieldSpec("type", SignedInteger(32), nullable=True, aliases=("tx_type",)),
        FieldSpec("v", HEX, nullable=True),
        FieldSpec("r", HEX, nullable=True),
        FieldSpec("s", HEX, nullable=True),
    ),
    unique_key="hash",
    watermark="datetime",
    order_by=("block_number", "hash"),
)

RECEIPTS = EntitySchema(
    kind="receipts",
    table_name="receipts",
    fields=(
        FieldSpec("transaction_hash", HASH),
        FieldSpec("transaction_index", INT64),
        FieldSpec("block_hash", HASH),
        FieldSpec("block_number", INT64),
        FieldSpec("datetime", Timestamp()),
        FieldSpec("from", ADDRESS),
        FieldSpec("to", ADDRESS, nullable=True),
        FieldSpec("contract_address", ADDRESS, nullable=True),
        FieldSpec("cumulative_gas_used", WIDE),
        FieldSpec("effective_gas_price", WIDE, nullable=True),
        FieldSpec("gas_used", WIDE),
        FieldSpec("logs_bloom", BLOOM, nullable=True),
        FieldSpec("status", Boolean(), nullable=True),
        FieldSpec("type", SignedInteger(32), nullable=True, aliases=("tx_type",)),
        FieldSpec("logs", ArrayOf(LOG)),
    ),
    unique_key="transaction_hash",
    watermark="datetime",
    order_by=("block_number", "transaction_hash"),
)

for _schema in (BLOCKS, TRANSACTIONS, RECEIPTS):
    register_schema(_schema)

__all__ = ["BLOCKS", "TRANSACTIONS", "RECEIPTS", "LOG"]
