from datetime import datetime, timedelta, timezone

import pytest

from evm_warehouse.config import LoadMode
from evm_warehouse.errors import WatermarkOrderError
from evm_warehouse.schemas import BLOCKS
from evm_warehouse.schemas.arrow import entity_arrow_schema, records_to_table
from evm_warehouse.steps.plan import (
    build_plan,
    from_epoch_us,
    plan_load,
    select_candidates,
    to_epoch_us,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def block(number, hash_suffix=None, miner=None):
    suffix = number if hash_suffix is None else hash_suffix
    return {
        "number": number,
        "hash": "0x" + f"{suffix:064x}",
        "datetime": START + timedelta(seconds=12 * number),
        "miner": miner,
    }


@pytest.fixture
def blocks():
    # out of order on purpose, the plan sorts by (number, hash)
    return records_to_table([block(3), block(1), block(2)], BLOCKS)


def test_epoch_round_trip():
    ts = datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc)
    assert from_epoch_us(to_epoch_us(ts)) == ts


def test_full_refresh_orders_rows(blocks):
    plan = plan_load(blocks, BLOCKS, LoadMode.FULL_REFRESH)

    assert plan.table.column("number").to_pylist() == [1, 2, 3]
    assert plan.table.schema == entity_arrow_schema(BLOCKS)
    assert plan.stats.candidates == 3
    assert plan.stats.to_insert == 3
    assert plan.max_watermark == START + timedelta(seconds=36)


def test_full_refresh_ignores_stored_keys(blocks):
    stored = blocks.column("hash").to_pylist()

    plan = plan_load(blocks, BLOCKS, LoadMode.FULL_REFRESH, existing_keys=stored)

    assert plan.stats.to_insert == 3
    assert plan.stats.skipped_duplicate == 0


def test_in_batch_duplicates_last_seen_wins():
    table = records_to_table(
        [
            block(1, miner="0x" + "01" * 20),
            block(2),
            block(1, miner="0x" + "02" * 20),
        ],
        BLOCKS,
    )

    plan = plan_load(table, BLOCKS, LoadMode.FULL_REFRESH)

    assert plan.stats.candidates == 3
    assert plan.stats.skipped_in_batch == 1
    assert plan.table.column("number").to_pylist() == [1, 2]
    assert plan.table.column("miner").to_pylist()[0] == "0x" + "02" * 20


def test_incremental_without_watermark_takes_everything(blocks):
    plan = plan_load(blocks, BLOCKS, LoadMode.INCREMENTAL, watermark=None)

    assert plan.stats.to_insert == 3
    assert plan.stats.late == 0


def test_incremental_drops_records_at_or_below_watermark(blocks):
    watermark = START + timedelta(seconds=24)

    plan = plan_load(blocks, BLOCKS, LoadMode.INCREMENTAL, watermark=watermark)

    assert plan.stats.late == 2
    assert plan.stats.candidates == 1
    assert plan.table.column("number").to_pylist() == [3]


def test_incremental_strict_watermark(blocks):
    with pytest.raises(WatermarkOrderError):
        plan_load(
            blocks,
            BLOCKS,
            LoadMode.INCREMENTAL,
            watermark=START + timedelta(seconds=12),
            strict=True,
        )


def test_existing_keys_skipped(blocks):
    candidates = select_candidates(blocks, BLOCKS, LoadMode.INCREMENTAL, None)
    stored = [block(2)["hash"]]

    plan = build_plan(candidates, stored)

    assert plan.stats.skipped_duplicate == 1
    assert plan.stats.to_insert == 2
    assert plan.table.column("number").to_pylist() == [1, 3]


def test_nothing_to_insert(blocks):
    plan = plan_load(
        blocks, BLOCKS, LoadMode.INCREMENTAL, watermark=START + timedelta(days=1)
    )

    assert plan.table.num_rows == 0
    assert plan.max_watermark is None


def test_candidate_keys_follow_source_order(blocks):
    candidates = select_candidates(blocks, BLOCKS, LoadMode.INCREMENTAL, None)
    assert candidates.keys == [block(n)["hash"] for n in (3, 1, 2)]
