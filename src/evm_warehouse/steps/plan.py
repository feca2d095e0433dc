import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Collection, List, Optional

import polars as pl
import pyarrow as pa

from ..config import LoadMode
from ..errors import WatermarkOrderError
from ..schemas.types import EntitySchema

logger = logging.getLogger(__name__)

ROW_INDEX = "__row_index"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class PlanStats:
    candidates: int = 0
    skipped_in_batch: int = 0
    skipped_duplicate: int = 0
    late: int = 0
    to_insert: int = 0


@dataclass
class Candidates:
    """Records admitted by the load mode, deduplicated within the batch"""

    schema: EntitySchema
    table: pa.Table
    stats: PlanStats = field(default_factory=PlanStats)

    @property
    def keys(self) -> List[str]:
        return self.table.column(self.schema.unique_key).to_pylist()


@dataclass
class LoadPlan:
    table: pa.Table
    stats: PlanStats
    max_watermark: Optional[datetime] = None


def to_epoch_us(dt: datetime) -> int:
    return (dt - EPOCH) // timedelta(microseconds=1)


def from_epoch_us(value: int) -> datetime:
    return EPOCH + timedelta(microseconds=value)


def _planning_frame(table: pa.Table, schema: EntitySchema) -> pl.DataFrame:
    cols = list(dict.fromkeys([schema.unique_key, schema.watermark, *schema.order_by]))
    df = pl.DataFrame(pl.from_arrow(table.select(cols)))

    return df.with_row_index(ROW_INDEX).with_columns(
        pl.col(schema.watermark).dt.epoch(time_unit="us").alias(schema.watermark)
    )


def select_candidates(
    table: pa.Table,
    schema: EntitySchema,
    mode: LoadMode,
    watermark: Optional[datetime],
    strict: bool = False,
) -> Candidates:
    """Apply the load mode's admission rule and last-seen-wins dedup.

    In incremental mode only records strictly newer than `watermark` are
    admitted. This trusts the extractor to never re-emit an already passed
    time window under a different key; with `strict` such records fail the
    run instead of being dropped.
    """
    stats = PlanStats()
    df = _planning_frame(table, schema)

    if mode == LoadMode.INCREMENTAL and watermark is not None:
        cutoff = to_epoch_us(watermark)
        late = df.filter(pl.col(schema.watermark) <= cutoff)
        stats.late = late.height

        if stats.late > 0:
            if strict:
                raise WatermarkOrderError(
                    f"{stats.late} {schema.kind} records are at or below the stored "
                    f"watermark {watermark.isoformat()}"
                )
            logger.info(
                f"dropping {stats.late} {schema.kind} records at or below watermark {watermark.isoformat()}"
            )

        df = df.filter(pl.col(schema.watermark) > cutoff)

    stats.candidates = df.height

    deduped = df.unique(subset=[schema.unique_key], keep="last", maintain_order=True)
    stats.skipped_in_batch = df.height - deduped.height

    if stats.skipped_in_batch > 0:
        logger.info(
            f"{stats.skipped_in_batch} duplicate {schema.kind} keys in batch, keeping the last one seen"
        )

    return Candidates(
        schema=schema,
        table=_take(table, deduped),
        stats=stats,
    )


def build_plan(candidates: Candidates, existing_keys: Collection[str]) -> LoadPlan:
    """Drop keys already stored and order rows by the schema's order key"""
    schema = candidates.schema
    stats = candidates.stats
    df = _planning_frame(candidates.table, schema)

    if existing_keys:
        before = df.height
        stored = pl.Series(list(existing_keys), dtype=pl.Utf8)
        df = df.filter(~pl.col(schema.unique_key).is_in(stored))
        stats.skipped_duplicate = before - df.height

    df = df.sort(list(schema.order_by), maintain_order=True)
    stats.to_insert = df.height

    max_watermark = None
    if df.height > 0:
        max_watermark = from_epoch_us(df[schema.watermark].max())

    return LoadPlan(
        table=_take(candidates.table, df),
        stats=stats,
        max_watermark=max_watermark,
    )


def plan_load(
    table: pa.Table,
    schema: EntitySchema,
    mode: LoadMode,
    watermark: Optional[datetime] = None,
    existing_keys: Collection[str] = (),
    strict: bool = False,
) -> LoadPlan:
    candidates = select_candidates(table, schema, mode, watermark, strict)
    if mode == LoadMode.FULL_REFRESH:
        # the target is rebuilt, nothing stored survives to collide with
        existing_keys = ()
    return build_plan(candidates, existing_keys)


def _take(table: pa.Table, df: pl.DataFrame) -> pa.Table:
    indices = pa.array(df[ROW_INDEX].to_list(), type=pa.int64())
    return table.take(indices)


__all__ = [
    "PlanStats",
    "Candidates",
    "LoadPlan",
    "select_candidates",
    "build_plan",
    "plan_load",
    "to_epoch_us",
    "from_epoch_us",
]
