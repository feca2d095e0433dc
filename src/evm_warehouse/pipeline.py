import asyncio
import dataclasses
import itertools
import logging
import uuid
import weakref
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .config import Config, LoadMode, Pipeline
from .errors import ConfigError, LoadTimeoutError, WarehouseError
from .report import OUT_OF_ORDER_ASSUMPTION, RunReport, RunStatus
from .schemas import EntitySchema, get_schema
from .schemas.arrow import records_to_table
from .sources.jsonl import JsonlSource, RawRecord
from .steps.coerce import CoercionResult, coerce_records
from .steps.plan import build_plan, select_candidates
from .writers import DataWriter, create_writer

logger = logging.getLogger(__name__)

_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[Tuple[str, str], asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def table_lock(writer: DataWriter, table_name: str) -> asyncio.Lock:
    """Lock guarding the watermark read and write of one table"""
    locks = _LOCKS.setdefault(asyncio.get_running_loop(), {})
    key = (writer.name, table_name)
    if key not in locks:
        locks[key] = asyncio.Lock()
    return locks[key]


def _batches(records: Iterable[RawRecord], size: int) -> Iterator[List[RawRecord]]:
    it = iter(records)
    while True:
        batch = list(itertools.islice(it, size))
        if not batch:
            return
        yield batch


async def read_and_coerce(
    pipeline: Pipeline, schema: EntitySchema, report: RunReport
) -> CoercionResult:
    """Read the source in batches and coerce each batch in a worker thread.

    Reading the next batch overlaps with coercing the previous ones, results
    are collected in source order.
    """
    source = JsonlSource(pipeline.source_dir, schema.kind, tuple(pipeline.file_patterns))
    batches = _batches(source, pipeline.batch_size)

    result = CoercionResult(max_samples=pipeline.max_rejection_samples)
    tasks: List[asyncio.Task] = []

    try:
        while True:
            batch = await asyncio.to_thread(next, batches, None)
            if batch is None:
                break

            report.read += len(batch)
            tasks.append(
                asyncio.create_task(
                    asyncio.to_thread(
                        coerce_records, batch, schema, pipeline.max_rejection_samples
                    ),
                    name=f"coerce {schema.kind} batch {len(tasks)}",
                )
            )

        for task in tasks:
            result.extend(await task)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise

    return result


def _log_rejections(schema: EntitySchema, result: CoercionResult) -> None:
    if result.rejected == 0:
        return

    logger.warning(f"rejected {result.rejected} {schema.kind} records")
    for sample in result.samples:
        logger.warning(f"  {sample.location}: {sample.field}: {sample.reason}")


async def _load(
    pipeline: Pipeline,
    writer: DataWriter,
    schema: EntitySchema,
    table_name: str,
    report: RunReport,
) -> None:
    result = await read_and_coerce(pipeline, schema, report)
    report.record_coercion(result)

    logger.info(
        f"{schema.kind}: read {report.read}, coerced {report.coerced}, rejected {report.rejected}"
    )
    _log_rejections(schema, result)

    if report.read == 0:
        logger.info(f"no {schema.kind} records found in {pipeline.source_dir}")
        if pipeline.mode == LoadMode.FULL_REFRESH:
            # rebuilding from nothing leaves an empty table
            async with table_lock(writer, table_name):
                report.watermark_before = await writer.max_watermark(
                    table_name, schema.watermark
                )
                await writer.replace_table(
                    table_name, records_to_table([], schema), schema
                )
        return

    if result.coerced == 0:
        # an all-rejected batch never reaches the writer, not even to rebuild the table
        report.status = RunStatus.FAILED
        report.error = f"all {report.read} {schema.kind} records were rejected"
        logger.error(report.error)
        return

    data = await asyncio.to_thread(records_to_table, result.records, schema)

    async with table_lock(writer, table_name):
        watermark = await writer.max_watermark(table_name, schema.watermark)
        report.watermark_before = watermark

        if pipeline.mode == LoadMode.INCREMENTAL:
            candidates = await asyncio.to_thread(
                select_candidates,
                data,
                schema,
                pipeline.mode,
                watermark,
                pipeline.strict_watermark,
            )
            existing = await writer.existing_keys(
                table_name, schema.unique_key, candidates.keys
            )
            plan = await asyncio.to_thread(build_plan, candidates, existing)
            report.record_plan(plan.stats)

            if plan.table.num_rows > 0:
                await writer.append(table_name, plan.table, schema)
        else:
            candidates = await asyncio.to_thread(
                select_candidates, data, schema, pipeline.mode, None
            )
            plan = await asyncio.to_thread(build_plan, candidates, ())
            report.record_plan(plan.stats)

            await writer.replace_table(table_name, plan.table, schema)

        report.inserted = plan.stats.to_insert

    if pipeline.mode == LoadMode.FULL_REFRESH or watermark is None:
        report.watermark_after = plan.max_watermark
    elif plan.max_watermark is not None:
        report.watermark_after = max(watermark, plan.max_watermark)
    else:
        report.watermark_after = watermark


async def run_pipeline(
    pipeline: Pipeline,
    writer: DataWriter,
    pipeline_name: Optional[str] = None,
    run_id: Optional[str] = None,
) -> RunReport:
    """Load one entity kind into its table.

    Raises a `WarehouseError` on fatal failures with the partial report
    attached as `.report`. Coercion rejections are not fatal; a run whose
    records are all rejected is returned with status `failed`.
    """
    schema = get_schema(pipeline.entity)
    table_name = pipeline.table or schema.table_name
    pipeline_name = pipeline_name or schema.kind

    report = RunReport(entity_kind=schema.kind, table=table_name, mode=pipeline.mode)
    if run_id is not None:
        report.run_id = run_id
    if pipeline.mode == LoadMode.INCREMENTAL:
        report.assumptions.append(OUT_OF_ORDER_ASSUMPTION)

    logger.info(
        f"starting {pipeline.mode.value} load of {schema.kind} into {table_name} "
        f"({pipeline_name}, run {report.run_id})"
    )

    try:
        if pipeline.timeout is not None:
            await asyncio.wait_for(
                _load(pipeline, writer, schema, table_name, report),
                timeout=pipeline.timeout,
            )
        else:
            await _load(pipeline, writer, schema, table_name, report)
    except asyncio.TimeoutError:
        err = LoadTimeoutError(
            f"{pipeline_name} did not finish within {pipeline.timeout} seconds"
        )
        report.fail(err)
        err.report = report.finish()
        logger.error(f"{pipeline_name} failed: {report.error}")
        raise err from None
    except WarehouseError as e:
        report.fail(e)
        e.report = report.finish()
        logger.error(f"{pipeline_name} failed: {report.error}")
        raise

    report.finish()

    logger.info(
        f"finished {pipeline_name} with status {report.status.value}: "
        f"inserted {report.inserted}, skipped {report.skipped_duplicate} stored and "
        f"{report.skipped_in_batch} in-batch duplicates, {report.late} late, "
        f"in {report.elapsed_seconds:.2f}s"
    )

    return report


def _failed_report(pipeline: Pipeline, run_id: str, error: BaseException) -> RunReport:
    report = RunReport(
        entity_kind=pipeline.entity,
        table=pipeline.table or pipeline.entity,
        mode=pipeline.mode,
        run_id=run_id,
    )
    report.fail(error)
    return report.finish()


async def _run_reported(
    name: str, pipeline: Pipeline, writer: DataWriter, run_id: str
) -> RunReport:
    try:
        return await run_pipeline(pipeline, writer, name, run_id)
    except WarehouseError as e:
        if e.report is not None:
            return e.report
        return _failed_report(pipeline, run_id, e)
    except Exception as e:
        logger.exception(f"{name} failed with an unexpected error")
        return _failed_report(pipeline, run_id, e)


async def run_pipelines(
    config: Config,
    writer: Optional[DataWriter] = None,
    names: Optional[Sequence[str]] = None,
    mode: Optional[LoadMode] = None,
) -> Dict[str, RunReport]:
    """Run the selected pipelines concurrently, one report per pipeline.

    Failures are captured in the reports instead of raised, so one failing
    entity kind doesn't stop the others.
    """
    names = list(names) if names else list(config.pipelines)
    unknown = [n for n in names if n not in config.pipelines]
    if unknown:
        raise ConfigError(f"unknown pipelines: {', '.join(unknown)}")

    owns_writer = writer is None
    if writer is None:
        writer = create_writer(config.writer)

    # reports of one invocation share a run id
    run_id = uuid.uuid4().hex
    tasks: Dict[str, asyncio.Task] = {}
    try:
        for name in names:
            pipeline = config.pipelines[name]
            if mode is not None:
                pipeline = dataclasses.replace(pipeline, mode=mode)

            tasks[name] = asyncio.create_task(
                _run_reported(name, pipeline, writer, run_id),
                name=f"load {name}",
            )

        reports = {}
        for name, task in tasks.items():
            reports[name] = await task
    except BaseException:
        # cancel sibling loads before the writer is closed
        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)
        raise
    finally:
        if owns_writer:
            await writer.close()

    return reports


__all__ = ["run_pipeline", "run_pipelines", "read_and_coerce", "table_lock"]
