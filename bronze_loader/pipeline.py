"""
Bronze load orchestration.

For each entry of the table catalog, in order:
1. Check the target table exists
2. Truncate it
3. Bulk-load the source file into it (the only timed call)
4. Count the rows now in the table

Key resilience principles:
1. A table's failure is caught at the table boundary and recorded as a
   Failed StepResult; the run moves on to the next table
2. Every run yields exactly one StepResult per catalog entry
3. Nothing is retried and nothing is rolled back across tables
4. Reporter errors are not caught; a broken reporter stops the run
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

import structlog

from bronze_loader.config import Config, LoadEntry, load_entries
from bronze_loader.errors import (
    BronzeLoadError,
    LoadFailure,
    ProvisioningMissing,
    RowCountFailure,
    TruncateFailure,
)
from bronze_loader.logconfig import configure_logging
from bronze_loader.report import Reporter, TextReporter
from bronze_loader.results import RunSummary, StepResult, StepStatus
from bronze_loader.warehouse import Warehouse, create_warehouse

log = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(since: float) -> int:
    return max(0, int((time.monotonic() - since) * 1000))


def _error_text(error: Exception) -> str:
    return str(error) or type(error).__name__


def load_entry(step_number: int, entry: LoadEntry, warehouse: Warehouse) -> StepResult:
    """
    Truncate and reload a single bronze table.

    Never raises for a failure inside the warehouse: each stage's error
    is wrapped in its failure kind and turned into a Failed StepResult.

    Args:
        step_number: 1-based position of the entry in the catalog
        entry: Table, source file and format to load
        warehouse: Backend to run against

    Returns:
        The finished StepResult
    """
    table = entry.target_table
    started_at = _now()
    duration_ms = 0

    bound = log.bind(step=step_number, table=table, source=str(entry.source_path))
    bound.info("step_started")

    try:
        try:
            exists = warehouse.table_exists(table)
        except Exception as e:
            raise ProvisioningMissing(table, _error_text(e)) from e
        if not exists:
            raise ProvisioningMissing(
                table, f"Table {table} does not exist; run provisioning first"
            )

        try:
            warehouse.truncate(table)
        except Exception as e:
            raise TruncateFailure(table, _error_text(e)) from e

        load_started = time.monotonic()
        try:
            inserted = warehouse.bulk_load(entry.source_path, table, entry.format_options)
        except Exception as e:
            raise LoadFailure(table, _error_text(e)) from e
        finally:
            duration_ms = _elapsed_ms(load_started)

        try:
            rows = warehouse.count_rows(table)
        except Exception as e:
            raise RowCountFailure(table, _error_text(e)) from e

    except BronzeLoadError as e:
        bound.error(
            "step_failed",
            error=e.message,
            error_kind=e.kind,
            cause=type(e.__cause__).__name__ if e.__cause__ else None,
        )
        return StepResult(
            step_number=step_number,
            table_name=table,
            source_path=str(entry.source_path),
            status=StepStatus.FAILED,
            started_at=started_at,
            completed_at=_now(),
            duration_ms=duration_ms,
            error_message=e.message,
            error_kind=e.kind,
        )

    if rows != inserted:
        # Something else wrote to the table between truncate and count
        bound.warning("row_count_mismatch", loaded=inserted, counted=rows)

    bound.info("step_succeeded", rows=rows, duration_ms=duration_ms)
    return StepResult(
        step_number=step_number,
        table_name=table,
        source_path=str(entry.source_path),
        status=StepStatus.SUCCESS,
        started_at=started_at,
        completed_at=_now(),
        duration_ms=duration_ms,
        rows_inserted=rows,
    )


def run_load(
    entries: list[LoadEntry],
    warehouse: Warehouse,
    reporter: Reporter | None = None,
    workers: int = 1,
) -> RunSummary:
    """
    Load every entry and return the run's summary.

    With ``workers`` > 1 the tables load on a thread pool. Results are
    stored and reported in catalog order: a table is reported as soon as
    it and every table before it have finished.

    Args:
        entries: Fixed, ordered table catalog
        warehouse: Backend to load into
        reporter: Optional live reporter
        workers: Number of tables loaded at once

    Returns:
        Finalised RunSummary with one StepResult per entry
    """
    summary = RunSummary(total_started_at=_now())
    run_started = time.monotonic()

    log.info("run_started", tables=len(entries), workers=workers)
    if reporter:
        reporter.run_started(summary)

    if workers <= 1:
        for step_number, entry in enumerate(entries, start=1):
            if reporter:
                reporter.step_started(step_number, entry)
            result = load_entry(step_number, entry, warehouse)
            summary.add(result)
            if reporter:
                reporter.step_finished(result)
    else:
        pool_size = max(1, min(workers, len(entries)))
        finished: dict[int, StepResult] = {}
        next_step = 1
        with ThreadPoolExecutor(max_workers=pool_size) as executor:
            futures = [
                executor.submit(load_entry, step_number, entry, warehouse)
                for step_number, entry in enumerate(entries, start=1)
            ]
            for future in as_completed(futures):
                result = future.result()
                finished[result.step_number] = result

                # Release the longest finished prefix of the catalog
                while next_step in finished:
                    if reporter:
                        reporter.step_started(next_step, entries[next_step - 1])
                    summary.add(finished.pop(next_step))
                    if reporter:
                        reporter.step_finished(summary.steps[-1])
                    next_step += 1

    summary.finalise(_now(), _elapsed_ms(run_started))

    log.info(
        "run_complete",
        tables_succeeded=len(summary.succeeded),
        tables_failed=len(summary.failed),
        total_rows=summary.total_rows,
        total_duration_ms=summary.total_duration_ms,
    )
    if reporter:
        reporter.run_finished(summary)

    return summary


def run() -> RunSummary:
    """
    Load the bronze layer using the environment's configuration.

    Prints the human-readable report to stdout, logs to stderr, and
    returns the summary.
    """
    config = Config.from_env()
    configure_logging(config.log_level, config.log_format)
    entries = load_entries(config)
    warehouse = create_warehouse(config)
    try:
        return run_load(entries, warehouse, reporter=TextReporter(), workers=config.workers)
    finally:
        warehouse.close()
