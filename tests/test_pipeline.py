"""
Tests for the load orchestrator: isolation, completeness, timing and
truncate-before-load, run against an in-memory DuckDB warehouse.
"""

import threading
from unittest import mock

import pytest

from bronze_loader.errors import ConfigError
from bronze_loader.pipeline import load_entry, run, run_load
from bronze_loader.results import StepStatus
from conftest import SCENARIO_ROWS, write_source


def fail_for(table, original, error):
    """Wrap a warehouse method so it raises for one table only."""
    def wrapped(*args):
        # Table is the first argument of truncate/count_rows, second of bulk_load
        if table in args:
            raise error
        return original(*args)
    return wrapped


@pytest.mark.integration
def test_all_tables_load(provisioned, entries, scenario_files):
    summary = run_load(entries, provisioned)

    assert len(summary.steps) == 6
    assert summary.ok
    assert [s.rows_inserted for s in summary.steps] == SCENARIO_ROWS
    assert [s.step_number for s in summary.steps] == [1, 2, 3, 4, 5, 6]
    assert [s.table_name for s in summary.steps] == [e.target_table for e in entries]
    assert summary.total_rows == sum(SCENARIO_ROWS)
    for step in summary.steps:
        assert step.status is StepStatus.SUCCESS
        assert step.error_message is None
        assert step.error_kind is None
        assert step.started_at <= step.completed_at


@pytest.mark.integration
def test_missing_source_file_is_isolated(provisioned, entries):
    rows = [100, 50, None, 10, 5, 4]
    for entry, count in zip(entries, rows):
        if count is not None:
            write_source(entry, count)

    summary = run_load(entries, provisioned)

    assert len(summary.steps) == 6
    assert [s.rows_inserted for s in summary.steps] == rows
    failed = summary.steps[2]
    assert failed.status is StepStatus.FAILED
    assert failed.error_kind == "LoadFailure"
    assert "not found" in failed.error_message
    assert "sales_details.csv" in failed.error_message
    assert failed.rows_inserted is None
    assert [s.table_name for s in summary.failed] == ["bronze.crm_sales_details"]
    assert not summary.ok


@pytest.mark.integration
@pytest.mark.parametrize("k", range(6))
def test_engine_failure_on_one_table(provisioned, entries, scenario_files, k):
    target = entries[k].target_table
    broken = fail_for(target, provisioned.bulk_load, RuntimeError("storage rejected batch"))

    with mock.patch.object(provisioned, "bulk_load", side_effect=broken):
        summary = run_load(entries, provisioned)

    assert len(summary.steps) == 6
    for i, step in enumerate(summary.steps):
        if i == k:
            assert step.status is StepStatus.FAILED
            assert step.error_message == "storage rejected batch"
        else:
            assert step.status is StepStatus.SUCCESS
            assert step.rows_inserted == SCENARIO_ROWS[i]


@pytest.mark.integration
def test_every_table_failing_still_completes(provisioned, entries):
    summary = run_load(entries, provisioned)

    assert len(summary.steps) == 6
    assert len(summary.failed) == 6
    assert all(s.error_message for s in summary.steps)
    assert summary.total_completed_at is not None


@pytest.mark.integration
def test_rerun_is_idempotent(provisioned, entries, scenario_files):
    first = run_load(entries, provisioned)
    second = run_load(entries, provisioned)

    assert [s.rows_inserted for s in first.steps] == [s.rows_inserted for s in second.steps]


@pytest.mark.integration
def test_truncate_before_load(provisioned, entries, scenario_files):
    run_load(entries, provisioned)
    write_source(entries[0], 7)

    summary = run_load(entries, provisioned)

    assert summary.steps[0].rows_inserted == 7
    assert provisioned.count_rows(entries[0].target_table) == 7


@pytest.mark.integration
def test_header_only_file_succeeds_with_zero_rows(provisioned, entries, scenario_files):
    write_source(entries[3], 0)

    summary = run_load(entries, provisioned)

    assert summary.steps[3].status is StepStatus.SUCCESS
    assert summary.steps[3].rows_inserted == 0


@pytest.mark.integration
def test_timing_sanity(provisioned, entries, scenario_files):
    summary = run_load(entries, provisioned)

    assert all(s.duration_ms >= 0 for s in summary.steps)
    assert summary.total_duration_ms >= sum(s.duration_ms for s in summary.steps)
    assert summary.total_started_at <= summary.total_completed_at


@pytest.mark.integration
def test_missing_table_fails_without_truncate_or_load(warehouse, entries, scenario_files):
    with mock.patch.object(warehouse, "truncate") as truncate, \
            mock.patch.object(warehouse, "bulk_load") as bulk_load:
        result = load_entry(1, entries[0], warehouse)

    assert result.status is StepStatus.FAILED
    assert result.error_kind == "ProvisioningMissing"
    assert "bronze.crm_cust_info" in result.error_message
    truncate.assert_not_called()
    bulk_load.assert_not_called()


@pytest.mark.integration
def test_truncate_failure_skips_load(provisioned, entries, scenario_files):
    target = entries[1].target_table
    broken = fail_for(target, provisioned.truncate, RuntimeError("table is locked"))

    with mock.patch.object(provisioned, "truncate", side_effect=broken), \
            mock.patch.object(provisioned, "bulk_load", wraps=provisioned.bulk_load) as bulk_load:
        summary = run_load(entries, provisioned)

    step = summary.steps[1]
    assert step.status is StepStatus.FAILED
    assert step.error_kind == "TruncateFailure"
    assert step.error_message == "table is locked"
    assert step.duration_ms == 0
    loaded_tables = [c.args[1] for c in bulk_load.call_args_list]
    assert target not in loaded_tables
    assert len(loaded_tables) == 5


@pytest.mark.integration
def test_row_count_failure_is_not_success(provisioned, entries, scenario_files):
    target = entries[4].target_table
    broken = fail_for(target, provisioned.count_rows, RuntimeError("connection reset"))

    with mock.patch.object(provisioned, "count_rows", side_effect=broken):
        summary = run_load(entries, provisioned)

    step = summary.steps[4]
    assert step.status is StepStatus.FAILED
    assert step.error_kind == "RowCountFailure"
    assert step.rows_inserted is None
    assert step.error_message == "connection reset"
    assert len(summary.succeeded) == 5


@pytest.mark.integration
def test_error_without_text_still_has_message(provisioned, entries, scenario_files):
    broken = fail_for(entries[0].target_table, provisioned.bulk_load, KeyError())

    with mock.patch.object(provisioned, "bulk_load", side_effect=broken):
        result = load_entry(1, entries[0], provisioned)

    assert result.error_message == "KeyError"


@pytest.mark.integration
def test_parallel_workers_keep_catalog_order(provisioned, entries, scenario_files):
    summary = run_load(entries, provisioned, workers=3)

    assert [s.step_number for s in summary.steps] == [1, 2, 3, 4, 5, 6]
    assert [s.rows_inserted for s in summary.steps] == SCENARIO_ROWS


@pytest.mark.integration
def test_reporter_receives_steps_in_order(provisioned, entries, scenario_files):
    reporter = mock.Mock()

    summary = run_load(entries, provisioned, reporter=reporter, workers=2)

    reporter.run_started.assert_called_once_with(summary)
    reporter.run_finished.assert_called_once_with(summary)
    started = [c.args[0] for c in reporter.step_started.call_args_list]
    finished = [c.args[0] for c in reporter.step_finished.call_args_list]
    assert started == [1, 2, 3, 4, 5, 6]
    assert finished == summary.steps


@pytest.mark.integration
def test_parallel_reporting_does_not_wait_for_whole_run(provisioned, entries, scenario_files):
    first_reported = threading.Event()
    last_table_saw_report = []
    original = provisioned.bulk_load

    def load(source_path, table, options):
        if table == entries[-1].target_table:
            last_table_saw_report.append(first_reported.wait(timeout=10))
        return original(source_path, table, options)

    reporter = mock.Mock()
    reporter.step_finished.side_effect = (
        lambda result: first_reported.set() if result.step_number == 1 else None
    )

    with mock.patch.object(provisioned, "bulk_load", side_effect=load):
        summary = run_load(entries, provisioned, reporter=reporter, workers=2)

    # Step 1 was reported while the last table was still loading
    assert last_table_saw_report == [True]
    assert summary.ok
    assert [c.args[0].step_number for c in reporter.step_finished.call_args_list] == [
        1, 2, 3, 4, 5, 6,
    ]


@pytest.mark.integration
def test_reporter_failure_aborts_run(provisioned, entries, scenario_files):
    reporter = mock.Mock()
    reporter.step_finished.side_effect = OSError("stdout closed")

    with pytest.raises(OSError):
        run_load(entries, provisioned, reporter=reporter)


@pytest.mark.integration
def test_run_reads_environment(monkeypatch, tmp_path, entries, scenario_files, source_root, capsys):
    db_path = tmp_path / "dw.duckdb"
    monkeypatch.setenv("WAREHOUSE_BACKEND", "duckdb")
    monkeypatch.setenv("DUCKDB_PATH", str(db_path))
    monkeypatch.setenv("SOURCE_ROOT", str(source_root))
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("LOG_FORMAT", "json")
    monkeypatch.delenv("TABLE_CONFIG_PATH", raising=False)
    monkeypatch.delenv("LOADER_WORKERS", raising=False)
    entries[2].source_path.unlink()

    from bronze_loader.provision import Provisioner
    from bronze_loader.warehouse import DuckDBWarehouse

    wh = DuckDBWarehouse(str(db_path))
    Provisioner(wh).provision(entries)
    wh.close()
    capsys.readouterr()

    summary = run()

    assert [s.rows_inserted for s in summary.steps] == [100, 50, None, 10, 5, 4]
    captured = capsys.readouterr()
    assert "STARTING BRONZE LAYER LOAD PROCESS" in captured.out
    # Log events go to stderr only; stdout carries just the report
    for event in ("run_started", "step_started", "step_failed", "step_succeeded", "run_complete"):
        assert event not in captured.out
        assert event in captured.err


@pytest.mark.unit
def test_run_rejects_bad_backend(monkeypatch):
    monkeypatch.setenv("WAREHOUSE_BACKEND", "oracle")

    with pytest.raises(ConfigError):
        run()
