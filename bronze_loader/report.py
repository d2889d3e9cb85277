"""
Human-readable progress reporting for bronze load runs.

Reporters only read StepResults and RunSummaries; they never change
them. Output is written as each table finishes, so a long run shows
progress while it is still going.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Protocol, TextIO

from bronze_loader.config import LoadEntry
from bronze_loader.results import RunSummary, StepResult

BANNER = "=" * 57
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Stages each failure kind got past before failing
_TRUNCATED = {"LoadFailure", "RowCountFailure"}
_LOADED = {"RowCountFailure"}


class Reporter(Protocol):
    """Callbacks the orchestrator makes over the course of a run."""

    def run_started(self, summary: RunSummary) -> None:
        ...

    def step_started(self, step_number: int, entry: LoadEntry) -> None:
        ...

    def step_finished(self, result: StepResult) -> None:
        ...

    def run_finished(self, summary: RunSummary) -> None:
        ...


def _fmt(ts: datetime | None) -> str:
    return ts.strftime(TIMESTAMP_FORMAT) if ts else "-"


class TextReporter:
    """
    Plain-text console report.

    Example output for one table:

        Step 1: bronze.crm_cust_info
          Action : Truncate Table
          Status : Table truncated successfully
          Action : Load CSV data from cust_info.csv
          Status : Data loaded successfully
          Rows Inserted : 18493
          Time Taken    : 152 ms
          Started at    : 2024-05-01 06:00:00
          Completed at  : 2024-05-01 06:00:01
    """

    def __init__(self, stream: TextIO | None = None):
        # Resolved per write so redirected stdout is honoured
        self._stream = stream

    def _write(self, line: str = "") -> None:
        stream = self._stream or sys.stdout
        stream.write(line + "\n")
        stream.flush()

    def run_started(self, summary: RunSummary) -> None:
        self._write(BANNER)
        self._write("  STARTING BRONZE LAYER LOAD PROCESS")
        self._write(f"  Start Time: {_fmt(summary.total_started_at)}")
        self._write(BANNER)

    def step_started(self, step_number: int, entry: LoadEntry) -> None:
        self._write()
        self._write(f"Step {step_number}: {entry.target_table}")

    def step_finished(self, result: StepResult) -> None:
        source_name = Path(result.source_path).name

        if result.succeeded or result.error_kind in _TRUNCATED:
            self._write("  Action : Truncate Table")
            self._write("  Status : Table truncated successfully")
            self._write(f"  Action : Load CSV data from {source_name}")
        elif result.error_kind == "TruncateFailure":
            self._write("  Action : Truncate Table")

        if result.succeeded or result.error_kind in _LOADED:
            self._write("  Status : Data loaded successfully")

        if result.succeeded:
            self._write(f"  Rows Inserted : {result.rows_inserted}")
            self._write(f"  Time Taken    : {result.duration_ms} ms")
        else:
            self._write(f"  ERROR ({result.error_kind}) : {result.error_message}")

        self._write(f"  Started at    : {_fmt(result.started_at)}")
        self._write(f"  Completed at  : {_fmt(result.completed_at)}")

    def run_finished(self, summary: RunSummary) -> None:
        self._write(BANNER)
        if summary.ok:
            self._write("  BRONZE LAYER LOAD COMPLETED SUCCESSFULLY")
        else:
            self._write(
                f"  BRONZE LAYER LOAD COMPLETED WITH {len(summary.failed)} "
                f"FAILED TABLE(S) OF {len(summary.steps)}"
            )
            for step in summary.failed:
                self._write(f"    - {step.table_name}: {step.error_kind}")
        self._write(f"  Start Time : {_fmt(summary.total_started_at)}")
        self._write(f"  End Time   : {_fmt(summary.total_completed_at)}")
        self._write(f"  Total Time : {summary.total_duration_ms} ms")
        self._write(f"  Rows Loaded: {summary.total_rows}")
        self._write(BANNER)


def render_json(summary: RunSummary) -> str:
    """Render a finished run as a JSON document."""
    return json.dumps(summary.to_dict(), indent=2)
