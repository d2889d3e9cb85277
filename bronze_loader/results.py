"""
Outcome records for a bronze load run.

A StepResult is produced once per table and never changes afterwards.
A RunSummary collects the StepResults of one invocation, in the fixed
table order, and carries the run-level timings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class StepStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of loading one bronze table.

    ``rows_inserted`` is set only on success and ``error_message`` only
    on failure. ``duration_ms`` covers the bulk-load call alone, not the
    truncate or the row count.
    """
    step_number: int            # 1-based position in the table catalog
    table_name: str             # Namespaced target table
    source_path: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
    rows_inserted: int | None = None
    error_message: str | None = None
    error_kind: str | None = None  # Which stage failed, e.g. "LoadFailure"

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step_number,
            "table": self.table_name,
            "source": self.source_path,
            "status": self.status.value,
            "rows_inserted": self.rows_inserted,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


@dataclass
class RunSummary:
    """Per-run report: one StepResult per catalog entry, in catalog order."""
    total_started_at: datetime
    steps: list[StepResult] = field(default_factory=list)
    total_completed_at: datetime | None = None
    total_duration_ms: int | None = None

    def add(self, result: StepResult) -> None:
        if self.total_completed_at is not None:
            raise RuntimeError("RunSummary is already finalised")
        self.steps.append(result)

    def finalise(self, completed_at: datetime, duration_ms: int) -> None:
        self.total_completed_at = completed_at
        self.total_duration_ms = duration_ms

    @property
    def succeeded(self) -> list[StepResult]:
        return [s for s in self.steps if s.succeeded]

    @property
    def failed(self) -> list[StepResult]:
        return [s for s in self.steps if not s.succeeded]

    @property
    def total_rows(self) -> int:
        return sum(s.rows_inserted or 0 for s in self.succeeded)

    @property
    def ok(self) -> bool:
        """True when every table loaded."""
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.total_started_at.isoformat(),
            "completed_at": (
                self.total_completed_at.isoformat() if self.total_completed_at else None
            ),
            "total_duration_ms": self.total_duration_ms,
            "tables_succeeded": len(self.succeeded),
            "tables_failed": len(self.failed),
            "total_rows": self.total_rows,
            "steps": [s.to_dict() for s in self.steps],
        }
