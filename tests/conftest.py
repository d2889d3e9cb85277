"""
Shared pytest fixtures.
"""

from pathlib import Path

import pytest
import structlog

from bronze_loader.config import DEFAULT_TABLE_CONFIG, LoadEntry, load_catalog
from bronze_loader.provision import Provisioner
from bronze_loader.warehouse import DuckDBWarehouse

# Data rows per table for the standard scenario, in catalog order
SCENARIO_ROWS = [100, 50, 20, 10, 5, 4]


def sample_value(column, i: int) -> str:
    if column.type == "int":
        return str(i)
    if column.type == "date":
        return f"2024-01-{(i % 28) + 1:02d}"
    return f"{column.name.lower()}_{i}"


def write_source(entry: LoadEntry, rows: int) -> Path:
    """Write a header plus ``rows`` data rows matching the entry's columns."""
    path = entry.source_path
    path.parent.mkdir(parents=True, exist_ok=True)

    lines = [",".join(c.name for c in entry.columns)]
    for i in range(1, rows + 1):
        lines.append(",".join(sample_value(c, i) for c in entry.columns))

    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any structlog configuration a test (via main()) installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def source_root(tmp_path) -> Path:
    return tmp_path / "datasets"


@pytest.fixture
def entries(source_root) -> list[LoadEntry]:
    """The packaged six-table catalog, with sources under tmp_path."""
    return load_catalog(DEFAULT_TABLE_CONFIG, source_root).entries


@pytest.fixture
def warehouse():
    """Empty in-memory DuckDB warehouse."""
    wh = DuckDBWarehouse(":memory:")
    yield wh
    wh.close()


@pytest.fixture
def provisioned(warehouse, entries):
    """In-memory warehouse with the bronze/silver/gold schemas and bronze tables."""
    Provisioner(warehouse).provision(entries)
    return warehouse


@pytest.fixture
def scenario_files(entries):
    """Well-formed source files for every table, sized per SCENARIO_ROWS."""
    return [write_source(entry, rows) for entry, rows in zip(entries, SCENARIO_ROWS)]
