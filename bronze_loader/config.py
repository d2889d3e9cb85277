"""
Configuration management for the Bronze Loader.

This module handles:
- Loading environment variables into a typed Config dataclass
- Parsing the table catalog YAML (tables.yaml) into LoadEntry objects
- The column shapes and format options each bronze table is loaded with

The table catalog is static configuration shipped with the package.
Changing which tables load, or in which order, means editing tables.yaml
and redeploying; it is not a runtime argument.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from bronze_loader.errors import ConfigError
from bronze_loader.logconfig import LOG_LEVELS

DEFAULT_TABLE_CONFIG = Path(__file__).with_name("tables.yaml")

COLUMN_TYPES = {"int", "string", "date"}

# "string(50)" -> ("string", "50"); "int" -> ("int", None)
_TYPE_PATTERN = re.compile(r"^\s*(\w+)\s*(?:\(\s*(\d+)\s*\))?\s*$")


@dataclass(frozen=True)
class Column:
    """A single column of a bronze table. All bronze columns are nullable."""
    name: str
    type: str               # "int", "string" or "date"
    length: int | None = None  # Only meaningful for string columns


@dataclass(frozen=True)
class FormatOptions:
    """
    How a source file is parsed by the bulk-load engine.

    Source extracts are plain comma-separated files with a header row.
    Fields may be wrapped in double quotes; a doubled quote inside a
    quoted field is a literal quote.
    """
    field_delimiter: str = ","
    record_delimiter: str = "\n"
    first_row: int = 2          # 1-based; 2 skips the header row
    table_lock: bool = True     # Request whole-table locking during the load
    quote_char: str | None = '"'
    encoding: str = "utf8"

    @property
    def skip_rows(self) -> int:
        """Number of leading rows that are not data."""
        return self.first_row - 1


@dataclass(frozen=True)
class LoadEntry:
    """Static pairing of one source file with one bronze table."""
    target_table: str           # Namespaced identifier, e.g. "bronze.crm_cust_info"
    source_path: Path
    columns: tuple[Column, ...]
    format_options: FormatOptions = field(default_factory=FormatOptions)

    @property
    def namespace(self) -> str:
        return self.target_table.partition(".")[0]

    @property
    def table_name(self) -> str:
        return self.target_table.partition(".")[2]


@dataclass
class Catalog:
    """Everything tables.yaml declares: layer namespaces and load entries."""
    namespaces: list[str]
    entries: list[LoadEntry]


@dataclass
class Config:
    """
    Application configuration loaded from environment variables.

    Supports two backends:
    - duckdb: Local development, single database file
    - bigquery: Production, one dataset per layer namespace
    """
    backend: str                # "duckdb" or "bigquery"
    source_root: str            # Directory holding source_crm/ and source_erp/
    table_config_path: str      # tables.yaml to load the catalog from
    workers: int                # Parallel load threads (1 = sequential)

    # DuckDB-specific configuration
    duckdb_path: str = "datawarehouse.duckdb"

    # BigQuery-specific configuration
    gcp_project: str | None = None
    bq_location: str = "EU"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Optional (all have defaults):
            WAREHOUSE_BACKEND: "duckdb" or "bigquery" (default: duckdb)
            DUCKDB_PATH: Path to database file (default: datawarehouse.duckdb)
            GCP_PROJECT: GCP project ID (required for bigquery)
            BQ_LOCATION: BigQuery location (default: EU)
            SOURCE_ROOT: Source file root (default: datasets)
            TABLE_CONFIG_PATH: Table catalog (default: packaged tables.yaml)
            LOADER_WORKERS: Thread count (default: 1)
            LOG_LEVEL: Log level (default: INFO)
            LOG_FORMAT: "console" or "json" (default: console)

        Raises:
            ConfigError: If a value is present but invalid
        """
        backend = os.environ.get("WAREHOUSE_BACKEND", "duckdb").lower()
        if backend not in ("duckdb", "bigquery"):
            raise ConfigError(f"Unknown WAREHOUSE_BACKEND: {backend!r}")

        raw_workers = os.environ.get("LOADER_WORKERS", "1")
        try:
            workers = int(raw_workers)
        except ValueError:
            raise ConfigError(f"LOADER_WORKERS must be an integer, got {raw_workers!r}") from None
        if workers < 1:
            raise ConfigError(f"LOADER_WORKERS must be at least 1, got {workers}")

        log_format = os.environ.get("LOG_FORMAT", "console").lower()
        if log_format not in ("console", "json"):
            raise ConfigError(f"Unknown LOG_FORMAT: {log_format!r}")

        log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Unknown LOG_LEVEL: {log_level!r}, expected one of {', '.join(LOG_LEVELS)}"
            )

        return cls(
            backend=backend,
            source_root=os.environ.get("SOURCE_ROOT", "datasets"),
            table_config_path=os.environ.get("TABLE_CONFIG_PATH", str(DEFAULT_TABLE_CONFIG)),
            workers=workers,
            duckdb_path=os.environ.get("DUCKDB_PATH", "datawarehouse.duckdb"),
            gcp_project=os.environ.get("GCP_PROJECT"),
            bq_location=os.environ.get("BQ_LOCATION", "EU"),
            log_level=log_level,
            log_format=log_format,
        )


def parse_column(name: str, spec: str) -> Column:
    """
    Parse a column declaration such as ``string(50)`` or ``int``.

    Args:
        name: Column name
        spec: Type declaration from tables.yaml

    Returns:
        The parsed Column

    Raises:
        ConfigError: If the type is unknown or malformed
    """
    match = _TYPE_PATTERN.match(str(spec))
    if not match or match.group(1).lower() not in COLUMN_TYPES:
        raise ConfigError(f"Invalid type for column {name}: {spec!r}")

    col_type = match.group(1).lower()
    length = int(match.group(2)) if match.group(2) else None
    if col_type == "string" and length is None:
        length = 50
    elif col_type != "string" and length is not None:
        raise ConfigError(f"Only string columns take a length: {name} {spec!r}")

    return Column(name=name, type=col_type, length=length)


def load_catalog(config_path: str | Path, source_root: str | Path) -> Catalog:
    """
    Load the table catalog from a YAML file.

    Source paths in the file are relative to ``source_root`` unless they
    are absolute. Per-table ``format`` keys override the file-level
    ``format`` defaults.

    Args:
        config_path: Path to the catalog YAML
        source_root: Directory relative source paths resolve against

    Returns:
        Catalog with namespaces and entries in declaration order

    Example YAML:

        namespaces: [bronze, silver, gold]
        format:
          field_delimiter: ","
          first_row: 2
        tables:
          - table: bronze.erp_loc_a101
            source: source_erp/LOC_A101.csv
            columns:
              CID: string(50)
              CNTRY: string(50)
    """
    try:
        raw = yaml.safe_load(Path(config_path).read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read table catalog {config_path}: {e}") from e

    if not isinstance(raw, dict) or not raw.get("tables"):
        raise ConfigError(f"Table catalog {config_path} declares no tables")

    defaults = raw.get("format") or {}
    root = Path(source_root)
    entries = []
    seen = set()

    for item in raw["tables"]:
        try:
            target = item["table"]
            source = Path(item["source"])
            columns = tuple(parse_column(n, t) for n, t in item["columns"].items())
            options = FormatOptions(**{**defaults, **(item.get("format") or {})})
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"Malformed table entry in {config_path}: {item!r} ({e})") from e

        if "." not in target:
            raise ConfigError(f"Table name must be namespaced (schema.table): {target}")
        if target in seen:
            raise ConfigError(f"Table declared twice in {config_path}: {target}")
        if options.first_row < 1:
            raise ConfigError(f"first_row must be >= 1 for {target}")
        seen.add(target)

        entries.append(LoadEntry(
            target_table=target,
            source_path=source if source.is_absolute() else root / source,
            columns=columns,
            format_options=options,
        ))

    namespaces = list(raw.get("namespaces") or [])
    for entry in entries:
        if entry.namespace not in namespaces:
            namespaces.append(entry.namespace)

    return Catalog(namespaces=namespaces, entries=entries)


def load_entries(config: Config) -> list[LoadEntry]:
    """Load the fixed, ordered LoadEntry list for a configuration."""
    return load_catalog(config.table_config_path, config.source_root).entries
