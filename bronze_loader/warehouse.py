"""
Warehouse backends for the Bronze Loader.

Provides a unified interface over DuckDB (local development) and
BigQuery (production) for the handful of operations a bronze load needs:
namespace/table existence and creation, truncate, bulk load and row count.

The bulk load is a black box to the caller: given a source file, a
target table and format options it returns the number of rows inserted
or raises. Fields are matched to table columns by position, using the
target table's own column types, so the file never decides the schema.
"""

from pathlib import Path
from typing import Protocol

import polars as pl
import structlog

from bronze_loader.config import Column, Config, FormatOptions
from bronze_loader.errors import ConfigError

log = structlog.get_logger()


class Warehouse(Protocol):
    """
    Protocol defining the warehouse interface.

    Namespaces are DuckDB schemas or BigQuery datasets. Table names are
    always namespaced ("bronze.crm_cust_info").
    """

    def schema_exists(self, namespace: str) -> bool:
        ...

    def create_schema(self, namespace: str) -> None:
        ...

    def table_exists(self, table: str) -> bool:
        ...

    def create_table(self, table: str, columns: tuple[Column, ...]) -> None:
        """Create a table with all-nullable columns and no keys."""
        ...

    def truncate(self, table: str) -> None:
        ...

    def bulk_load(self, source_path: Path, table: str, options: FormatOptions) -> int:
        """Load a delimited file into a table, returning rows inserted."""
        ...

    def count_rows(self, table: str) -> int:
        ...

    def close(self) -> None:
        ...


def _quote(table: str) -> str:
    """Quote a dotted identifier for DuckDB: bronze.x -> "bronze"."x"."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in table.split("."))


# DuckDB column type -> polars dtype used while parsing the file.
# Anything not listed is read as text and cast by DuckDB on insert.
_POLARS_TYPES = {
    "TINYINT": pl.Int64,
    "SMALLINT": pl.Int64,
    "INTEGER": pl.Int64,
    "BIGINT": pl.Int64,
    "DATE": pl.Date,
    "DOUBLE": pl.Float64,
    "FLOAT": pl.Float64,
}

_DUCKDB_TYPES = {
    "int": "INTEGER",
    "date": "DATE",
    "string": "VARCHAR",
}


class DuckDBWarehouse:
    """
    DuckDB warehouse implementation.

    Used for local development and tests. The source file is parsed with
    Polars and inserted through Arrow, which DuckDB reads without copying.

    Every operation runs on its own cursor so that loads running on
    worker threads never share a connection handle.
    """

    def __init__(self, db_path: str):
        """
        Open (or create) the DuckDB database.

        Args:
            db_path: Path to the DuckDB database file, or ":memory:"
        """
        import duckdb

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.conn = duckdb.connect(db_path)

    def schema_exists(self, namespace: str) -> bool:
        with self.conn.cursor() as cur:
            row = cur.execute(
                """
                SELECT 1 FROM information_schema.schemata
                WHERE catalog_name = current_database() AND schema_name = ?
                """,
                [namespace],
            ).fetchone()
        return row is not None

    def create_schema(self, namespace: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {_quote(namespace)}")

    def table_exists(self, table: str) -> bool:
        schema, _, name = table.partition(".")
        with self.conn.cursor() as cur:
            row = cur.execute(
                """
                SELECT 1 FROM information_schema.tables
                WHERE table_catalog = current_database()
                  AND table_schema = ? AND table_name = ?
                """,
                [schema, name],
            ).fetchone()
        return row is not None

    def create_table(self, table: str, columns: tuple[Column, ...]) -> None:
        column_defs = []
        for col in columns:
            col_type = _DUCKDB_TYPES[col.type]
            if col.type == "string" and col.length:
                col_type = f"{col_type}({col.length})"
            column_defs.append(f"{_quote(col.name)} {col_type}")

        with self.conn.cursor() as cur:
            cur.execute(f"CREATE TABLE IF NOT EXISTS {_quote(table)} ({', '.join(column_defs)})")

    def truncate(self, table: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {_quote(table)}")

    def _table_schema(self, table: str) -> dict[str, type[pl.DataType]]:
        """Polars parse schema built from the target table's columns, in order."""
        with self.conn.cursor() as cur:
            described = cur.execute(f"DESCRIBE {_quote(table)}").fetchall()
        # DESCRIBE rows: (column_name, column_type, null, key, default, extra)
        return {
            name: _POLARS_TYPES.get(col_type.split("(")[0].upper(), pl.Utf8)
            for name, col_type, *_ in described
        }

    def bulk_load(self, source_path: Path, table: str, options: FormatOptions) -> int:
        """
        Load a delimited file into a DuckDB table.

        The header (and anything else before ``options.first_row``) is
        skipped. Empty fields load as NULL. With ``options.table_lock``
        the insert runs in an explicit transaction, so the table is
        either fully loaded or left as the truncate left it.

        Args:
            source_path: CSV file to load
            table: Namespaced target table
            options: Delimiters, header handling, quoting and encoding

        Returns:
            Number of rows inserted

        Raises:
            FileNotFoundError: If the source file does not exist
        """
        source_path = Path(source_path)
        if not source_path.is_file():
            raise FileNotFoundError(f"Source file not found: {source_path}")

        schema = self._table_schema(table)
        df = pl.read_csv(
            source_path,
            has_header=False,
            skip_rows=options.skip_rows,
            separator=options.field_delimiter,
            eol_char=options.record_delimiter,
            quote_char=options.quote_char,
            encoding=options.encoding,
            schema=schema,
            raise_if_empty=False,
        )

        if df.height == 0:
            log.debug("bulk_load_empty_file", table=table, source=str(source_path))
            return 0

        with self.conn.cursor() as cur:
            cur.register("bronze_batch", df)
            try:
                if options.table_lock:
                    cur.begin()
                try:
                    cur.execute(f"INSERT INTO {_quote(table)} SELECT * FROM bronze_batch")
                except Exception:
                    if options.table_lock:
                        cur.rollback()
                    raise
                if options.table_lock:
                    cur.commit()
            finally:
                cur.unregister("bronze_batch")

        return df.height

    def count_rows(self, table: str) -> int:
        with self.conn.cursor() as cur:
            return cur.execute(f"SELECT COUNT(*) FROM {_quote(table)}").fetchone()[0]

    def close(self) -> None:
        self.conn.close()


_BIGQUERY_TYPES = {
    "int": "INT64",
    "date": "DATE",
    "string": "STRING",
}

_BIGQUERY_ENCODINGS = {
    "utf8": "UTF-8",
    "utf8-lossy": "UTF-8",
    "latin1": "ISO-8859-1",
}


class BigQueryWarehouse:
    """
    BigQuery warehouse implementation.

    Used in production. Each layer namespace is a dataset in the project.
    Bulk loads go through a CSV load job read straight from the local
    file; BigQuery applies a load job atomically, so ``table_lock`` has
    nothing further to request.
    """

    def __init__(self, project: str, location: str = "EU"):
        """
        Initialise the BigQuery client.

        Args:
            project: GCP project ID (the "database")
            location: Location new datasets are created in
        """
        from google.cloud import bigquery

        self.project = project
        self.location = location
        self.client = bigquery.Client(project=project, location=location)

    def _ref(self, name: str) -> str:
        return f"{self.project}.{name}"

    def schema_exists(self, namespace: str) -> bool:
        from google.cloud.exceptions import NotFound

        try:
            self.client.get_dataset(self._ref(namespace))
            return True
        except NotFound:
            return False

    def create_schema(self, namespace: str) -> None:
        from google.cloud import bigquery

        dataset = bigquery.Dataset(self._ref(namespace))
        dataset.location = self.location
        self.client.create_dataset(dataset, exists_ok=True)

    def table_exists(self, table: str) -> bool:
        from google.cloud.exceptions import NotFound

        try:
            self.client.get_table(self._ref(table))
            return True
        except NotFound:
            return False

    def create_table(self, table: str, columns: tuple[Column, ...]) -> None:
        from google.cloud import bigquery

        schema = [
            bigquery.SchemaField(
                col.name,
                _BIGQUERY_TYPES[col.type],
                mode="NULLABLE",
                max_length=col.length if col.type == "string" else None,
            )
            for col in columns
        ]
        self.client.create_table(bigquery.Table(self._ref(table), schema=schema), exists_ok=True)

    def truncate(self, table: str) -> None:
        self.client.query(f"TRUNCATE TABLE `{self._ref(table)}`").result()

    def bulk_load(self, source_path: Path, table: str, options: FormatOptions) -> int:
        """
        Load a delimited file into BigQuery with a CSV load job.

        Waits for the job to finish; ``job.result()`` raises if BigQuery
        rejected the file.

        Raises:
            FileNotFoundError: If the source file does not exist
            ValueError: If the record delimiter is not a newline
        """
        from google.cloud import bigquery

        if options.record_delimiter != "\n":
            raise ValueError(
                f"BigQuery CSV loads only support newline record delimiters, "
                f"got {options.record_delimiter!r}"
            )

        source_path = Path(source_path)
        if not source_path.is_file():
            raise FileNotFoundError(f"Source file not found: {source_path}")

        job_config = bigquery.LoadJobConfig(
            source_format=bigquery.SourceFormat.CSV,
            skip_leading_rows=options.skip_rows,
            field_delimiter=options.field_delimiter,
            quote_character=options.quote_char or "",
            encoding=_BIGQUERY_ENCODINGS.get(options.encoding, options.encoding.upper()),
            write_disposition=bigquery.WriteDisposition.WRITE_APPEND,
        )

        with source_path.open("rb") as f:
            load_job = self.client.load_table_from_file(f, self._ref(table), job_config=job_config)

        load_job.result()
        return load_job.output_rows or 0

    def count_rows(self, table: str) -> int:
        rows = self.client.query(f"SELECT COUNT(*) FROM `{self._ref(table)}`").result()
        return next(iter(rows))[0]

    def close(self) -> None:
        self.client.close()


def create_warehouse(config: Config) -> Warehouse:
    """
    Create the warehouse backend named by the configuration.

    Raises:
        ConfigError: If the BigQuery backend is selected without a project
    """
    if config.backend == "bigquery":
        if not config.gcp_project:
            raise ConfigError("GCP_PROJECT is required for the bigquery backend")
        return BigQueryWarehouse(config.gcp_project, config.bq_location)

    return DuckDBWarehouse(config.duckdb_path)
