"""
Bronze Loader - truncate-and-load ingestion for the bronze layer.

Loads the six raw CRM/ERP extract files into their bronze tables, one
table at a time, and reports status, row counts and timings per table.
A failure on one table never stops the others.

Usage:
    bronze-loader provision
    bronze-loader load
    python -m bronze_loader load --format json

Environment Variables:
    WAREHOUSE_BACKEND: "duckdb" or "bigquery" (default: duckdb)
    DUCKDB_PATH: DuckDB database file (default: datawarehouse.duckdb)
    GCP_PROJECT: GCP project ID (required for bigquery)
    SOURCE_ROOT: Directory holding source_crm/ and source_erp/
    TABLE_CONFIG_PATH: Override for the packaged tables.yaml
    LOADER_WORKERS: Thread count (default: 1)
"""

__version__ = "0.1.0"
