"""
Command line entry point for the Bronze Loader.

Usage:
    bronze-loader provision            # Create namespaces and bronze tables
    bronze-loader load                 # Truncate and reload every bronze table
    bronze-loader load --format json   # Print the run summary as JSON

Exit codes:
    0: every table loaded (or provisioning finished)
    1: at least one table failed to load
    2: configuration error, nothing was run
"""

import argparse
import dataclasses
import sys

import structlog

from bronze_loader.config import Config, load_catalog
from bronze_loader.errors import ConfigError
from bronze_loader.logconfig import configure_logging
from bronze_loader.pipeline import run_load
from bronze_loader.provision import Provisioner
from bronze_loader.report import TextReporter, render_json
from bronze_loader.warehouse import create_warehouse

log = structlog.get_logger()


def cmd_provision(config: Config) -> int:
    catalog = load_catalog(config.table_config_path, config.source_root)
    warehouse = create_warehouse(config)
    try:
        Provisioner(warehouse).provision(catalog.entries, catalog.namespaces)
    finally:
        warehouse.close()
    return 0


def cmd_load(config: Config, output: str) -> int:
    catalog = load_catalog(config.table_config_path, config.source_root)
    warehouse = create_warehouse(config)
    reporter = TextReporter() if output == "text" else None
    try:
        summary = run_load(catalog.entries, warehouse, reporter=reporter, workers=config.workers)
    finally:
        warehouse.close()

    if output == "json":
        print(render_json(summary))

    return 0 if summary.ok else 1


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bronze-loader",
        description="Load raw CRM/ERP extracts into the bronze layer.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("provision", help="Create layer namespaces and bronze tables")

    load = sub.add_parser("load", help="Truncate and reload every bronze table")
    load.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Report format (default: text)",
    )
    load.add_argument(
        "--workers",
        type=positive_int,
        default=None,
        help="Tables loaded at once (default: LOADER_WORKERS or 1)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = Config.from_env()
        if getattr(args, "workers", None) is not None:
            config = dataclasses.replace(config, workers=args.workers)
    except ConfigError as e:
        configure_logging()
        log.error("invalid_configuration", error=str(e))
        return 2

    configure_logging(config.log_level, config.log_format)
    log.info("bronze_loader_starting", command=args.command, backend=config.backend)

    try:
        if args.command == "provision":
            return cmd_provision(config)
        return cmd_load(config, args.format)
    except ConfigError as e:
        log.error("invalid_configuration", error=str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
