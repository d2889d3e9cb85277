"""
Schema provisioning for the layered warehouse.

Creates the layer namespaces (bronze, silver, gold) and the bronze
tables declared in the table catalog. Safe to run any number of times:
existing objects are left alone, nothing is ever dropped or altered.
"""

import structlog

from bronze_loader.config import Column, LoadEntry
from bronze_loader.warehouse import Warehouse

log = structlog.get_logger()

DEFAULT_NAMESPACES = ("bronze", "silver", "gold")


class Provisioner:
    """Idempotent creation of namespaces and tables on a warehouse."""

    def __init__(self, warehouse: Warehouse) -> None:
        self.warehouse = warehouse

    def ensure_schema_exists(self, namespace: str) -> bool:
        """
        Create a namespace unless it already exists.

        Returns:
            True if the namespace was created, False if it was already there
        """
        if self.warehouse.schema_exists(namespace):
            log.info("schema_exists", schema=namespace)
            return False

        self.warehouse.create_schema(namespace)
        log.info("schema_created", schema=namespace)
        return True

    def ensure_table_exists(self, name: str, columns: tuple[Column, ...]) -> bool:
        """
        Create a table unless it already exists. An existing table is
        never compared against ``columns`` or altered.

        Returns:
            True if the table was created, False if it was already there
        """
        if self.warehouse.table_exists(name):
            log.info("table_exists", table=name)
            return False

        self.warehouse.create_table(name, columns)
        log.info("table_created", table=name, columns=len(columns))
        return True

    def provision(
        self,
        entries: list[LoadEntry],
        namespaces: tuple[str, ...] | list[str] = DEFAULT_NAMESPACES,
    ) -> dict[str, list[str]]:
        """
        Ensure every namespace and every entry's table exist.

        Namespaces an entry lives in are created even when they are not
        listed in ``namespaces``.

        Returns:
            Dict with "created" and "existing" lists of object names
        """
        outcome: dict[str, list[str]] = {"created": [], "existing": []}

        wanted = list(namespaces)
        for entry in entries:
            if entry.namespace not in wanted:
                wanted.append(entry.namespace)

        for namespace in wanted:
            created = self.ensure_schema_exists(namespace)
            outcome["created" if created else "existing"].append(namespace)

        for entry in entries:
            created = self.ensure_table_exists(entry.target_table, entry.columns)
            outcome["created" if created else "existing"].append(entry.target_table)

        log.info(
            "provisioning_complete",
            created=len(outcome["created"]),
            existing=len(outcome["existing"]),
        )
        return outcome
