"""Exceptions raised while provisioning and loading the bronze layer."""


class BronzeLoadError(Exception):
    """Base class for a failed load step.

    Each subclass corresponds to the stage of a table load that failed.
    ``kind`` is the label that ends up on the StepResult.
    """

    kind = "BronzeLoadError"

    def __init__(self, table: str, message: str):
        super().__init__(message)
        self.table = table
        self.message = message


class ProvisioningMissing(BronzeLoadError):
    """Target table or its schema does not exist."""

    kind = "ProvisioningMissing"


class TruncateFailure(BronzeLoadError):
    """Target table could not be truncated (locked, unavailable)."""

    kind = "TruncateFailure"


class LoadFailure(BronzeLoadError):
    """Bulk load rejected: missing or malformed file, shape mismatch."""

    kind = "LoadFailure"


class RowCountFailure(BronzeLoadError):
    """Post-load row count could not be read."""

    kind = "RowCountFailure"


class ConfigError(Exception):
    """Invalid configuration or table catalog. Raised before any table runs."""
