from typing import Any, Optional


class WarehouseError(Exception):
    """Base class for all load failures.

    `report` is attached by the pipeline runner once the failing run is known,
    so callers can see how far the load got.
    """

    report: Optional[Any] = None


class ConfigError(WarehouseError):
    pass


class SourceReadError(WarehouseError):
    """Source directory is unreadable or a line is not a JSON object"""


class CoercionError(WarehouseError):
    """A single raw record could not be coerced into the typed schema"""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class WatermarkOrderError(WarehouseError):
    """Incremental source contains records at or below the stored watermark"""


class WriteError(WarehouseError):
    """Storage layer failure"""


class LoadTimeoutError(WarehouseError):
    pass


__all__ = [
    "WarehouseError",
    "ConfigError",
    "SourceReadError",
    "CoercionError",
    "WatermarkOrderError",
    "WriteError",
    "LoadTimeoutError",
]
