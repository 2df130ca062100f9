"""Typed errors raised by column detection, extraction and aggregation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, List, Optional

if TYPE_CHECKING:
    from stocktally.ingest.models import AggregateKey, MappingValidation


class StockTallyError(Exception):
    """Base class for every error raised by stocktally."""


class NoHeadersError(StockTallyError):
    """No header row was supplied; detection cannot start."""

    def __init__(self, message: str = "No headers provided"):
        super().__init__(message)


class InsufficientColumnsError(StockTallyError):
    """One or more required fields could not be resolved from the headers."""

    def __init__(self, found: Iterable[str], missing: Iterable[str]):
        self.found: List[str] = list(found)
        self.missing: List[str] = list(missing)
        found_text = ", ".join(self.found) if self.found else "none"
        super().__init__(
            "Insufficient columns detected. Required: name, quantity, unit. "
            f"Found: {found_text}"
        )


class InvalidMappingError(StockTallyError):
    """A column mapping failed validation and cannot be used for extraction."""

    def __init__(self, validation: "MappingValidation"):
        self.validation = validation
        super().__init__("Invalid column mapping: " + "; ".join(validation.errors))


class RowExtractionError(StockTallyError):
    """A single row could not be coerced into the required fields."""

    def __init__(
        self,
        message: str,
        *,
        name: Any = None,
        quantity: Any = None,
        unit: Any = None,
    ):
        self.name = name
        self.quantity = quantity
        self.unit = unit
        super().__init__(message)


class ColumnOutOfBoundsError(RowExtractionError):
    """The mapping references a column the row does not have."""

    def __init__(self, index: int, row_length: int):
        self.index = index
        self.row_length = row_length
        super().__init__(f"Column index out of bounds: {index} (row has {row_length} cells)")


class UpsertFailure(StockTallyError):
    """The store could not complete an atomic merge for an aggregate key.

    ``detail`` holds the storage-level reason for logs; ``user_message`` is the
    only text meant for end users.
    """

    user_message = "Failed to save aggregated inventory data. Please retry the upload."

    def __init__(
        self,
        *,
        key: Optional["AggregateKey"] = None,
        source_file: Optional[str] = None,
        detail: str = "",
    ):
        self.key = key
        self.source_file = source_file
        self.detail = detail
        super().__init__(self.user_message)


class IngestTimeoutError(StockTallyError, TimeoutError):
    """Ingestion of a single file exceeded its wall-clock budget."""

    def __init__(self, file_name: str, timeout: float):
        self.file_name = file_name
        self.timeout = timeout
        super().__init__(f"Ingestion of {file_name!r} timed out after {timeout:g}s")


class SheetReadError(StockTallyError):
    """The raw grid could not be read from the supplied content."""

