"""Data models shared by detection, extraction and aggregation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stocktally.ingest.patterns import FIELDS, WIRE_NAMES


class ColumnMapping(BaseModel):
    """Zero-based column index per semantic field of one sheet.

    Serialises to the plain wire map used between detection and extraction,
    e.g. ``{"lp": 0, "itemId": 1, "name": 2, "quantity": 3, "unit": 4}``.
    """

    lp: Optional[int] = Field(default=None, ge=0)
    item_id: Optional[int] = Field(default=None, ge=0, alias="itemId")
    name: int = Field(ge=0)
    quantity: int = Field(ge=0)
    unit: int = Field(ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def _indices_are_distinct(self) -> "ColumnMapping":
        used = list(self.indices().values())
        if len(used) != len(set(used)):
            raise ValueError(f"Mapped fields must use distinct columns: {self.to_wire()}")
        return self

    def indices(self) -> Dict[str, int]:
        """Return ``{field: index}`` for every mapped field, in field order."""

        result: Dict[str, int] = {}
        for field in FIELDS:
            index = getattr(self, field)
            if index is not None:
                result[field] = index
        return result

    @property
    def max_index(self) -> int:
        return max(self.indices().values())

    def to_wire(self) -> Dict[str, int]:
        return {WIRE_NAMES[field]: index for field, index in self.indices().items()}


class DetectionResult(BaseModel):
    """Outcome of automatic column detection."""

    mapping: ColumnMapping
    confidence: float = Field(ge=0.0, le=1.0)
    suggestions: Dict[str, List[int]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)


class ColumnSuggestion(BaseModel):
    """Possible field roles of one column, for manual mapping screens."""

    column: int
    header: str
    possible_types: List[str]
    confidence: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(extra="forbid")


class MappingValidation(BaseModel):
    """Result of checking a mapping; never raised."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class ExtractedRow(BaseModel):
    """Typed record produced from one raw spreadsheet row."""

    lp: Optional[int] = None
    item_id: Optional[str] = None
    name: str = Field(min_length=1)
    quantity: float = Field(allow_inf_nan=False)
    unit: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def key(self) -> "AggregateKey":
        return AggregateKey.for_row(self)


class AggregateKey(NamedTuple):
    """Identity of "the same item" across rows and files."""

    item_id: str
    name: str
    unit: str

    @classmethod
    def for_row(cls, row: ExtractedRow) -> "AggregateKey":
        return cls(row.item_id or "", row.name, row.unit)


@dataclass(frozen=True)
class Contribution:
    """Values one upsert adds to an aggregate.

    On create the record starts at ``quantity``/``count`` with
    ``[source_file]``; on an existing record the same numbers are added
    atomically and ``source_file`` joins the source set. Manual entries carry
    no ``source_file`` and leave the source set untouched.
    """

    quantity: float
    source_file: Optional[str] = None
    count: int = 1


@dataclass(frozen=True)
class SourceRow:
    """An extracted row together with its 1-based sheet row number."""

    row_number: int
    row: ExtractedRow


class AggregateRecord(BaseModel):
    """Persisted running total for one aggregate key."""

    id: str
    item_id: str = ""
    name: str
    unit: str
    quantity: float
    count: int = Field(ge=1)
    source_files: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def key(self) -> AggregateKey:
        return AggregateKey(self.item_id, self.name, self.unit)


class RejectedRow(BaseModel):
    """A data row that failed extraction and was skipped."""

    row_number: int
    reason: str
    values: Dict[str, Optional[str]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class IngestionResult(BaseModel):
    """Per-file ingestion summary handed to reporting layers."""

    file_id: str
    file_name: str
    header_row: int
    headers: List[str]
    mapping: ColumnMapping
    confidence: Optional[float] = None
    total_rows: int
    extracted_rows: int
    rejected_rows: int
    blank_rows: int = 0
    rejections: List[RejectedRow] = Field(default_factory=list)
    aggregates: List[AggregateRecord] = Field(default_factory=list)
    timings: Dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")
