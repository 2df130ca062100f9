"""Column detection, row extraction and streaming aggregation."""

from stocktally.ingest.aggregation import AggregationEngine
from stocktally.ingest.chunking import DEFAULT_CHUNK_SIZE, ChunkedRowProcessor
from stocktally.ingest.detector import detect_columns, suggest_column_types
from stocktally.ingest.errors import (
    ColumnOutOfBoundsError,
    IngestTimeoutError,
    InsufficientColumnsError,
    InvalidMappingError,
    NoHeadersError,
    RowExtractionError,
    SheetReadError,
    StockTallyError,
    UpsertFailure,
)
from stocktally.ingest.extractor import extract_row
from stocktally.ingest.models import (
    AggregateKey,
    AggregateRecord,
    ColumnMapping,
    ColumnSuggestion,
    Contribution,
    DetectionResult,
    ExtractedRow,
    IngestionResult,
    MappingValidation,
    RejectedRow,
    SourceRow,
)
from stocktally.ingest.pipeline import ingest_file, ingest_grid
from stocktally.ingest.scorer import ColumnScores, score_columns
from stocktally.ingest.sheet_grid import SheetGrid, find_header_row, read_grid
from stocktally.ingest.validator import validate_mapping

__all__ = [
    # Detection
    "score_columns",
    "ColumnScores",
    "detect_columns",
    "suggest_column_types",
    "validate_mapping",
    # Extraction and aggregation
    "extract_row",
    "ChunkedRowProcessor",
    "DEFAULT_CHUNK_SIZE",
    "AggregationEngine",
    # Grid reading and orchestration
    "SheetGrid",
    "read_grid",
    "find_header_row",
    "ingest_grid",
    "ingest_file",
    # Models
    "AggregateKey",
    "AggregateRecord",
    "ColumnMapping",
    "ColumnSuggestion",
    "Contribution",
    "DetectionResult",
    "ExtractedRow",
    "IngestionResult",
    "MappingValidation",
    "RejectedRow",
    "SourceRow",
    # Errors
    "StockTallyError",
    "NoHeadersError",
    "InsufficientColumnsError",
    "InvalidMappingError",
    "RowExtractionError",
    "ColumnOutOfBoundsError",
    "UpsertFailure",
    "IngestTimeoutError",
    "SheetReadError",
]
