"""stocktally - spreadsheet column detection and inventory aggregation."""

from . import ingest
from .version import __version__

__all__ = [
    "ingest",
    "__version__",
]
