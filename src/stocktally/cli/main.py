"""Command-line interface for stocktally."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import click

from ..db import SqlAggregateStore, create_engine, init_db
from ..ingest.chunking import DEFAULT_CHUNK_SIZE
from ..ingest.detector import detect_columns, suggest_column_types
from ..ingest.errors import InsufficientColumnsError, StockTallyError, UpsertFailure
from ..ingest.extractor import cell_text
from ..ingest.models import AggregateRecord, IngestionResult
from ..ingest.pipeline import ingest_file
from ..ingest.scorer import SAMPLE_ROWS
from ..ingest.sheet_grid import find_header_row, is_blank_row, read_grid

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

FILE_ARGUMENT = click.Path(exists=True, dir_okay=False, path_type=Path)


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _load_headers(
    path: Path, sheet_name: Optional[str], header_row: Optional[int]
) -> Tuple[int, List[str], List[List[Any]]]:
    grid = read_grid(path.read_bytes(), path.name, sheet_name)
    index = find_header_row(grid.rows) if header_row is None else header_row
    if not 0 <= index < grid.row_count:
        raise click.BadParameter(
            f"header row {index} is outside the sheet ({grid.row_count} rows)",
            param_hint="--header-row",
        )
    headers = [cell_text(value).strip() for value in grid.rows[index]]
    sample = [row for row in grid.rows[index + 1 :] if not is_blank_row(row)][:SAMPLE_ROWS]
    return index, headers, sample


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity.",
)
def cli(log_level: str) -> None:
    """stocktally command suite."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.option("--sheet", "sheet_name", default=None, help="Workbook sheet to read (default: first).")
@click.option("--header-row", type=int, default=None, help="0-based header row (default: auto).")
@click.pass_context
def detect(ctx: click.Context, file: Path, sheet_name: Optional[str], header_row: Optional[int]) -> None:
    """Detect the column mapping of FILE and emit structured JSON."""

    try:
        index, headers, sample = _load_headers(file, sheet_name, header_row)
        result = detect_columns(headers, sample)
    except InsufficientColumnsError as exc:
        payload = {
            "error": str(exc),
            "found": exc.found,
            "missing": exc.missing,
            "suggestions": [suggestion.model_dump() for suggestion in suggest_column_types(headers)],
        }
        click.echo(_dump(payload))
        ctx.exit(2)
    except StockTallyError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = {
        "header_row": index,
        "headers": headers,
        "mapping": result.mapping.to_wire(),
        "confidence": result.confidence,
        "suggestions": result.suggestions,
    }
    click.echo(_dump(payload))


async def _ingest_files(
    paths: Sequence[Path],
    database_url: Optional[str],
    **options: Any,
) -> List[IngestionResult]:
    engine = create_engine(database_url)
    try:
        await init_db(engine)
        store = SqlAggregateStore(engine)
        results = []
        for path in paths:
            results.append(await ingest_file(path.read_bytes(), path.name, store=store, **options))
        return results
    finally:
        await engine.dispose()


async def _list_inventory(database_url: Optional[str]) -> List[AggregateRecord]:
    engine = create_engine(database_url)
    try:
        await init_db(engine)
        return await SqlAggregateStore(engine).list_aggregates()
    finally:
        await engine.dispose()


def _parse_mapping(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--mapping") from exc
    if not isinstance(mapping, dict):
        raise click.BadParameter("expected a JSON object", param_hint="--mapping")
    return mapping


@cli.command()
@click.argument("files", nargs=-1, required=True, type=FILE_ARGUMENT)
@click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy async URL (default: $STOCKTALLY_DATABASE_URL).",
)
@click.option(
    "--mapping",
    "mapping_json",
    default=None,
    help='Manual column mapping, e.g. \'{"name": 0, "quantity": 1, "unit": 2}\'.',
)
@click.option("--sheet", "sheet_name", default=None, help="Workbook sheet to read (default: first).")
@click.option("--header-row", type=int, default=None, help="0-based header row (default: auto).")
@click.option("--chunk-size", type=click.IntRange(min=1), default=DEFAULT_CHUNK_SIZE, show_default=True)
def ingest(
    files: Tuple[Path, ...],
    database_url: Optional[str],
    mapping_json: Optional[str],
    sheet_name: Optional[str],
    header_row: Optional[int],
    chunk_size: int,
) -> None:
    """Ingest FILES into the inventory database and emit per-file results."""

    mapping = _parse_mapping(mapping_json)
    try:
        results = asyncio.run(
            _ingest_files(
                files,
                database_url,
                sheet_name=sheet_name,
                mapping=mapping,
                header_row=header_row,
                chunk_size=chunk_size,
            )
        )
    except UpsertFailure as exc:
        raise click.ClickException(exc.user_message) from exc
    except StockTallyError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(_dump([result.model_dump(mode="json", by_alias=True) for result in results]))


@cli.command()
@click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy async URL (default: $STOCKTALLY_DATABASE_URL).",
)
def inventory(database_url: Optional[str]) -> None:
    """Emit every aggregate record as JSON."""

    records = asyncio.run(_list_inventory(database_url))
    click.echo(_dump([record.model_dump(mode="json") for record in records]))


if __name__ == "__main__":
    cli()
