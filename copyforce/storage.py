"""Local Parquet destination: one directory per table, one file per flushed batch."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from copyforce.destination import DatabaseBuilder
from copyforce.exceptions import DestinationUnavailable, DestinationWriteError
from copyforce.logging_utils import get_logger, log_operation
from copyforce.models import FieldSpec, TableSchema

logger = get_logger(__name__)

SCHEMA_FILE_NAME = "_schema.json"
PART_FILE_GLOB = "part-*.parquet"


def sha256_file(path: Path) -> str:
    """Calculate SHA256 hash of a file."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def ensure_dir(path: Path) -> None:
    """Create directory if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)


def arrow_type_for(field: FieldSpec) -> pa.DataType:
    """Arrow column type for a Salesforce field type.

    Dates and times stay as the ISO strings the REST API returns.
    """
    t = field.type
    if t == "boolean":
        return pa.bool_()
    if t == "int":
        return pa.int32()
    if t == "long":
        return pa.int64()
    if t in ("double", "currency", "percent"):
        return pa.float64()
    return pa.string()


def arrow_schema_for(schema: TableSchema) -> pa.Schema:
    return pa.schema([pa.field(f.name, arrow_type_for(f), nullable=True) for f in schema.fields])


def coerce_value(field: FieldSpec, value: Any) -> Any:
    # anyType columns mix strings, booleans and numbers within one column
    if field.type == "anytype" and value is not None and not isinstance(value, str):
        return str(value)
    return value


def records_to_table(schema: TableSchema, records: list[dict], arrow_schema: pa.Schema) -> pa.Table:
    """Convert a batch of records to an Arrow table with a fixed column layout."""
    rows = [{f.name: coerce_value(f, record.get(f.name)) for f in schema.fields} for record in records]
    try:
        return pa.Table.from_pylist(rows, schema=arrow_schema)
    except (pa.ArrowException, ValueError, TypeError) as e:
        raise DestinationWriteError(
            f"Failed to convert records of {schema.name} to parquet: {e}",
            details={"table": schema.name},
        ) from e


def write_parquet(table: pa.Table, output_path: Path, compression: str = "snappy") -> dict:
    """Write an Arrow table to a parquet file and return its metadata."""
    try:
        ensure_dir(output_path.parent)
        pq.write_table(table, output_path, compression=compression)
    except (OSError, pa.ArrowException, ValueError) as e:
        raise DestinationWriteError(f"Failed to write parquet file {output_path}: {e}") from e

    file_size = output_path.stat().st_size
    metadata = {
        "path": str(output_path),
        "size_bytes": file_size,
        "sha256": sha256_file(output_path),
        "row_count": table.num_rows,
    }
    logger.debug("Parquet file written", extra=metadata)
    return metadata


class ParquetDatabaseBuilder(DatabaseBuilder):
    """Writes each Salesforce table as a directory of Parquet part files.

    Every part file of a table shares one Arrow schema derived from the
    table's describe, so the directory reads back as a single dataset.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        try:
            ensure_dir(self.root)
        except OSError as e:
            raise DestinationUnavailable(
                f"Unable to use '{self.root}' as the output directory: {e}",
                details={"output_dir": str(self.root)},
            ) from e

    def table_dir(self, table: str) -> Path:
        return self.root / table

    def create_schema_for_table(self, schema: TableSchema) -> None:
        table_dir = self.table_dir(schema.name)
        payload = {
            "table": schema.name,
            "fields": [f.model_dump() for f in schema.fields],
        }
        try:
            ensure_dir(table_dir)
            (table_dir / SCHEMA_FILE_NAME).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise DestinationWriteError(
                f"Failed to write schema for {schema.name}: {e}",
                details={"table": schema.name},
            ) from e

    def remove_part_files(self, table: str) -> int:
        """Delete part files left in the table directory by an earlier run."""
        stale = sorted(self.table_dir(table).glob(PART_FILE_GLOB))
        try:
            for path in stale:
                path.unlink()
        except OSError as e:
            raise DestinationWriteError(
                f"Failed to remove previous parquet files of {table}: {e}",
                details={"table": table},
            ) from e
        return len(stale)

    def write_table(self, schema: TableSchema, batches: Iterable[list[dict]]) -> int:
        table_dir = self.table_dir(schema.name)
        arrow_schema = arrow_schema_for(schema)
        rows_written = 0
        part = 0

        with log_operation(logger, "parquet_write_table", table=schema.name, output_dir=str(table_dir)) as ctx:
            ctx["removed_part_files"] = self.remove_part_files(schema.name)
            for batch in batches:
                if not batch:
                    continue
                table = records_to_table(schema, batch, arrow_schema)
                write_parquet(table, table_dir / f"part-{part:05d}.parquet")
                rows_written += table.num_rows
                part += 1
            ctx.update(rows_written=rows_written, part_files=part)

        return rows_written
