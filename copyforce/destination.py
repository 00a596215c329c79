"""Destination database contract and factory."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from copyforce.config import CopyForceSettings
from copyforce.exceptions import DestinationUnavailable
from copyforce.logging_utils import get_logger
from copyforce.models import TableSchema

logger = get_logger(__name__)


class DatabaseBuilder(ABC):
    """Creates tables and writes rows in the destination database."""

    @abstractmethod
    def create_schema_for_table(self, schema: TableSchema) -> None:
        """Create the destination structure for one table."""

    @abstractmethod
    def write_table(self, schema: TableSchema, batches: Iterable[list[dict]]) -> int:
        """Write every batch as it arrives and return the number of rows written."""

    def close(self) -> None:
        pass

    def __enter__(self) -> "DatabaseBuilder":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_database_builder(settings: CopyForceSettings, output_dir: Path | None = None) -> DatabaseBuilder:
    """Open the destination named by settings.destination."""
    destination = settings.destination
    logger.info("Opening destination", extra={"destination": destination})

    if destination == "parquet":
        from copyforce.storage import ParquetDatabaseBuilder

        return ParquetDatabaseBuilder(output_dir or settings.output_dir)

    if destination == "sqlserver":
        from copyforce.azure_sql import SqlServerDatabaseBuilder

        return SqlServerDatabaseBuilder.connect(settings)

    raise DestinationUnavailable(
        f"Unknown destination '{destination}'",
        details={"destination": destination},
    )
