"""Schema and data phases: copy every eligible table from Salesforce to the destination."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Protocol

from copyforce.destination import DatabaseBuilder
from copyforce.exceptions import CopyForceError, TransferError
from copyforce.logging_utils import CorrelationIdFilter, get_logger, log_operation
from copyforce.models import ExtractionSummary, TableResult, TableSchema, TransferErrorPolicy
from copyforce.monitor import ExtractionMonitor
from copyforce.rules import ExtractionRuleset

logger = get_logger(__name__)

DEFAULT_MAX_BYTES_TO_BUFFER = 20 * 1024 * 1024


class RecordSource(Protocol):
    """The parts of a Salesforce session the extraction needs."""

    def list_tables(self) -> list[str]: ...

    def describe_table(self, table: str) -> TableSchema: ...

    def iter_records(self, schema: TableSchema) -> Iterator[dict]: ...


def estimate_record_size(record: dict) -> int:
    """Approximate in-memory footprint of a record, in bytes."""
    return len(json.dumps(record, default=str))


def buffer_records(records: Iterable[dict], max_bytes: int) -> Iterator[list[dict]]:
    """Group records into batches that are flushed once they reach max_bytes.

    A record larger than max_bytes on its own still forms a batch of one.
    """
    batch: list[dict] = []
    buffered = 0
    for record in records:
        batch.append(record)
        buffered += estimate_record_size(record)
        if buffered >= max_bytes:
            yield batch
            batch = []
            buffered = 0
    if batch:
        yield batch


class ExtractionManager:
    """Copies the tables selected by a ruleset from a session to a builder."""

    def __init__(
        self,
        session: RecordSource,
        builder: DatabaseBuilder,
        max_bytes_to_buffer: int = DEFAULT_MAX_BYTES_TO_BUFFER,
        on_transfer_error: TransferErrorPolicy = TransferErrorPolicy.CONTINUE,
    ):
        self.session = session
        self.builder = builder
        self.on_transfer_error = on_transfer_error
        self._eligible: dict[ExtractionRuleset, list[str]] = {}
        self._schemas: dict[str, TableSchema] = {}
        self.set_max_bytes_to_buffer(max_bytes_to_buffer)

    def set_max_bytes_to_buffer(self, max_bytes: int) -> None:
        if max_bytes < 1:
            raise ValueError("max_bytes_to_buffer must be positive")
        self.max_bytes_to_buffer = max_bytes

    def eligible_tables(self, rules: ExtractionRuleset) -> list[str]:
        if rules not in self._eligible:
            self._eligible[rules] = rules.select(self.session.list_tables())
            logger.info("Selected tables", extra={"table_count": len(self._eligible[rules])})
        return list(self._eligible[rules])

    def table_schema(self, table: str) -> TableSchema:
        if table not in self._schemas:
            self._schemas[table] = self.session.describe_table(table)
        return self._schemas[table]

    def extract_schema(self, rules: ExtractionRuleset, monitor: ExtractionMonitor) -> list[str]:
        """Create destination structures for every eligible table."""
        created = []
        with log_operation(logger, "extract_schema") as ctx:
            for table in self.eligible_tables(rules):
                monitor.report_message(f"Create schema for {table}")
                try:
                    self.builder.create_schema_for_table(self.table_schema(table))
                except CopyForceError as e:
                    raise TransferError(table, f"Failed to create schema for {table}: {e.message}") from e
                created.append(table)
            ctx["table_count"] = len(created)
        return created

    def extract_data(
        self,
        rules: ExtractionRuleset,
        monitor: ExtractionMonitor,
        summary: ExtractionSummary | None = None,
    ) -> ExtractionSummary:
        """Copy the records of every eligible table."""
        if summary is None:
            summary = ExtractionSummary(correlation_id=CorrelationIdFilter.get_correlation_id() or "")

        tables = self.eligible_tables(rules)
        summary.tables_selected = tables

        with log_operation(logger, "extract_data", table_count=len(tables)) as ctx:
            for table in tables:
                result = self._copy_table(table, monitor)
                summary.table_results.append(result)
            ctx.update(rows_written=summary.rows_written, failed_tables=summary.failed_tables)
        return summary

    def _copy_table(self, table: str, monitor: ExtractionMonitor) -> TableResult:
        result = TableResult(name=table)
        monitor.report_message(f"Copy table {table}")

        def reported(batches: Iterable[list[dict]]) -> Iterator[list[dict]]:
            for batch in batches:
                result.batches_flushed += 1
                result.rows_written += len(batch)
                yield batch
                monitor.report_message(f"  {table}: {result.rows_written} rows")

        try:
            schema = self.table_schema(table)
            records = self.session.iter_records(schema)
            written = self.builder.write_table(schema, reported(buffer_records(records, self.max_bytes_to_buffer)))
            result.rows_written = written
        except CopyForceError as e:
            error = e if isinstance(e, TransferError) else TransferError(table, f"Failed to copy {table}: {e.message}")
            result.success = False
            result.error_message = error.message
            monitor.report_message(error.message)
            logger.error("Table transfer failed", extra={"table": table, "error": str(e)})
            if self.on_transfer_error is TransferErrorPolicy.ABORT:
                if error is e:
                    raise
                raise error from e
            return result

        result.success = True
        monitor.report_message(f"Finished {table} ({result.rows_written} rows)")
        return result
