"""Data models shared by the session, destinations and extraction manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Field types that cannot be selected through a bulk SOQL query.
UNSUPPORTED_FIELD_TYPES = frozenset({"address", "location", "base64"})


class TransferErrorPolicy(str, Enum):
    CONTINUE = "continue"
    ABORT = "abort"


class OrchestrationPhase(str, Enum):
    PENDING = "PENDING"
    AUTHENTICATE = "AUTHENTICATE"
    BUILD_RULES = "BUILD_RULES"
    ACQUIRE_DESTINATION = "ACQUIRE_DESTINATION"
    SCHEMA = "SCHEMA"
    DATA = "DATA"
    FINISHED = "FINISHED"


class FieldSpec(BaseModel):
    """A single Salesforce field as reported by describe()."""

    name: str = Field(..., min_length=1)
    type: str = Field(default="string")
    length: int = Field(default=0, ge=0)
    precision: int = Field(default=0, ge=0)
    scale: int = Field(default=0, ge=0)
    nillable: bool = Field(default=True)

    model_config = {"extra": "ignore", "frozen": True}

    @field_validator("type")
    @classmethod
    def normalize_type(cls, v: str) -> str:
        return v.lower().strip()

    @property
    def is_transferable(self) -> bool:
        return self.type not in UNSUPPORTED_FIELD_TYPES


class TableSchema(BaseModel):
    """A Salesforce sObject and the fields that will be copied."""

    name: str = Field(..., min_length=1)
    fields: tuple[FieldSpec, ...] = Field(default=())

    model_config = {"frozen": True}

    @classmethod
    def from_describe(cls, name: str, describe: dict[str, Any]) -> "TableSchema":
        specs = (FieldSpec.model_validate(f) for f in describe.get("fields", []))
        return cls(name=name, fields=tuple(s for s in specs if s.is_transferable))

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


@dataclass
class TableResult:
    """Outcome of copying one table."""

    name: str
    rows_written: int = 0
    batches_flushed: int = 0
    success: bool = False
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "rows_written": self.rows_written,
            "batches_flushed": self.batches_flushed,
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class ExtractionSummary:
    """Metrics collected during one extraction run."""

    correlation_id: str = ""
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None

    tables_selected: list[str] = field(default_factory=list)
    schema_tables: list[str] = field(default_factory=list)
    table_results: list[TableResult] = field(default_factory=list)

    @property
    def rows_written(self) -> int:
        return sum(r.rows_written for r in self.table_results)

    @property
    def failed_tables(self) -> list[str]:
        return [r.name for r in self.table_results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failed_tables

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "tables_selected": len(self.tables_selected),
            "schema_tables": len(self.schema_tables),
            "rows_written": self.rows_written,
            "failed_tables": self.failed_tables,
            "success": self.success,
            "tables": [r.to_dict() for r in self.table_results],
        }
