"""Configuration management for copyforce."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from copyforce.exceptions import ConfigurationError
from copyforce.models import TransferErrorPolicy

DEFAULT_TIMEOUT_MS = 1_000_000
DEFAULT_BUFFER_MB = 20

DESTINATIONS = ("sqlserver", "parquet")


class CopyForceSettings(BaseSettings):
    """Environment-level settings, read from COPYFORCE_* variables and config.env."""

    model_config = SettingsConfigDict(
        env_prefix="COPYFORCE_",
        env_file="config.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="ERROR")
    log_format: str = Field(default="text")

    # Salesforce
    credentials_file: Path | None = Field(default=None, description="JSON profile registry")
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    buffer_mb: int = Field(default=DEFAULT_BUFFER_MB, ge=1)
    on_transfer_error: TransferErrorPolicy = Field(default=TransferErrorPolicy.CONTINUE)

    # Destination
    destination: str = Field(default="parquet")
    output_dir: Path = Field(default=Path("data/copyforce"))

    # SQL Server / Azure SQL (required when destination=sqlserver)
    sql_server: str | None = Field(default=None)
    sql_database: str | None = Field(default=None)
    sql_schema: str = Field(default="dbo")
    sql_username: str | None = Field(default=None)
    sql_password: str | None = Field(default=None, repr=False)
    sql_driver: str = Field(default="ODBC Driver 18 for SQL Server")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        v = v.lower()
        if v not in DESTINATIONS:
            raise ValueError(f"DESTINATION must be one of {DESTINATIONS}")
        return v

    @model_validator(mode="after")
    def validate_sql_auth(self) -> "CopyForceSettings":
        if (self.sql_username is None) != (self.sql_password is None):
            raise ValueError("Both SQL_USERNAME and SQL_PASSWORD must be set together")
        return self

    @property
    def sql_uses_aad(self) -> bool:
        return self.sql_username is None


class ExtractionConfig(BaseModel):
    """Settings fixed for the lifetime of one extraction run."""

    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=1)
    buffer_mb: int = Field(default=DEFAULT_BUFFER_MB, ge=1)
    schema_enabled: bool = False
    silent: bool = False
    trace: bool = False
    on_transfer_error: TransferErrorPolicy = TransferErrorPolicy.CONTINUE

    model_config = {"frozen": True}

    @property
    def max_bytes_to_buffer(self) -> int:
        return self.buffer_mb * 1024 * 1024


def get_settings(**overrides) -> CopyForceSettings:
    """Load settings from the environment and config.env."""
    try:
        load_dotenv("config.env")
        return CopyForceSettings(**overrides)
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e
