"""CLI entry point for copyforce."""

from __future__ import annotations

import argparse
import sys
from functools import partial
from pathlib import Path

from copyforce import __version__
from copyforce.config import DESTINATIONS, CopyForceSettings, ExtractionConfig, get_settings
from copyforce.credentials import CredentialsRegistry
from copyforce.destination import open_database_builder
from copyforce.exceptions import ConfigurationError, CopyForceError, TransferError
from copyforce.logging_utils import get_logger, setup_logging
from copyforce.models import TransferErrorPolicy
from copyforce.orchestrator import ExtractionOrchestrator

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="copyforce",
        description="Copy a Salesforce database to another database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  copyforce --connect prod --schema
  copyforce --connect SANDBOX,user@example.com,secret,TOKEN --config rules.xml
  copyforce --connect prod --destination sqlserver --buffer 50 --on-transfer-error abort
        """,
    )

    parser.add_argument(
        "--connect",
        help="profileName OR ConnectionType,Username,Password,SecurityToken",
    )
    parser.add_argument(
        "--log",
        choices=["debug", "info", "warning", "error"],
        type=str.lower,
        default=None,
        help="Default message level written to stderr (default: error)",
    )
    parser.add_argument("--log-format", choices=["json", "text"], default=None)
    parser.add_argument("--config", type=Path, help="Rules document describing what to transfer from Salesforce")
    parser.add_argument("--version", action="store_true", help="Print the version number of the program to stderr")
    parser.add_argument("--silent", action="store_true", help="Do not write progress messages")
    parser.add_argument("--schema", action="store_true", help="Create the schema before transferring data")
    parser.add_argument("--trace", action="store_true", help="Be verbose about program flow")
    parser.add_argument("--timeout", type=int, default=None, help="Maximum time (milliseconds) for Salesforce calls")
    parser.add_argument("--buffer", type=int, default=None, help="Megabytes used to buffer Salesforce rows")
    parser.add_argument("--destination", choices=DESTINATIONS, default=None)
    parser.add_argument("--output-dir", type=Path, default=None, help="Root directory for the parquet destination")
    parser.add_argument(
        "--on-transfer-error",
        choices=[p.value for p in TransferErrorPolicy],
        default=None,
        help="Skip a failing table and continue, or abort the run",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = build_parser()
    parsed = parser.parse_args(argv)

    if not parsed.version and not parsed.connect:
        parser.error("Required switch --connect was not specified")
    if parsed.timeout is not None and parsed.timeout < 1:
        parser.error("--timeout must be a positive number of milliseconds")
    if parsed.buffer is not None and parsed.buffer < 1:
        parser.error("--buffer must be a positive number of megabytes")

    return parsed


def build_extraction_config(args: argparse.Namespace, settings: CopyForceSettings) -> ExtractionConfig:
    """Freeze command-line flags, falling back to settings, into the run configuration."""
    return ExtractionConfig(
        timeout_ms=args.timeout if args.timeout is not None else settings.timeout_ms,
        buffer_mb=args.buffer if args.buffer is not None else settings.buffer_mb,
        schema_enabled=args.schema,
        silent=args.silent,
        trace=args.trace,
        on_transfer_error=args.on_transfer_error or settings.on_transfer_error,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI execution."""
    args = parse_args(argv)

    if args.version:
        print(f"copyforce {__version__}", file=sys.stderr)
        return 0

    setup_logging(level=args.log or "ERROR", json_format=args.log_format == "json")

    try:
        overrides = {}
        if args.destination:
            overrides["destination"] = args.destination
        settings = get_settings(**overrides)

        setup_logging(
            level=args.log or settings.log_level,
            json_format=(args.log_format or settings.log_format) == "json",
        )

        config = build_extraction_config(args, settings)
        orchestrator = ExtractionOrchestrator(
            config,
            builder_factory=partial(open_database_builder, settings, args.output_dir),
            registry=CredentialsRegistry.from_file(settings.credentials_file),
        )
        summary = orchestrator.run(args.connect, args.config)

        if not summary.success:
            logger.error("Some tables failed to copy", extra={"failed_tables": summary.failed_tables})
            return 1
        return 0

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except TransferError as e:
        logger.error(f"Transfer aborted: {e}")
        return 1
    except CopyForceError as e:
        logger.error(f"Extraction failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Extraction interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
