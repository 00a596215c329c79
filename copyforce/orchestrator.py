"""Top-level control flow of one extraction run.

Phases run in a fixed order and never go back:

    AUTHENTICATE -> BUILD_RULES -> ACQUIRE_DESTINATION -> [SCHEMA] -> DATA -> FINISHED

Everything up to and including ACQUIRE_DESTINATION is fatal. Failures in
the DATA phase are handled per table according to
``ExtractionConfig.on_transfer_error``.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from copyforce.config import ExtractionConfig
from copyforce.credentials import CredentialsRegistry, LoginCredentials, resolve_connection
from copyforce.destination import DatabaseBuilder
from copyforce.exceptions import DestinationUnavailable
from copyforce.extraction import ExtractionManager
from copyforce.logging_utils import CorrelationIdFilter, get_logger, log_operation
from copyforce.models import ExtractionSummary, OrchestrationPhase
from copyforce.monitor import ExtractionMonitor, create_monitor
from copyforce.rules import ExtractionRuleset, TableRule
from copyforce.rules_document import load_rules
from copyforce.salesforce import SalesforceSession, login

logger = get_logger(__name__)

LoginFn = Callable[[LoginCredentials, int], SalesforceSession]
BuilderFactory = Callable[[], DatabaseBuilder]

_PHASE_ORDER = list(OrchestrationPhase)


class ExtractionOrchestrator:
    """Runs authentication, rule loading, schema creation and data copy in order."""

    def __init__(
        self,
        config: ExtractionConfig,
        builder_factory: BuilderFactory,
        registry: CredentialsRegistry | None = None,
        login_fn: LoginFn = login,
        monitor: ExtractionMonitor | None = None,
        trace_stream: TextIO | None = None,
    ):
        self.config = config
        self.builder_factory = builder_factory
        self.registry = registry if registry is not None else CredentialsRegistry()
        self.login_fn = login_fn
        self.monitor = monitor if monitor is not None else create_monitor(config.silent)
        self._trace_stream = trace_stream
        self.phase = OrchestrationPhase.PENDING

    def trace(self, message: str) -> None:
        if self.config.trace:
            stream = self._trace_stream if self._trace_stream is not None else sys.stderr
            stream.write(f">>> {message}\n")
            stream.flush()

    def _enter(self, phase: OrchestrationPhase) -> None:
        if _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.phase):
            raise RuntimeError(f"Cannot move from phase {self.phase.value} to {phase.value}")
        self.phase = phase

    def authenticate(self, connect: str) -> SalesforceSession:
        self._enter(OrchestrationPhase.AUTHENTICATE)
        credentials = resolve_connection(connect, self.registry)
        self.trace(f"Connect to Salesforce - {credentials.username} ({credentials.environment.value})")
        with log_operation(logger, "authenticate", environment=credentials.environment.value):
            return self.login_fn(credentials, self.config.timeout_ms)

    def build_rules(self, rules_path: Path | str | None) -> ExtractionRuleset:
        self._enter(OrchestrationPhase.BUILD_RULES)
        if rules_path is None:
            self.trace("Using default extraction rules")
            return ExtractionRuleset.default()

        self.trace(f"Load extraction rules from {rules_path}")

        def traced(rule: TableRule) -> None:
            self.trace(f"{rule.kind.value.capitalize()} table {rule.pattern}")

        with log_operation(logger, "build_rules", path=str(rules_path)) as ctx:
            ruleset = load_rules(rules_path, on_rule=traced)
            ctx["rule_count"] = len(ruleset)
        return ruleset

    def acquire_destination(self) -> DatabaseBuilder:
        self._enter(OrchestrationPhase.ACQUIRE_DESTINATION)
        self.trace("Connect to the destination database")
        with log_operation(logger, "acquire_destination"):
            try:
                return self.builder_factory()
            except DestinationUnavailable:
                raise
            except Exception as e:
                raise DestinationUnavailable(f"Unable to open the destination database: {e}") from e

    def run(self, connect: str, rules_path: Path | str | None = None) -> ExtractionSummary:
        summary = ExtractionSummary(correlation_id=CorrelationIdFilter.generate_correlation_id())
        session: SalesforceSession | None = None
        builder: DatabaseBuilder | None = None

        try:
            session = self.authenticate(connect)
            rules = self.build_rules(rules_path)
            builder = self.acquire_destination()

            manager = ExtractionManager(
                session,
                builder,
                max_bytes_to_buffer=self.config.max_bytes_to_buffer,
                on_transfer_error=self.config.on_transfer_error,
            )

            if self.config.schema_enabled:
                self._enter(OrchestrationPhase.SCHEMA)
                self.trace("Start creation of schema in target database")
                summary.schema_tables = manager.extract_schema(rules, self.monitor)

            self._enter(OrchestrationPhase.DATA)
            self.trace("Start copy of data from Salesforce to target database")
            manager.extract_data(rules, self.monitor, summary)

            self._enter(OrchestrationPhase.FINISHED)
            self.trace("Finished")
        finally:
            summary.end_time = datetime.now(timezone.utc)
            try:
                if builder is not None:
                    builder.close()
            finally:
                if session is not None:
                    session.close()

        logger.info("Extraction finished", extra=summary.to_dict())
        return summary
