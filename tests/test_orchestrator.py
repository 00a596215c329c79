"""Tests for copyforce.orchestrator: phase order, rule loading and cleanup."""

import io

import pytest

from copyforce.config import ExtractionConfig
from copyforce.exceptions import (
    AuthenticationError,
    DestinationUnavailable,
    RulesDocumentError,
    TransferError,
    UnknownProfile,
)
from copyforce.models import OrchestrationPhase, TransferErrorPolicy
from copyforce.monitor import SilentExtractionMonitor
from copyforce.orchestrator import ExtractionOrchestrator
from fakes import FakeSession, RecordingBuilder, RecordingMonitor


class LoginRecorder:
    def __init__(self, session):
        self.session = session
        self.calls = []

    def __call__(self, credentials, timeout_ms):
        self.calls.append((credentials, timeout_ms))
        return self.session


def make_orchestrator(session, builder, registry, config=None, monitor=None, trace_stream=None):
    return ExtractionOrchestrator(
        config or ExtractionConfig(),
        lambda: builder,
        registry=registry,
        login_fn=LoginRecorder(session),
        monitor=monitor or RecordingMonitor(),
        trace_stream=trace_stream,
    )


class TestRun:
    def test_default_rules_copy_everything(self, fake_session, recording_builder, sample_registry):
        config = ExtractionConfig(schema_enabled=True)
        orchestrator = make_orchestrator(fake_session, recording_builder, sample_registry, config=config)
        summary = orchestrator.run("prod")

        assert summary.tables_selected == ["Account", "AccountHistory", "Contact"]
        assert summary.schema_tables == summary.tables_selected
        assert summary.success
        assert summary.rows_written == 4
        assert summary.end_time is not None
        assert orchestrator.phase is OrchestrationPhase.FINISHED

    def test_rules_file_applied(self, fake_session, recording_builder, sample_registry, rules_file):
        summary = make_orchestrator(fake_session, recording_builder, sample_registry).run("prod", rules_file)
        assert summary.tables_selected == ["Account", "Contact"]

    def test_login_receives_resolved_credentials(self, fake_session, recording_builder, sample_registry,
                                                 sample_credentials):
        config = ExtractionConfig(timeout_ms=5000)
        orchestrator = make_orchestrator(fake_session, recording_builder, sample_registry, config=config)
        orchestrator.run("prod")
        assert orchestrator.login_fn.calls == [(sample_credentials, 5000)]

    def test_all_schema_before_any_data(self, fake_session, recording_builder, sample_registry):
        config = ExtractionConfig(schema_enabled=True)
        make_orchestrator(fake_session, recording_builder, sample_registry, config=config).run("prod")
        kinds = [kind for kind, _ in recording_builder.calls]
        last_schema = max(i for i, k in enumerate(kinds) if k == "create_schema_for_table")
        first_write = kinds.index("write_table")
        assert last_schema < first_write

    def test_schema_phase_skipped(self, fake_session, recording_builder, sample_registry):
        config = ExtractionConfig(schema_enabled=False)
        summary = make_orchestrator(fake_session, recording_builder, sample_registry, config=config).run("prod")

        assert summary.schema_tables == []
        assert all(kind == "write_table" for kind, _ in recording_builder.calls)

    def test_resources_closed(self, fake_session, recording_builder, sample_registry):
        make_orchestrator(fake_session, recording_builder, sample_registry).run("prod")
        assert fake_session.closed
        assert recording_builder.closed

    def test_session_closed_when_builder_close_fails(self, fake_session, sample_registry):
        class FailingCloseBuilder(RecordingBuilder):
            def close(self):
                raise OSError("disk gone")

        with pytest.raises(OSError, match="disk gone"):
            make_orchestrator(fake_session, FailingCloseBuilder(), sample_registry).run("prod")
        assert fake_session.closed

    def test_silent_and_verbose_select_same_tables(self, sample_tables, sample_registry):
        silent_builder, verbose_builder = RecordingBuilder(), RecordingBuilder()
        make_orchestrator(
            FakeSession(sample_tables), silent_builder, sample_registry, monitor=SilentExtractionMonitor()
        ).run("prod")
        make_orchestrator(FakeSession(sample_tables), verbose_builder, sample_registry).run("prod")
        assert silent_builder.calls == verbose_builder.calls

    def test_failed_table_continues(self, sample_tables, recording_builder, sample_registry):
        session = FakeSession(sample_tables, failing={"Account"})
        summary = make_orchestrator(session, recording_builder, sample_registry).run("prod")

        assert summary.failed_tables == ["Account"]
        assert "Contact" in recording_builder.batches
        assert session.closed

    def test_failed_table_aborts(self, sample_tables, recording_builder, sample_registry):
        session = FakeSession(sample_tables, failing={"Account"})
        config = ExtractionConfig(on_transfer_error=TransferErrorPolicy.ABORT)
        orchestrator = make_orchestrator(session, recording_builder, sample_registry, config=config)

        with pytest.raises(TransferError):
            orchestrator.run("prod")
        assert orchestrator.phase is OrchestrationPhase.DATA
        assert session.closed
        assert recording_builder.closed


class TestFatalPhases:
    def test_unknown_profile_stops_before_login(self, fake_session, recording_builder, sample_registry):
        orchestrator = make_orchestrator(fake_session, recording_builder, sample_registry)
        with pytest.raises(UnknownProfile):
            orchestrator.run("staging")
        assert orchestrator.login_fn.calls == []
        assert recording_builder.calls == []

    def test_authentication_failure_propagates(self, recording_builder, sample_registry):
        def failing_login(credentials, timeout_ms):
            raise AuthenticationError("INVALID_LOGIN")

        orchestrator = ExtractionOrchestrator(
            ExtractionConfig(), lambda: recording_builder, registry=sample_registry, login_fn=failing_login
        )
        with pytest.raises(AuthenticationError):
            orchestrator.run("prod")
        assert orchestrator.phase is OrchestrationPhase.AUTHENTICATE
        assert not recording_builder.closed

    def test_bad_rules_document_closes_session(self, fake_session, recording_builder, sample_registry, tmp_path):
        path = tmp_path / "rules.xml"
        path.write_text("<copyforce>", encoding="utf-8")
        with pytest.raises(RulesDocumentError):
            make_orchestrator(fake_session, recording_builder, sample_registry).run("prod", path)
        assert fake_session.closed

    def test_destination_failure_wrapped(self, fake_session, sample_registry):
        def factory():
            raise OSError("connection refused")

        orchestrator = ExtractionOrchestrator(
            ExtractionConfig(), factory, registry=sample_registry, login_fn=LoginRecorder(fake_session)
        )
        with pytest.raises(DestinationUnavailable, match="connection refused"):
            orchestrator.run("prod")
        assert fake_session.closed

    def test_destination_unavailable_passes_through(self, fake_session, sample_registry):
        original = DestinationUnavailable("no driver")

        def factory():
            raise original

        orchestrator = ExtractionOrchestrator(
            ExtractionConfig(), factory, registry=sample_registry, login_fn=LoginRecorder(fake_session)
        )
        with pytest.raises(DestinationUnavailable) as exc_info:
            orchestrator.run("prod")
        assert exc_info.value is original


class TestPhases:
    def test_phases_cannot_repeat(self, fake_session, recording_builder, sample_registry):
        orchestrator = make_orchestrator(fake_session, recording_builder, sample_registry)
        orchestrator.authenticate("prod")
        with pytest.raises(RuntimeError, match="Cannot move"):
            orchestrator.authenticate("prod")

    def test_phases_cannot_go_back(self, fake_session, recording_builder, sample_registry):
        orchestrator = make_orchestrator(fake_session, recording_builder, sample_registry)
        orchestrator.authenticate("prod")
        orchestrator.build_rules(None)
        with pytest.raises(RuntimeError):
            orchestrator.authenticate("prod")


class TestTrace:
    def test_trace_written_when_enabled(self, fake_session, recording_builder, sample_registry, rules_file):
        stream = io.StringIO()
        config = ExtractionConfig(trace=True, schema_enabled=True)
        make_orchestrator(
            fake_session, recording_builder, sample_registry, config=config, trace_stream=stream
        ).run("prod", rules_file)

        lines = stream.getvalue().splitlines()
        assert lines[0] == ">>> Connect to Salesforce - admin@example.com (production)"
        assert ">>> Include table .*" in lines
        assert ">>> Exclude table .*History" in lines
        assert ">>> Start creation of schema in target database" in lines
        assert ">>> Start copy of data from Salesforce to target database" in lines
        assert lines[-1] == ">>> Finished"

    def test_default_rules_traced(self, fake_session, recording_builder, sample_registry):
        stream = io.StringIO()
        make_orchestrator(
            fake_session, recording_builder, sample_registry, config=ExtractionConfig(trace=True), trace_stream=stream
        ).run("prod")
        assert ">>> Using default extraction rules" in stream.getvalue().splitlines()

    def test_trace_silent_when_disabled(self, fake_session, recording_builder, sample_registry):
        stream = io.StringIO()
        make_orchestrator(fake_session, recording_builder, sample_registry, trace_stream=stream).run("prod")
        assert stream.getvalue() == ""

    def test_trace_never_contains_password(self, fake_session, recording_builder, sample_registry):
        stream = io.StringIO()
        make_orchestrator(
            fake_session, recording_builder, sample_registry, config=ExtractionConfig(trace=True), trace_stream=stream
        ).run("prod")
        assert "secret" not in stream.getvalue()
