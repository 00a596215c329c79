"""Shared test fixtures for copyforce."""

from __future__ import annotations

import pytest

from copyforce.credentials import ConnectionType, CredentialsRegistry, LoginCredentials
from fakes import FakeSession, RecordingBuilder, RecordingMonitor


@pytest.fixture
def sample_tables():
    """Three small Salesforce tables."""
    return {
        "Account": [
            {"Id": "001000000000001AAA", "Name": "Acme"},
            {"Id": "001000000000002AAA", "Name": "Globex"},
        ],
        "AccountHistory": [
            {"Id": "017000000000001AAA", "Field": "Name"},
        ],
        "Contact": [
            {"Id": "003000000000001AAA", "LastName": "Smith"},
        ],
    }


@pytest.fixture
def fake_session(sample_tables):
    return FakeSession(sample_tables)


@pytest.fixture
def recording_builder():
    return RecordingBuilder()


@pytest.fixture
def recording_monitor():
    return RecordingMonitor()


@pytest.fixture
def sample_credentials():
    return LoginCredentials(
        environment=ConnectionType.PRODUCTION,
        username="admin@example.com",
        password="secret",
        security_token="TOKEN123",
    )


@pytest.fixture
def sample_registry(sample_credentials):
    return CredentialsRegistry({"prod": sample_credentials})


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.xml"
    path.write_text(
        '<?xml version="1.0"?>\n'
        "<copyforce>\n"
        '  <include table=".*"/>\n'
        '  <exclude table=".*History"/>\n'
        "</copyforce>\n",
        encoding="utf-8",
    )
    return path
