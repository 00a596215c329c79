"""Copy a Salesforce org into another database."""

__version__ = "1.0.0"

from copyforce.config import CopyForceSettings, ExtractionConfig, get_settings
from copyforce.credentials import CredentialsRegistry, LoginCredentials, resolve_connection
from copyforce.exceptions import ConfigurationError, CopyForceError
from copyforce.extraction import ExtractionManager
from copyforce.monitor import ExtractionMonitor, SilentExtractionMonitor, VerboseExtractionMonitor
from copyforce.orchestrator import ExtractionOrchestrator
from copyforce.rules import ExtractionRuleset, TableRule
from copyforce.cli import main

__all__ = [
    "__version__",
    "CopyForceSettings",
    "ExtractionConfig",
    "get_settings",
    "CredentialsRegistry",
    "LoginCredentials",
    "resolve_connection",
    "ConfigurationError",
    "CopyForceError",
    "ExtractionManager",
    "ExtractionMonitor",
    "SilentExtractionMonitor",
    "VerboseExtractionMonitor",
    "ExtractionOrchestrator",
    "ExtractionRuleset",
    "TableRule",
    "main",
]
