"""Turn a --connect descriptor into Salesforce login credentials.

A descriptor is either the name of a profile stored in the credentials
registry, or a literal ``Environment,Username,Password,SecurityToken``
where Environment is PRODUCTION or SANDBOX.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from copyforce.exceptions import ConfigurationError, MalformedConnectionString, UnknownProfile
from copyforce.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_CREDENTIALS_FILE = Path.home() / ".copyforce" / "credentials.json"


class ConnectionType(str, Enum):
    PRODUCTION = "production"
    SANDBOX = "sandbox"

    @classmethod
    def parse(cls, literal: str) -> "ConnectionType | None":
        try:
            return cls(literal.strip().lower())
        except ValueError:
            return None

    @property
    def domain(self) -> str:
        """Salesforce login host prefix for this environment."""
        return "login" if self is ConnectionType.PRODUCTION else "test"


class LoginCredentials(BaseModel):
    """Everything needed to log in to one Salesforce org."""

    environment: ConnectionType
    username: str = Field(..., min_length=1)
    password: str = Field(..., repr=False)
    security_token: str = Field(default="", repr=False)

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        if isinstance(v, str):
            parsed = ConnectionType.parse(v)
            if parsed is None:
                raise ValueError(f"environment must be PRODUCTION or SANDBOX, got {v!r}")
            return parsed
        return v

    @property
    def domain(self) -> str:
        return self.environment.domain


class CredentialsRegistry:
    """Read-only registry of named login profiles kept in a JSON file.

    Expected layout::

        {"profiles": {"prod": {"environment": "production",
                               "username": "...", "password": "...",
                               "security_token": "..."}}}
    """

    def __init__(self, profiles: dict[str, LoginCredentials] | None = None):
        self._profiles = dict(profiles or {})

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "CredentialsRegistry":
        path = Path(path).expanduser() if path else DEFAULT_CREDENTIALS_FILE
        if not path.exists():
            logger.debug("Credentials registry not found; using an empty registry", extra={"path": str(path)})
            return cls()

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                f"Unable to read credentials registry '{path}': {e}",
                details={"path": str(path)},
            ) from e

        profiles_raw = raw.get("profiles") if isinstance(raw, dict) else None
        if not isinstance(profiles_raw, dict):
            raise ConfigurationError(
                f"Credentials registry '{path}' must contain a 'profiles' object",
                details={"path": str(path)},
            )

        profiles = {}
        for name, entry in profiles_raw.items():
            try:
                profiles[name.strip()] = LoginCredentials.model_validate(entry)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid profile '{name}' in credentials registry '{path}'",
                    details={"path": str(path), "errors": e.error_count()},
                ) from e

        logger.debug("Loaded credentials registry", extra={"path": str(path), "profile_count": len(profiles)})
        return cls(profiles)

    def get_credentials(self, profile: str) -> LoginCredentials | None:
        return self._profiles.get(profile.strip())

    def profiles(self) -> list[str]:
        return sorted(self._profiles)


def _masked(tokens: list[str]) -> str:
    # Only the first two positions (environment, username) are safe to echo.
    return ",".join(t if i < 2 else "****" for i, t in enumerate(tokens))


def resolve_connection(descriptor: str, registry: CredentialsRegistry) -> LoginCredentials:
    """Resolve a --connect descriptor to credentials."""
    tokens = [t.strip() for t in descriptor.split(",")]

    if len(tokens) == 1:
        profile = tokens[0]
        credentials = registry.get_credentials(profile)
        if credentials is None:
            raise UnknownProfile(
                f"A profile with the name '{profile}' was not found in the credentials registry",
                details={"profile": profile},
            )
        return credentials

    if len(tokens) == 4:
        environment, username, password, security_token = tokens
        connection_type = ConnectionType.parse(environment)
        if connection_type is None:
            raise MalformedConnectionString(
                f"Unrecognized Salesforce environment '{environment}' in connect string "
                "(expected PRODUCTION or SANDBOX)",
                details={"environment": environment},
            )
        if not username:
            raise MalformedConnectionString("Connect string is missing the username")
        return LoginCredentials(
            environment=connection_type,
            username=username,
            password=password,
            security_token=security_token,
        )

    raise MalformedConnectionString(
        f"Unrecognized format for the Salesforce connect string: {_masked(tokens)}",
        details={"token_count": len(tokens)},
    )
