"""Salesforce session: login, table enumeration, describe and record streaming."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import SalesforceAuthenticationFailed, SalesforceError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from urllib3.util.retry import Retry

from copyforce.credentials import LoginCredentials
from copyforce.exceptions import AuthenticationError, LoginTimeoutError, SalesforceAPIError
from copyforce.logging_utils import get_logger, log_operation
from copyforce.models import TableSchema

logger = get_logger(__name__)

HTTP_MAX_RETRIES = 3


class TimeoutHTTPAdapter(HTTPAdapter):
    """HTTPAdapter that applies a default timeout to every request."""

    def __init__(self, timeout: float, *args, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def create_http_session(timeout_ms: int) -> requests.Session:
    """Create a requests session with retries and a per-call timeout."""
    session = requests.Session()

    retry_strategy = Retry(
        total=HTTP_MAX_RETRIES,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        backoff_factor=1,
    )

    adapter = TimeoutHTTPAdapter(
        timeout=timeout_ms / 1000.0,
        max_retries=retry_strategy,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session


def _connect(credentials: LoginCredentials, http: requests.Session, timeout_ms: int) -> Salesforce:
    try:
        return Salesforce(
            username=credentials.username,
            password=credentials.password,
            security_token=credentials.security_token,
            domain=credentials.domain,
            session=http,
        )
    except SalesforceAuthenticationFailed as e:
        raise AuthenticationError(
            f"Salesforce rejected the login for '{credentials.username}'",
            details={"username": credentials.username, "environment": credentials.environment.value},
        ) from e
    except requests.exceptions.Timeout as e:
        raise LoginTimeoutError(
            f"Salesforce login for '{credentials.username}' timed out after {timeout_ms}ms",
            details={"username": credentials.username, "timeout_ms": timeout_ms},
        ) from e
    except requests.exceptions.RequestException as e:
        raise SalesforceAPIError(
            f"Failed to connect to Salesforce: {e}",
            details={"environment": credentials.environment.value},
        ) from e


def login(credentials: LoginCredentials, timeout_ms: int) -> "SalesforceSession":
    """Authenticate and return a session bound to one extraction run."""
    http = create_http_session(timeout_ms)
    with log_operation(
        logger,
        "salesforce_login",
        username=credentials.username,
        environment=credentials.environment.value,
    ):
        try:
            client = _connect(credentials, http, timeout_ms)
        except Exception:
            http.close()
            raise
    return SalesforceSession(client, http)


@retry(
    retry=retry_if_exception_type((requests.exceptions.ConnectionError,)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _call_with_retry(fn, *args, **kwargs):
    return fn(*args, **kwargs)


def build_soql(schema: TableSchema) -> str:
    return f"SELECT {', '.join(schema.field_names)} FROM {schema.name}"


class SalesforceSession:
    """Authenticated handle to one Salesforce org."""

    def __init__(self, client: Salesforce, http: requests.Session | None = None):
        self.client = client
        self._http = http

    def _api_call(self, what: str, fn, *args, **kwargs) -> Any:
        try:
            return _call_with_retry(fn, *args, **kwargs)
        except (SalesforceError, requests.exceptions.RequestException) as e:
            raise SalesforceAPIError(f"Salesforce {what} failed: {e}") from e

    def list_tables(self) -> list[str]:
        """Names of every sObject that can be queried, sorted."""
        describe = self._api_call("describe", self.client.describe)
        names = [
            s["name"]
            for s in describe.get("sobjects", [])
            if s.get("queryable") and s.get("retrieveable")
        ]
        logger.debug("Enumerated Salesforce tables", extra={"table_count": len(names)})
        return sorted(names)

    def describe_table(self, table: str) -> TableSchema:
        describe = self._api_call(f"describe of {table}", self.client.restful, f"sobjects/{table}/describe")
        return TableSchema.from_describe(table, describe)

    def iter_records(self, schema: TableSchema) -> Iterator[dict]:
        """Stream every record of a table, without the 'attributes' envelope."""
        if not schema.fields:
            logger.warning("Table has no transferable fields", extra={"table": schema.name})
            return

        soql = build_soql(schema)
        try:
            for record in self.client.query_all_iter(soql):
                row = dict(record)
                row.pop("attributes", None)
                yield row
        except (SalesforceError, requests.exceptions.RequestException) as e:
            raise SalesforceAPIError(f"Query of {schema.name} failed: {e}", details={"table": schema.name}) from e

    def close(self) -> None:
        if self._http is not None:
            self._http.close()

    def __enter__(self) -> "SalesforceSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
