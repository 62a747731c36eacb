"""
BigQuery Client
===============
Wraps google-cloud-bigquery with typed parameters, paged reads, deadlines
and error classification.
"""

import concurrent.futures
import json
from collections.abc import Iterator
from datetime import date, datetime
from typing import Any

from google.api_core import exceptions as gexc
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery
from google.oauth2 import service_account

from sqp_sync.config import Settings
from sqp_sync.errors import ConfigurationError, TransientWarehouseError, WarehouseError

# Server-side conditions worth retrying
TRANSIENT_ERRORS = (
    gexc.TooManyRequests,
    gexc.ServiceUnavailable,
    gexc.InternalServerError,
    gexc.BadGateway,
    gexc.GatewayTimeout,
    gexc.DeadlineExceeded,
)


def to_query_parameters(params: dict | None) -> list:
    """
    Convert a plain dict into BigQuery query parameters.

    Lists become ARRAY<STRING>, dates DATE, ints INT64, floats FLOAT64,
    everything else STRING.
    """
    parameters = []
    for name, value in (params or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            parameters.append(bigquery.ArrayQueryParameter(name, "STRING", sorted(value)))
        elif isinstance(value, datetime):
            parameters.append(bigquery.ScalarQueryParameter(name, "TIMESTAMP", value))
        elif isinstance(value, date):
            parameters.append(bigquery.ScalarQueryParameter(name, "DATE", value))
        elif isinstance(value, bool):
            parameters.append(bigquery.ScalarQueryParameter(name, "BOOL", value))
        elif isinstance(value, int):
            parameters.append(bigquery.ScalarQueryParameter(name, "INT64", value))
        elif isinstance(value, float):
            parameters.append(bigquery.ScalarQueryParameter(name, "FLOAT64", value))
        else:
            parameters.append(bigquery.ScalarQueryParameter(name, "STRING", value))
    return parameters


def _row_to_dict(row: Any) -> dict:
    return dict(row.items())


class WarehouseClient:
    """
    One logical warehouse connection.

    Every call takes an explicit deadline; an expired deadline is raised as
    TransientWarehouseError so the scheduler's retry path handles it.
    """

    def __init__(self, client: bigquery.Client, location: str = "US", default_timeout: float = 300.0):
        self.client = client
        self.location = location
        self.default_timeout = default_timeout

    def _run(self, sql: str, params: dict | None, timeout: float | None):
        timeout = timeout or self.default_timeout
        job_config = bigquery.QueryJobConfig(query_parameters=to_query_parameters(params))
        job = self.client.query(sql, job_config=job_config, location=self.location, timeout=timeout)
        return job, timeout

    def iter_pages(
        self,
        sql: str,
        params: dict | None = None,
        page_size: int = 1000,
        timeout: float | None = None,
    ) -> Iterator[list[dict]]:
        """
        Run a query and yield result pages of at most page_size rows.

        Raises:
            TransientWarehouseError: deadline expired or retryable server error
            WarehouseError: any other query failure
        """
        try:
            job, timeout = self._run(sql, params, timeout)
            result = job.result(page_size=page_size, timeout=timeout)
            for page in result.pages:
                yield [_row_to_dict(row) for row in page]
        except concurrent.futures.TimeoutError as e:
            raise TransientWarehouseError(f"Warehouse query exceeded {timeout}s deadline") from e
        except TRANSIENT_ERRORS as e:
            raise TransientWarehouseError(f"Transient warehouse error: {e}") from e
        except gexc.GoogleAPICallError as e:
            raise WarehouseError(f"Warehouse query failed: {e}") from e

    def query(self, sql: str, params: dict | None = None, timeout: float | None = None) -> list[dict]:
        """Run a query and return all rows. Use for small aggregate results only."""
        rows: list[dict] = []
        for page in self.iter_pages(sql, params, timeout=timeout):
            rows.extend(page)
        return rows

    def test_connection(self, timeout: float = 30.0) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            self.query("SELECT 1 AS ok", timeout=timeout)
            return True
        except WarehouseError:
            return False

    def close(self) -> None:
        self.client.close()


def load_credentials(settings: Settings):
    """
    Parse service account credentials from settings.

    Returns None when no JSON is configured (application default credentials).
    """
    if not settings.google_application_credentials_json:
        return None

    try:
        info = json.loads(settings.google_application_credentials_json)
        return service_account.Credentials.from_service_account_info(info)
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Invalid BigQuery service account credentials: {e}") from e


def create_warehouse_client(settings: Settings, verify: bool = False) -> WarehouseClient:
    """
    Build a WarehouseClient from settings.

    Args:
        settings: Application settings
        verify: Run a test query and fail fast when authentication is broken

    Raises:
        ConfigurationError: missing project or unusable credentials
    """
    if not settings.bigquery_project_id or not settings.bigquery_dataset:
        raise ConfigurationError("BigQuery configuration is required")

    credentials = load_credentials(settings)
    try:
        client = bigquery.Client(
            project=settings.bigquery_project_id,
            credentials=credentials,
            location=settings.bigquery_location,
        )
    except (gexc.GoogleAPIError, GoogleAuthError) as e:
        raise ConfigurationError(f"Unable to create BigQuery client: {e}") from e

    warehouse = WarehouseClient(
        client,
        location=settings.bigquery_location,
        default_timeout=settings.query_timeout_seconds,
    )

    if verify and not warehouse.test_connection():
        warehouse.close()
        raise ConfigurationError("BigQuery authentication failed")

    return warehouse
