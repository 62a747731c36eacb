"""
Pytest Configuration
====================
Shared fixtures for all tests.

The warehouse and the operational store are replaced by in-memory fakes
that honour the same call surface as WarehouseClient and OperationalStore.
"""

import os
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, timedelta

import pytest


@pytest.fixture(scope="session", autouse=True)
def set_test_env():
    """Set up test environment variables before any tests run."""
    os.environ["BIGQUERY_PROJECT_ID"] = os.environ.get("BIGQUERY_PROJECT_ID", "test-project")
    os.environ["BIGQUERY_DATASET"] = os.environ.get("BIGQUERY_DATASET", "sqp")
    os.environ["SUPABASE_URL"] = os.environ.get("SUPABASE_URL", "https://test.supabase.co")
    os.environ["SUPABASE_SERVICE_KEY"] = os.environ.get("SUPABASE_SERVICE_KEY", "test-key")
    os.environ["ENVIRONMENT"] = os.environ.get("ENVIRONMENT", "dev")

    # Clear any cached settings
    from sqp_sync.config import get_settings

    get_settings.cache_clear()

    yield

    # Clean up after tests
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Settings with fast retries and no view refresh noise."""
    from sqp_sync.config import Settings

    return Settings(
        bigquery_project_id="test-project",
        bigquery_dataset="sqp",
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-key",
        retry_delay_ms=10,
        batch_size=1000,
    )


# =============================================================================
# Raw row builder
# =============================================================================


def raw_row(query="running shoes", asin="B000000001", day="2025-01-06", impressions=100, clicks=10,
            cart_adds=4, purchases=2, **extra):
    """One warehouse row in the source column layout."""
    start = date.fromisoformat(day)
    row = {
        "search_query": query,
        "asin": asin,
        "start_date": start,
        "end_date": start + timedelta(days=6),
        "asin_impression_count": impressions,
        "asin_click_count": clicks,
        "asin_cart_add_count": cart_adds,
        "asin_purchase_count": purchases,
        "search_query_score": 1,
        "search_query_volume": 5000,
        "total_query_impression_count": 10000,
        "total_click_count": 1000,
        "total_cart_add_count": 300,
        "total_purchase_count": 100,
        "asin_click_rate": None,
        "asin_conversion_rate": None,
    }
    row.update(extra)
    return row


@pytest.fixture
def make_row():
    return raw_row


# =============================================================================
# Fake warehouse
# =============================================================================


def _norm_query(value):
    return str(value or "").strip().lower()


def _norm_asin(value):
    return str(value or "").strip().upper()


class FakeWarehouseClient:
    """
    In-memory stand-in for WarehouseClient.

    Dispatches on the shape of the SQL built by sqp_sync.warehouse.queries.
    `failures` is a list of exceptions raised (in order) by extract calls.
    """

    def __init__(self, rows=None, failures=None):
        self.rows = list(rows or [])
        self.failures = list(failures or [])
        self.calls = []
        self.closed = False

    def _in_window(self, row, params):
        day = row["start_date"]
        return params["start_date"] <= day <= params["end_date"]

    def _selected(self, params):
        rows = [r for r in self.rows if self._in_window(r, params)]
        if "asins" in params:
            wanted = set(params["asins"])
            rows = [r for r in rows if _norm_asin(r["asin"]) in wanted]
        if "query" in params:
            rows = [r for r in rows if _norm_query(r["search_query"]) == params["query"]]
        return rows

    def _aggregate(self, rows):
        keys = {(r["start_date"], _norm_query(r["search_query"]), _norm_asin(r["asin"])) for r in rows}
        return [
            {
                "total_rows": len(keys),
                "distinct_queries": len({_norm_query(r["search_query"]) for r in rows}),
                "distinct_asins": len({_norm_asin(r["asin"]) for r in rows}),
                "total_impressions": sum(r["asin_impression_count"] for r in rows),
                "total_clicks": sum(r["asin_click_count"] for r in rows),
                "total_purchases": sum(r["asin_purchase_count"] for r in rows),
            }
        ]

    def _distribution(self, rows):
        volume = defaultdict(lambda: {"row_count": 0, "impressions": 0, "clicks": 0, "purchases": 0})
        for r in rows:
            v = volume[_norm_asin(r["asin"])]
            v["row_count"] += 1
            v["impressions"] += r["asin_impression_count"]
            v["clicks"] += r["asin_click_count"]
            v["purchases"] += r["asin_purchase_count"]
        out = [{"asin": a, **v} for a, v in volume.items()]
        return sorted(out, key=lambda r: (-r["impressions"], r["asin"]))

    def _query_rows(self, rows):
        grouped = defaultdict(lambda: {"impressions": 0, "clicks": 0, "purchases": 0})
        for r in rows:
            g = grouped[(r["start_date"], _norm_query(r["search_query"]), _norm_asin(r["asin"]))]
            g["impressions"] += r["asin_impression_count"]
            g["clicks"] += r["asin_click_count"]
            g["purchases"] += r["asin_purchase_count"]
        return [
            {"period_start": k[0], "query": k[1], "asin": k[2], **v} for k, v in sorted(grouped.items())
        ]

    def iter_pages(self, sql, params=None, page_size=1000, timeout=None):
        params = params or {}
        self.calls.append({"sql": sql, "params": params, "page_size": page_size, "timeout": timeout})
        rows = self._selected(params)

        if "total_rows" in sql:
            result = self._aggregate(rows)
        elif "row_count" in sql:
            result = self._distribution(rows)
        elif "GROUP BY 1, 2, 3" in sql:
            result = self._query_rows(rows)
        else:
            if self.failures:
                raise self.failures.pop(0)
            result = sorted(
                rows, key=lambda r: (_norm_query(r["search_query"]), r["start_date"], _norm_asin(r["asin"]))
            )

        for i in range(0, len(result), page_size):
            yield [dict(r) for r in result[i : i + page_size]]

    def query(self, sql, params=None, timeout=None):
        rows = []
        for page in self.iter_pages(sql, params, timeout=timeout):
            rows.extend(page)
        return rows

    def test_connection(self, timeout=30.0):
        return True

    def close(self):
        self.closed = True


class FakePool:
    """Single-connection pool exposing the ConnectionPool surface used by services."""

    def __init__(self, client):
        self.client = client
        self.drained = False

    @contextmanager
    def connection(self):
        yield self.client

    def drain(self, timeout=None):
        self.drained = True
        return True


# =============================================================================
# Fake operational store
# =============================================================================


class FakeStore:
    """
    In-memory stand-in for OperationalStore.

    Tables are keyed by their logical 'schema.table' name. `fail_when` is a
    predicate; any upsert batch containing a matching row raises.
    """

    def __init__(self, fail_when=None):
        self.tables = defaultdict(dict)
        self.fail_when = fail_when
        self.rpc_calls = []
        self.rpc_results = {}
        self.rpc_errors = {}
        self.upsert_calls = 0
        self._ids = 0

    def rows(self, table):
        return list(self.tables[table].values())

    def upsert_batch(self, table_name, records, on_conflict="period_start,period_end,query,asin", batch_size=1000):
        self.upsert_calls += 1
        if self.fail_when and any(self.fail_when(r) for r in records):
            raise RuntimeError("violates check constraint")
        keys = on_conflict.split(",")
        for record in records:
            self.tables[table_name][tuple(record[k] for k in keys)] = dict(record)
        return len(records)

    def insert_row(self, table_name, record):
        self._ids += 1
        row = {"id": self._ids, **record}
        self.tables[table_name][self._ids] = row
        return dict(row)

    def update_rows(self, table_name, values, filters):
        updated = 0
        for row in self.tables[table_name].values():
            if all(row.get(c) == v for c, v in filters.items()):
                row.update(values)
                updated += 1
        return updated

    def rpc(self, function_name, params=None):
        self.rpc_calls.append((function_name, params or {}))
        if function_name in self.rpc_errors:
            raise self.rpc_errors[function_name]
        return self.rpc_results.get(function_name)

    def select(self, table_name, columns="*", filters=None, gte=None, lte=None, order_by=None,
               descending=False, limit=None, offset=None):
        rows = self.rows(table_name)
        rows = [r for r in rows if all(r.get(c) == v for c, v in (filters or {}).items())]
        rows = [r for r in rows if all(r.get(c) is not None and r.get(c) >= v for c, v in (gte or {}).items())]
        rows = [r for r in rows if all(r.get(c) is not None and r.get(c) <= v for c, v in (lte or {}).items())]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        start = offset or 0
        end = start + limit if limit is not None else None
        return [dict(r) for r in rows[start:end]]

    def select_all(self, table_name, columns="*", filters=None, gte=None, lte=None, order_by=None):
        return self.select(table_name, columns, filters, gte, lte, order_by)

    def latest_period_end(self, table_name):
        rows = self.select(table_name, order_by="period_end", descending=True, limit=1)
        return rows[0]["period_end"] if rows else None


@pytest.fixture
def warehouse():
    return FakeWarehouseClient()


@pytest.fixture
def pool(warehouse):
    return FakePool(warehouse)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def service(pool, store, settings):
    from sqp_sync.sync.service import SyncService

    return SyncService(pool, store, settings)
