"""
Operational Store
=================
Supabase client wrapper for the sqp schema.

Environment-aware routing:
    ENVIRONMENT=dev  → all tables go to 'dev' schema
    ENVIRONMENT=prod → tables go to their defined schema (sqp, public)
"""

from typing import Any

from sqp_sync.config import Settings
from sqp_sync.errors import ConfigurationError

SYNC_LOG_TABLE = "sqp.sync_log"
QUALITY_CHECK_TABLE = "sqp.data_quality_checks"
SUMMARY_CONFLICT_COLUMNS = "period_start,period_end,query,asin"

# Paged reads need a total order; log tables order by their serial id
LOG_TABLES = {SYNC_LOG_TABLE, QUALITY_CHECK_TABLE}

# Page size for reads from PostgREST (server caps responses at 1000 rows)
READ_PAGE_SIZE = 1000


def summary_table(period_type: str) -> str:
    """Target table for a period type (e.g. 'sqp.weekly_summary')."""
    return f"sqp.{period_type}_summary"


def paging_order(table_name: str) -> str:
    """Columns giving a table's rows a total order for offset paging."""
    return "id" if table_name in LOG_TABLES else SUMMARY_CONFLICT_COLUMNS


def create_supabase_client(settings: Settings):
    """
    Create a Supabase client from settings.

    Raises:
        ConfigurationError: if URL or service key is missing
    """
    if not settings.supabase_url or not settings.supabase_service_key:
        raise ConfigurationError("Supabase configuration is required")

    # Import here to avoid requiring supabase for pure transform work
    from supabase import ClientOptions, create_client

    options = ClientOptions(postgrest_client_timeout=settings.write_timeout_seconds)
    return create_client(settings.supabase_url, settings.supabase_service_key, options=options)


class OperationalStore:
    """
    Thin adapter over a Supabase client.

    All table names are given as 'schema.table' and routed through
    resolve_table() so dev runs never touch production schemas.
    """

    def __init__(self, client: Any, environment: str = "dev"):
        self.client = client
        self.environment = environment

    @classmethod
    def from_settings(cls, settings: Settings) -> "OperationalStore":
        return cls(create_supabase_client(settings), environment=settings.environment)

    def resolve_table(self, table_name: str) -> tuple[str, str]:
        """
        Resolve table name to (schema, table) based on environment.

        Examples:
            ENVIRONMENT=prod: 'sqp.sync_log' → ('sqp', 'sync_log')
            ENVIRONMENT=dev:  'sqp.sync_log' → ('dev', 'sqp_sync_log')
        """
        if "." in table_name:
            schema, table = table_name.split(".", 1)
        else:
            schema, table = "public", table_name

        if self.environment == "dev":
            return "dev", f"{schema}_{table}"

        return schema, table

    def _table(self, table_name: str):
        schema, table = self.resolve_table(table_name)
        return self.client.schema(schema).table(table)

    # ------------------------------------------------------------------ writes

    def upsert_batch(
        self,
        table_name: str,
        records: list[dict],
        on_conflict: str = SUMMARY_CONFLICT_COLUMNS,
        batch_size: int = 1000,
    ) -> int:
        """
        Upsert records in batches keyed by the natural key.

        Returns:
            Number of records upserted
        """
        if not records:
            return 0

        total = 0
        for i in range(0, len(records), batch_size):
            batch = records[i : i + batch_size]
            self._table(table_name).upsert(batch, on_conflict=on_conflict).execute()
            total += len(batch)

        return total

    def insert_row(self, table_name: str, record: dict) -> dict:
        """Insert one row and return it as stored (including generated id)."""
        result = self._table(table_name).insert(record).execute()
        return result.data[0] if result.data else {}

    def update_rows(self, table_name: str, values: dict, filters: dict) -> int:
        """Update rows matching all equality filters. Returns affected row count."""
        query = self._table(table_name).update(values)
        for col, val in filters.items():
            query = query.eq(col, val)
        result = query.execute()
        return len(result.data or [])

    def rpc(self, function_name: str, params: dict | None = None) -> Any:
        """Call a Postgres function exposed through PostgREST."""
        return self.client.rpc(function_name, params or {}).execute().data

    # ------------------------------------------------------------------- reads

    def select(
        self,
        table_name: str,
        columns: str = "*",
        filters: dict | None = None,
        gte: dict | None = None,
        lte: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        """
        Read records from a table.

        Args:
            table_name: Full table name (e.g., 'sqp.weekly_summary')
            columns: Columns to select (default: all)
            filters: Optional equality filters as {column: value}
            gte: Optional lower bounds as {column: value}
            lte: Optional upper bounds as {column: value}
            order_by: Optional column, or comma-separated columns, to order by
            descending: Order direction
            limit: Optional row limit
            offset: Optional row offset (requires limit)
        """
        query = self._table(table_name).select(columns)

        for col, val in (filters or {}).items():
            query = query.eq(col, val)
        for col, val in (gte or {}).items():
            query = query.gte(col, val)
        for col, val in (lte or {}).items():
            query = query.lte(col, val)

        if order_by:
            for col in order_by.split(","):
                query = query.order(col.strip(), desc=descending)

        if limit is not None and offset is not None:
            query = query.range(offset, offset + limit - 1)
        elif limit is not None:
            query = query.limit(limit)

        result = query.execute()
        return list(result.data or [])

    def select_all(
        self,
        table_name: str,
        columns: str = "*",
        filters: dict | None = None,
        gte: dict | None = None,
        lte: dict | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """
        Read every matching row, paging past the PostgREST response cap.

        Pages are cut with LIMIT/OFFSET, so rows are always ordered; order_by
        defaults to the table's paging_order().
        """
        order_by = order_by or paging_order(table_name)
        rows: list[dict] = []
        offset = 0

        while True:
            page = self.select(
                table_name,
                columns=columns,
                filters=filters,
                gte=gte,
                lte=lte,
                order_by=order_by,
                limit=READ_PAGE_SIZE,
                offset=offset,
            )
            rows.extend(page)
            if len(page) < READ_PAGE_SIZE:
                break
            offset += READ_PAGE_SIZE

        return rows

    def latest_period_end(self, table_name: str) -> str | None:
        """Most recent period_end in a summary table, or None when empty."""
        rows = self.select(
            table_name, columns="period_end", order_by="period_end", descending=True, limit=1
        )
        return rows[0]["period_end"] if rows else None
