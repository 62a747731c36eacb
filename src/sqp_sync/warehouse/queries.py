"""
Warehouse Queries
=================
SQL builders for the SQP source table.

The column list below is the versioned contract with the warehouse. A
renamed source column must be changed here and in the transformer; a page
missing a required column fails loudly instead of syncing zeros.
"""

from sqp_sync.errors import WarehouseError

SCHEMA_VERSION = "2025-01"

REQUIRED_COLUMNS = [
    "search_query",
    "asin",
    "start_date",
    "end_date",
    "asin_impression_count",
    "asin_click_count",
    "asin_cart_add_count",
    "asin_purchase_count",
]

# Nullable upstream; derived by the transformer when NULL
OPTIONAL_COLUMNS = [
    "search_query_score",
    "search_query_volume",
    "total_query_impression_count",
    "total_click_count",
    "total_cart_add_count",
    "total_purchase_count",
    "asin_click_rate",
    "asin_conversion_rate",
]

SOURCE_COLUMNS = REQUIRED_COLUMNS + OPTIONAL_COLUMNS

WEEKDAYS = ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY"]

NORMALIZED_QUERY = "LOWER(TRIM(search_query))"
NORMALIZED_ASIN = "UPPER(TRIM(asin))"


def quote_table(table: str) -> str:
    return f"`{table}`"


def period_trunc(period_type: str, week_starts_on: int = 0) -> str:
    """BigQuery expression truncating start_date to its period bucket."""
    column = "DATE(start_date)"
    if period_type == "weekly":
        return f"DATE_TRUNC({column}, WEEK({WEEKDAYS[week_starts_on]}))"
    if period_type == "monthly":
        return f"DATE_TRUNC({column}, MONTH)"
    if period_type == "quarterly":
        return f"DATE_TRUNC({column}, QUARTER)"
    if period_type == "yearly":
        return f"DATE_TRUNC({column}, YEAR)"
    raise ValueError(f"Unknown period type: {period_type}")


def _where(asins: bool = False, query: bool = False) -> str:
    clauses = ["DATE(start_date) BETWEEN @start_date AND @end_date"]
    if asins:
        clauses.append(f"{NORMALIZED_ASIN} IN UNNEST(@asins)")
    if query:
        clauses.append(f"{NORMALIZED_QUERY} = @query")
    return "WHERE " + "\n          AND ".join(clauses)


def build_extract_query(table: str, filter_asins: bool = False) -> str:
    """
    Row-level extract for a date window.

    Ordered by normalized query so every query group arrives contiguously
    and can be completed before shares are computed.
    """
    columns = ",\n          ".join(SOURCE_COLUMNS)
    return f"""
        SELECT
          {columns}
        FROM {quote_table(table)}
        {_where(asins=filter_asins)}
        ORDER BY {NORMALIZED_QUERY}, DATE(start_date), {NORMALIZED_ASIN}
    """


def build_distribution_query(table: str, by_query: bool = False) -> str:
    """Per-ASIN impression volume for a window (optionally one query)."""
    return f"""
        SELECT
          {NORMALIZED_ASIN} AS asin,
          COUNT(*) AS row_count,
          SUM(asin_impression_count) AS impressions,
          SUM(asin_click_count) AS clicks,
          SUM(asin_purchase_count) AS purchases
        FROM {quote_table(table)}
        {_where(query=by_query)}
        GROUP BY 1
        ORDER BY impressions DESC, asin ASC
    """


def build_aggregate_query(
    table: str,
    period_type: str,
    week_starts_on: int = 0,
    filter_asins: bool = False,
    by_query: bool = False,
) -> str:
    """
    Window totals comparable with the operational store.

    total_rows counts distinct (period, query, asin) keys, which is what one
    synced summary row represents.
    """
    bucket = period_trunc(period_type, week_starts_on)
    return f"""
        SELECT
          COUNT(DISTINCT CONCAT(CAST({bucket} AS STRING), '|', {NORMALIZED_QUERY}, '|', {NORMALIZED_ASIN})) AS total_rows,
          COUNT(DISTINCT {NORMALIZED_QUERY}) AS distinct_queries,
          COUNT(DISTINCT {NORMALIZED_ASIN}) AS distinct_asins,
          COALESCE(SUM(asin_impression_count), 0) AS total_impressions,
          COALESCE(SUM(asin_click_count), 0) AS total_clicks,
          COALESCE(SUM(asin_purchase_count), 0) AS total_purchases
        FROM {quote_table(table)}
        {_where(asins=filter_asins, query=by_query)}
    """


def build_query_rows_query(table: str, period_type: str, week_starts_on: int = 0) -> str:
    """Per (period, asin) aggregates for one search query, used by compare."""
    bucket = period_trunc(period_type, week_starts_on)
    return f"""
        SELECT
          {bucket} AS period_start,
          {NORMALIZED_QUERY} AS query,
          {NORMALIZED_ASIN} AS asin,
          SUM(asin_impression_count) AS impressions,
          SUM(asin_click_count) AS clicks,
          SUM(asin_purchase_count) AS purchases
        FROM {quote_table(table)}
        {_where(query=True)}
        GROUP BY 1, 2, 3
        ORDER BY 1, 3
    """


def check_columns(page: list[dict]) -> None:
    """
    Verify a result page honours the column contract.

    Raises:
        WarehouseError: naming the missing columns
    """
    if not page:
        return
    missing = [col for col in REQUIRED_COLUMNS if col not in page[0]]
    if missing:
        raise WarehouseError(
            f"Warehouse schema {SCHEMA_VERSION} contract broken, missing columns: {', '.join(missing)}"
        )
