"""
Tests for warehouse SQL builders and parameter conversion.
"""

from datetime import date

import pytest

from sqp_sync.errors import WarehouseError
from sqp_sync.warehouse.client import to_query_parameters
from sqp_sync.warehouse.queries import (
    build_aggregate_query,
    build_distribution_query,
    build_extract_query,
    build_query_rows_query,
    check_columns,
    period_trunc,
)


class TestBuilders:
    def test_extract_ordered_by_query(self):
        sql = build_extract_query("p.d.t")
        assert "ORDER BY LOWER(TRIM(search_query))" in sql
        assert "@asins" not in sql

    def test_extract_asin_filter(self):
        assert "IN UNNEST(@asins)" in build_extract_query("p.d.t", filter_asins=True)

    def test_table_is_quoted(self):
        assert "`p.d.seller-search_query_performance`" in build_extract_query("p.d.seller-search_query_performance")

    def test_distribution_by_query(self):
        sql = build_distribution_query("p.d.t", by_query=True)
        assert "@query" in sql
        assert "GROUP BY 1" in sql

    def test_aggregate_counts_distinct_keys(self):
        sql = build_aggregate_query("p.d.t", "weekly")
        assert "COUNT(DISTINCT CONCAT(" in sql
        assert "WEEK(MONDAY)" in sql

    def test_query_rows(self):
        sql = build_query_rows_query("p.d.t", "monthly")
        assert "DATE_TRUNC(DATE(start_date), MONTH) AS period_start" in sql
        assert "GROUP BY 1, 2, 3" in sql


class TestPeriodTrunc:
    def test_week_start_day(self):
        assert "WEEK(SUNDAY)" in period_trunc("weekly", week_starts_on=6)

    def test_unknown(self):
        with pytest.raises(ValueError):
            period_trunc("daily")


class TestCheckColumns:
    def test_empty_page_passes(self):
        check_columns([])

    def test_missing_column_named(self, make_row):
        row = make_row()
        del row["asin_click_count"]
        with pytest.raises(WarehouseError, match="asin_click_count"):
            check_columns([row])

    def test_optional_columns_may_be_absent(self, make_row):
        row = make_row()
        del row["search_query_volume"]
        check_columns([row])


class TestQueryParameters:
    def test_types(self):
        params = {p.name: p for p in to_query_parameters(
            {"start_date": date(2025, 1, 6), "asins": ["B2", "B1"], "query": "shoes", "limit": 5}
        )}
        assert params["start_date"].type_ == "DATE"
        assert params["asins"].array_type == "STRING"
        assert params["asins"].values == ["B1", "B2"]
        assert params["query"].type_ == "STRING"
        assert params["limit"].type_ == "INT64"
