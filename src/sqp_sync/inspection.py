"""
Data Inspector
==============
Read-only distribution and statistics collection over warehouse data and
transformed records. Feeds the sync `inspect` option and the CLI.
"""

import statistics
from collections import defaultdict
from datetime import date

from sqp_sync.config import Settings
from sqp_sync.filters import RepresentativeAsins, TopAsins, rank_candidates
from sqp_sync.logs import get_logger
from sqp_sync.transform.records import TransformedRecord, normalize_query, ratio
from sqp_sync.warehouse.pool import ConnectionPool
from sqp_sync.warehouse.queries import build_distribution_query

TOP_N = 100


def describe_values(values: list[float]) -> dict:
    """min/max/mean/median/stddev of a numeric series (zeros when empty)."""
    if not values:
        return {"min": 0, "max": 0, "mean": 0.0, "median": 0.0, "std_dev": 0.0}
    return {
        "min": min(values),
        "max": max(values),
        "mean": round(statistics.fmean(values), 6),
        "median": statistics.median(values),
        "std_dev": round(statistics.pstdev(values), 6),
    }


def collect_statistics(records: list[TransformedRecord], source_records: int | None = None) -> dict:
    """
    Summarize transformed records for an inspection report.

    Args:
        records: Records produced by the sync pass
        source_records: Raw warehouse rows read (defaults to len(records))
    """
    by_asin: dict[str, int] = defaultdict(int)
    for r in records:
        by_asin[r.asin] += r.impressions

    impressions = sum(r.impressions for r in records)
    clicks = sum(r.clicks for r in records)
    purchases = sum(r.purchases for r in records)
    ranked = rank_candidates({"asin": a, "impressions": n} for a, n in by_asin.items())

    return {
        "source_records": len(records) if source_records is None else source_records,
        "synced_records": len(records),
        "distinct_queries": len({r.query for r in records}),
        "asin_distribution": {
            "total": len(by_asin),
            "top": [{"asin": a, "impressions": n} for a, n in ranked[:10]],
        },
        "metrics": {
            "total_impressions": impressions,
            "total_clicks": clicks,
            "total_purchases": purchases,
            "avg_ctr": ratio(clicks, impressions),
            "avg_cvr": ratio(purchases, clicks),
        },
        "field_statistics": {
            "impressions": describe_values([r.impressions for r in records]),
            "clicks": describe_values([r.clicks for r in records]),
            "purchases": describe_values([r.purchases for r in records]),
            "ctr": describe_values([r.ctr for r in records]),
        },
    }


def sampling_strategies(distribution: dict) -> dict:
    """
    Candidate filter strategies for a distribution, with the impressions each would cover.

    Args:
        distribution: Output of DataInspector.analyze_asin_distribution()
    """
    top = distribution.get("top_asins", [])
    total = distribution.get("total_asins", 0)
    volume = {row["asin"]: row.get("impressions") or 0 for row in top}

    def estimate(asins: list[str]) -> int:
        return sum(volume.get(a, 0) for a in asins)

    strategies = {
        "all": {
            "name": "All ASINs",
            "asins": None,
            "estimated_impressions": distribution.get("metrics", {}).get("total_impressions", 0),
        }
    }
    for n in (1, 5, 10):
        asins = TopAsins(n).resolve(top)
        strategies[f"top{n}"] = {"name": f"Top {n}", "asins": asins, "estimated_impressions": estimate(asins)}

    sample = RepresentativeAsins(max(1, -(-total // 10))).resolve(top)
    strategies["representative"] = {
        "name": "Representative (10%)",
        "asins": sample,
        "estimated_impressions": estimate(sample),
    }
    return strategies


class DataInspector:
    """Warehouse-side inspection queries."""

    def __init__(self, pool: ConnectionPool, settings: Settings):
        self.pool = pool
        self.settings = settings

    def asin_volumes(self, start: date, end: date, query: str | None = None) -> list[dict]:
        """Per-ASIN impression volume for a window, highest first."""
        params = {"start_date": start, "end_date": end}
        if query is not None:
            params["query"] = normalize_query(query)
        sql = build_distribution_query(self.settings.source_table, by_query=query is not None)

        with self.pool.connection() as client:
            return client.query(sql, params, timeout=self.settings.query_timeout_seconds)

    def analyze_asin_distribution(self, query: str, start: date, end: date) -> dict:
        """ASIN distribution for one search query."""
        logger = get_logger(__name__)
        logger.info(f"🔍 Analyzing ASIN distribution for {query!r} ({start} to {end})")

        rows = self.asin_volumes(start, end, query=query)
        ranked = rank_candidates(rows)
        impressions = [n for _, n in ranked]
        by_asin = {str(r.get("asin") or "").strip().upper(): r for r in rows}

        top = []
        for rank, (asin, n) in enumerate(ranked[:TOP_N], 1):
            row = by_asin.get(asin, {})
            top.append(
                {
                    "asin": asin,
                    "rank": rank,
                    "impressions": n,
                    "clicks": row.get("clicks") or 0,
                    "purchases": row.get("purchases") or 0,
                    "row_count": row.get("row_count") or 0,
                }
            )

        return {
            "query": normalize_query(query),
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            "total_asins": len(ranked),
            "top_asins": top,
            "metrics": {
                "total_impressions": sum(impressions),
                "total_clicks": sum(r.get("clicks") or 0 for r in rows),
                "total_purchases": sum(r.get("purchases") or 0 for r in rows),
                "median_impressions": statistics.median(impressions) if impressions else 0,
            },
        }
