"""
Sync Service
============
Moves one window of SQP data from the warehouse into the operational store.

Pipeline per call:
    resolve ASIN filter → page extract → group by query → transform/validate
    → merge → shares → batched upsert → optional validation / inspection

The extract is ordered by normalized query, so a query group is always
complete before its shares are computed and is never split across write
batches.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date

from sqp_sync.config import Settings
from sqp_sync.db import SUMMARY_CONFLICT_COLUMNS, OperationalStore, summary_table
from sqp_sync.errors import RowError, TransientWarehouseError, WarehouseError
from sqp_sync.filters import AllAsins, AsinFilter
from sqp_sync.inspection import DataInspector, collect_statistics
from sqp_sync.logs import get_logger
from sqp_sync.transform import (
    SyncWindow,
    TransformedRecord,
    compute_group_shares,
    merge_duplicates,
    normalize_query,
    parse_date,
    to_record,
    validate_record,
)
from sqp_sync.validation.comparator import DataComparator
from sqp_sync.validation.data_quality import validate_data_quality
from sqp_sync.validation.quality import QualityChecker, store_bounds, window_params
from sqp_sync.warehouse.pool import ConnectionPool
from sqp_sync.warehouse.queries import build_extract_query, build_query_rows_query, check_columns

REFRESH_VIEW_RPC = "refresh_materialized_view_concurrently"
COMPARE_KEY_FIELDS = ["period_start", "query", "asin"]
COMPARE_VALUE_FIELDS = ["impressions", "clicks", "purchases"]


@dataclass
class SyncResult:
    """Outcome of one sync_period_data() call."""

    success: bool
    window: dict
    dry_run: bool = False
    source_records: int = 0
    records_synced: int = 0
    records_failed: int = 0
    would_sync: int | None = None
    validation: dict | None = None
    inspection: dict | None = None
    errors: list[dict] = field(default_factory=list)
    error: str | None = None
    retryable: bool = False

    def add_error(self, row_error: RowError) -> None:
        self.errors.append(row_error.to_dict())
        self.records_failed += 1

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "window": self.window,
            "dry_run": self.dry_run,
            "source_records": self.source_records,
            "records_synced": self.records_synced,
            "records_failed": self.records_failed,
            "would_sync": self.would_sync,
            "validation": self.validation,
            "inspection": self.inspection,
            "errors": self.errors,
            "error": self.error,
        }


def group_by_query(pages: Iterable[list[dict]]) -> Iterator[list[dict]]:
    """
    Regroup a query-ordered page stream into one list per normalized query.

    Pages may cut a group anywhere; groups are yielded only once complete.
    """
    current_key = None
    buffer: list[dict] = []

    for page in pages:
        check_columns(page)
        for raw in page:
            key = normalize_query(raw.get("search_query"))
            if buffer and key != current_key:
                yield buffer
                buffer = []
            current_key = key
            buffer.append(raw)

    if buffer:
        yield buffer


def _error_for(record: TransformedRecord, stage: str, message: str) -> RowError:
    return RowError(
        stage=stage,
        error=message,
        query=record.query,
        asin=record.asin,
        period_start=record.period_start.isoformat(),
        period_end=record.period_end.isoformat(),
        source_date=record.source_date.isoformat() if record.source_date else None,
    )


class SyncService:
    """
    Sync engine for one warehouse → store pipeline.

    Args:
        pool: Warehouse connection pool
        store: Operational store adapter
        settings: Runtime settings (batch size, deadlines, thresholds)
    """

    def __init__(self, pool: ConnectionPool, store: OperationalStore, settings: Settings):
        self.pool = pool
        self.store = store
        self.settings = settings
        self.inspector = DataInspector(pool, settings)

    # ================================================================ extract

    def resolve_asins(self, window: SyncWindow, asin_filter: AsinFilter) -> list[str] | None:
        """ASINs in scope, or None when the filter keeps everything."""
        if not asin_filter.needs_distribution:
            return None
        distribution = self.inspector.asin_volumes(window.start, window.end)
        return asin_filter.resolve(distribution)

    def extract_groups(self, window: SyncWindow, asins: list[str] | None) -> Iterator[list[dict]]:
        """Page through the warehouse extract, yielding complete query groups."""
        params = window_params(window)
        if asins is not None:
            params["asins"] = asins
        sql = build_extract_query(self.settings.source_table, filter_asins=asins is not None)

        with self.pool.connection() as client:
            pages = client.iter_pages(
                sql,
                params,
                page_size=self.settings.batch_size,
                timeout=self.settings.query_timeout_seconds,
            )
            yield from group_by_query(pages)

    # ============================================================== transform

    def transform_group(
        self, group: list[dict], window: SyncWindow, result: SyncResult
    ) -> list[TransformedRecord]:
        """Transform one query group; rejected rows are recorded on result."""
        valid = []
        for raw in group:
            try:
                record = to_record(raw, window, self.settings.week_starts_on)
            except (TypeError, ValueError) as e:
                result.add_error(
                    RowError(
                        stage="transform",
                        error=str(e),
                        query=normalize_query(raw.get("search_query")),
                        asin=str(raw.get("asin") or ""),
                        period_start=str(raw.get("start_date") or ""),
                        period_end=str(raw.get("end_date") or ""),
                        source_date=str(raw.get("start_date") or ""),
                    )
                )
                continue

            violations = validate_record(record)
            if violations:
                result.add_error(_error_for(record, "validate", "; ".join(violations)))
                continue
            valid.append(record)

        return compute_group_shares(merge_duplicates(valid))

    # ================================================================== load

    def write_batch(self, table: str, records: list[TransformedRecord], result: SyncResult) -> None:
        """
        Upsert a batch. If the batch is rejected, retry row by row so one bad
        row does not take its neighbours down with it.
        """
        if not records:
            return

        logger = get_logger(__name__)
        rows = [r.to_row() for r in records]
        try:
            result.records_synced += self.store.upsert_batch(
                table, rows, on_conflict=SUMMARY_CONFLICT_COLUMNS, batch_size=len(rows)
            )
            return
        except Exception as e:
            logger.warning(f"⚠️  Batch upsert of {len(rows):,} rows failed, isolating rows: {e}")

        for record, row in zip(records, rows):
            try:
                result.records_synced += self.store.upsert_batch(
                    table, [row], on_conflict=SUMMARY_CONFLICT_COLUMNS, batch_size=1
                )
            except Exception as e:
                result.add_error(_error_for(record, "write", str(e)))

    # ================================================================== sync

    def sync_period_data(
        self,
        period_type: str,
        start: date | str,
        end: date | str,
        asin_filter: AsinFilter | None = None,
        dry_run: bool = False,
        validate_data: bool = False,
        inspect: bool = False,
    ) -> SyncResult:
        """
        Sync one window.

        Args:
            period_type: weekly | monthly | quarterly | yearly
            start: First day of the window (inclusive)
            end: Last day of the window (inclusive)
            asin_filter: Which ASINs are in scope (default: all)
            dry_run: Transform and count, write nothing
            validate_data: Attach a row-level validation report
            inspect: Attach distribution statistics

        Returns:
            SyncResult. Warehouse failures give success=False; row failures
            are itemized in errors[] without failing the call.
        """
        logger = get_logger(__name__)
        asin_filter = asin_filter or AllAsins()
        window = SyncWindow(parse_date(start), parse_date(end), period_type)
        table = summary_table(window.period_type.value)

        logger.info("=" * 60)
        logger.info(f"🔄 SQP SYNC: {window.period_type.value} {window.start} → {window.end}")
        logger.info(f"   Filter: {asin_filter.describe()}")
        if dry_run:
            logger.info("   🧪 DRY RUN: nothing will be written")
        logger.info("=" * 60)

        result = SyncResult(success=True, window=window.to_dict(), dry_run=dry_run)
        if dry_run:
            result.would_sync = 0

        keep_records = inspect or (dry_run and validate_data)
        collected: list[TransformedRecord] = []
        batch: list[TransformedRecord] = []

        try:
            asins = self.resolve_asins(window, asin_filter)
            if asins is not None:
                logger.info(f"   {len(asins):,} ASINs in scope")

            if asins != []:
                for group in self.extract_groups(window, asins):
                    result.source_records += len(group)
                    records = self.transform_group(group, window, result)
                    if keep_records:
                        collected.extend(records)

                    if dry_run:
                        result.would_sync += len(records)
                        continue

                    batch.extend(records)
                    if len(batch) >= self.settings.batch_size:
                        self.write_batch(table, batch, result)
                        logger.info(f"   💾 {result.records_synced:,} rows written")
                        batch = []

                if not dry_run:
                    self.write_batch(table, batch, result)

        except WarehouseError as e:
            logger.error(f"❌ Warehouse error, aborting sync: {e}")
            result.success = False
            result.error = str(e)
            result.retryable = isinstance(e, TransientWarehouseError)
            result.errors.append(RowError(stage="extract", error=str(e)).to_dict())
            return result

        logger.info(
            f"✅ Read {result.source_records:,} | synced {result.records_synced:,} | "
            f"failed {result.records_failed:,}"
            + (f" | would sync {result.would_sync:,}" if dry_run else "")
        )

        if validate_data:
            if dry_run:
                rows = [r.to_row() for r in collected]
            else:
                gte, lte = store_bounds(window, self.settings.week_starts_on)
                rows = self.store.select_all(table, gte=gte, lte=lte)
            result.validation = validate_data_quality(rows, self.settings.outlier_zscore).to_dict()

        if inspect:
            result.inspection = collect_statistics(collected, result.source_records)

        return result

    # =============================================================== compare

    def compare_period_data(self, query: str, period_type: str, start: date | str, end: date | str) -> dict:
        """
        Compare warehouse aggregates with stored rows for one search query.

        Returns:
            Dict with count comparison and record-level comparison
        """
        logger = get_logger(__name__)
        window = SyncWindow(parse_date(start), parse_date(end), period_type)
        normalized = normalize_query(query)
        logger.info(f"⚖️  Comparing {normalized!r} for {window.start} → {window.end}")

        sql = build_query_rows_query(
            self.settings.source_table, window.period_type.value, self.settings.week_starts_on
        )
        params = {**window_params(window), "query": normalized}
        with self.pool.connection() as client:
            source_rows = client.query(sql, params, timeout=self.settings.query_timeout_seconds)

        for row in source_rows:
            row["period_start"] = str(parse_date(row.get("period_start")))

        gte, lte = store_bounds(window, self.settings.week_starts_on)
        target_rows = self.store.select_all(
            summary_table(window.period_type.value), filters={"query": normalized}, gte=gte, lte=lte
        )

        comparator = DataComparator(self.settings.comparison_threshold_pct)
        counts = comparator.compare_counts(
            QualityChecker.store_totals(source_rows), QualityChecker.store_totals(target_rows)
        )
        records = comparator.compare_datasets(
            source_rows, target_rows, COMPARE_KEY_FIELDS, COMPARE_VALUE_FIELDS
        )

        if counts.has_discrepancies or not records.identical:
            logger.warning(
                f"⚠️  Differences found: {records.mismatches:,} mismatched, "
                f"{records.missing_in_target:,} missing, {records.extra_in_target:,} extra"
            )
        else:
            logger.info(f"✅ {records.matches:,} rows match")

        return {
            "query": normalized,
            "window": window.to_dict(),
            "counts": counts.to_dict(),
            "records": records.to_dict(),
        }

    # ================================================================ views

    def refresh_materialized_views(self) -> dict[str, bool]:
        """Refresh derived views. Failures are logged and reported, never raised."""
        logger = get_logger(__name__)
        refreshed = {}
        for view in self.settings.materialized_views:
            try:
                self.store.rpc(REFRESH_VIEW_RPC, {"view_name": view})
                refreshed[view] = True
                logger.info(f"   🔁 Refreshed {view}")
            except Exception as e:
                refreshed[view] = False
                logger.warning(f"⚠️  Failed to refresh {view}: {e}")
        return refreshed
