"""
Tests for the sync scheduler.
"""

import threading
from datetime import date, datetime, timezone

import pytest
from conftest import FakePool, FakeStore, FakeWarehouseClient, raw_row

from sqp_sync.alerts import DQ_FAILURE, SYNC_COMPLETED, SYNC_FAILED, CollectingSink
from sqp_sync.errors import ConfigurationError
from sqp_sync.sync.scheduler import SyncScheduler
from sqp_sync.sync.service import SyncResult, SyncService
from sqp_sync.validation.core import CheckResult
from sqp_sync.validation.quality import QualityChecker

SYNC_LOG = "sqp.sync_log"
CHECKS = "sqp.data_quality_checks"
SUMMARY = "sqp.weekly_summary"

NOW = datetime(2025, 1, 22, 3, 0, tzinfo=timezone.utc)


def clock():
    return NOW


def ok(records=10):
    return SyncResult(success=True, window={}, source_records=records, records_synced=records)


def transient(message="deadline exceeded"):
    return SyncResult(success=False, window={}, error=message, retryable=True)


class ScriptedService:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.refreshed = 0

    def sync_period_data(self, period_type, start, end):
        self.calls.append((period_type, start, end))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def refresh_materialized_views(self):
        self.refreshed += 1
        return {}


class StubChecker:
    def __init__(self, checks=None):
        self.checks = checks or [CheckResult(type="row_count", passed=True, details={"message": "ok"})]

    def run_checks(self, window):
        return self.checks


def seed_latest(store, period_end):
    store.tables[SUMMARY][("x", period_end, "q", "B000000001")] = {"period_end": period_end}


def make_scheduler(settings, service, store=None, checker=None, sink=None, sleeps=None, **kwargs):
    store = store if store is not None else FakeStore()
    sleeps = sleeps if sleeps is not None else []
    return SyncScheduler(
        settings,
        service,
        store,
        checker or StubChecker(),
        alert_sink=sink if sink is not None else CollectingSink(),
        clock=clock,
        sleep=sleeps.append,
        **kwargs,
    )


# =============================================================================
# Construction / windows
# =============================================================================


class TestConstruction:
    def test_invalid_cron(self, settings):
        with pytest.raises(ConfigurationError):
            make_scheduler(settings.model_copy(update={"sync_schedule": "not a cron"}), ScriptedService([]))

    def test_next_run_time(self, settings):
        scheduler = make_scheduler(settings, ScriptedService([]))
        assert scheduler.next_run_time() == datetime(2025, 1, 23, 2, 0, tzinfo=timezone.utc)


class TestDateRange:
    def test_starts_after_last_synced_period(self, settings):
        store = FakeStore()
        seed_latest(store, "2025-01-07")
        window = make_scheduler(settings, ScriptedService([]), store).get_date_range_for_sync(date(2025, 1, 22))

        assert (window.start, window.end) == (date(2025, 1, 8), date(2025, 1, 19))

    def test_lookback_aligned_to_period_start(self, settings):
        window = make_scheduler(settings, ScriptedService([])).get_date_range_for_sync(date(2025, 1, 22))

        # 90 days before 2025-01-22 is Thursday 2024-10-24
        assert window.start == date(2024, 10, 21)
        assert window.end == date(2025, 1, 19)

    def test_up_to_date(self, settings):
        store = FakeStore()
        seed_latest(store, "2025-01-19")
        scheduler = make_scheduler(settings, ScriptedService([]), store)

        assert scheduler.get_date_range_for_sync(date(2025, 1, 22)) is None
        assert scheduler.check_for_new_data(date(2025, 1, 22)) is False

    def test_retry_delay_doubles(self, settings):
        scheduler = make_scheduler(settings, ScriptedService([]))
        assert [scheduler.retry_delay(n) for n in (1, 2, 3)] == [0.01, 0.02, 0.04]


# =============================================================================
# execute_sync_job
# =============================================================================


class TestExecuteSyncJob:
    def test_no_new_data_is_logged_noop(self, settings):
        store = FakeStore()
        seed_latest(store, "2025-01-19")
        service = ScriptedService([])
        result = make_scheduler(settings, service, store).execute_sync_job()

        assert result.success
        assert result.no_new_data
        assert service.calls == []
        [log] = store.rows(SYNC_LOG)
        assert log["sync_status"] == "completed"
        assert log["error_details"] == {"message": "No new data to sync"}

    def test_retries_transient_failures(self, settings):
        sleeps = []
        service = ScriptedService([transient(), transient(), ok()])
        store = FakeStore()
        result = make_scheduler(settings, service, store, sleeps=sleeps).execute_sync_job()

        assert result.success
        assert result.retry_count == 2
        assert sleeps == [0.01, 0.02]
        assert len(service.calls) == 3
        assert store.rows(SYNC_LOG)[0]["sync_status"] == "completed"

    def test_exhausted_retries_fail_the_log(self, settings):
        sleeps = []
        sink = CollectingSink()
        store = FakeStore()
        service = ScriptedService([transient(), transient(), transient("still down")])
        result = make_scheduler(settings, service, store, sink=sink, sleeps=sleeps).execute_sync_job()

        assert result.success is False
        assert result.retry_count == 2
        assert result.error == "still down"
        [log] = store.rows(SYNC_LOG)
        assert log["sync_status"] == "failed"
        assert log["error_message"] == "still down"
        assert log["error_details"]["retry_count"] == 2
        [alert] = sink.named(SYNC_FAILED)
        assert alert["severity"] == "critical"
        assert service.refreshed == 0

    def test_non_retryable_failure_is_not_retried(self, settings):
        sleeps = []
        service = ScriptedService([SyncResult(success=False, window={}, error="missing columns")])
        result = make_scheduler(settings, service, sleeps=sleeps).execute_sync_job()

        assert result.success is False
        assert sleeps == []
        assert len(service.calls) == 1

    def test_unexpected_exception_is_retried(self, settings):
        service = ScriptedService([RuntimeError("socket closed"), ok()])
        result = make_scheduler(settings, service).execute_sync_job()

        assert result.success
        assert result.retry_count == 1

    def test_configuration_error_is_fatal(self, settings):
        service = ScriptedService([ConfigurationError("bad credentials"), ok()])
        result = make_scheduler(settings, service).execute_sync_job()

        assert result.success is False
        assert len(service.calls) == 1

    def test_success_logs_counts_and_refreshes(self, settings):
        sink = CollectingSink()
        store = FakeStore()
        service = ScriptedService([ok(records=42)])
        result = make_scheduler(settings, service, store, sink=sink).execute_sync_job(triggered_by="manual")

        assert result.records_inserted == 42
        assert result.triggered_by == "manual"
        [log] = store.rows(SYNC_LOG)
        assert log["sync_type"] == "manual"
        assert log["records_processed"] == 42
        assert service.refreshed == 1
        assert len(sink.named(SYNC_COMPLETED)) == 1
        assert len(store.rows(CHECKS)) == 1

    def test_failed_parity_check_raises_critical_alert(self, settings):
        sink = CollectingSink()
        checker = StubChecker(
            [
                CheckResult(type="row_count", passed=False, details={"message": "Warehouse 10 vs store 8"}),
                CheckResult(type="null_check", passed=True, details={"message": "ok"}),
            ]
        )
        result = make_scheduler(settings, ScriptedService([ok()]), checker=checker, sink=sink).execute_sync_job()

        assert result.success
        [alert] = sink.named(DQ_FAILURE)
        assert alert["severity"] == "critical"
        assert alert["payload"]["failed_count"] == 1

    def test_checker_crash_does_not_fail_sync(self, settings):
        class Broken:
            def run_checks(self, window):
                raise RuntimeError("warehouse unavailable")

        result = make_scheduler(settings, ScriptedService([ok()]), checker=Broken()).execute_sync_job()
        assert result.success
        assert result.checks == []

    def test_store_read_failure_closes_the_log(self, settings):
        class UnreadableStore(FakeStore):
            def latest_period_end(self, table_name):
                raise RuntimeError("store timeout")

        sink = CollectingSink()
        store = UnreadableStore()
        service = ScriptedService([])
        result = make_scheduler(settings, service, store, sink=sink).execute_sync_job()

        [log] = store.rows(SYNC_LOG)
        assert result.success is False
        assert result.sync_log_id == log["id"]
        assert result.error == "store timeout"
        assert log["sync_status"] == "failed"
        assert log["error_message"] == "store timeout"
        assert log["error_details"]["exception"] == "RuntimeError"
        assert service.calls == []
        assert len(sink.named(SYNC_FAILED)) == 1

    def test_log_completion_failure_marks_log_failed(self, settings):
        class CompletionRejected(FakeStore):
            def update_rows(self, table_name, values, filters):
                if values.get("sync_status") == "completed":
                    raise RuntimeError("connection reset")
                return super().update_rows(table_name, values, filters)

        store = CompletionRejected()
        result = make_scheduler(settings, ScriptedService([ok()]), store).execute_sync_job()

        [log] = store.rows(SYNC_LOG)
        assert result.success is False
        assert result.sync_log_id == log["id"]
        assert log["sync_status"] == "failed"
        assert log["error_message"] == "connection reset"

    def test_unwritable_log_still_returns_result(self, settings):
        class ReadOnlyLog(FakeStore):
            def latest_period_end(self, table_name):
                raise RuntimeError("store timeout")

            def update_rows(self, table_name, values, filters):
                raise RuntimeError("store unavailable")

        store = ReadOnlyLog()
        scheduler = make_scheduler(settings, ScriptedService([]), store)
        result = scheduler.execute_sync_job()

        assert result.success is False
        assert result.error == "store timeout"
        assert result.sync_log_id == store.rows(SYNC_LOG)[0]["id"]
        assert not scheduler.lock.locked

    def test_single_flight(self, settings):
        entered, release = threading.Event(), threading.Event()

        class Blocking(ScriptedService):
            def sync_period_data(self, period_type, start, end):
                entered.set()
                release.wait(5)
                return ok()

        store = FakeStore()
        scheduler = make_scheduler(settings, Blocking([]), store)
        results = []
        worker = threading.Thread(target=lambda: results.append(scheduler.execute_sync_job()))
        worker.start()
        assert entered.wait(5)

        second = scheduler.trigger_manual_sync()
        release.set()
        worker.join(5)

        assert second.already_running is True
        assert results[0].success
        assert len(store.rows(SYNC_LOG)) == 1
        assert not scheduler.lock.locked


# =============================================================================
# End to end with the real service
# =============================================================================


class TestWithSyncService:
    def build(self, settings, rows):
        store = FakeStore()
        pool = FakePool(FakeWarehouseClient(rows))
        sink = CollectingSink()
        scheduler = make_scheduler(
            settings,
            SyncService(pool, store, settings),
            store,
            checker=QualityChecker(pool, store, settings),
            sink=sink,
            pool=pool,
        )
        return scheduler, store, sink

    def test_empty_warehouse(self, settings):
        scheduler, store, sink = self.build(settings, [])
        result = scheduler.execute_sync_job()

        assert result.success
        assert result.records_inserted == 0
        assert all(c["status"] == "passed" for c in result.checks)
        assert sink.named(DQ_FAILURE) == []
        assert len(sink.named(SYNC_COMPLETED)) == 1

    def test_syncs_and_checks(self, settings):
        rows = [
            raw_row(query="running shoes", asin="B000000001", day="2025-01-06"),
            raw_row(query="running shoes", asin="B000000002", day="2025-01-06"),
            raw_row(query="trail shoes", asin="B000000001", day="2025-01-13"),
        ]
        scheduler, store, sink = self.build(settings, rows)
        result = scheduler.execute_sync_job()

        assert result.records_inserted == 3
        assert len(store.rows(SUMMARY)) == 3
        assert len(store.rows(CHECKS)) == 6
        assert all(r["check_status"] == "passed" for r in store.rows(CHECKS))
        assert sink.named(DQ_FAILURE) == []
        assert [c[0] for c in store.rpc_calls] == ["refresh_materialized_view_concurrently"] * 2

    def test_second_run_is_noop(self, settings):
        scheduler, store, _ = self.build(settings, [raw_row(day="2025-01-13")])
        scheduler.execute_sync_job()
        second = scheduler.execute_sync_job()

        assert second.no_new_data

    def test_cleanup_drains_pool(self, settings):
        scheduler, _, _ = self.build(settings, [])
        assert scheduler.cleanup(timeout=1) is True
        assert scheduler.pool.drained


# =============================================================================
# Lifecycle / status
# =============================================================================


class TestLifecycle:
    def test_start_and_stop(self, settings):
        scheduler = make_scheduler(settings, ScriptedService([]))
        scheduler.start()
        assert scheduler.is_active

        scheduler.stop(timeout=2)
        assert not scheduler.is_active

    def test_status(self, settings):
        store = FakeStore()
        seed_latest(store, "2025-01-19")
        scheduler = make_scheduler(settings, ScriptedService([]), store)
        scheduler.execute_sync_job()

        status = scheduler.get_sync_status()
        assert status["running"] is False
        assert status["has_new_data"] is False
        assert status["last_sync"]["sync_status"] == "completed"
        assert status["last_result"]["no_new_data"] is True

    def test_metrics_include_alerts(self, settings):
        scheduler = make_scheduler(settings, ScriptedService([]))
        metrics = scheduler.get_sync_metrics(days=7)

        assert metrics["total_syncs"] == 0
        assert [a["type"] for a in metrics["alerts"]] == ["stale_data"]
