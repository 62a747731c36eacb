"""
Sync Scheduler
==============
Owns the recurring sync job.

One SyncScheduler is constructed per process (see build_scheduler) and owns
its pool, store, sync service, checker and logger. Per invocation:

    1. log row (started)
    2. new data?  no → complete as no-op
    3. window = day after last synced period_end → last completed period end
    4. sync with retry, backoff delay * 2^(attempt-1)
    5. completed → quality checks → refresh views
       failed    → log error with retry count

Only one invocation runs at a time; a second trigger returns at once with
already_running=True and writes nothing.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from croniter import croniter

from sqp_sync.alerts import DQ_FAILURE, SYNC_COMPLETED, SYNC_FAILED, AlertSink, PrefectEventSink
from sqp_sync.config import Settings, get_settings
from sqp_sync.db import OperationalStore, summary_table
from sqp_sync.errors import ConfigurationError, PoolClosedError
from sqp_sync.logs import get_logger
from sqp_sync.sync.lock import SyncLock
from sqp_sync.sync.logger import SyncLogger, classify_check_severity
from sqp_sync.sync.service import SyncResult, SyncService
from sqp_sync.transform import PeriodType, SyncWindow, last_completed_period_end, parse_date, period_bounds
from sqp_sync.validation.core import CheckResult
from sqp_sync.validation.quality import QualityChecker
from sqp_sync.warehouse.pool import ConnectionPool, create_pool

# Never retried: retrying cannot change the outcome
FATAL_ERRORS = (ConfigurationError, PoolClosedError)


@dataclass
class SyncJobResult:
    """Outcome of one scheduler invocation."""

    success: bool
    triggered_by: str = "scheduled"
    sync_log_id: int | None = None
    records_processed: int = 0
    records_inserted: int = 0
    records_failed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    error: str | None = None
    already_running: bool = False
    no_new_data: bool = False
    window: dict | None = None
    checks: list = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "triggered_by": self.triggered_by,
            "sync_log_id": self.sync_log_id,
            "records_processed": self.records_processed,
            "records_inserted": self.records_inserted,
            "records_failed": self.records_failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "retry_count": self.retry_count,
            "error": self.error,
            "already_running": self.already_running,
            "no_new_data": self.no_new_data,
            "window": self.window,
            "checks": self.checks,
        }


class SyncScheduler:
    """
    Cron-driven sync job runner.

    Args:
        settings: Schedule, retry and window settings
        sync_service: Runs the actual sync
        store: Operational store (latest synced period_end)
        quality_checker: Post-sync checks
        sync_logger: sync_log persistence (default: built from store)
        alert_sink: Alert destination (default: Prefect events)
        lock: Single-flight guard (default: in-memory, advisory per settings)
        pool: Warehouse pool drained by cleanup()
        period_type: Period synced by the job
        clock: Returns the current aware datetime
        sleep: Backoff sleep, seconds

    Raises:
        ConfigurationError: invalid cron expression
    """

    def __init__(
        self,
        settings: Settings,
        sync_service: SyncService,
        store: OperationalStore,
        quality_checker: QualityChecker,
        sync_logger: SyncLogger | None = None,
        alert_sink: AlertSink | None = None,
        lock: SyncLock | None = None,
        pool: ConnectionPool | None = None,
        period_type: str = "weekly",
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not croniter.is_valid(settings.sync_schedule):
            raise ConfigurationError(f"Invalid cron expression: {settings.sync_schedule!r}")

        self.settings = settings
        self.sync_service = sync_service
        self.store = store
        self.quality_checker = quality_checker
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sync_logger = sync_logger or SyncLogger(store, settings, clock=self.clock)
        self.alert_sink = alert_sink or PrefectEventSink()
        self.lock = lock or SyncLock(store, settings.use_advisory_lock)
        self.pool = pool
        self.period_type = PeriodType(period_type)
        self._sleep = sleep

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_result: SyncJobResult | None = None

    @property
    def target_table(self) -> str:
        return summary_table(self.period_type.value)

    # ================================================================ window

    def get_date_range_for_sync(self, today: date | None = None) -> SyncWindow | None:
        """
        Next window to sync, or None when nothing new has completed.

        Starts the day after the last synced period_end (or lookback_days
        back, aligned to a period start, when nothing is synced yet) and ends
        at the last fully completed period.
        """
        today = today or self.clock().date()
        end = last_completed_period_end(today, self.period_type, self.settings.week_starts_on)

        latest = parse_date(self.store.latest_period_end(self.target_table))
        if latest is not None:
            start = latest + timedelta(days=1)
        else:
            lookback = today - timedelta(days=self.settings.lookback_days)
            start, _ = period_bounds(lookback, self.period_type, self.settings.week_starts_on)

        if start > end:
            return None
        return SyncWindow(start, end, self.period_type)

    def check_for_new_data(self, today: date | None = None) -> bool:
        """True when a completed period has not been synced yet."""
        return self.get_date_range_for_sync(today) is not None

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.settings.retry_delay_ms * 2 ** (attempt - 1) / 1000

    # ================================================================== job

    def execute_sync_job(self, triggered_by: str = "scheduled") -> SyncJobResult:
        """
        Run one sync invocation.

        Never raises: every failure is captured on the result and in the
        sync log.
        """
        logger = get_logger(__name__)
        started_at = self.clock()

        try:
            acquired = self.lock.acquire()
        except Exception as e:
            logger.error(f"❌ Could not acquire sync lock: {e}")
            return SyncJobResult(
                success=False, triggered_by=triggered_by, started_at=started_at,
                completed_at=self.clock(), error=str(e),
            )

        if not acquired:
            logger.warning("⏳ Sync already in progress, trigger rejected")
            return SyncJobResult(
                success=False,
                triggered_by=triggered_by,
                started_at=started_at,
                completed_at=self.clock(),
                error="Sync already in progress",
                already_running=True,
            )

        try:
            result = self._run_job(triggered_by, started_at)
        except Exception as e:
            logger.exception(f"❌ Sync job crashed: {e}")
            result = SyncJobResult(
                success=False, triggered_by=triggered_by, started_at=started_at,
                completed_at=self.clock(), error=str(e),
            )
        finally:
            self.lock.release()

        self.last_result = result
        return result

    def _sync_with_retry(self, window: SyncWindow) -> tuple[SyncResult | None, int, str | None]:
        """Returns (last result, retries performed, last error)."""
        logger = get_logger(__name__)
        attempts = max(1, self.settings.retry_attempts)
        retry_count = 0
        last_error = None
        sync = None

        for attempt in range(1, attempts + 1):
            try:
                sync = self.sync_service.sync_period_data(
                    self.period_type.value, window.start, window.end
                )
            except FATAL_ERRORS as e:
                return None, retry_count, str(e)
            except Exception as e:
                sync = None
                last_error = str(e)
                retryable = True
            else:
                if sync.success:
                    return sync, retry_count, None
                last_error = sync.error
                retryable = sync.retryable

            if not retryable or attempt == attempts:
                break

            delay = self.retry_delay(attempt)
            logger.warning(f"🔁 Attempt {attempt}/{attempts} failed ({last_error}); retrying in {delay:.1f}s")
            self._sleep(delay)
            retry_count += 1

        return sync, retry_count, last_error

    def _run_job(self, triggered_by: str, started_at: datetime) -> SyncJobResult:
        logger = get_logger(__name__)
        logger.info("=" * 60)
        logger.info(f"🚀 SQP SYNC JOB ({triggered_by}) {started_at.isoformat()}")
        logger.info("=" * 60)

        sync_log_id = self.sync_logger.start_sync(triggered_by, self.target_table)
        result = SyncJobResult(
            success=False, triggered_by=triggered_by, sync_log_id=sync_log_id, started_at=started_at
        )

        try:
            return self._run_logged_job(result)
        except Exception as e:
            logger.exception(f"❌ Sync job crashed after logging started: {e}")
            return self._record_crash(result, e)

    def _record_crash(self, result: SyncJobResult, error: Exception) -> SyncJobResult:
        """Close the started log row as failed; a second store error is only logged."""
        logger = get_logger(__name__)
        result.success = False
        result.error = str(error)
        result.completed_at = self.clock()
        try:
            self.sync_logger.fail_sync(
                result.sync_log_id,
                result.error,
                details={
                    "exception": type(error).__name__,
                    "retry_count": result.retry_count,
                    "window": result.window,
                },
            )
        except Exception as log_error:
            logger.error(f"❌ Could not mark sync log {result.sync_log_id} failed: {log_error}")
        self.alert_sink.emit(
            SYNC_FAILED,
            {"sync_log_id": result.sync_log_id, "error": result.error, "window": result.window},
            severity="critical",
        )
        return result

    def _run_logged_job(self, result: SyncJobResult) -> SyncJobResult:
        logger = get_logger(__name__)
        sync_log_id = result.sync_log_id

        window = self.get_date_range_for_sync()
        if window is None:
            logger.info("✅ No new completed period to sync")
            self.sync_logger.complete_sync(sync_log_id, details={"message": "No new data to sync"})
            result.success = True
            result.no_new_data = True
            result.completed_at = self.clock()
            return result

        result.window = window.to_dict()
        logger.info(f"📅 Window: {window.start} → {window.end}")

        sync, retry_count, error = self._sync_with_retry(window)
        result.retry_count = retry_count

        if sync is None or not sync.success:
            error = error or "Sync failed after retries"
            logger.error(f"❌ Sync failed after {retry_count + 1} attempt(s): {error}")
            self.sync_logger.fail_sync(
                sync_log_id,
                error,
                details={
                    "retry_count": retry_count,
                    "window": result.window,
                    "errors": sync.errors[:100] if sync else [],
                },
            )
            self.alert_sink.emit(
                SYNC_FAILED,
                {"sync_log_id": sync_log_id, "error": error, "retry_count": retry_count, "window": result.window},
                severity="critical",
            )
            result.error = error
            result.completed_at = self.clock()
            return result

        self.sync_logger.complete_sync(
            sync_log_id,
            records_processed=sync.source_records,
            records_inserted=sync.records_synced,
            records_failed=sync.records_failed,
            details={"retry_count": retry_count, "window": result.window, "errors": sync.errors[:100]},
        )
        result.success = True
        result.records_processed = sync.source_records
        result.records_inserted = sync.records_synced
        result.records_failed = sync.records_failed

        checks = self.run_data_quality_checks(sync_log_id, window)
        result.checks = [{"type": c.type, "status": c.status, "message": c.message} for c in checks]

        self.sync_service.refresh_materialized_views()

        result.completed_at = self.clock()
        self.alert_sink.emit(
            SYNC_COMPLETED,
            {
                "sync_log_id": sync_log_id,
                "records_synced": sync.records_synced,
                "records_failed": sync.records_failed,
                "window": result.window,
            },
        )
        logger.info(
            f"✅ Sync complete: {sync.records_synced:,} synced, {sync.records_failed:,} failed, "
            f"{retry_count} retries"
        )
        return result

    def run_data_quality_checks(self, sync_log_id: int | None, window: SyncWindow) -> list[CheckResult]:
        """
        Run and persist post-sync checks. Failures alert but never fail the sync.
        """
        logger = get_logger(__name__)
        try:
            checks = self.quality_checker.run_checks(window)
            if sync_log_id is not None:
                self.sync_logger.record_checks(sync_log_id, checks)
        except Exception as e:
            logger.warning(f"⚠️  Quality checks could not run: {e}")
            return []

        failed = [c for c in checks if not c.passed]
        if failed:
            severities = [classify_check_severity(c) for c in failed]
            self.alert_sink.emit(
                DQ_FAILURE,
                {
                    "sync_log_id": sync_log_id,
                    "window": window.to_dict(),
                    "failed_count": len(failed),
                    "total_checks": len(checks),
                    "failed_checks": [{"type": c.type, "message": c.message} for c in failed],
                },
                severity="critical" if "critical" in severities else "warning",
            )
        return checks

    def trigger_manual_sync(self) -> SyncJobResult:
        return self.execute_sync_job(triggered_by="manual")

    # ============================================================ lifecycle

    def next_run_time(self, base: datetime | None = None) -> datetime:
        return croniter(self.settings.sync_schedule, base or self.clock()).get_next(datetime)

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        logger = get_logger(__name__)
        while not self._stop_event.is_set():
            next_run = self.next_run_time()
            wait = max(0.0, (next_run - self.clock()).total_seconds())
            logger.info(f"⏰ Next sync at {next_run.isoformat()}")
            if self._stop_event.wait(wait):
                break
            self.execute_sync_job(triggered_by="scheduled")

    def start(self) -> None:
        """Start the cron loop in a background thread (no-op when running)."""
        if self.is_active:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="sqp-sync-scheduler", daemon=True)
        self._thread.start()
        get_logger(__name__).info(f"🕑 Scheduler started ({self.settings.sync_schedule})")

    def stop(self, timeout: float | None = None) -> None:
        """
        Prevent future triggers. An in-flight sync is not aborted; timeout
        bounds how long to wait for it.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        get_logger(__name__).info("🛑 Scheduler stopped")

    def join(self, timeout: float | None = None) -> None:
        """Block until the scheduler thread exits or timeout passes."""
        if self._thread is not None:
            self._thread.join(timeout)

    def cleanup(self, timeout: float | None = None) -> bool:
        """Stop the scheduler and drain the warehouse pool."""
        self.stop(timeout)
        if self.pool is None:
            return True
        return self.pool.drain(timeout)

    # ============================================================== status

    def get_sync_status(self) -> dict:
        last_completed = self.sync_logger.last_sync(status="completed")
        return {
            "running": self.lock.locked,
            "scheduler_active": self.is_active,
            "schedule": self.settings.sync_schedule,
            "next_run": self.next_run_time().isoformat(),
            "has_new_data": self.check_for_new_data(),
            "last_sync": self.sync_logger.last_sync(),
            "last_completed_sync": last_completed,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    def get_sync_metrics(self, days: int = 7) -> dict:
        metrics = self.sync_logger.get_metrics(days)
        metrics["alerts"] = self.sync_logger.check_alerts()
        return metrics


def build_scheduler(settings: Settings | None = None, alert_sink: AlertSink | None = None) -> SyncScheduler:
    """
    Wire a scheduler and everything it owns from settings.

    Raises:
        ConfigurationError: missing credentials or invalid cron expression
    """
    settings = settings or get_settings()
    pool = create_pool(settings)
    try:
        store = OperationalStore.from_settings(settings)
        service = SyncService(pool, store, settings)
        return SyncScheduler(
            settings,
            service,
            store,
            QualityChecker(pool, store, settings),
            alert_sink=alert_sink,
            pool=pool,
        )
    except ConfigurationError:
        pool.drain(timeout=0)
        raise
