"""
Sync Log
========
Persists sync runs to sqp.sync_log and quality checks to
sqp.data_quality_checks, and derives health metrics and alerts from them.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqp_sync.config import Settings
from sqp_sync.db import QUALITY_CHECK_TABLE, SYNC_LOG_TABLE, OperationalStore
from sqp_sync.logs import get_logger
from sqp_sync.validation.core import CheckResult

STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Checks whose failure means the store disagrees with the warehouse
CRITICAL_CHECKS = {"row_count", "duplicate_check"}

STALE_AFTER = timedelta(hours=48)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse a PostgREST timestamp into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def classify_check_severity(check: dict | CheckResult) -> str:
    """critical for parity failures, warning for other failures, info otherwise."""
    if isinstance(check, CheckResult):
        check_type, status = check.type, check.status
    else:
        check_type, status = check.get("check_type"), check.get("check_status")
    if status != "failed":
        return "info"
    return "critical" if check_type in CRITICAL_CHECKS else "warning"


class SyncLogger:
    """
    Read/write access to the sync log.

    Args:
        store: Operational store adapter
        settings: Provides the source table name and alert thresholds
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        store: OperationalStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock

    # ================================================================ writes

    def start_sync(self, sync_type: str, target_table: str) -> int | None:
        """Insert a 'started' log row and return its id."""
        row = self.store.insert_row(
            SYNC_LOG_TABLE,
            {
                "sync_type": sync_type,
                "sync_status": STATUS_STARTED,
                "source_table": self.settings.source_table,
                "target_table": target_table,
                "started_at": self.clock().isoformat(),
            },
        )
        return row.get("id")

    def complete_sync(
        self,
        sync_log_id: int,
        records_processed: int = 0,
        records_inserted: int = 0,
        records_updated: int = 0,
        records_failed: int = 0,
        details: dict | None = None,
    ) -> None:
        self.store.update_rows(
            SYNC_LOG_TABLE,
            {
                "sync_status": STATUS_COMPLETED,
                "completed_at": self.clock().isoformat(),
                "records_processed": records_processed,
                "records_inserted": records_inserted,
                "records_updated": records_updated,
                "records_failed": records_failed,
                "error_details": details,
            },
            {"id": sync_log_id},
        )

    def fail_sync(self, sync_log_id: int, error: str, details: dict | None = None) -> None:
        self.store.update_rows(
            SYNC_LOG_TABLE,
            {
                "sync_status": STATUS_FAILED,
                "completed_at": self.clock().isoformat(),
                "error_message": error,
                "error_details": details,
            },
            {"id": sync_log_id},
        )

    def record_checks(self, sync_log_id: int, checks: list[CheckResult]) -> int:
        """Persist quality check results. Returns rows written."""
        for check in checks:
            self.store.insert_row(QUALITY_CHECK_TABLE, check.to_row(sync_log_id))
        return len(checks)

    # ================================================================= reads

    def recent_syncs(self, limit: int = 10) -> list[dict]:
        """Most recent log rows, newest first."""
        return self.store.select(SYNC_LOG_TABLE, order_by="started_at", descending=True, limit=limit)

    def last_sync(self, status: str | None = None) -> dict | None:
        """Newest log row, optionally restricted to one status."""
        rows = self.store.select(
            SYNC_LOG_TABLE,
            filters={"sync_status": status} if status else None,
            order_by="started_at",
            descending=True,
            limit=1,
        )
        return rows[0] if rows else None

    def checks_for(self, sync_log_id: int) -> list[dict]:
        return self.store.select(QUALITY_CHECK_TABLE, filters={"sync_log_id": sync_log_id})

    def get_metrics(self, days: int = 7) -> dict:
        """Success rate, durations and volumes over the last `days` days."""
        since = (self.clock() - timedelta(days=days)).isoformat()
        rows = self.store.select_all(SYNC_LOG_TABLE, gte={"started_at": since})

        completed = [r for r in rows if r.get("sync_status") == STATUS_COMPLETED]
        failed = [r for r in rows if r.get("sync_status") == STATUS_FAILED]

        durations = []
        for r in completed:
            started = parse_timestamp(r.get("started_at"))
            finished = parse_timestamp(r.get("completed_at"))
            if started and finished:
                durations.append((finished - started).total_seconds())

        finished_runs = len(completed) + len(failed)
        return {
            "period_days": days,
            "total_syncs": len(rows),
            "successful_syncs": len(completed),
            "failed_syncs": len(failed),
            "success_rate": round(len(completed) / finished_runs * 100, 2) if finished_runs else 100.0,
            "average_duration_seconds": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "total_records_processed": sum(r.get("records_processed") or 0 for r in completed),
            "total_records_failed": sum(r.get("records_failed") or 0 for r in completed),
        }

    # ================================================================ alerts

    def check_alerts(self) -> list[dict]:
        """
        Evaluate alert conditions from recent history.

        Returns:
            Alerts as {severity, type, message, details}, most severe first
        """
        logger = get_logger(__name__)
        alerts = []
        now = self.clock()
        recent = self.recent_syncs(limit=max(10, self.settings.consecutive_failure_threshold))

        # Consecutive failures, newest first
        streak = 0
        for row in recent:
            if row.get("sync_status") != STATUS_FAILED:
                break
            streak += 1
        if streak >= self.settings.consecutive_failure_threshold:
            alerts.append(
                {
                    "severity": "critical",
                    "type": "consecutive_failures",
                    "message": f"{streak} consecutive sync failures",
                    "details": {"last_error": recent[0].get("error_message")},
                }
            )

        # Syncs stuck in 'started'
        limit = timedelta(minutes=self.settings.long_running_sync_minutes)
        for row in recent:
            started = parse_timestamp(row.get("started_at"))
            if row.get("sync_status") == STATUS_STARTED and started and now - started > limit:
                alerts.append(
                    {
                        "severity": "warning",
                        "type": "long_running_sync",
                        "message": f"Sync {row.get('id')} running for {int((now - started).total_seconds() // 60)} minutes",
                        "details": {"sync_log_id": row.get("id"), "started_at": row.get("started_at")},
                    }
                )

        # Failed checks on the latest completed sync
        last_completed = next((r for r in recent if r.get("sync_status") == STATUS_COMPLETED), None)
        if last_completed is not None:
            for check in self.checks_for(last_completed["id"]):
                severity = classify_check_severity(check)
                if severity == "info":
                    continue
                alerts.append(
                    {
                        "severity": severity,
                        "type": "data_quality",
                        "message": f"{check.get('check_type')}: {check.get('check_message')}",
                        "details": {"sync_log_id": last_completed["id"], **(check.get("check_metadata") or {})},
                    }
                )

        # Data freshness
        completed_at = parse_timestamp(last_completed.get("completed_at")) if last_completed else None
        if completed_at is None or now - completed_at > STALE_AFTER:
            alerts.append(
                {
                    "severity": "info",
                    "type": "stale_data",
                    "message": "No completed sync in the last 48 hours",
                    "details": {"last_completed_at": last_completed.get("completed_at") if last_completed else None},
                }
            )

        order = {"critical": 0, "warning": 1, "info": 2}
        alerts.sort(key=lambda a: order[a["severity"]])
        for alert in alerts:
            logger.info(f"   🚨 [{alert['severity']}] {alert['message']}")
        return alerts
