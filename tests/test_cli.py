"""
Tests for the operator CLI.
"""

import json

import pytest
from conftest import FakePool, FakeStore, FakeWarehouseClient, raw_row

from sqp_sync import cli
from sqp_sync.errors import WarehouseError
from sqp_sync.sync.scheduler import SyncJobResult

ROWS = [
    raw_row(query="running shoes", asin="B000000001", impressions=600, clicks=60, purchases=6),
    raw_row(query="running shoes", asin="B000000002", impressions=400, clicks=40, purchases=4),
]
WINDOW_ARGS = ["--start", "2025-01-06", "--end", "2025-01-12"]


@pytest.fixture
def services(monkeypatch):
    """Route CLI commands to in-memory fakes."""
    warehouse = FakeWarehouseClient(ROWS)
    store = FakeStore()
    pool = FakePool(warehouse)
    monkeypatch.setattr(cli, "open_services", lambda settings: (pool, store))
    return warehouse, pool, store


class StubScheduler:
    def __init__(self, result):
        self.result = result
        self.cleaned = False

    def trigger_manual_sync(self):
        return self.result

    def get_sync_status(self):
        return {"running": False}

    def get_sync_metrics(self, days):
        return {"period_days": days, "alerts": []}

    def cleanup(self, timeout=None):
        self.cleaned = True
        return True


class TestSync:
    def test_sync_json_report(self, services, capsys):
        _, pool, store = services
        assert cli.main(["sync", *WINDOW_ARGS, "--format", "json"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["sync"]["records_synced"] == 2
        assert len(store.rows("sqp.weekly_summary")) == 2
        assert pool.drained

    def test_dry_run(self, services, capsys):
        _, _, store = services
        assert cli.main(["sync", *WINDOW_ARGS, "--dry-run", "--format", "json"]) == 0

        assert json.loads(capsys.readouterr().out)["sync"]["would_sync"] == 2
        assert store.rows("sqp.weekly_summary") == []

    def test_warehouse_failure_exits_1(self, services, capsys):
        warehouse, _, _ = services
        warehouse.failures.append(WarehouseError("table not found"))

        assert cli.main(["sync", *WINDOW_ARGS]) == 1
        assert "table not found" in capsys.readouterr().err

    def test_start_after_end_exits_2(self, services):
        assert cli.main(["sync", "--start", "2025-01-12", "--end", "2025-01-06"]) == 2

    def test_specific_without_asins_exits_2(self, services):
        assert cli.main(["sync", *WINDOW_ARGS, "--strategy", "specific"]) == 2

    def test_report_to_file(self, services, tmp_path):
        output = tmp_path / "report.md"
        assert cli.main(["sync", *WINDOW_ARGS, "--output", str(output)]) == 0
        assert output.read_text().startswith("# SQP Sync Report")


class TestReadOnlyCommands:
    def test_inspect(self, services, capsys):
        assert cli.main(["inspect", "--query", "Running Shoes", *WINDOW_ARGS]) == 0

        out = capsys.readouterr().out
        assert "## ASIN distribution: running shoes" in out
        assert "## Sampling strategies" in out

    def test_compare_after_sync(self, services, capsys):
        cli.main(["sync", *WINDOW_ARGS])
        capsys.readouterr()

        assert cli.main(["compare", "--query", "running shoes", *WINDOW_ARGS, "--format", "json"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["records"]["identical"] is True
        assert report["comparison"]["discrepancies"] == []


class TestSchedulerCommands:
    def test_run_once_failure(self, monkeypatch, capsys):
        scheduler = StubScheduler(SyncJobResult(success=False, error="Sync already in progress"))
        monkeypatch.setattr(cli, "build_scheduler", lambda settings: scheduler)

        assert cli.main(["run-once"]) == 1
        assert scheduler.cleaned

    def test_run_once_success(self, monkeypatch, capsys):
        scheduler = StubScheduler(SyncJobResult(success=True, records_inserted=5))
        monkeypatch.setattr(cli, "build_scheduler", lambda settings: scheduler)

        assert cli.main(["run-once"]) == 0
        assert json.loads(capsys.readouterr().out)["records_inserted"] == 5

    def test_status(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "build_scheduler", lambda settings: StubScheduler(None))

        assert cli.main(["status", "--days", "3"]) == 0
        assert json.loads(capsys.readouterr().out)["metrics"]["period_days"] == 3
