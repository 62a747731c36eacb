"""
Smoke Tests
===========
Basic sanity checks for imports and configuration.
"""


def test_imports():
    """Verify core modules can be imported."""
    from sqp_sync import config
    from sqp_sync.flows import scheduled_sync, sync_period, validate

    assert hasattr(config, "get_settings")
    assert hasattr(sync_period, "sync_period_flow")
    assert hasattr(scheduled_sync, "scheduled_sync_flow")
    assert hasattr(validate, "validate_flow")


def test_settings_loads(settings):
    """Verify settings can be instantiated (uses fixture from conftest.py)."""
    assert settings.source_table == "test-project.sqp.seller-search_query_performance"
    assert settings.environment in ("dev", "prod", "staging")
    assert settings.retry_attempts == 3


def test_settings_from_environment():
    """Verify get_settings() picks up the environment set in conftest.py."""
    from sqp_sync.config import get_settings

    assert get_settings().bigquery_project_id == "test-project"


def test_summary_tables():
    """Verify summary table naming per period type."""
    from sqp_sync.db import summary_table

    assert summary_table("weekly") == "sqp.weekly_summary"
    assert summary_table("monthly") == "sqp.monthly_summary"


def test_cli_entry_point():
    """Verify the console script target exists."""
    from sqp_sync import cli

    assert callable(cli.run)
    assert cli.build_parser().prog == "sqp-sync"
