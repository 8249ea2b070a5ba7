from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from stepwright.db import UsageLedgerDB
from stepwright.persistence import get_ledger
from stepwright.usage import UsageLimits, UsageMonitor, UsageRecord

NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def ledger(tmp_path):
    db = UsageLedgerDB(f"sqlite+aiosqlite:///{tmp_path / 'usage.db'}")
    yield db
    await db.dispose()


def _record(cost, when, user="u1", workflow_id=None):
    return UsageRecord(
        user_id=user,
        provider_id="openai",
        model_id="gpt-4o-mini",
        workflow_id=workflow_id,
        input_tokens=200,
        output_tokens=100,
        input_cost_usd=cost,
        created_at=when,
    )


@pytest.mark.asyncio
async def test_usage_rows_round_trip_with_window(ledger):
    await ledger.append_usage(_record(1.0, NOW - timedelta(days=2)))
    await ledger.append_usage(_record(2.0, NOW - timedelta(hours=1), workflow_id="wf"))
    await ledger.append_usage(_record(5.0, NOW - timedelta(hours=1), user="u2"))

    rows = await ledger.list_usage("u1", NOW - timedelta(days=1))
    everything = await ledger.list_usage("u1", NOW - timedelta(days=7), NOW - timedelta(days=1))

    assert [r.total_cost_usd for r in rows] == [2.0]
    assert rows[0].workflow_id == "wf"
    assert rows[0].created_at == NOW - timedelta(hours=1)
    assert rows[0].created_at.tzinfo is not None
    assert [r.total_cost_usd for r in everything] == [1.0]


@pytest.mark.asyncio
async def test_limits_upsert(ledger):
    assert await ledger.get_limits("u1") is None

    await ledger.upsert_limits("u1", UsageLimits(daily_limit_usd=5.0))
    await ledger.upsert_limits("u1", UsageLimits(daily_limit_usd=7.5, hard_stop_enabled=False))

    limits = await ledger.get_limits("u1")
    assert limits.daily_limit_usd == 7.5
    assert limits.hard_stop_enabled is False


@pytest.mark.asyncio
async def test_monitor_over_database_ledger(ledger):
    monitor = UsageMonitor(ledger, clock=lambda: NOW)
    await monitor.update_limits("u1", daily_limit_usd=3.0)
    await monitor.log_usage(_record(2.0, NOW - timedelta(hours=1), workflow_id="wf"))

    decision = await monitor.can_make_request("u1", 1.5)
    workflow_rows = await monitor.get_workflow_usage("u1", "wf", NOW - timedelta(days=1))

    assert not decision.allowed
    assert decision.period == "daily"
    assert len(workflow_rows) == 1


def test_ledger_factory_uses_configured_url(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPWRIGHT_LEDGER_URL", f"sqlite+aiosqlite:///{tmp_path / 'f.db'}")

    assert isinstance(get_ledger(), UsageLedgerDB)
