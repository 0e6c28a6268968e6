"""
Tests for the ARQ worker jobs, run directly with an in-memory engine (no Redis required).
Run: pytest tests/test_worker.py -v
"""

import asyncio

import pytest

from assignment_engine import worker
from assignment_engine.models import Priority, SLARule
from tests.factories import T0, add_agent, add_customer, hours, make_ticket


@pytest.fixture
def ctx(store, engine, monkeypatch):
    published = []
    monkeypatch.setattr(worker, "publish_event", lambda event_type, data: published.append(event_type))
    store.set_sla_rule(SLARule(priority=Priority.MEDIUM, response_time_hours=4, resolution_time_hours=24))
    add_customer(store, "cust-1")
    add_agent(store, "agent-a")
    store.add_ticket(make_ticket("T1"))
    return {"engine": engine, "published": published}


class TestJobs:
    def test_record_first_response(self, ctx):
        payload = {"ticket_id": "T1", "author_id": "agent-a", "created_at": (T0 + hours(2)).isoformat()}
        assert asyncio.run(worker.record_first_response(ctx, payload)) is True
        assert asyncio.run(worker.record_first_response(ctx, payload)) is False
        assert ctx["published"] == ["first_response"]

    def test_bad_payload_raises(self, ctx):
        with pytest.raises(KeyError):
            asyncio.run(worker.record_first_response(ctx, {"ticket_id": "T1", "author_id": "agent-a"}))
        with pytest.raises(ValueError):
            asyncio.run(worker.record_first_response(ctx, {"ticket_id": "T1", "author_id": "a", "created_at": "soon"}))

    def test_sweep_sla(self, ctx):
        report = asyncio.run(worker.sweep_sla(ctx))
        assert report == {"checked": 1, "warnings": 0, "breaches": 0}
        assert ctx["published"] == ["sla_sweep"]

    def test_rebalance_workload(self, ctx):
        report = asyncio.run(worker.rebalance_workload(ctx))
        assert report["success"] is False
        assert ctx["published"] == ["workload_rebalanced"]


class TestSchedule:
    def test_every(self):
        assert worker._every(15) == {0, 15, 30, 45}
        assert worker._every(0) == set(range(60))

    def test_settings(self):
        assert worker.WorkerSettings.functions == [worker.record_first_response]
        assert len(worker.WorkerSettings.cron_jobs) == 2
