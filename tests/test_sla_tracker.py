"""
Tests for SLA status derivation, first-response detection and the periodic sweep.
Run: pytest tests/test_sla_tracker.py -v
"""

import threading

import pytest

from assignment_engine.models import (
    NotificationType,
    Priority,
    SLARule,
    SLAState,
    TicketStatus,
    UserRole,
)
from assignment_engine.services.sla_tracker import SLATracker, threshold_state
from tests.factories import T0, add_agent, add_customer, comment, hours, make_ticket, resolved


@pytest.fixture
def sla_store(store):
    store.set_sla_rule(SLARule(priority=Priority.MEDIUM, response_time_hours=4, resolution_time_hours=24))
    add_customer(store, "cust-1")
    add_agent(store, "agent-a")
    add_agent(store, "boss", role=UserRole.ADMIN)
    return store


class TestThresholds:
    @pytest.mark.parametrize(
        "elapsed,target,expected",
        [
            (0, 4, SLAState.OK),
            (2.99, 4, SLAState.OK),
            (3, 4, SLAState.WARNING),
            (4, 4, SLAState.WARNING),
            (4.01, 4, SLAState.OVERDUE),
            (0, 0, SLAState.OK),
            (1, 0, SLAState.OVERDUE),
        ],
    )
    def test_threshold_state(self, elapsed, target, expected):
        assert threshold_state(elapsed, target, 0.75) == expected

    def test_response_clock_only_moves_forward(self, sla_store, engine):
        """Without a response the state goes ok -> warning -> overdue as time passes."""
        ticket = make_ticket()
        sla_store.add_ticket(ticket)
        states = [engine.sla.compute_status(ticket, T0 + hours(h)).response_status for h in (1, 3, 3.5, 4.5, 30)]
        assert states == [SLAState.OK, SLAState.WARNING, SLAState.WARNING, SLAState.OVERDUE, SLAState.OVERDUE]
        late = engine.sla.compute_status(ticket, T0 + hours(30))
        assert late.resolution_status == SLAState.OVERDUE
        assert late.total_elapsed_hours == pytest.approx(30)


class TestStatus:
    def test_logged_first_response_is_met(self, sla_store, engine):
        ticket = make_ticket()
        sla_store.add_ticket(ticket)
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(3))
        status = engine.sla.compute_status(ticket, T0 + hours(10))
        assert status.response_status == SLAState.MET
        assert status.response_elapsed_hours == pytest.approx(3.0)
        assert status.first_response_at == T0 + hours(3)
        assert status.resolution_status == SLAState.OK

    def test_unlogged_staff_comment_counts(self, sla_store, engine):
        ticket = make_ticket()
        sla_store.add_ticket(ticket)
        sla_store.add_comment(comment("T1", "cust-1", T0 + hours(1), role=UserRole.CUSTOMER))
        sla_store.add_comment(comment("T1", "agent-a", T0 + hours(2)))
        status = engine.sla.compute_status(ticket, T0 + hours(5))
        assert status.response_status == SLAState.MET
        assert status.response_elapsed_hours == pytest.approx(2.0)

    def test_customer_comments_do_not_count(self, sla_store, engine):
        ticket = make_ticket()
        sla_store.add_ticket(ticket)
        sla_store.add_comment(comment("T1", "cust-1", T0 + hours(1), role=UserRole.CUSTOMER))
        status = engine.sla.compute_status(ticket, T0 + hours(5))
        assert status.response_status == SLAState.OVERDUE
        assert status.first_response_at is None

    def test_resolved_in_time_is_met(self, sla_store, engine):
        ticket = resolved(make_ticket(), "agent-a", after_hours=10)
        sla_store.add_ticket(ticket)
        sla_store.claim_first_response("T1", "agent-a", T0 + hours(1))
        status = engine.sla.compute_status(ticket, T0 + hours(500))
        assert status.is_active is False
        assert status.response_status == SLAState.MET
        assert status.resolution_status == SLAState.MET
        assert status.total_elapsed_hours == pytest.approx(10)

    def test_resolved_late_is_overdue(self, sla_store, engine):
        ticket = resolved(make_ticket(), "agent-a", after_hours=30)
        sla_store.add_ticket(ticket)
        sla_store.claim_first_response("T1", "agent-a", T0 + hours(5))
        status = engine.sla.compute_status(ticket, T0 + hours(31))
        assert status.response_status == SLAState.OVERDUE
        assert status.resolution_status == SLAState.OVERDUE

    def test_closed_without_response_is_response_overdue(self, sla_store, engine):
        ticket = resolved(make_ticket(), "agent-a", after_hours=2).model_copy(update={"status": TicketStatus.CLOSED})
        sla_store.add_ticket(ticket)
        status = engine.sla.compute_status(ticket, T0 + hours(3))
        assert status.response_status == SLAState.OVERDUE
        assert status.resolution_status == SLAState.MET

    def test_inactive_rule_stops_clocks(self, sla_store, engine):
        sla_store.set_sla_rule(SLARule(priority=Priority.LOW, response_time_hours=1, resolution_time_hours=2, active=False))
        ticket = make_ticket(priority=Priority.LOW)
        sla_store.add_ticket(ticket)
        status = engine.sla.compute_status(ticket, T0 + hours(100))
        assert status.response_status == SLAState.STOPPED
        assert status.resolution_status == SLAState.STOPPED

    def test_missing_rule_reports_ok(self, sla_store, engine, caplog):
        ticket = make_ticket(priority=Priority.URGENT)
        sla_store.add_ticket(ticket)
        status = engine.sla.compute_status(ticket, T0 + hours(100))
        assert status.response_status == SLAState.OK
        assert status.resolution_status == SLAState.OK
        assert status.total_elapsed_hours == 0.0
        assert "No SLA rule" in caplog.text

    def test_store_failure_reports_ok(self, sla_store, engine):
        def broken(priority):
            raise ConnectionError("database unavailable")

        sla_store.fetch_sla_rule = broken
        status = engine.sla.compute_status(make_ticket(), T0 + hours(100))
        assert status.response_status == SLAState.OK
        assert status.resolution_status == SLAState.OK

    def test_status_for_unknown_ticket(self, sla_store, engine):
        assert engine.sla.status_for("missing") is None


class TestFirstResponse:
    def test_logged_once(self, sla_store, engine):
        sla_store.add_ticket(make_ticket())
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(3)) is True
        assert engine.sla.record_potential_first_response("T1", "boss", T0 + hours(4)) is False
        assert sla_store.fetch_first_response("T1") == T0 + hours(3)
        notes = engine.outbox.pending(NotificationType.FIRST_RESPONSE)
        assert [(n.target_user_id, n.ticket_id) for n in notes] == [("cust-1", "T1")]

    def test_same_message_from_two_paths_concurrently(self, sla_store, engine):
        """Comment write and chat ingestion both report the same message."""
        sla_store.add_ticket(make_ticket())
        barrier = threading.Barrier(8)
        results = []

        def ingest():
            barrier.wait()
            results.append(engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(3)))

        threads = [threading.Thread(target=ingest) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert sla_store.fetch_first_response("T1") == T0 + hours(3)
        assert len(engine.outbox.pending(NotificationType.FIRST_RESPONSE)) == 1

    def test_tracker_keeps_no_per_ticket_state(self, sla_store, engine):
        """Long-running workers see many tickets; the tracker must not grow with them."""
        before = dict(vars(engine.sla))
        for i in range(50):
            sla_store.add_ticket(make_ticket(f"T{i}"))
            assert engine.sla.record_potential_first_response(f"T{i}", "agent-a", T0 + hours(1)) is True
        assert vars(engine.sla) == before

    def test_customer_author_ignored(self, sla_store, engine):
        sla_store.add_ticket(make_ticket())
        assert engine.sla.record_potential_first_response("T1", "cust-1", T0 + hours(1)) is False
        assert sla_store.fetch_first_response("T1") is None

    def test_staff_creator_ignored(self, sla_store, engine):
        sla_store.add_ticket(make_ticket(customer_id="agent-a"))
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(1)) is False

    def test_pending_ticket_ignored(self, sla_store, engine):
        sla_store.add_ticket(make_ticket(status=TicketStatus.PENDING))
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(1)) is False

    def test_earlier_staff_comment_wins(self, sla_store, engine):
        sla_store.add_ticket(make_ticket())
        sla_store.add_comment(comment("T1", "boss", T0 + hours(1), role=UserRole.ADMIN))
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(2)) is False
        assert sla_store.fetch_first_response("T1") is None

    def test_unknown_ticket_and_store_errors_never_raise(self, sla_store, engine, caplog):
        assert engine.sla.record_potential_first_response("missing", "agent-a", T0) is False
        sla_store.add_ticket(make_ticket())

        def broken(ticket_id, agent_id, at):
            raise ConnectionError("log unavailable")

        sla_store.claim_first_response = broken
        assert engine.sla.record_potential_first_response("T1", "agent-a", T0 + hours(1)) is False
        assert "non-blocking" in caplog.text


class TestSweep:
    def test_warnings_and_breaches(self, sla_store, engine):
        sla_store.add_ticket(make_ticket("late", assigned_agent_id="agent-a", created_at=T0 - hours(5)))
        sla_store.add_ticket(make_ticket("warn-unassigned", created_at=T0 - hours(3.5)))
        sla_store.add_ticket(make_ticket("warn-assigned", assigned_agent_id="agent-a", created_at=T0 - hours(3)))
        sla_store.add_ticket(make_ticket("resolution-warn", created_at=T0 - hours(20)))
        sla_store.claim_first_response("resolution-warn", "agent-a", T0 - hours(19))
        sla_store.add_ticket(make_ticket("fresh", created_at=T0))
        sla_store.add_ticket(make_ticket("parked", status=TicketStatus.PENDING, created_at=T0 - hours(10)))
        sla_store.add_ticket(resolved(make_ticket("done", created_at=T0 - hours(50)), "agent-a", after_hours=40))

        report = engine.sla.sweep(now=T0)
        assert (report.checked, report.warnings, report.breaches) == (5, 3, 1)

        breaches = engine.outbox.pending(NotificationType.SLA_BREACH)
        assert {(n.target_user_id, n.priority) for n in breaches} == {("agent-a", "urgent"), ("boss", "urgent")}
        assert {n.ticket_id for n in breaches} == {"late"}

        warnings = engine.outbox.pending(NotificationType.SLA_WARNING)
        assert {(n.ticket_id, n.target_user_id, n.priority) for n in warnings} == {
            ("warn-assigned", "agent-a", "high"),
            ("resolution-warn", "cust-1", "medium"),
        }

    def test_sweep_uses_clock_by_default(self, sla_store):
        sla_store.add_ticket(make_ticket(created_at=T0 - hours(5)))
        tracker = SLATracker(sla_store, clock=lambda: T0)
        assert tracker.sweep().breaches == 1
