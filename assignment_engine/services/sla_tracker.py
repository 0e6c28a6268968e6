"""
SLA tracker: derives response/resolution status from elapsed time against the
per-priority SLA rule, and detects the first agent response on a ticket.

Status is computed fresh on every call, never stored. SLA evaluation must not
block ticket mutations, so any failure degrades to ok/ok with zero elapsed time
and is logged.

Every message-ingestion path (ticket comments, chat messages) funnels through
record_potential_first_response(), which logs a ticket's first response
exactly once.
"""

import logging
from datetime import datetime
from typing import Optional

from assignment_engine import activity
from assignment_engine.config import SLA_WARNING_THRESHOLD
from assignment_engine.models import (
    INACTIVE_STATUSES,
    STAFF_ROLES,
    NotificationType,
    SLARule,
    SLAState,
    SLAStatus,
    SLASweepReport,
    TicketRecord,
    TicketStatus,
    UserRole,
)
from assignment_engine.notifications import NotificationOutbox
from assignment_engine.store.base import SupportStore
from assignment_engine.timeutils import Clock, hours_between, utc_now

logger = logging.getLogger(__name__)

# statuses in which a staff comment can count as the first response
RESPONSE_ELIGIBLE_STATUSES = (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


def threshold_state(elapsed: float, target: float, warning_ratio: float = SLA_WARNING_THRESHOLD) -> SLAState:
    """overdue past the target, warning from warning_ratio of it, ok before that."""
    if elapsed > target:
        return SLAState.OVERDUE
    if target <= 0:
        return SLAState.OK
    if elapsed / target >= warning_ratio:
        return SLAState.WARNING
    return SLAState.OK


class SLATracker:
    def __init__(
        self,
        store: SupportStore,
        outbox: Optional[NotificationOutbox] = None,
        clock: Clock = utc_now,
        warning_ratio: float = SLA_WARNING_THRESHOLD,
    ):
        self._store = store
        self._outbox = outbox or NotificationOutbox()
        self._clock = clock
        self._warning_ratio = warning_ratio

    # --- status ---

    def _first_response_at(self, ticket: TicketRecord, now: datetime) -> Optional[datetime]:
        logged = self._store.fetch_first_response(ticket.id)
        if logged is not None:
            return logged
        earlier = self._store.fetch_comments_before(ticket.id, now)
        return earlier[0].created_at if earlier else None

    def compute_status(self, ticket: TicketRecord, now: Optional[datetime] = None) -> SLAStatus:
        now = now or self._clock()
        try:
            rule = self._store.fetch_sla_rule(ticket.priority)
            if rule is None:
                logger.warning("No SLA rule for priority %s (ticket %s); reporting ok.", ticket.priority.value, ticket.id)
                return SLAStatus(ticket_id=ticket.id)
            return self._derive(ticket, rule, now)
        except Exception:
            logger.exception("SLA computation failed for ticket %s; reporting ok.", ticket.id)
            return SLAStatus(ticket_id=ticket.id)

    def _derive(self, ticket: TicketRecord, rule: SLARule, now: datetime) -> SLAStatus:
        is_active = ticket.status not in INACTIVE_STATUSES
        end = now if is_active or ticket.resolved_at is None else ticket.resolved_at
        total = max(0.0, hours_between(ticket.created_at, end))
        first = self._first_response_at(ticket, now)
        response_elapsed = max(0.0, hours_between(ticket.created_at, first)) if first else total

        status = SLAStatus(
            ticket_id=ticket.id,
            response_elapsed_hours=round(response_elapsed, 4),
            total_elapsed_hours=round(total, 4),
            first_response_at=first,
            is_active=is_active,
        )
        if not rule.active:
            return status.model_copy(update={"response_status": SLAState.STOPPED, "resolution_status": SLAState.STOPPED})

        if is_active:
            response = SLAState.MET if first else threshold_state(response_elapsed, rule.response_time_hours, self._warning_ratio)
            resolution = threshold_state(total, rule.resolution_time_hours, self._warning_ratio)
        else:
            # closed tickets keep a permanent verdict
            response_in_time = first is not None and response_elapsed <= rule.response_time_hours
            response = SLAState.MET if response_in_time else SLAState.OVERDUE
            resolution = SLAState.MET if total <= rule.resolution_time_hours else SLAState.OVERDUE
        return status.model_copy(update={"response_status": response, "resolution_status": resolution})

    def status_for(self, ticket_id: str, now: Optional[datetime] = None) -> Optional[SLAStatus]:
        ticket = self._store.fetch_ticket(ticket_id)
        if ticket is None:
            return None
        return self.compute_status(ticket, now)

    # --- first response ---

    def record_potential_first_response(self, ticket_id: str, author_id: str, timestamp: datetime) -> bool:
        """
        Log the message at ``timestamp`` as the ticket's first response if it is
        one. Returns True only for the call that logged it. Never raises: a
        failure here must not fail the comment or chat write that triggered it.
        """
        try:
            return self._record_first_response(ticket_id, author_id, timestamp)
        except Exception:
            logger.exception("First-response check failed for ticket %s (non-blocking).", ticket_id)
            return False

    def _record_first_response(self, ticket_id: str, author_id: str, timestamp: datetime) -> bool:
        ticket = self._store.fetch_ticket(ticket_id)
        if ticket is None:
            return False
        author = self._store.fetch_user(author_id)
        if author is None or author.role not in STAFF_ROLES:
            return False
        if author_id == ticket.customer_id or ticket.status not in RESPONSE_ELIGIBLE_STATUSES:
            return False

        if self._store.fetch_first_response(ticket_id) is not None:
            return False
        if self._store.fetch_comments_before(ticket_id, timestamp):
            return False
        # atomic claim; of concurrent callers only one wins
        if not self._store.claim_first_response(ticket_id, author_id, timestamp):
            return False

        logger.info("First response on ticket %s by %s at %s.", ticket_id, author_id, timestamp.isoformat())
        self._outbox.emit(NotificationType.FIRST_RESPONSE, ticket.customer_id, ticket_id, priority="medium")
        activity.emit(
            "first_response",
            {"ticket_id": ticket_id, "agent_id": author_id, "at": timestamp.isoformat()},
        )
        return True

    # --- periodic sweep ---

    def sweep(self, now: Optional[datetime] = None) -> SLASweepReport:
        """Check every open/in-progress ticket and emit warning and breach notifications."""
        now = now or self._clock()
        tickets = [t for t in self._store.fetch_active_tickets() if t.status in RESPONSE_ELIGIBLE_STATUSES]
        admins = None
        report = SLASweepReport(checked=len(tickets))

        for ticket in tickets:
            status = self.compute_status(ticket, now)
            states = (status.response_status, status.resolution_status)
            if SLAState.OVERDUE in states:
                report.breaches += 1
                if admins is None:
                    admins = self._store.fetch_agents([UserRole.ADMIN])
                targets = [ticket.assigned_agent_id] if ticket.assigned_agent_id else []
                targets += [a.id for a in admins]
                for user_id in targets:
                    self._outbox.emit(NotificationType.SLA_BREACH, user_id, ticket.id, priority="urgent")
            elif SLAState.WARNING in states:
                report.warnings += 1
                if ticket.assigned_agent_id:
                    self._outbox.emit(NotificationType.SLA_WARNING, ticket.assigned_agent_id, ticket.id, priority="high")
                elif status.resolution_status == SLAState.WARNING:
                    self._outbox.emit(NotificationType.SLA_WARNING, ticket.customer_id, ticket.id, priority="medium")

        logger.info("SLA sweep: %d checked, %d warnings, %d breaches.", report.checked, report.warnings, report.breaches)
        activity.emit("sla_sweep", report.model_dump())
        return report
