"""
In-process implementation of the SupportStore.

Used by tests and single-process deployments. Workload counters are guarded by
one lock per agent; ticket and comment data by a single store lock.
"""

import logging
import threading
from collections import Counter, defaultdict
from contextlib import ExitStack
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from assignment_engine.config import DEFAULT_SATISFACTION_SCORE
from assignment_engine.models import (
    ACTIVE_STATUSES,
    PRIORITY_ORDER,
    STAFF_ROLES,
    AgentSkillRecord,
    AssignmentRule,
    CommentRecord,
    CustomerRecord,
    PerformanceStats,
    Priority,
    SLARule,
    TicketRecord,
    TicketStatus,
    UserRecord,
    UserRole,
)

logger = logging.getLogger(__name__)


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._agent_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._users: dict[str, UserRecord] = {}
        self._customers: dict[str, CustomerRecord] = {}
        self._tickets: dict[str, TicketRecord] = {}
        self._comments: dict[str, list[CommentRecord]] = defaultdict(list)
        self._workload: dict[str, int] = defaultdict(int)
        # ticket id -> agent holding a workload slot for it
        self._slots: dict[str, str] = {}
        self._performance: dict[str, PerformanceStats] = {}
        self._skills: dict[str, AgentSkillRecord] = {}
        self._sla_rules: dict[Priority, SLARule] = {}
        self._rules: Optional[list[AssignmentRule]] = None
        self._first_responses: dict[str, tuple[str, datetime]] = {}

    # --- seeding (the collaborator's CRUD side) ---

    def add_user(self, user: UserRecord) -> None:
        with self._lock:
            self._users[user.id] = user

    def add_customer(self, customer: CustomerRecord) -> None:
        with self._lock:
            self._customers[customer.id] = customer

    def add_ticket(self, ticket: TicketRecord) -> None:
        """Insert a ticket; an assigned active ticket counts towards its agent's workload."""
        takes_slot = bool(ticket.assigned_agent_id) and ticket.status in ACTIVE_STATUSES
        with self._lock:
            self._tickets[ticket.id] = ticket
            if takes_slot:
                self._slots[ticket.id] = ticket.assigned_agent_id
        if takes_slot:
            with self._agent_lock(ticket.assigned_agent_id):
                self._workload[ticket.assigned_agent_id] += 1

    def add_comment(self, comment: CommentRecord) -> None:
        with self._lock:
            self._comments[comment.ticket_id].append(comment)
            self._comments[comment.ticket_id].sort(key=lambda c: c.created_at)

    def set_workload(self, agent_id: str, workload: int) -> None:
        with self._agent_lock(agent_id):
            self._workload[agent_id] = max(0, workload)

    def set_performance(self, agent_id: str, stats: PerformanceStats) -> None:
        self._performance[agent_id] = stats

    def set_agent_skills(self, agent_id: str, skills: AgentSkillRecord) -> None:
        self._skills[agent_id] = skills

    def set_sla_rule(self, rule: SLARule) -> None:
        self._sla_rules[rule.priority] = rule

    def set_assignment_rules(self, rules: list[AssignmentRule]) -> None:
        with self._lock:
            self._rules = list(rules)

    def update_ticket_status(self, ticket_id: str, status: TicketStatus, at: Optional[datetime] = None) -> None:
        """Change status; leaving the active set releases the agent's workload slot."""
        with self._lock:
            ticket = self._tickets[ticket_id]
            was_active = ticket.status in ACTIVE_STATUSES
            update = {"status": status}
            if status == TicketStatus.RESOLVED:
                update["resolved_at"] = at or datetime.now(timezone.utc)
                update["resolved_by"] = ticket.assigned_agent_id
            self._tickets[ticket_id] = ticket.model_copy(update=update)
        if was_active and status not in ACTIVE_STATUSES:
            self.release_ticket_slot(ticket_id)

    # --- directory ---

    def fetch_agents(self, roles: Iterable[UserRole]) -> list[UserRecord]:
        wanted = set(roles)
        with self._lock:
            return [u for u in self._users.values() if u.role in wanted]

    def fetch_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    def fetch_agent_workload(self, agent_id: str) -> int:
        with self._agent_lock(agent_id):
            return self._workload[agent_id]

    def fetch_agent_performance(self, agent_id: str, window_days: int) -> Optional[PerformanceStats]:
        if agent_id in self._performance:
            return self._performance[agent_id]
        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        with self._lock:
            resolved = [
                t for t in self._tickets.values()
                if t.resolved_by == agent_id and t.resolved_at and t.resolved_at >= since
            ]
            active = sum(
                1 for t in self._tickets.values()
                if t.assigned_agent_id == agent_id and t.status in ACTIVE_STATUSES
            )
        if not resolved:
            return None
        hours = [(t.resolved_at - t.created_at).total_seconds() / 3600 for t in resolved]
        scores = [t.satisfaction_score for t in resolved if t.satisfaction_score is not None]
        return PerformanceStats(
            avg_resolution_hours=max(0.0, sum(hours) / len(hours)),
            resolution_rate=len(resolved) / (len(resolved) + active),
            satisfaction_score=sum(scores) / len(scores) if scores else DEFAULT_SATISFACTION_SCORE,
        )

    def fetch_agent_skills(self, agent_id: str) -> AgentSkillRecord:
        if agent_id in self._skills:
            return self._skills[agent_id]
        with self._lock:
            resolved = [
                t for t in self._tickets.values()
                if t.resolved_by == agent_id and t.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED)
            ]
        categories = Counter(t.category_id for t in resolved if t.category_id)
        customers = {t.customer_id for t in resolved}
        repeat_rate = (len(resolved) - len(customers)) / len(resolved) if resolved else 0.0
        return AgentSkillRecord(
            resolved_category_counts=dict(categories),
            total_customers_served=len(customers),
            repeat_customer_rate=repeat_rate,
        )

    def fetch_customer(self, customer_id: str) -> Optional[CustomerRecord]:
        return self._customers.get(customer_id)

    # --- tickets ---

    def fetch_customer_ticket_history(self, customer_id: str) -> list[TicketRecord]:
        with self._lock:
            tickets = [t for t in self._tickets.values() if t.customer_id == customer_id]
        return sorted(tickets, key=lambda t: t.created_at, reverse=True)

    def fetch_ticket(self, ticket_id: str) -> Optional[TicketRecord]:
        return self._tickets.get(ticket_id)

    def fetch_active_tickets(self) -> list[TicketRecord]:
        with self._lock:
            return [t for t in self._tickets.values() if t.status in ACTIVE_STATUSES]

    def fetch_reassignable_tickets(self, agent_id: str, limit: int) -> list[TicketRecord]:
        with self._lock:
            tickets = [
                t for t in self._tickets.values()
                if t.assigned_agent_id == agent_id and t.status in (TicketStatus.OPEN, TicketStatus.PENDING)
            ]
        # newest first, then a stable sort on priority keeps that order within a priority
        tickets.sort(key=lambda t: t.created_at, reverse=True)
        tickets.sort(key=lambda t: PRIORITY_ORDER[t.priority])
        return tickets[:limit]

    def fetch_comments_before(self, ticket_id: str, timestamp: datetime) -> list[CommentRecord]:
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            return []
        with self._lock:
            comments = list(self._comments.get(ticket_id, []))
        return [
            c for c in comments
            if c.created_at < timestamp
            and c.author_role in STAFF_ROLES
            and c.author_id != ticket.customer_id
        ]

    def record_assignment(self, ticket_id: str, agent_id: str, expected_agent_id: Optional[str] = None) -> bool:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                logger.warning("record_assignment: ticket %s not found.", ticket_id)
                return False
            current = ticket.assigned_agent_id if ticket.status in ACTIVE_STATUSES else None
            if current != expected_agent_id:
                return False
            self._tickets[ticket_id] = ticket.model_copy(
                update={"assigned_agent_id": agent_id, "status": TicketStatus.IN_PROGRESS}
            )
            holder = self._slots.get(ticket_id)
            self._slots[ticket_id] = agent_id
        if holder and holder != agent_id:
            self.release_workload(holder)
        return True

    # --- configuration ---

    def fetch_sla_rule(self, priority: Priority) -> Optional[SLARule]:
        return self._sla_rules.get(priority)

    def fetch_assignment_rules(self) -> Optional[list[AssignmentRule]]:
        with self._lock:
            return None if self._rules is None else list(self._rules)

    # --- workload counters ---

    def _agent_lock(self, agent_id: str) -> threading.Lock:
        with self._lock:
            return self._agent_locks[agent_id]

    def try_reserve_workload(self, agent_id: str, limit: int) -> bool:
        with self._agent_lock(agent_id):
            if self._workload[agent_id] >= limit:
                return False
            self._workload[agent_id] += 1
            return True

    def release_workload(self, agent_id: str) -> None:
        with self._agent_lock(agent_id):
            self._workload[agent_id] = max(0, self._workload[agent_id] - 1)

    def move_ticket(self, ticket_id: str, from_agent_id: str, to_agent_id: str, dest_limit: int) -> bool:
        with ExitStack() as stack:
            # fixed lock order so two opposite moves cannot deadlock
            for agent_id in sorted({from_agent_id, to_agent_id}):
                stack.enter_context(self._agent_lock(agent_id))
            with self._lock:
                ticket = self._tickets.get(ticket_id)
                if ticket is None or ticket.assigned_agent_id != from_agent_id:
                    return False
                if self._workload[to_agent_id] >= dest_limit:
                    return False
                self._tickets[ticket_id] = ticket.model_copy(update={"assigned_agent_id": to_agent_id})
                self._slots[ticket_id] = to_agent_id
                self._workload[from_agent_id] = max(0, self._workload[from_agent_id] - 1)
                self._workload[to_agent_id] += 1
        return True

    def release_ticket_slot(self, ticket_id: str) -> Optional[str]:
        with self._lock:
            agent_id = self._slots.pop(ticket_id, None)
        if agent_id:
            self.release_workload(agent_id)
        return agent_id

    # --- first-response log ---

    def fetch_first_response(self, ticket_id: str) -> Optional[datetime]:
        entry = self._first_responses.get(ticket_id)
        return entry[1] if entry else None

    def claim_first_response(self, ticket_id: str, agent_id: str, at: datetime) -> bool:
        with self._lock:
            if ticket_id in self._first_responses:
                return False
            self._first_responses[ticket_id] = (agent_id, at)
            return True
