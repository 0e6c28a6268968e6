"""
Redis-backed SupportStore.

Records are stored as pydantic JSON under per-entity keys; workload counters
are plain integers mutated with WATCH/MULTI compare-and-swap so concurrent
API workers and the rebalancer never overcommit an agent. A ticket_slot key
names the agent whose counter currently holds a slot for each ticket, so a
slot is released at most once.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import redis

from assignment_engine.config import REDIS_URL
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

USER_PREFIX = "user:"
ROLE_SET_PREFIX = "users:role:"
CUSTOMER_PREFIX = "customer:"
TICKET_PREFIX = "ticket:"
ACTIVE_TICKETS_SET = "tickets:active"
CUSTOMER_TICKETS_PREFIX = "customer_tickets:"
AGENT_TICKETS_PREFIX = "agent_tickets:"
COMMENTS_PREFIX = "ticket_comments:"
AGENT_LOAD_PREFIX = "agent_load:"
AGENT_PERF_PREFIX = "agent_perf:"
AGENT_SKILLS_PREFIX = "agent_skills:"
SLA_RULE_PREFIX = "sla_rule:"
ASSIGNMENT_RULES_KEY = "assignment_rules"
FIRST_RESPONSE_PREFIX = "first_response:"
SLOT_PREFIX = "ticket_slot:"


def _load_key(agent_id: str) -> str:
    return f"{AGENT_LOAD_PREFIX}{agent_id}"


def _queue_ticket_writes(pipe, old: Optional[TicketRecord], ticket: TicketRecord) -> None:
    """Queue the ticket record and its index updates onto a pipeline."""
    if old is not None and old.assigned_agent_id and old.assigned_agent_id != ticket.assigned_agent_id:
        pipe.srem(f"{AGENT_TICKETS_PREFIX}{old.assigned_agent_id}", ticket.id)
    pipe.set(f"{TICKET_PREFIX}{ticket.id}", ticket.model_dump_json())
    pipe.sadd(f"{CUSTOMER_TICKETS_PREFIX}{ticket.customer_id}", ticket.id)
    if ticket.assigned_agent_id:
        pipe.sadd(f"{AGENT_TICKETS_PREFIX}{ticket.assigned_agent_id}", ticket.id)
    if ticket.status in ACTIVE_STATUSES:
        pipe.sadd(ACTIVE_TICKETS_SET, ticket.id)
    else:
        pipe.srem(ACTIVE_TICKETS_SET, ticket.id)


class RedisStore:
    def __init__(self, client: "redis.Redis") -> None:
        self._r = client

    @classmethod
    def from_url(cls, url: str = REDIS_URL) -> "RedisStore":
        return cls(redis.from_url(url, decode_responses=True))

    # --- seeding ---

    def save_user(self, user: UserRecord) -> None:
        old = self.fetch_user(user.id)
        pipe = self._r.pipeline()
        if old is not None and old.role != user.role:
            pipe.srem(f"{ROLE_SET_PREFIX}{old.role.value}", user.id)
        pipe.set(f"{USER_PREFIX}{user.id}", user.model_dump_json())
        pipe.sadd(f"{ROLE_SET_PREFIX}{user.role.value}", user.id)
        pipe.execute()

    def save_customer(self, customer: CustomerRecord) -> None:
        self._r.set(f"{CUSTOMER_PREFIX}{customer.id}", customer.model_dump_json())

    def save_ticket(self, ticket: TicketRecord) -> None:
        """Upsert a ticket and keep the secondary indexes in sync (does not touch workload)."""
        old = self.fetch_ticket(ticket.id)
        pipe = self._r.pipeline()
        _queue_ticket_writes(pipe, old, ticket)
        pipe.execute()

    def add_comment(self, comment: CommentRecord) -> None:
        self._r.zadd(
            f"{COMMENTS_PREFIX}{comment.ticket_id}",
            {comment.model_dump_json(): comment.created_at.timestamp()},
        )

    def set_workload(self, agent_id: str, workload: int) -> None:
        self._r.set(_load_key(agent_id), max(0, workload))

    def save_performance(self, agent_id: str, stats: PerformanceStats) -> None:
        self._r.set(f"{AGENT_PERF_PREFIX}{agent_id}", stats.model_dump_json())

    def save_agent_skills(self, agent_id: str, skills: AgentSkillRecord) -> None:
        self._r.set(f"{AGENT_SKILLS_PREFIX}{agent_id}", skills.model_dump_json())

    def save_sla_rule(self, rule: SLARule) -> None:
        self._r.set(f"{SLA_RULE_PREFIX}{rule.priority.value}", rule.model_dump_json())

    def save_assignment_rules(self, rules: list[AssignmentRule]) -> None:
        self._r.set(ASSIGNMENT_RULES_KEY, json.dumps([r.model_dump(mode="json") for r in rules]))

    # --- directory ---

    def fetch_agents(self, roles: Iterable[UserRole]) -> list[UserRecord]:
        ids: set[str] = set()
        for role in roles:
            ids |= self._r.smembers(f"{ROLE_SET_PREFIX}{UserRole(role).value}")
        users = []
        for user_id in sorted(ids):
            user = self.fetch_user(user_id)
            if user is not None:
                users.append(user)
        return users

    def fetch_user(self, user_id: str) -> Optional[UserRecord]:
        raw = self._r.get(f"{USER_PREFIX}{user_id}")
        return UserRecord.model_validate_json(raw) if raw else None

    def fetch_agent_workload(self, agent_id: str) -> int:
        return int(self._r.get(_load_key(agent_id)) or 0)

    def fetch_agent_performance(self, agent_id: str, window_days: int) -> Optional[PerformanceStats]:
        raw = self._r.get(f"{AGENT_PERF_PREFIX}{agent_id}")
        if raw:
            return PerformanceStats.model_validate_json(raw)
        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        tickets = self._tickets_by_ids(self._r.smembers(f"{AGENT_TICKETS_PREFIX}{agent_id}"))
        resolved = [t for t in tickets if t.resolved_by == agent_id and t.resolved_at and t.resolved_at >= since]
        if not resolved:
            return None
        active = sum(1 for t in tickets if t.status in ACTIVE_STATUSES)
        hours = [(t.resolved_at - t.created_at).total_seconds() / 3600 for t in resolved]
        scores = [t.satisfaction_score for t in resolved if t.satisfaction_score is not None]
        return PerformanceStats(
            avg_resolution_hours=max(0.0, sum(hours) / len(hours)),
            resolution_rate=len(resolved) / (len(resolved) + active),
            satisfaction_score=sum(scores) / len(scores) if scores else 4.0,
        )

    def fetch_agent_skills(self, agent_id: str) -> AgentSkillRecord:
        raw = self._r.get(f"{AGENT_SKILLS_PREFIX}{agent_id}")
        return AgentSkillRecord.model_validate_json(raw) if raw else AgentSkillRecord()

    def fetch_customer(self, customer_id: str) -> Optional[CustomerRecord]:
        raw = self._r.get(f"{CUSTOMER_PREFIX}{customer_id}")
        return CustomerRecord.model_validate_json(raw) if raw else None

    # --- tickets ---

    def _tickets_by_ids(self, ids: Iterable[str]) -> list[TicketRecord]:
        ids = list(ids)
        if not ids:
            return []
        raws = self._r.mget([f"{TICKET_PREFIX}{tid}" for tid in ids])
        return [TicketRecord.model_validate_json(raw) for raw in raws if raw]

    def fetch_customer_ticket_history(self, customer_id: str) -> list[TicketRecord]:
        tickets = self._tickets_by_ids(self._r.smembers(f"{CUSTOMER_TICKETS_PREFIX}{customer_id}"))
        return sorted(tickets, key=lambda t: t.created_at, reverse=True)

    def fetch_ticket(self, ticket_id: str) -> Optional[TicketRecord]:
        raw = self._r.get(f"{TICKET_PREFIX}{ticket_id}")
        return TicketRecord.model_validate_json(raw) if raw else None

    def fetch_active_tickets(self) -> list[TicketRecord]:
        return self._tickets_by_ids(self._r.smembers(ACTIVE_TICKETS_SET))

    def fetch_reassignable_tickets(self, agent_id: str, limit: int) -> list[TicketRecord]:
        tickets = [
            t for t in self._tickets_by_ids(self._r.smembers(f"{AGENT_TICKETS_PREFIX}{agent_id}"))
            if t.assigned_agent_id == agent_id and t.status in (TicketStatus.OPEN, TicketStatus.PENDING)
        ]
        tickets.sort(key=lambda t: t.created_at, reverse=True)
        tickets.sort(key=lambda t: PRIORITY_ORDER[t.priority])
        return tickets[:limit]

    def fetch_comments_before(self, ticket_id: str, timestamp: datetime) -> list[CommentRecord]:
        ticket = self.fetch_ticket(ticket_id)
        if ticket is None:
            return []
        # "(" makes the upper bound exclusive
        raws = self._r.zrangebyscore(f"{COMMENTS_PREFIX}{ticket_id}", "-inf", f"({timestamp.timestamp()}")
        comments = [CommentRecord.model_validate_json(raw) for raw in raws]
        return [
            c for c in comments
            if c.created_at < timestamp
            and c.author_role in STAFF_ROLES
            and c.author_id != ticket.customer_id
        ]

    def record_assignment(self, ticket_id: str, agent_id: str, expected_agent_id: Optional[str] = None) -> bool:
        ticket_key, slot_key = f"{TICKET_PREFIX}{ticket_id}", f"{SLOT_PREFIX}{ticket_id}"
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(ticket_key, slot_key)
                    raw = pipe.get(ticket_key)
                    if not raw:
                        pipe.unwatch()
                        logger.warning("record_assignment: ticket %s not found.", ticket_id)
                        return False
                    ticket = TicketRecord.model_validate_json(raw)
                    current = ticket.assigned_agent_id if ticket.status in ACTIVE_STATUSES else None
                    if current != expected_agent_id:
                        pipe.unwatch()
                        return False
                    holder = pipe.get(slot_key)
                    assigned = ticket.model_copy(
                        update={"assigned_agent_id": agent_id, "status": TicketStatus.IN_PROGRESS}
                    )
                    pipe.multi()
                    _queue_ticket_writes(pipe, ticket, assigned)
                    pipe.set(slot_key, agent_id)
                    pipe.execute()
                    break
                except redis.WatchError:
                    logger.debug("Ticket %s changed during assignment; retrying.", ticket_id)
                    continue
        if holder and holder != agent_id:
            self.release_workload(holder)
        return True

    # --- configuration ---

    def fetch_sla_rule(self, priority: Priority) -> Optional[SLARule]:
        raw = self._r.get(f"{SLA_RULE_PREFIX}{Priority(priority).value}")
        return SLARule.model_validate_json(raw) if raw else None

    def fetch_assignment_rules(self) -> Optional[list[AssignmentRule]]:
        raw = self._r.get(ASSIGNMENT_RULES_KEY)
        if raw is None:
            return None
        return [AssignmentRule.model_validate(item) for item in json.loads(raw)]

    # --- workload counters ---

    def try_reserve_workload(self, agent_id: str, limit: int) -> bool:
        key = _load_key(agent_id)
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = int(pipe.get(key) or 0)
                    if current >= limit:
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, current + 1)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    logger.debug("Workload for %s changed during reserve; retrying.", agent_id)
                    continue

    def release_workload(self, agent_id: str) -> None:
        key = _load_key(agent_id)
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = int(pipe.get(key) or 0)
                    pipe.multi()
                    pipe.set(key, max(0, current - 1))
                    pipe.execute()
                    return
                except redis.WatchError:
                    continue

    def move_ticket(self, ticket_id: str, from_agent_id: str, to_agent_id: str, dest_limit: int) -> bool:
        ticket_key = f"{TICKET_PREFIX}{ticket_id}"
        from_key, to_key = _load_key(from_agent_id), _load_key(to_agent_id)
        with self._r.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(ticket_key, from_key, to_key)
                    raw = pipe.get(ticket_key)
                    if not raw:
                        pipe.unwatch()
                        return False
                    ticket = TicketRecord.model_validate_json(raw)
                    from_load = int(pipe.get(from_key) or 0)
                    to_load = int(pipe.get(to_key) or 0)
                    if ticket.assigned_agent_id != from_agent_id or to_load >= dest_limit:
                        pipe.unwatch()
                        return False
                    moved = ticket.model_copy(update={"assigned_agent_id": to_agent_id})
                    pipe.multi()
                    pipe.set(ticket_key, moved.model_dump_json())
                    pipe.srem(f"{AGENT_TICKETS_PREFIX}{from_agent_id}", ticket_id)
                    pipe.sadd(f"{AGENT_TICKETS_PREFIX}{to_agent_id}", ticket_id)
                    pipe.set(from_key, max(0, from_load - 1))
                    pipe.set(to_key, to_load + 1)
                    pipe.set(f"{SLOT_PREFIX}{ticket_id}", to_agent_id)
                    pipe.execute()
                    return True
                except redis.WatchError:
                    logger.debug("Ticket %s or workloads changed during move; retrying.", ticket_id)
                    continue

    def release_ticket_slot(self, ticket_id: str) -> Optional[str]:
        pipe = self._r.pipeline()
        pipe.get(f"{SLOT_PREFIX}{ticket_id}")
        pipe.delete(f"{SLOT_PREFIX}{ticket_id}")
        agent_id, _ = pipe.execute()
        if agent_id:
            self.release_workload(agent_id)
        return agent_id or None

    # --- first-response log ---

    def fetch_first_response(self, ticket_id: str) -> Optional[datetime]:
        raw = self._r.get(f"{FIRST_RESPONSE_PREFIX}{ticket_id}")
        if not raw:
            return None
        return datetime.fromisoformat(json.loads(raw)["first_response_at"])

    def claim_first_response(self, ticket_id: str, agent_id: str, at: datetime) -> bool:
        payload = json.dumps({"agent_id": agent_id, "first_response_at": at.isoformat()})
        return bool(self._r.set(f"{FIRST_RESPONSE_PREFIX}{ticket_id}", payload, nx=True))
