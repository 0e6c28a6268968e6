"""Builders for store records used across the test modules."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from assignment_engine.models import (
    AgentSkillRecord,
    AgentSnapshot,
    Availability,
    CommentRecord,
    PerformanceStats,
    Priority,
    TicketContext,
    TicketRecord,
    TicketStatus,
    UserRecord,
    UserRole,
)

# Monday, midday UTC
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def fixed_clock(moment: datetime = T0):
    return lambda: moment


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def add_agent(
    store,
    agent_id: str,
    workload: int = 0,
    availability: Availability = Availability.AVAILABLE,
    role: UserRole = UserRole.AGENT,
    skills: Optional[AgentSkillRecord] = None,
    performance: Optional[PerformanceStats] = None,
) -> UserRecord:
    user = UserRecord(id=agent_id, full_name=agent_id.title(), email=f"{agent_id}@example.com", role=role,
                      availability=availability)
    store.add_user(user)
    store.set_workload(agent_id, workload)
    if skills is not None:
        store.set_agent_skills(agent_id, skills)
    if performance is not None:
        store.set_performance(agent_id, performance)
    return user


def add_customer(store, customer_id: str = "cust-1") -> UserRecord:
    user = UserRecord(id=customer_id, full_name="Customer", role=UserRole.CUSTOMER)
    store.add_user(user)
    return user


def make_ticket(
    ticket_id: str = "T1",
    priority: Priority = Priority.MEDIUM,
    customer_id: str = "cust-1",
    title: str = "Question about my account",
    description: str = "Please help.",
    created_at: datetime = T0,
    **fields,
) -> TicketRecord:
    return TicketRecord(
        id=ticket_id,
        customer_id=customer_id,
        title=title,
        description=description,
        priority=priority,
        created_at=created_at,
        **fields,
    )


def context(ticket: TicketRecord) -> TicketContext:
    return TicketContext.from_record(ticket)


def comment(ticket_id: str, author_id: str, at: datetime, role: UserRole = UserRole.AGENT, comment_id: str = None) -> CommentRecord:
    return CommentRecord(
        id=comment_id or f"c-{ticket_id}-{author_id}-{int(at.timestamp())}",
        ticket_id=ticket_id,
        author_id=author_id,
        author_role=role,
        created_at=at,
    )


def snapshot(agent_id: str, workload: int = 0, **fields) -> AgentSnapshot:
    fields.setdefault("languages", {"en"})
    return AgentSnapshot(id=agent_id, current_workload=workload, **fields)


def resolved(ticket: TicketRecord, agent_id: str, after_hours: float, score: Optional[float] = None) -> TicketRecord:
    return ticket.model_copy(
        update={
            "status": TicketStatus.RESOLVED,
            "assigned_agent_id": agent_id,
            "resolved_by": agent_id,
            "resolved_at": ticket.created_at + hours(after_hours),
            "satisfaction_score": score,
        }
    )
