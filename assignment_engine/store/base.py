"""
Storage/directory collaborator consumed by the engine.

The engine never talks to a database directly; it reads records and mutates
workload counters through this interface. Workload mutations must be atomic
per agent: two concurrent reservations may never both observe a stale count.
"""

from datetime import datetime
from typing import Iterable, Optional, Protocol

from assignment_engine.models import (
    AgentSkillRecord,
    AssignmentRule,
    CommentRecord,
    CustomerRecord,
    PerformanceStats,
    Priority,
    SLARule,
    TicketRecord,
    UserRecord,
    UserRole,
)


class SupportStore(Protocol):
    # --- directory ---

    def fetch_agents(self, roles: Iterable[UserRole]) -> list[UserRecord]: ...

    def fetch_user(self, user_id: str) -> Optional[UserRecord]: ...

    def fetch_agent_workload(self, agent_id: str) -> int: ...

    def fetch_agent_performance(self, agent_id: str, window_days: int) -> Optional[PerformanceStats]:
        """Stats over the window, or None when the agent resolved nothing in it."""
        ...

    def fetch_agent_skills(self, agent_id: str) -> AgentSkillRecord: ...

    def fetch_customer(self, customer_id: str) -> Optional[CustomerRecord]: ...

    # --- tickets ---

    def fetch_customer_ticket_history(self, customer_id: str) -> list[TicketRecord]:
        """All tickets of a customer, newest first."""
        ...

    def fetch_ticket(self, ticket_id: str) -> Optional[TicketRecord]: ...

    def fetch_active_tickets(self) -> list[TicketRecord]: ...

    def fetch_reassignable_tickets(self, agent_id: str, limit: int) -> list[TicketRecord]:
        """Open/pending tickets of an agent, least urgent first, newest first within a priority."""
        ...

    def fetch_comments_before(self, ticket_id: str, timestamp: datetime) -> list[CommentRecord]:
        """Agent/admin comments not written by the ticket creator, strictly before timestamp, oldest first."""
        ...

    def record_assignment(self, ticket_id: str, agent_id: str, expected_agent_id: Optional[str] = None) -> bool:
        """
        Persist the assigned agent and move the ticket to in_progress, iff the
        ticket's current active assignee is still expected_agent_id. The
        ticket's workload slot (already reserved by the caller) passes to
        agent_id; a slot held by a different previous agent is released.
        """
        ...

    # --- configuration ---

    def fetch_sla_rule(self, priority: Priority) -> Optional[SLARule]: ...

    def fetch_assignment_rules(self) -> Optional[list[AssignmentRule]]:
        """Configured rules, or None when no rule set has been configured yet."""
        ...

    # --- workload counters (atomic per agent) ---

    def try_reserve_workload(self, agent_id: str, limit: int) -> bool:
        """Increment the agent's workload iff it is currently below limit."""
        ...

    def release_workload(self, agent_id: str) -> None:
        """Decrement the agent's workload, never below zero."""
        ...

    def move_ticket(self, ticket_id: str, from_agent_id: str, to_agent_id: str, dest_limit: int) -> bool:
        """
        Reassign a ticket iff it is still owned by from_agent_id and the
        destination's workload is below dest_limit. Both counters change together.
        """
        ...

    def release_ticket_slot(self, ticket_id: str) -> Optional[str]:
        """
        Free the workload slot held for a ticket and return its agent, or None
        when no slot is held. Releasing twice frees the slot once.
        """
        ...

    # --- first-response log ---

    def fetch_first_response(self, ticket_id: str) -> Optional[datetime]: ...

    def claim_first_response(self, ticket_id: str, agent_id: str, at: datetime) -> bool:
        """Log the first response once. Returns False if one was already logged."""
        ...
