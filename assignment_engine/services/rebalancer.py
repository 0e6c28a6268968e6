"""
Workload rebalancer: periodically moves open/pending tickets from overloaded
agents to underloaded ones.

Planning works on a snapshot; every move is re-validated by the store
(ownership and destination capacity) at the moment it is committed, since an
agent may have received new tickets in between.
"""

import logging
from typing import Optional

from assignment_engine import activity
from assignment_engine.config import REBALANCE_TICKETS_PER_AGENT
from assignment_engine.models import AgentSnapshot, NotificationType, RebalanceReport, Reassignment
from assignment_engine.notifications import NotificationOutbox
from assignment_engine.store.base import SupportStore

logger = logging.getLogger(__name__)

OVERLOAD_MARGIN = 2
UNDERLOAD_MARGIN = 1
# destination must stay one ticket below its maximum
SAFETY_MARGIN = 1


class WorkloadRebalancer:
    def __init__(
        self,
        store: SupportStore,
        directory=None,
        outbox: Optional[NotificationOutbox] = None,
        tickets_per_agent: int = REBALANCE_TICKETS_PER_AGENT,
    ):
        self._store = store
        self._directory = directory
        self._outbox = outbox or NotificationOutbox()
        self._tickets_per_agent = tickets_per_agent

    def rebalance(self, agents: Optional[list[AgentSnapshot]] = None) -> RebalanceReport:
        if agents is None:
            agents = self._directory.build_snapshots()
        if len(agents) < 2:
            return RebalanceReport(success=False, message="Need at least 2 agents for rebalancing")

        workload = {a.id: a.current_workload for a in agents}
        average = sum(workload.values()) / len(agents)
        overloaded = [a for a in agents if a.current_workload > average + OVERLOAD_MARGIN]
        underloaded = [a for a in agents if a.current_workload < average - UNDERLOAD_MARGIN]
        if not overloaded or not underloaded:
            return RebalanceReport(message="Workload is already balanced")

        moves: list[Reassignment] = []
        for source in overloaded:
            tickets = self._store.fetch_reassignable_tickets(source.id, self._tickets_per_agent)
            for ticket in tickets:
                moved_to = self._move(ticket, source, underloaded, workload)
                if moved_to is None:
                    if not self._has_room(underloaded, workload):
                        break
                    continue
                moves.append(Reassignment(ticket_id=ticket.id, from_agent_id=source.id, to_agent_id=moved_to))

        report = RebalanceReport(reassignments=moves, message=f"Successfully rebalanced {len(moves)} tickets")
        logger.info("Rebalance: %s (average workload %.2f).", report.message, average)
        activity.emit("workload_rebalanced", report.model_dump(mode="json"))
        return report

    @staticmethod
    def _has_room(targets: list[AgentSnapshot], workload: dict[str, int]) -> bool:
        return any(workload[t.id] < t.max_concurrent_tickets - SAFETY_MARGIN for t in targets)

    def _move(self, ticket, source: AgentSnapshot, targets: list[AgentSnapshot], workload: dict[str, int]) -> Optional[str]:
        """
        Move one ticket to the first target with spare capacity. Returns the
        target id, or None when no target took it or the ticket changed hands.
        """
        for target in targets:
            limit = target.max_concurrent_tickets - SAFETY_MARGIN
            if workload[target.id] >= limit:
                continue
            if not self._store.move_ticket(ticket.id, source.id, target.id, dest_limit=limit):
                # planning view was stale; refresh and try the next target
                workload[target.id] = self._store.fetch_agent_workload(target.id)
                logger.info("Move of ticket %s to %s rejected at commit time.", ticket.id, target.id)
                current = self._store.fetch_ticket(ticket.id)
                if current is None or current.assigned_agent_id != source.id:
                    logger.info("Ticket %s no longer belongs to %s; skipping.", ticket.id, source.id)
                    return None
                continue
            workload[source.id] -= 1
            workload[target.id] += 1
            priority = ticket.priority.value
            self._outbox.emit(NotificationType.ASSIGNMENT_CHANGED, target.id, ticket.id, priority=priority)
            self._outbox.emit(NotificationType.ASSIGNMENT_CHANGED, source.id, ticket.id, priority=priority)
            return target.id
        return None
