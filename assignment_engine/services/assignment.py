"""
Assignment orchestrator.

assign() is the pure decision: manual override, capacity filter, rule-forced
agent, rule skill/certification narrowing, then scoring. It never writes.
assign_and_reserve() commits a decision: it reserves a workload slot through
the store's atomic compare-and-swap and re-plans if another request took the
slot first.
"""

import logging
from typing import Optional

from assignment_engine import activity
from assignment_engine.config import ASSIGN_MAX_ATTEMPTS
from assignment_engine.models import (
    ACTIVE_STATUSES,
    AgentSnapshot,
    AssignmentFailure,
    AssignmentResult,
    Availability,
    NotificationType,
    Priority,
    TicketContext,
    UserRole,
)
from assignment_engine.notifications import NotificationOutbox
from assignment_engine.services.customer_profiles import CustomerProfileBuilder
from assignment_engine.services.directory import AgentDirectory
from assignment_engine.services.rule_engine import RuleEngine, RuleEvaluation, RuleRepository
from assignment_engine.services.scoring import ScoredAgent, ScoringEngine, confidence_from_score
from assignment_engine.store.base import SupportStore

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3
MANUAL_CONFIDENCE = 100.0
FORCED_RULE_CONFIDENCE = 95.0

# component thresholds that earn a mention in the reason
STRONG_SKILL_MATCH = 0.7
EXCELLENT_HISTORY = 0.8
OPTIMAL_WORKLOAD = 0.8


def _failure(kind: AssignmentFailure, reason: str, alternatives: Optional[list[AgentSnapshot]] = None) -> AssignmentResult:
    return AssignmentResult(
        success=False,
        reason=reason,
        confidence=0.0,
        failure=kind,
        alternative_agent_ids=[a.id for a in (alternatives or [])[:MAX_ALTERNATIVES]],
    )


def compose_reason(best: ScoredAgent, evaluation: RuleEvaluation) -> str:
    """Human-readable trace of which rules fired and which score dimensions stood out."""
    parts = []
    if evaluation.applicable_rules:
        parts.append(f"Applied rules: {', '.join(evaluation.rule_names)}")
    if best.preferred:
        parts.append("preferred agent match")
    if best.bonus > 0:
        parts.append(f"rule bonus: +{round(best.bonus * 100)}%")

    notable = []
    if best.breakdown.get("skill_match", 0.0) > STRONG_SKILL_MATCH:
        notable.append("strong skill match")
    if best.breakdown.get("customer_history", 0.0) > EXCELLENT_HISTORY:
        notable.append("excellent customer history")
    if best.breakdown.get("workload", 0.0) > OPTIMAL_WORKLOAD:
        notable.append("optimal workload")
    if best.language_match:
        notable.append("language preference match")

    active = best.agent.current_workload
    if notable:
        parts.append(f"Selected based on {', '.join(notable)} ({active} active tickets)")
    else:
        parts.append(f"Selected based on optimal workload balance ({active} active tickets) and performance metrics")
    return "; ".join(parts)


class AssignmentOrchestrator:
    def __init__(
        self,
        store: SupportStore,
        directory: AgentDirectory,
        profiles: CustomerProfileBuilder,
        rules: RuleRepository,
        rule_engine: Optional[RuleEngine] = None,
        scoring: Optional[ScoringEngine] = None,
        outbox: Optional[NotificationOutbox] = None,
        max_attempts: int = ASSIGN_MAX_ATTEMPTS,
    ):
        self._store = store
        self._directory = directory
        self._profiles = profiles
        self._rules = rules
        self._rule_engine = rule_engine or RuleEngine()
        self._scoring = scoring or ScoringEngine()
        self._outbox = outbox or NotificationOutbox()
        self._max_attempts = max(1, max_attempts)

    def _manual(self, agent_id: str) -> AssignmentResult:
        agent = self._directory.agent_snapshot(agent_id)
        if agent is None or agent.availability == Availability.OFFLINE:
            return _failure(AssignmentFailure.INVALID_MANUAL_ASSIGNMENT, "Selected agent is not available")
        if not agent.has_capacity:
            return _failure(AssignmentFailure.INVALID_MANUAL_ASSIGNMENT, "Selected agent is at capacity")
        return AssignmentResult(
            success=True,
            assigned_agent_id=agent.id,
            reason="Manual assignment",
            confidence=MANUAL_CONFIDENCE,
        )

    def assign(self, ticket: TicketContext, explicit_agent_id: Optional[str] = None) -> AssignmentResult:
        """Decide who should handle the ticket. Routine failures are returned, not raised."""
        if explicit_agent_id:
            return self._manual(explicit_agent_id)

        agents = self._directory.build_snapshots()
        if not agents:
            logger.warning("No available agents for ticket %s.", ticket.id)
            return _failure(AssignmentFailure.NO_AGENTS_AVAILABLE, "No available agents found")

        eligible = [a for a in agents if a.has_capacity]
        if not eligible:
            logger.warning("All %d agents at capacity for ticket %s.", len(agents), ticket.id)
            return _failure(AssignmentFailure.CAPACITY_EXHAUSTED, "All agents are at capacity", agents)

        profile = self._profiles.get_profile(ticket.customer_id)
        evaluation = self._rule_engine.evaluate(
            ticket, profile, self._rules.active_rules(), eligible_agent_ids=[a.id for a in eligible]
        )
        applied = [r.id for r in evaluation.applicable_rules]

        if evaluation.forced_agent_id is not None:
            others = [a.id for a in eligible if a.id != evaluation.forced_agent_id]
            return AssignmentResult(
                success=True,
                assigned_agent_id=evaluation.forced_agent_id,
                reason=f"Assigned by rule: {evaluation.forced_rule.name}",
                confidence=FORCED_RULE_CONFIDENCE,
                alternative_agent_ids=others[:MAX_ALTERNATIVES],
                applied_rule_ids=applied,
            )

        # declared skills and derived specializations both count as held skills
        qualified = [
            a for a in eligible
            if evaluation.agent_satisfies(a.skill_tags | set(a.specializations), a.certifications)
        ]
        if not qualified:
            logger.info("Rules %s left no qualified agent for ticket %s.", applied, ticket.id)
            result = _failure(
                AssignmentFailure.RULE_CONSTRAINT_UNSATISFIABLE, "No agents meet the rule requirements", agents
            )
            return result.model_copy(update={"applied_rule_ids": applied})

        ranked = self._scoring.rank(qualified, ticket, profile, evaluation.priority_boost)
        best = ranked[0]
        result = AssignmentResult(
            success=True,
            assigned_agent_id=best.agent.id,
            reason=compose_reason(best, evaluation),
            confidence=confidence_from_score(best.score),
            alternative_agent_ids=[s.agent.id for s in ranked[1:1 + MAX_ALTERNATIVES]],
            applied_rule_ids=applied,
        )
        logger.info(
            "Ticket %s -> agent %s (confidence %.1f): %s",
            ticket.id, result.assigned_agent_id, result.confidence, result.reason,
        )
        return result

    def assign_and_reserve(self, ticket: TicketContext, explicit_agent_id: Optional[str] = None) -> AssignmentResult:
        """
        Decide, reserve a workload slot atomically and persist the assignment.
        Re-plans with fresh snapshots when a concurrent request filled the
        chosen agent first or reassigned the ticket in the meantime.
        """
        limit = self._directory.max_concurrent_tickets
        for attempt in range(1, self._max_attempts + 1):
            current = self._store.fetch_ticket(ticket.id)
            if current is None:
                logger.warning("Ticket %s not found; decision returned without a reservation.", ticket.id)
                return self.assign(ticket, explicit_agent_id)
            previous = current.assigned_agent_id if current.status in ACTIVE_STATUSES else None
            result = self.assign(ticket, explicit_agent_id)
            if not result.success:
                return result
            agent_id = result.assigned_agent_id
            if agent_id == previous:
                # already holds a slot for this ticket
                self._store.record_assignment(ticket.id, agent_id, expected_agent_id=previous)
                return result
            if not self._store.try_reserve_workload(agent_id, limit):
                logger.info("Agent %s filled up before ticket %s was reserved (attempt %d).", agent_id, ticket.id, attempt)
                if explicit_agent_id:
                    return _failure(AssignmentFailure.INVALID_MANUAL_ASSIGNMENT, "Selected agent is at capacity")
                continue
            # the store hands the ticket's slot to agent_id and frees the previous holder's
            if self._store.record_assignment(ticket.id, agent_id, expected_agent_id=previous):
                break
            self._store.release_workload(agent_id)
            logger.info("Ticket %s was reassigned concurrently (attempt %d); re-planning.", ticket.id, attempt)
        else:
            return _failure(AssignmentFailure.CAPACITY_EXHAUSTED, "All agents are at capacity")

        self._notify(ticket, result, reassigned_from=previous)
        activity.emit(
            "ticket_assigned",
            {"ticket_id": ticket.id, "agent_id": agent_id, "confidence": result.confidence, "reason": result.reason},
        )
        return result

    def _notify(self, ticket: TicketContext, result: AssignmentResult, reassigned_from: Optional[str]) -> None:
        kind = NotificationType.ASSIGNMENT_CHANGED if reassigned_from else NotificationType.TICKET_ASSIGNED
        self._outbox.emit(kind, result.assigned_agent_id, ticket.id, priority=ticket.priority.value)
        if reassigned_from:
            self._outbox.emit(NotificationType.ASSIGNMENT_CHANGED, reassigned_from, ticket.id, priority=ticket.priority.value)

        applied = set(result.applied_rule_ids)
        if any(r.actions.notify_manager for r in self._rules.all_rules() if r.id in applied):
            for admin in self._store.fetch_agents([UserRole.ADMIN]):
                self._outbox.emit(NotificationType.TICKET_ASSIGNED, admin.id, ticket.id, priority=Priority.HIGH.value)

    def release(self, ticket_id: str) -> Optional[str]:
        """Free the workload slot held for a ticket. Returns the agent id, or None if no slot is held."""
        agent_id = self._store.release_ticket_slot(ticket_id)
        if agent_id is None:
            return None
        activity.emit("ticket_released", {"ticket_id": ticket_id, "agent_id": agent_id})
        return agent_id
