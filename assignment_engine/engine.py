"""Wires the engine components around one store."""

from dataclasses import dataclass
from typing import Optional

from assignment_engine.config import MAX_CONCURRENT_TICKETS
from assignment_engine.notifications import NotificationOutbox
from assignment_engine.services.assignment import AssignmentOrchestrator
from assignment_engine.services.customer_profiles import CustomerProfileBuilder, ProfileCache
from assignment_engine.services.directory import AgentDirectory
from assignment_engine.services.rebalancer import WorkloadRebalancer
from assignment_engine.services.rule_engine import RuleEngine, RuleRepository
from assignment_engine.services.scoring import ScoringEngine
from assignment_engine.services.sla_tracker import SLATracker
from assignment_engine.store.base import SupportStore
from assignment_engine.timeutils import Clock, utc_now


@dataclass
class Engine:
    store: SupportStore
    outbox: NotificationOutbox
    directory: AgentDirectory
    profiles: CustomerProfileBuilder
    rules: RuleRepository
    assignments: AssignmentOrchestrator
    rebalancer: WorkloadRebalancer
    sla: SLATracker


def build_engine(
    store: SupportStore,
    clock: Clock = utc_now,
    outbox: Optional[NotificationOutbox] = None,
    profile_cache: Optional[ProfileCache] = None,
    max_concurrent_tickets: int = MAX_CONCURRENT_TICKETS,
) -> Engine:
    outbox = outbox or NotificationOutbox()
    directory = AgentDirectory(store, max_concurrent_tickets=max_concurrent_tickets)
    profiles = CustomerProfileBuilder(store, cache=profile_cache)
    rules = RuleRepository(store)
    assignments = AssignmentOrchestrator(
        store,
        directory,
        profiles,
        rules,
        rule_engine=RuleEngine(clock=clock),
        scoring=ScoringEngine(),
        outbox=outbox,
    )
    return Engine(
        store=store,
        outbox=outbox,
        directory=directory,
        profiles=profiles,
        rules=rules,
        assignments=assignments,
        rebalancer=WorkloadRebalancer(store, directory, outbox=outbox),
        sla=SLATracker(store, outbox=outbox, clock=clock),
    )
