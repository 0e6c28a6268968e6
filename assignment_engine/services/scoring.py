"""
Multi-factor agent scoring.

Each eligible agent gets five component scores in [0, 1]:
  - workload:         1 - current_workload / max_concurrent_tickets
  - performance:      mean of resolution rate, satisfaction / 5 and a resolution-time score
  - availability:     available 1.0, busy 0.7, away 0.3, offline 0.0
  - skill match:      category/subcategory expertise and skill-tag overlap with the ticket text
  - customer history: satisfaction / 5 plus bonuses for repeat customers and volume

Enhanced mode weighs all five; basic mode (no skill data) weighs the first
three equally. The weighted sum plus the rule bonus is capped at 1.0.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from assignment_engine.models import AgentSnapshot, Availability, CustomerProfile, TicketContext

logger = logging.getLogger(__name__)

AVAILABILITY_SCORES = {
    Availability.AVAILABLE: 1.0,
    Availability.BUSY: 0.7,
    Availability.AWAY: 0.3,
    Availability.OFFLINE: 0.0,
}

COMPONENTS = ("workload", "performance", "availability", "skill_match", "customer_history")


class ScoringMode(str, Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"


WEIGHTS = {
    ScoringMode.ENHANCED: np.array([0.25, 0.25, 0.20, 0.15, 0.15]),
    ScoringMode.BASIC: np.array([1 / 3, 1 / 3, 1 / 3, 0.0, 0.0]),
}

PREFERRED_AGENT_BONUS = 0.25
LANGUAGE_BONUS = 0.1
RESOLUTION_HOURS_CEILING = 48.0
KEYWORD_MATCH_WEIGHT = 0.8

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def workload_score(agent: AgentSnapshot) -> float:
    return max(0.0, 1.0 - agent.current_workload / agent.max_concurrent_tickets)


def performance_score(agent: AgentSnapshot) -> float:
    resolution_time = max(0.0, 1.0 - agent.average_resolution_hours / RESOLUTION_HOURS_CEILING)
    return (agent.resolution_rate + agent.customer_satisfaction_score / 5.0 + resolution_time) / 3.0


def availability_score(agent: AgentSnapshot) -> float:
    return AVAILABILITY_SCORES.get(agent.availability, 0.0)


def ticket_tokens(ticket: TicketContext) -> set[str]:
    return set(_TOKEN_RE.findall(ticket.text.lower()))


def _tag_matches(tag: str, tokens: set[str]) -> bool:
    tag = tag.lower()
    if tag in tokens:
        return True
    # multi-word tags such as "billing-disputes" match when every part occurs
    parts = [p for p in _TOKEN_RE.findall(tag)]
    return bool(parts) and all(p in tokens for p in parts)


def skill_match_score(agent: AgentSnapshot, ticket: TicketContext, tokens: Optional[set[str]] = None) -> float:
    score = 0.5
    if ticket.category_id and ticket.category_id in agent.category_expertise:
        score = max(score, agent.category_expertise[ticket.category_id])
    if ticket.subcategory_id and ticket.subcategory_id in agent.subcategory_expertise:
        score = max(score, agent.subcategory_expertise[ticket.subcategory_id])
    if agent.skill_tags:
        if tokens is None:
            tokens = ticket_tokens(ticket)
        matched = sum(1 for tag in agent.skill_tags if _tag_matches(tag, tokens))
        score = max(score, matched / len(agent.skill_tags) * KEYWORD_MATCH_WEIGHT)
    return min(score, 1.0)


def customer_history_score(agent: AgentSnapshot) -> float:
    history = agent.customer_history
    score = history.avg_satisfaction / 5.0
    if history.repeat_customer_rate > 0.3:
        score += 0.2
    if history.total_customers_served > 50:
        score += 0.1
    return min(score, 1.0)


def rule_bonus(agent: AgentSnapshot, profile: Optional[CustomerProfile], rule_boost: float = 0.0) -> float:
    """Matched rules' priority boost plus preferred-agent and language bonuses."""
    bonus = rule_boost
    if profile is not None:
        if profile.preferred_agent_id == agent.id:
            bonus += PREFERRED_AGENT_BONUS
        if profile.language_preference in agent.languages:
            bonus += LANGUAGE_BONUS
    return bonus


def confidence_from_score(score: float) -> float:
    """Heuristic confidence in [0, 95]; 100 is reserved for manual assignment."""
    return round(min(max(score, 0.0) * 100.0, 95.0), 2)


def select_mode(agents: list[AgentSnapshot]) -> ScoringMode:
    if agents and all(a.has_skill_data for a in agents):
        return ScoringMode.ENHANCED
    return ScoringMode.BASIC


@dataclass
class ScoredAgent:
    agent: AgentSnapshot
    score: float
    breakdown: dict[str, float] = field(default_factory=dict)
    bonus: float = 0.0
    language_match: bool = False
    preferred: bool = False


class ScoringEngine:
    """Pure scoring over snapshots; no I/O."""

    def component_matrix(self, agents: list[AgentSnapshot], ticket: TicketContext) -> np.ndarray:
        """(n_agents, 5) matrix of component scores, columns in COMPONENTS order."""
        tokens = ticket_tokens(ticket)
        rows = [
            [
                workload_score(a),
                performance_score(a),
                availability_score(a),
                skill_match_score(a, ticket, tokens),
                customer_history_score(a),
            ]
            for a in agents
        ]
        return np.array(rows, dtype=np.float64).reshape(len(agents), len(COMPONENTS))

    def rank(
        self,
        agents: list[AgentSnapshot],
        ticket: TicketContext,
        profile: Optional[CustomerProfile] = None,
        rule_boost: float = 0.0,
        mode: Optional[ScoringMode] = None,
    ) -> list[ScoredAgent]:
        """
        Score agents and return them best first. Equal scores keep the order in
        which the agents were passed in.
        """
        if not agents:
            return []
        mode = mode or select_mode(agents)
        matrix = self.component_matrix(agents, ticket)
        bonuses = np.array([rule_bonus(a, profile, rule_boost) for a in agents], dtype=np.float64)
        totals = np.minimum(matrix @ WEIGHTS[mode] + bonuses, 1.0)
        order = np.argsort(-totals, kind="stable")

        ranked = []
        for idx in order:
            agent = agents[int(idx)]
            ranked.append(
                ScoredAgent(
                    agent=agent,
                    score=float(totals[idx]),
                    breakdown=dict(zip(COMPONENTS, (float(v) for v in matrix[idx]))),
                    bonus=float(bonuses[idx]),
                    language_match=profile is not None and profile.language_preference in agent.languages,
                    preferred=profile is not None and profile.preferred_agent_id == agent.id,
                )
            )
        logger.debug(
            "Scored %d agents in %s mode for ticket %s; best=%s (%.3f)",
            len(ranked), mode.value, ticket.id, ranked[0].agent.id, ranked[0].score,
        )
        return ranked
