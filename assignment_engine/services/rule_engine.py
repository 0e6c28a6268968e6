"""
Rule engine: evaluates ordered routing rules against a ticket and customer.

Rule conditions and actions are compiled into tagged variants (discriminated on
``kind``). A rule applies iff every present condition matches; absent groups
are "don't care", so a rule with no conditions always applies.

Known limitation: time-of-day windows are compared as HH:MM strings over
[start, end) and do not wrap around midnight; a window with start > end never
matches.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field

from assignment_engine.config import RULES_CACHE_SECONDS
from assignment_engine.models import (
    AssignmentRule,
    CustomerProfile,
    CustomerTier,
    Priority,
    RuleActions,
    RuleConditions,
    TicketContext,
    TimeWindow,
)
from assignment_engine.store.base import SupportStore
from assignment_engine.timeutils import Clock, time_of_day, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleFacts:
    """Everything a condition may look at."""

    ticket: TicketContext
    profile: Optional[CustomerProfile]
    clock_time: str  # HH:MM


# --- Conditions ---


class PriorityCondition(BaseModel):
    kind: Literal["priority"] = "priority"
    priorities: list[Priority]

    def matches(self, facts: RuleFacts) -> bool:
        return facts.ticket.priority in self.priorities


class CategoryCondition(BaseModel):
    kind: Literal["category"] = "category"
    categories: list[str]

    def matches(self, facts: RuleFacts) -> bool:
        # uncategorised tickets are not excluded by a category condition
        if facts.ticket.category_id is None:
            return True
        return facts.ticket.category_id in self.categories


class CustomerTierCondition(BaseModel):
    kind: Literal["customer_tier"] = "customer_tier"
    tiers: list[CustomerTier]

    def matches(self, facts: RuleFacts) -> bool:
        if facts.profile is None:
            return True
        return facts.profile.tier in self.tiers


class KeywordCondition(BaseModel):
    kind: Literal["keywords"] = "keywords"
    keywords: list[str]

    def matches(self, facts: RuleFacts) -> bool:
        content = facts.ticket.text.lower()
        return any(keyword.lower() in content for keyword in self.keywords)


class TimeOfDayCondition(BaseModel):
    kind: Literal["time_of_day"] = "time_of_day"
    window: TimeWindow

    def matches(self, facts: RuleFacts) -> bool:
        return self.window.start <= facts.clock_time < self.window.end


class CustomerLanguageCondition(BaseModel):
    kind: Literal["customer_language"] = "customer_language"
    languages: list[str]

    def matches(self, facts: RuleFacts) -> bool:
        if facts.profile is None:
            return True
        return facts.profile.language_preference in self.languages


Condition = Annotated[
    Union[
        PriorityCondition,
        CategoryCondition,
        CustomerTierCondition,
        KeywordCondition,
        TimeOfDayCondition,
        CustomerLanguageCondition,
    ],
    Field(discriminator="kind"),
]


def compile_conditions(conditions: RuleConditions) -> list[Condition]:
    """Turn the optional condition groups of a rule into a list of tagged conditions."""
    compiled: list[Condition] = []
    if conditions.priorities is not None:
        compiled.append(PriorityCondition(priorities=conditions.priorities))
    if conditions.categories is not None:
        compiled.append(CategoryCondition(categories=conditions.categories))
    if conditions.customer_tiers is not None:
        compiled.append(CustomerTierCondition(tiers=conditions.customer_tiers))
    if conditions.keywords is not None:
        compiled.append(KeywordCondition(keywords=conditions.keywords))
    if conditions.time_of_day_window is not None:
        compiled.append(TimeOfDayCondition(window=conditions.time_of_day_window))
    if conditions.customer_languages is not None:
        compiled.append(CustomerLanguageCondition(languages=conditions.customer_languages))
    return compiled


# --- Actions ---


class AssignToAgent(BaseModel):
    kind: Literal["assign_to_agent"] = "assign_to_agent"
    agent_id: str


class RequireSkills(BaseModel):
    kind: Literal["require_skills"] = "require_skills"
    skills: list[str]


class RequireCertifications(BaseModel):
    kind: Literal["require_certifications"] = "require_certifications"
    certifications: list[str]


class BoostPriority(BaseModel):
    kind: Literal["priority_boost"] = "priority_boost"
    boost: float = Field(..., ge=0.0, le=1.0)


class ResponseTargets(BaseModel):
    kind: Literal["response_targets"] = "response_targets"
    max_response_minutes: Optional[int] = None
    escalate_after_minutes: Optional[int] = None


class NotifyManager(BaseModel):
    kind: Literal["notify_manager"] = "notify_manager"


Action = Annotated[
    Union[AssignToAgent, RequireSkills, RequireCertifications, BoostPriority, ResponseTargets, NotifyManager],
    Field(discriminator="kind"),
]


def compile_actions(actions: RuleActions) -> list[Action]:
    compiled: list[Action] = []
    if actions.assign_to_specific_agent:
        compiled.append(AssignToAgent(agent_id=actions.assign_to_specific_agent))
    # empty requirement lists constrain nothing
    if actions.require_skills:
        compiled.append(RequireSkills(skills=actions.require_skills))
    if actions.require_certifications:
        compiled.append(RequireCertifications(certifications=actions.require_certifications))
    if actions.priority_boost:
        compiled.append(BoostPriority(boost=actions.priority_boost))
    if actions.max_response_minutes is not None or actions.escalate_after_minutes is not None:
        compiled.append(
            ResponseTargets(
                max_response_minutes=actions.max_response_minutes,
                escalate_after_minutes=actions.escalate_after_minutes,
            )
        )
    if actions.notify_manager:
        compiled.append(NotifyManager())
    return compiled


# --- Evaluation ---


@dataclass
class RuleRequirement:
    """One rule's requirement: an agent must hold at least one of ``options``."""

    rule_name: str
    options: frozenset[str]


@dataclass
class RuleEvaluation:
    applicable_rules: list[AssignmentRule] = field(default_factory=list)
    forced_agent_id: Optional[str] = None
    forced_rule: Optional[AssignmentRule] = None
    skill_requirements: list[RuleRequirement] = field(default_factory=list)
    certification_requirements: list[RuleRequirement] = field(default_factory=list)
    priority_boost: float = 0.0
    notify_manager: bool = False

    @property
    def rule_names(self) -> list[str]:
        return [r.name for r in self.applicable_rules]

    def agent_satisfies(self, skill_tags: Iterable[str], certifications: Iterable[str]) -> bool:
        """OR within each rule's list, AND across rules."""
        skills, certs = set(skill_tags), set(certifications)
        return all(req.options & skills for req in self.skill_requirements) and all(
            req.options & certs for req in self.certification_requirements
        )


class RuleEngine:
    """Stateless evaluator; the clock is injected for time-of-day conditions."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def rule_applies(self, rule: AssignmentRule, facts: RuleFacts) -> bool:
        if not rule.enabled:
            return False
        return all(cond.matches(facts) for cond in compile_conditions(rule.conditions))

    def evaluate(
        self,
        ticket: TicketContext,
        profile: Optional[CustomerProfile],
        rules: Iterable[AssignmentRule],
        eligible_agent_ids: Optional[Iterable[str]] = None,
    ) -> RuleEvaluation:
        """
        Return the applicable rules (highest priority_rank first) and the
        constraints they impose. The first applicable rule whose specific
        agent is eligible forces the assignment and stops evaluation.
        """
        eligible = set(eligible_agent_ids) if eligible_agent_ids is not None else None
        facts = RuleFacts(ticket=ticket, profile=profile, clock_time=time_of_day(self._clock()))
        # sorted() is stable: equal ranks keep their configured order
        ordered = sorted(rules, key=lambda r: r.priority_rank, reverse=True)

        result = RuleEvaluation()
        for rule in ordered:
            if not self.rule_applies(rule, facts):
                continue
            result.applicable_rules.append(rule)
            for action in compile_actions(rule.actions):
                if isinstance(action, AssignToAgent):
                    if eligible is None or action.agent_id in eligible:
                        result.forced_agent_id = action.agent_id
                        result.forced_rule = rule
                elif isinstance(action, RequireSkills):
                    result.skill_requirements.append(RuleRequirement(rule.name, frozenset(action.skills)))
                elif isinstance(action, RequireCertifications):
                    result.certification_requirements.append(
                        RuleRequirement(rule.name, frozenset(action.certifications))
                    )
                elif isinstance(action, BoostPriority):
                    result.priority_boost += action.boost
                elif isinstance(action, NotifyManager):
                    result.notify_manager = True
            if result.forced_agent_id is not None:
                logger.info("Rule %s forces agent %s for ticket %s.", rule.id, result.forced_agent_id, ticket.id)
                break
        return result


# --- Rule source ---


DEFAULT_RULES: list[AssignmentRule] = [
    AssignmentRule(
        id="urgent-priority-rule",
        name="Urgent Priority Assignment",
        description="Assign urgent tickets to agents trained for urgent handling",
        priority_rank=100,
        conditions=RuleConditions(priorities=[Priority.URGENT]),
        actions=RuleActions(
            require_skills=["urgent-handling"],
            max_response_minutes=15,
            notify_manager=True,
            priority_boost=0.3,
        ),
    ),
    AssignmentRule(
        id="vip-customer-rule",
        name="VIP Customer Priority",
        description="Route VIP and enterprise customers to senior agents",
        priority_rank=90,
        conditions=RuleConditions(customer_tiers=[CustomerTier.VIP, CustomerTier.ENTERPRISE]),
        actions=RuleActions(require_skills=["vip-handling"], max_response_minutes=30, priority_boost=0.2),
    ),
    AssignmentRule(
        id="technical-category-rule",
        name="Technical Issues Routing",
        description="Route technical issues to technical specialists",
        priority_rank=70,
        conditions=RuleConditions(keywords=["server", "database", "api", "integration", "bug", "error"]),
        actions=RuleActions(require_skills=["technical-support"], require_certifications=["technical-cert"]),
    ),
    AssignmentRule(
        id="business-hours-rule",
        name="Business Hours Assignment",
        description="Prefer available agents during business hours",
        priority_rank=50,
        conditions=RuleConditions(time_of_day_window=TimeWindow(start="09:00", end="17:00")),
        actions=RuleActions(priority_boost=0.1),
    ),
]


class RuleRepository:
    """Loads rules from the store with a short-lived cache; falls back to DEFAULT_RULES."""

    def __init__(self, store: SupportStore, ttl_seconds: float = RULES_CACHE_SECONDS, defaults: Optional[list[AssignmentRule]] = None):
        self._store = store
        self._ttl = ttl_seconds
        self._defaults = DEFAULT_RULES if defaults is None else defaults
        self._lock = threading.Lock()
        self._rules: list[AssignmentRule] = []
        self._loaded_at: Optional[float] = None

    def all_rules(self) -> list[AssignmentRule]:
        with self._lock:
            now = time.monotonic()
            if self._loaded_at is not None and now - self._loaded_at < self._ttl:
                return list(self._rules)
            try:
                configured = self._store.fetch_assignment_rules()
            except Exception as e:
                logger.warning("Could not load assignment rules (%s); using defaults.", e)
                configured = None
            self._rules = list(self._defaults) if configured is None else configured
            self._loaded_at = now
            return list(self._rules)

    def active_rules(self) -> list[AssignmentRule]:
        return [r for r in self.all_rules() if r.enabled]

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None

    def statistics(self) -> dict:
        rules = self.all_rules()
        return {"total_rules": len(rules), "active_rules": sum(1 for r in rules if r.enabled)}
