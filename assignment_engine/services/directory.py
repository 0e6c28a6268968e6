"""
Agent directory: builds point-in-time AgentSnapshots from store records.

Per-agent fetches run on a small thread pool. A failing performance or skills
fetch does not abort the snapshot; the agent falls back to documented defaults
(24h resolution, 0.8 resolution rate, 4.0 satisfaction) and is scored in basic
mode when its skill data is missing.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from assignment_engine.config import (
    DEFAULT_RESOLUTION_HOURS,
    DEFAULT_RESOLUTION_RATE,
    DEFAULT_SATISFACTION_SCORE,
    MAX_CONCURRENT_TICKETS,
    PERFORMANCE_WINDOW_DAYS,
    SNAPSHOT_WORKERS,
)
from assignment_engine.models import (
    STAFF_ROLES,
    AgentSkillRecord,
    AgentSnapshot,
    Availability,
    CustomerHistoryStats,
    ExpertiseLevel,
    ExpertiseRecord,
    PerformanceStats,
    UserRecord,
)
from assignment_engine.store.base import SupportStore

logger = logging.getLogger(__name__)

EXPERTISE_SCORES = {
    ExpertiseLevel.EXPERT: 1.0,
    ExpertiseLevel.INTERMEDIATE: 0.7,
    ExpertiseLevel.BASIC: 0.4,
}
PRIMARY_EXPERTISE_BONUS = 0.2
CATEGORY_TAG_THRESHOLD = 0.5
SPECIALIZATION_THRESHOLD = 0.7
# resolved-ticket counts below this never reach full expertise
FALLBACK_EXPERTISE_FLOOR = 10

DEFAULT_PERFORMANCE = PerformanceStats(
    avg_resolution_hours=DEFAULT_RESOLUTION_HOURS,
    resolution_rate=DEFAULT_RESOLUTION_RATE,
    satisfaction_score=DEFAULT_SATISFACTION_SCORE,
)


def expertise_map(records: list[ExpertiseRecord]) -> dict[str, float]:
    """Declared expertise levels as scores in [0, 1]; primary areas get a bonus."""
    out = {}
    for rec in records:
        base = EXPERTISE_SCORES.get(rec.level, EXPERTISE_SCORES[ExpertiseLevel.BASIC])
        bonus = PRIMARY_EXPERTISE_BONUS if rec.is_primary else 0.0
        out[rec.target_id] = min(base + bonus, 1.0)
    return out


def expertise_from_resolved(counts: dict[str, int]) -> dict[str, float]:
    """Estimate category expertise from how many tickets of each category the agent resolved."""
    if not counts:
        return {}
    top = max(max(counts.values()), FALLBACK_EXPERTISE_FLOOR)
    return {cat: min(n / top, 1.0) for cat, n in counts.items() if n > 0}


def derive_skill_profile(record: AgentSkillRecord) -> tuple[set[str], dict[str, float], dict[str, float], list[str]]:
    """Returns (skill_tags, category_expertise, subcategory_expertise, specializations)."""
    categories = expertise_map(record.category_expertise)
    if not categories:
        categories = expertise_from_resolved(record.resolved_category_counts)
    subcategories = expertise_map(record.subcategory_expertise)

    tags = set(record.skill_tags)
    tags.update(f"cat-{cat}" for cat, score in categories.items() if score > CATEGORY_TAG_THRESHOLD)
    specializations = [cat for cat, score in categories.items() if score > SPECIALIZATION_THRESHOLD]
    return tags, categories, subcategories, specializations


class AgentDirectory:
    def __init__(
        self,
        store: SupportStore,
        max_concurrent_tickets: int = MAX_CONCURRENT_TICKETS,
        window_days: int = PERFORMANCE_WINDOW_DAYS,
        workers: int = SNAPSHOT_WORKERS,
    ):
        self._store = store
        self._max_concurrent = max_concurrent_tickets
        self._window_days = window_days
        self._workers = max(1, workers)

    @property
    def max_concurrent_tickets(self) -> int:
        return self._max_concurrent

    def _performance(self, agent_id: str) -> PerformanceStats:
        try:
            stats = self._store.fetch_agent_performance(agent_id, self._window_days)
        except Exception as e:
            logger.warning("Performance fetch degraded for agent %s (%s); using defaults.", agent_id, e)
            return DEFAULT_PERFORMANCE
        return stats if stats is not None else DEFAULT_PERFORMANCE

    def _skills(self, agent_id: str) -> Optional[AgentSkillRecord]:
        try:
            return self._store.fetch_agent_skills(agent_id)
        except Exception as e:
            logger.warning("Skills fetch degraded for agent %s (%s); scoring in basic mode.", agent_id, e)
            return None

    def _workload(self, agent_id: str) -> int:
        try:
            return max(0, int(self._store.fetch_agent_workload(agent_id)))
        except Exception as e:
            # unknown load: treat as full so the agent is never overcommitted
            logger.warning("Workload fetch degraded for agent %s (%s); treating as at capacity.", agent_id, e)
            return self._max_concurrent

    def snapshot(self, user: UserRecord) -> AgentSnapshot:
        """Build one agent's snapshot. Never raises for degraded dependencies."""
        perf = self._performance(user.id)
        skills = self._skills(user.id)
        workload = self._workload(user.id)

        snap = AgentSnapshot(
            id=user.id,
            full_name=user.full_name,
            email=user.email,
            role=user.role,
            availability=user.availability,
            current_workload=workload,
            max_concurrent_tickets=self._max_concurrent,
            average_resolution_hours=perf.avg_resolution_hours,
            resolution_rate=perf.resolution_rate,
            customer_satisfaction_score=perf.satisfaction_score,
        )
        if skills is None:
            return snap.model_copy(update={"languages": {"en"}, "has_skill_data": False})

        tags, categories, subcategories, specializations = derive_skill_profile(skills)
        return snap.model_copy(
            update={
                "skill_tags": tags,
                "certifications": set(skills.certifications),
                "languages": set(skills.languages) or {"en"},
                "category_expertise": categories,
                "subcategory_expertise": subcategories,
                "specializations": specializations,
                "customer_history": CustomerHistoryStats(
                    total_customers_served=skills.total_customers_served,
                    repeat_customer_rate=skills.repeat_customer_rate,
                    avg_satisfaction=skills.avg_customer_satisfaction,
                ),
                "has_skill_data": True,
            }
        )

    def agent_snapshot(self, agent_id: str) -> Optional[AgentSnapshot]:
        """Snapshot of one staff member regardless of availability; None if unknown or not staff."""
        user = self._store.fetch_user(agent_id)
        if user is None or user.role not in STAFF_ROLES:
            return None
        return self.snapshot(user)

    def build_snapshots(self, include_offline: bool = False) -> list[AgentSnapshot]:
        """
        Snapshots of all agents and admins, in directory order. Offline agents
        are excluded unless include_offline is set.
        """
        users = self._store.fetch_agents(STAFF_ROLES)
        if not include_offline:
            users = [u for u in users if u.availability != Availability.OFFLINE]
        if not users:
            return []
        if self._workers == 1 or len(users) == 1:
            return [self.snapshot(u) for u in users]
        with ThreadPoolExecutor(max_workers=min(self._workers, len(users))) as pool:
            # map() preserves input order
            return list(pool.map(self.snapshot, users))
