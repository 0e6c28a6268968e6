"""
Customer profiles derived from ticket history, with an explicit TTL cache.
"""

import logging
import threading
import time
from collections import Counter
from typing import Callable, Optional

from assignment_engine.config import DEFAULT_SATISFACTION_SCORE, PROFILE_CACHE_TTL_SECONDS
from assignment_engine.models import CustomerProfile, CustomerTier, Interaction, TicketStatus
from assignment_engine.store.base import SupportStore
from assignment_engine.timeutils import hours_between

logger = logging.getLogger(__name__)

ENTERPRISE_TICKET_THRESHOLD = 50
PREMIUM_TICKET_THRESHOLD = 10
DEFAULT_LANGUAGE = "en"


class ProfileCache:
    """Thread-safe TTL cache keyed by customer id. Misses are cached too."""

    def __init__(self, ttl_seconds: float = PROFILE_CACHE_TTL_SECONDS, timer: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._timer = timer
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Optional[CustomerProfile]]] = {}

    def get(self, customer_id: str) -> tuple[bool, Optional[CustomerProfile]]:
        """Returns (hit, profile)."""
        with self._lock:
            entry = self._entries.get(customer_id)
            if entry is None:
                return False, None
            stored_at, profile = entry
            if self._timer() - stored_at >= self._ttl:
                del self._entries[customer_id]
                return False, None
            return True, profile

    def put(self, customer_id: str, profile: Optional[CustomerProfile]) -> None:
        with self._lock:
            self._entries[customer_id] = (self._timer(), profile)

    def invalidate(self, customer_id: Optional[str] = None) -> None:
        with self._lock:
            if customer_id is None:
                self._entries.clear()
            else:
                self._entries.pop(customer_id, None)


def tier_for_volume(total_tickets: int) -> CustomerTier:
    if total_tickets > ENTERPRISE_TICKET_THRESHOLD:
        return CustomerTier.ENTERPRISE
    if total_tickets > PREMIUM_TICKET_THRESHOLD:
        return CustomerTier.PREMIUM
    return CustomerTier.BASIC


class CustomerProfileBuilder:
    def __init__(self, store: SupportStore, cache: Optional[ProfileCache] = None):
        self._store = store
        self._cache = cache if cache is not None else ProfileCache()

    @property
    def cache(self) -> ProfileCache:
        return self._cache

    def get_profile(self, customer_id: str) -> Optional[CustomerProfile]:
        hit, profile = self._cache.get(customer_id)
        if hit:
            return profile
        try:
            profile = self.build(customer_id)
        except Exception as e:
            # not cached, so the next call retries
            logger.warning("Customer history degraded for %s (%s); assigning without a profile.", customer_id, e)
            return None
        self._cache.put(customer_id, profile)
        return profile

    def build(self, customer_id: str) -> Optional[CustomerProfile]:
        """Profile from the customer's tickets, or None for an unknown customer with no tickets."""
        tickets = self._store.fetch_customer_ticket_history(customer_id)
        record = self._store.fetch_customer(customer_id)
        if not tickets and record is None:
            return None

        resolution_hours = [
            hours_between(t.created_at, t.resolved_at)
            for t in tickets
            if t.status == TicketStatus.RESOLVED and t.resolved_at
        ]
        interactions = [
            Interaction(
                agent_id=t.assigned_agent_id,
                satisfaction_score=t.satisfaction_score if t.satisfaction_score is not None else DEFAULT_SATISFACTION_SCORE,
                date=t.created_at,
                resolution_hours=max(0.0, hours_between(t.created_at, t.resolved_at)) if t.resolved_at else 0.0,
            )
            for t in tickets
            if t.assigned_agent_id
        ]
        # most_common keeps first-seen order on ties, i.e. the most recent ticket wins
        counts = Counter(i.agent_id for i in interactions)
        preferred = counts.most_common(1)[0][0] if counts else None

        tier = record.tier if record is not None and record.tier is not None else tier_for_volume(len(tickets))
        language = (record.language_preference if record is not None else None) or DEFAULT_LANGUAGE
        return CustomerProfile(
            customer_id=customer_id,
            tier=tier,
            language_preference=language,
            preferred_agent_id=preferred,
            previous_interactions=interactions,
            total_tickets=len(tickets),
            avg_resolution_hours=max(0.0, sum(resolution_hours) / len(resolution_hours)) if resolution_hours else 0.0,
        )
