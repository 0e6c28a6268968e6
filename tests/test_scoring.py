"""
Unit tests for the scoring engine (no store required).
Run: pytest tests/test_scoring.py -v
"""

import numpy as np
import pytest

from assignment_engine.models import Availability, CustomerHistoryStats, CustomerProfile
from assignment_engine.services.scoring import (
    WEIGHTS,
    ScoringEngine,
    ScoringMode,
    availability_score,
    confidence_from_score,
    customer_history_score,
    performance_score,
    rule_bonus,
    select_mode,
    skill_match_score,
    workload_score,
)
from tests.factories import context, make_ticket, snapshot


class TestComponentScores:
    def test_workload_score(self):
        assert workload_score(snapshot("a", workload=0)) == 1.0
        assert workload_score(snapshot("a", workload=5)) == pytest.approx(0.5)
        assert workload_score(snapshot("a", workload=10)) == 0.0

    def test_performance_score(self):
        agent = snapshot("a", resolution_rate=0.9, customer_satisfaction_score=4.5, average_resolution_hours=24)
        assert performance_score(agent) == pytest.approx((0.9 + 0.9 + 0.5) / 3)

    def test_slow_resolution_floors_at_zero(self):
        agent = snapshot("a", resolution_rate=0.0, customer_satisfaction_score=0.0, average_resolution_hours=100)
        assert performance_score(agent) == 0.0

    @pytest.mark.parametrize(
        "availability,expected",
        [(Availability.AVAILABLE, 1.0), (Availability.BUSY, 0.7), (Availability.AWAY, 0.3), (Availability.OFFLINE, 0.0)],
    )
    def test_availability_score(self, availability, expected):
        assert availability_score(snapshot("a", availability=availability)) == expected

    def test_skill_match_base(self):
        assert skill_match_score(snapshot("a"), context(make_ticket())) == 0.5

    def test_skill_match_uses_category_and_subcategory_as_ceiling(self):
        agent = snapshot("a", category_expertise={"tech": 0.7}, subcategory_expertise={"tech-db": 0.9})
        ticket = context(make_ticket(category_id="tech", subcategory_id="tech-db"))
        assert skill_match_score(agent, ticket) == pytest.approx(0.9)
        low = snapshot("a", category_expertise={"tech": 0.3})
        assert skill_match_score(low, context(make_ticket(category_id="tech"))) == 0.5

    def test_skill_tag_overlap_weighted(self):
        agent = snapshot("a", skill_tags={"database", "billing-disputes"})
        ticket = context(make_ticket(title="Database down", description="billing disputes are failing"))
        # both tags match: 1.0 * 0.8
        assert skill_match_score(agent, ticket) == pytest.approx(0.8)
        half = context(make_ticket(title="Database down", description="nothing else"))
        # one of two tags: 0.4 < base 0.5
        assert skill_match_score(agent, half) == 0.5

    def test_customer_history_bonuses_capped(self):
        plain = snapshot("a", customer_history=CustomerHistoryStats(avg_satisfaction=3.0))
        assert customer_history_score(plain) == pytest.approx(0.6)
        loyal = snapshot(
            "a",
            customer_history=CustomerHistoryStats(avg_satisfaction=4.5, repeat_customer_rate=0.5, total_customers_served=80),
        )
        assert customer_history_score(loyal) == 1.0


class TestBonusAndConfidence:
    def test_rule_bonus_components(self):
        agent = snapshot("a", languages={"en", "pt"})
        profile = CustomerProfile(customer_id="c", preferred_agent_id="a", language_preference="pt")
        assert rule_bonus(agent, profile, 0.3) == pytest.approx(0.3 + 0.25 + 0.1)
        assert rule_bonus(agent, None, 0.3) == pytest.approx(0.3)

    @pytest.mark.parametrize("score,expected", [(0.0, 0.0), (0.5, 50.0), (0.95, 95.0), (1.0, 95.0)])
    def test_confidence_capped_at_95(self, score, expected):
        assert confidence_from_score(score) == expected


class TestScoringModes:
    def test_weights_sum_to_one(self):
        for weights in WEIGHTS.values():
            assert weights.sum() == pytest.approx(1.0)

    def test_mode_selection(self):
        assert select_mode([snapshot("a"), snapshot("b")]) == ScoringMode.ENHANCED
        assert select_mode([snapshot("a"), snapshot("b", has_skill_data=False)]) == ScoringMode.BASIC

    def test_basic_mode_ignores_skills(self):
        engine = ScoringEngine()
        expert = snapshot("expert", category_expertise={"tech": 1.0})
        novice = snapshot("novice")
        ticket = context(make_ticket(category_id="tech"))
        basic = engine.rank([novice, expert], ticket, mode=ScoringMode.BASIC)
        assert basic[0].score == pytest.approx(basic[1].score)
        enhanced = engine.rank([novice, expert], ticket, mode=ScoringMode.ENHANCED)
        assert enhanced[0].agent.id == "expert"


class TestRanking:
    def test_lighter_workload_wins(self):
        """Agent A: 9/10 tickets, strong stats. Agent B: 2/10, weaker stats. B is chosen."""
        a = snapshot("A", workload=9, resolution_rate=0.9, customer_satisfaction_score=4.5)
        b = snapshot("B", workload=2, resolution_rate=0.6, customer_satisfaction_score=3.5)
        for mode in ScoringMode:
            ranked = ScoringEngine().rank([a, b], context(make_ticket()), mode=mode)
            assert [s.agent.id for s in ranked] == ["B", "A"]
        basic = ScoringEngine().rank([a, b], context(make_ticket()), mode=ScoringMode.BASIC)
        assert basic[0].score == pytest.approx(0.8)

    def test_ties_keep_input_order(self):
        agents = [snapshot(f"agent-{i}") for i in range(5)]
        ranked = ScoringEngine().rank(agents, context(make_ticket()))
        assert [s.agent.id for s in ranked] == [a.id for a in agents]

    def test_total_capped_at_one(self):
        agent = snapshot("a", languages={"en"})
        profile = CustomerProfile(customer_id="c", preferred_agent_id="a")
        ranked = ScoringEngine().rank([agent], context(make_ticket()), profile, rule_boost=0.6)
        assert ranked[0].score == 1.0
        assert ranked[0].preferred and ranked[0].language_match

    def test_component_matrix_shape(self):
        matrix = ScoringEngine().component_matrix([snapshot("a"), snapshot("b")], context(make_ticket()))
        assert matrix.shape == (2, 5)
        assert np.all((matrix >= 0) & (matrix <= 1))

    def test_empty_agent_list(self):
        assert ScoringEngine().rank([], context(make_ticket())) == []
