"""
Tests for tag evaluation, decay, merging and caps.
"""

import pytest

from ghostscore.errors import ValidationError
from ghostscore.reputation import ReputationMetrics
from ghostscore.tags import (
    MAX_TOTAL_TAGS,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
    TagCategory,
    TagEngine,
    TagScore,
)

NOW = 1_700_000_000


def tag(name, confidence, age_days=0, category=TagCategory.BEHAVIOR, evidence=1):
    return TagScore(
        tag_name=name,
        confidence=confidence,
        evidence_count=evidence,
        last_updated=NOW - age_days * SECONDS_PER_DAY,
        category=category,
    )


@pytest.fixture
def tag_engine() -> TagEngine:
    return TagEngine()


class TestTagScore:
    def test_name_length(self):
        tag("x" * 32, 5000)
        with pytest.raises(ValidationError):
            tag("x" * 33, 5000)
        with pytest.raises(ValidationError):
            tag("", 5000)

    @pytest.mark.parametrize("confidence", [-1, 10001])
    def test_confidence_range(self, confidence):
        with pytest.raises(ValidationError):
            tag("fast-responder", confidence)

    def test_persisted_layout(self):
        original = tag("solidity", 8000, category=TagCategory.SKILL)
        data = original.to_dict()

        assert data["category"] == "skill"
        assert TagScore.from_dict(data) == original


class TestCriteria:
    """Behavior tags derived from metrics."""

    def test_response_time_tags(self, tag_engine):
        metrics = ReputationMetrics(total_response_time=30000, response_time_count=10)

        tags = {t.tag_name: t for t in tag_engine.calculate_tags(metrics, now=NOW)}

        assert tags["fast-responder"].confidence == 9900
        assert tags["quick-responder"].confidence == 9970
        assert tags["fast-responder"].evidence_count == 10
        assert tags["fast-responder"].last_updated == NOW

    def test_slow_agent_gets_no_response_tags(self, tag_engine):
        metrics = ReputationMetrics(total_response_time=400000, response_time_count=1)
        names = {t.tag_name for t in tag_engine.calculate_tags(metrics, now=NOW)}
        assert "fast-responder" not in names
        assert "quick-responder" not in names

    def test_rating_tags(self, tag_engine):
        metrics = ReputationMetrics(total_rating=100, total_ratings_count=20)

        tags = {t.tag_name: t for t in tag_engine.calculate_tags(metrics, now=NOW)}

        assert tags["top-rated"].confidence == 10000
        assert tags["high-quality"].confidence == 10000
        assert tags["consistent-quality"].confidence == 10000

    def test_perfect_record_and_dispute_free(self, tag_engine):
        metrics = ReputationMetrics(successful_payments=60)

        tags = {t.tag_name: t for t in tag_engine.calculate_tags(metrics, now=NOW)}

        assert tags["perfect-record"].confidence == 8006
        assert tags["dispute-free"].confidence == 7600

    def test_single_failure_breaks_perfect_record(self, tag_engine):
        metrics = ReputationMetrics(successful_payments=60, failed_payments=1)
        names = {t.tag_name for t in tag_engine.calculate_tags(metrics, now=NOW)}
        assert "perfect-record" not in names

    def test_tenure(self, tag_engine):
        metrics = ReputationMetrics(created_at=NOW - 2 * SECONDS_PER_YEAR)

        tags = {t.tag_name: t for t in tag_engine.calculate_tags(metrics, now=NOW)}

        assert tags["long-term-active"].confidence == 10000
        assert tags["long-term-active"].evidence_count == 2
        assert "multi-year" not in tags

    def test_elite_tier_requires_platinum(self, tag_engine):
        metrics = ReputationMetrics()

        elite = {t.tag_name: t for t in tag_engine.calculate_tags(metrics, score=9500, now=NOW)}
        gold = {t.tag_name for t in tag_engine.calculate_tags(metrics, score=8999, now=NOW)}

        assert elite["elite-tier"].confidence == 9500
        assert "elite-tier" not in gold

    def test_evaluate_reports_every_criterion(self, tag_engine):
        evaluations = tag_engine.evaluate(ReputationMetrics(), now=NOW)
        assert len(evaluations) == 14
        assert not any(e.should_assign for e in evaluations.values())


class TestDecay:
    def test_confidence_decays_per_day(self, tag_engine):
        decayed = tag_engine.apply_decay([tag("fast-responder", 5000, age_days=10)], now=NOW)
        assert decayed[0].confidence == 4900

    def test_below_floor_is_removed(self, tag_engine):
        assert tag_engine.apply_decay([tag("fast-responder", 2050, age_days=10)], now=NOW) == []

    def test_older_than_max_age_is_removed(self, tag_engine):
        assert tag_engine.apply_decay([tag("fast-responder", 10000, age_days=91)], now=NOW) == []

    def test_input_is_not_mutated(self, tag_engine):
        original = tag("fast-responder", 5000, age_days=10)
        tag_engine.apply_decay([original], now=NOW)
        assert original.confidence == 5000

    def test_daily_refreshes_do_not_compound(self, tag_engine):
        tags = [tag("solidity", 8000, category=TagCategory.SKILL)]

        for day in range(1, 21):
            tags = tag_engine.refresh(tags, ReputationMetrics(), now=NOW + day * SECONDS_PER_DAY)

        assert len(tags) == 1
        assert tags[0].confidence == 7800
        assert tags[0].base_confidence == 8000
        assert tags[0].last_updated == NOW

    def test_repeated_decay_matches_single_decay(self, tag_engine):
        original = [tag("solidity", 8000, age_days=30, category=TagCategory.SKILL)]

        once = tag_engine.apply_decay(original, now=NOW)
        twice = tag_engine.apply_decay(tag_engine.apply_decay(original, now=NOW), now=NOW)

        assert once == twice
        assert once[0].confidence == 7700

    def test_decayed_tag_keeps_base_through_persistence(self, tag_engine):
        decayed = tag_engine.apply_decay([tag("solidity", 8000, age_days=30)], now=NOW)[0]

        restored = TagScore.from_dict(decayed.to_dict())

        assert restored.base_confidence == 8000
        assert tag_engine.apply_decay([restored], now=NOW)[0].confidence == 7700


class TestMergeAndLimits:
    def test_merge_prefers_stronger_evidence(self, tag_engine):
        existing = [tag("a", 6000, evidence=5), tag("b", 7000, evidence=5)]
        new = [tag("a", 8000, evidence=1), tag("b", 6000, evidence=1), tag("c", 5000)]

        merged = {t.tag_name: t.confidence for t in tag_engine.merge_tags(existing, new)}

        assert merged == {"a": 8000, "b": 7000, "c": 5000}

    def test_twenty_first_skill_tag_evicts_lowest(self, tag_engine):
        tags = [tag(f"skill-{i}", 6000 + i, category=TagCategory.SKILL) for i in range(20)]
        tags.append(tag("newcomer", 5000, category=TagCategory.SKILL))

        kept = tag_engine.enforce_limits(tags)

        assert len(kept) == 20
        assert "newcomer" not in {t.tag_name for t in kept}

    def test_stronger_skill_candidate_evicts_lowest(self, tag_engine):
        tags = [tag(f"skill-{i}", 6000 + i, category=TagCategory.SKILL) for i in range(20)]
        tags.append(tag("expert", 9000, category=TagCategory.SKILL))

        kept = {t.tag_name for t in tag_engine.enforce_limits(tags)}

        assert len(kept) == 20
        assert "expert" in kept
        assert "skill-0" not in kept
        assert "skill-1" in kept

    def test_ties_evict_least_recently_updated(self, tag_engine):
        tags = [tag(f"c-{i}", 6000, category=TagCategory.COMPLIANCE) for i in range(10)]
        tags.append(tag("stale", 6000, age_days=3, category=TagCategory.COMPLIANCE))

        kept = {t.tag_name for t in tag_engine.enforce_limits(tags)}

        assert len(kept) == 10
        assert "stale" not in kept

    def test_total_cap(self, tag_engine):
        tags = (
            [tag(f"s-{i}", 6000, category=TagCategory.SKILL) for i in range(20)]
            + [tag(f"b-{i}", 6000) for i in range(20)]
            + [tag(f"c-{i}", 6000, category=TagCategory.COMPLIANCE) for i in range(10)]
            + [tag("extra", 9000, category=TagCategory.SKILL)]
        )

        kept = tag_engine.enforce_limits(tags)

        assert len(kept) == MAX_TOTAL_TAGS
        assert "extra" in {t.tag_name for t in kept}

    def test_refresh_combines_decay_and_evaluation(self, tag_engine):
        metrics = ReputationMetrics(total_response_time=3000, response_time_count=1)
        existing = [tag("fast-responder", 6000, age_days=5), tag("gone", 2001, age_days=5)]

        refreshed = {t.tag_name: t for t in tag_engine.refresh(existing, metrics, now=NOW)}

        assert refreshed["fast-responder"].confidence == 9900
        assert "gone" not in refreshed


class TestQueries:
    def test_filter_and_categorize(self, tag_engine):
        tags = [
            tag("solidity", 9000, category=TagCategory.SKILL),
            tag("fast-responder", 6000, age_days=40),
            tag("kyc", 8000, category=TagCategory.COMPLIANCE),
        ]

        assert [t.tag_name for t in tag_engine.filter_tags(tags, category=TagCategory.SKILL, now=NOW)] == [
            "solidity"
        ]
        assert len(tag_engine.filter_tags(tags, min_confidence=8000, now=NOW)) == 2
        assert len(tag_engine.filter_tags(tags, max_age=30 * SECONDS_PER_DAY, now=NOW)) == 2

        result = tag_engine.categorize_tags(tags)
        assert result.skill_tags == ["solidity"]
        assert result.behavior_tags == ["fast-responder"]
        assert result.compliance_tags == ["kyc"]
        assert result.last_updated == NOW

    @pytest.mark.parametrize(
        "confidence,level",
        [(10000, "Absolute"), (9000, "Very High"), (7500, "High"), (5000, "Medium"), (2500, "Low"), (100, "Very Low")],
    )
    def test_confidence_levels(self, confidence, level):
        assert TagEngine.get_confidence_level(confidence) == level

    def test_top_tags(self):
        tags = [tag("a", 5000), tag("b", 9000), tag("c", 7000)]
        assert [t.tag_name for t in TagEngine.top_tags(tags, 2)] == ["b", "c"]
