"""
GhostScore Reputation Tags.

Confidence-scored tags derived from accumulated metrics. Behavior tags are
evaluated automatically; Skill and Compliance tags are assigned explicitly
(e.g. by an attestation or audit) and share the same decay and caps.

All confidence values are basis points (0-10000) and all arithmetic is
integer, so recomputation is deterministic.

Example:
    >>> engine = TagEngine()
    >>> tags = engine.calculate_tags(metrics, score=9200, now=now)
    >>> tags = engine.enforce_limits(engine.merge_tags(engine.apply_decay(old, now), tags))
"""

import time
import logging
from typing import Optional, List, Dict, Callable, TYPE_CHECKING
from dataclasses import dataclass, field, asdict
from enum import Enum

from ghostscore.errors import ValidationError
from ghostscore.privacy import ReputationTier, get_reputation_tier

if TYPE_CHECKING:
    from ghostscore.reputation import ReputationMetrics

logger = logging.getLogger(__name__)

MAX_TAG_NAME_LENGTH = 32
MAX_CONFIDENCE = 10000

MAX_SKILL_TAGS = 20
MAX_BEHAVIOR_TAGS = 20
MAX_COMPLIANCE_TAGS = 10
MAX_TOTAL_TAGS = 50

SECONDS_PER_DAY = 86400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY


class TagCategory(Enum):
    SKILL = "skill"
    BEHAVIOR = "behavior"
    COMPLIANCE = "compliance"


CATEGORY_LIMITS = {
    TagCategory.SKILL: MAX_SKILL_TAGS,
    TagCategory.BEHAVIOR: MAX_BEHAVIOR_TAGS,
    TagCategory.COMPLIANCE: MAX_COMPLIANCE_TAGS,
}


class ConfidenceLevel(Enum):
    """Lower bounds of the named confidence bands."""

    ABSOLUTE = 10000
    VERY_HIGH = 9000
    HIGH = 7500
    MEDIUM = 5000
    LOW = 2500


def validate_tag_name(tag_name: str) -> str:
    if not isinstance(tag_name, str) or not tag_name:
        raise ValidationError("Tag name must be a non-empty string")
    if len(tag_name) > MAX_TAG_NAME_LENGTH:
        raise ValidationError(
            f"Tag name too long ({len(tag_name)} > {MAX_TAG_NAME_LENGTH}): {tag_name[:40]}"
        )
    return tag_name


def validate_confidence(confidence: int) -> int:
    if isinstance(confidence, bool) or not isinstance(confidence, int):
        raise ValidationError("Confidence must be an integer")
    if confidence < 0 or confidence > MAX_CONFIDENCE:
        raise ValidationError(f"Confidence must be in [0, {MAX_CONFIDENCE}], got {confidence}")
    return confidence


@dataclass
class TagScore:
    """
    A tag held by an agent.

    Attributes:
        tag_name: 1-32 characters.
        confidence: Basis points, 0-10000.
        evidence_count: Observations supporting the tag.
        last_updated: Unix timestamp of the last (re)assignment.
        category: Skill, Behavior or Compliance.
        base_confidence: Confidence at last_updated, before any decay.
            Defaults to confidence.
    """

    tag_name: str
    confidence: int
    evidence_count: int
    last_updated: int
    category: TagCategory = TagCategory.BEHAVIOR
    base_confidence: Optional[int] = None

    def __post_init__(self):
        validate_tag_name(self.tag_name)
        validate_confidence(self.confidence)
        if self.base_confidence is None:
            self.base_confidence = self.confidence
        validate_confidence(self.base_confidence)
        if self.evidence_count < 0:
            raise ValidationError("evidence_count must be non-negative")

    def age(self, now: int) -> int:
        return now - self.last_updated

    def to_dict(self) -> dict:
        data = asdict(self)
        data["category"] = self.category.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TagScore":
        data = dict(data)
        data["category"] = TagCategory(data.get("category", TagCategory.BEHAVIOR.value))
        return cls(**data)


@dataclass
class TagEvaluation:
    should_assign: bool
    confidence: int = 0
    evidence_count: int = 0
    reason: Optional[str] = None


NOT_ASSIGNED = TagEvaluation(should_assign=False)


@dataclass
class TagCriteria:
    tag: str
    category: TagCategory
    evaluate: Callable[["ReputationMetrics", Optional[int], int], TagEvaluation]
    min_confidence: int = 5000


@dataclass
class TagQueryResult:
    all_tags: List[str] = field(default_factory=list)
    skill_tags: List[str] = field(default_factory=list)
    behavior_tags: List[str] = field(default_factory=list)
    compliance_tags: List[str] = field(default_factory=list)
    tag_scores: List[TagScore] = field(default_factory=list)
    last_updated: int = 0


# =============================================================================
# Behavior criteria
# =============================================================================


def _total_payments(m: "ReputationMetrics") -> int:
    return m.successful_payments + m.failed_payments


def _fast_responder(m, score, now) -> TagEvaluation:
    if m.response_time_count == 0:
        return NOT_ASSIGNED
    avg = m.avg_response_time
    if avg >= 60000:
        return TagEvaluation(False, evidence_count=m.response_time_count)
    # 100% at 0s, 80% at 60s
    return TagEvaluation(
        True,
        min(MAX_CONFIDENCE, 10000 - (avg * 2000) // 60000),
        m.response_time_count,
        f"Average response time {avg}ms",
    )


def _quick_responder(m, score, now) -> TagEvaluation:
    if m.response_time_count == 0:
        return NOT_ASSIGNED
    avg = m.avg_response_time
    if avg >= 300000:
        return TagEvaluation(False, evidence_count=m.response_time_count)
    return TagEvaluation(
        True,
        min(MAX_CONFIDENCE, 10000 - (avg * 3000) // 300000),
        m.response_time_count,
        f"Average response time {avg}ms",
    )


def _dispute_free(m, score, now) -> TagEvaluation:
    total = _total_payments(m)
    if total < 10:
        return NOT_ASSIGNED
    if m.total_disputes != 0:
        return TagEvaluation(False, evidence_count=total)
    return TagEvaluation(
        True, min(MAX_CONFIDENCE, 7000 + total * 10), total, f"0 disputes over {total} transactions"
    )


def _low_dispute(m, score, now) -> TagEvaluation:
    total = _total_payments(m)
    if total < 100:
        return NOT_ASSIGNED
    # dispute rate below 1%
    if m.total_disputes * 100 >= total:
        return TagEvaluation(False, evidence_count=total)
    penalty = (m.total_disputes * 100000) // total
    return TagEvaluation(
        True,
        min(MAX_CONFIDENCE, 10000 - penalty),
        total,
        f"{m.total_disputes} disputes over {total} transactions",
    )


def _high_volume(m, score, now) -> TagEvaluation:
    count = m.successful_payments
    if count < 1000:
        return TagEvaluation(False, evidence_count=count)
    return TagEvaluation(
        True, min(MAX_CONFIDENCE, 6000 + count // 100), count, f"{count} successful transactions"
    )


def _very_high_volume(m, score, now) -> TagEvaluation:
    count = m.successful_payments
    if count < 10000:
        return TagEvaluation(False, evidence_count=count)
    return TagEvaluation(
        True, min(MAX_CONFIDENCE, 8000 + count // 1000), count, f"{count} successful transactions"
    )


def _rating_tag(min_count: int, above: int, base: int, per_point: int, offset: int):
    """
    Build a rating criterion over avg_rating (0-100, so 4.8/5 is 96).

    confidence = base + (avg_rating - offset) * per_point
    """

    def evaluate(m, score, now) -> TagEvaluation:
        if m.total_ratings_count < min_count:
            return NOT_ASSIGNED
        avg = m.avg_rating
        if avg <= above:
            return TagEvaluation(False, evidence_count=m.total_ratings_count)
        return TagEvaluation(
            True,
            min(MAX_CONFIDENCE, base + (avg - offset) * per_point),
            m.total_ratings_count,
            f"Average rating {avg}/100",
        )

    return evaluate


def _perfect_record(m, score, now) -> TagEvaluation:
    total = _total_payments(m)
    if total < 50:
        return NOT_ASSIGNED
    if m.failed_payments != 0:
        return TagEvaluation(False, evidence_count=total)
    return TagEvaluation(
        True,
        min(MAX_CONFIDENCE, 8000 + total // 10),
        total,
        f"100% success rate over {total} transactions",
    )


def _high_resolution(m, score, now) -> TagEvaluation:
    if m.total_disputes < 5:
        return NOT_ASSIGNED
    # resolution rate above 90%
    if m.disputes_resolved * 100 <= 90 * m.total_disputes:
        return TagEvaluation(False, evidence_count=m.total_disputes)
    rate_milli = (m.disputes_resolved * 100000) // m.total_disputes
    return TagEvaluation(
        True,
        min(MAX_CONFIDENCE, rate_milli - 90000 + 8000),
        m.total_disputes,
        f"{m.disputes_resolved}/{m.total_disputes} disputes resolved favorably",
    )


def _tenure_tag(min_years: int, per_year: int, base: int):
    def evaluate(m, score, now) -> TagEvaluation:
        if not m.created_at:
            return NOT_ASSIGNED
        age = now - m.created_at
        if age < min_years * SECONDS_PER_YEAR:
            return NOT_ASSIGNED
        years = age // SECONDS_PER_YEAR
        return TagEvaluation(
            True,
            min(MAX_CONFIDENCE, (age * per_year) // SECONDS_PER_YEAR + base),
            years,
            f"Active for {years} years",
        )

    return evaluate


def _elite_tier(m, score, now) -> TagEvaluation:
    if score is None or get_reputation_tier(score) != ReputationTier.PLATINUM:
        return NOT_ASSIGNED
    return TagEvaluation(True, score, m.total_ratings_count, f"Platinum tier (score {score})")


DEFAULT_CRITERIA = [
    TagCriteria("fast-responder", TagCategory.BEHAVIOR, _fast_responder),
    TagCriteria("quick-responder", TagCategory.BEHAVIOR, _quick_responder),
    TagCriteria("dispute-free", TagCategory.BEHAVIOR, _dispute_free),
    TagCriteria("low-dispute", TagCategory.BEHAVIOR, _low_dispute),
    TagCriteria("high-volume", TagCategory.BEHAVIOR, _high_volume),
    TagCriteria("very-high-volume", TagCategory.BEHAVIOR, _very_high_volume),
    TagCriteria("top-rated", TagCategory.BEHAVIOR, _rating_tag(10, 96, 8000, 2500, 96)),
    TagCriteria("high-quality", TagCategory.BEHAVIOR, _rating_tag(5, 90, 7000, 1000, 90)),
    TagCriteria("consistent-quality", TagCategory.BEHAVIOR, _rating_tag(20, 86, 5000, 500, 80)),
    TagCriteria("perfect-record", TagCategory.BEHAVIOR, _perfect_record),
    TagCriteria("high-resolution", TagCategory.BEHAVIOR, _high_resolution),
    TagCriteria("long-term-active", TagCategory.BEHAVIOR, _tenure_tag(1, 2000, 6000)),
    TagCriteria("multi-year", TagCategory.BEHAVIOR, _tenure_tag(3, 1000, 7000)),
    TagCriteria("elite-tier", TagCategory.BEHAVIOR, _elite_tier),
]


# =============================================================================
# Engine
# =============================================================================


class TagEngine:
    """
    Evaluates, decays, merges and caps reputation tags.

    Every method is pure: inputs are never mutated.
    """

    DEFAULT_CONFIG = {
        "assign_threshold": 5000,
        "decay_rate_per_day": 10,
        "min_confidence": 2000,
        "max_age_seconds": 90 * SECONDS_PER_DAY,
    }

    def __init__(
        self,
        criteria: Optional[List[TagCriteria]] = None,
        config: Optional[Dict] = None,
    ):
        self._criteria = list(criteria if criteria is not None else DEFAULT_CRITERIA)
        self._config = {**self.DEFAULT_CONFIG, **(config or {})}
        self._categories = {c.tag: c.category for c in self._criteria}

    @property
    def config(self) -> Dict:
        return dict(self._config)

    def evaluate(
        self, metrics: "ReputationMetrics", score: Optional[int] = None, now: Optional[int] = None
    ) -> Dict[str, TagEvaluation]:
        """Run every criterion and return its evaluation by tag name."""
        now = now if now is not None else int(time.time())
        return {c.tag: c.evaluate(metrics, score, now) for c in self._criteria}

    def calculate_tags(
        self, metrics: "ReputationMetrics", score: Optional[int] = None, now: Optional[int] = None
    ) -> List[TagScore]:
        """Return tags whose criteria clear both their own and the engine threshold."""
        now = now if now is not None else int(time.time())
        threshold = self._config["assign_threshold"]

        tags = []
        for criteria in self._criteria:
            evaluation = criteria.evaluate(metrics, score, now)
            if not evaluation.should_assign:
                continue
            if evaluation.confidence < max(threshold, criteria.min_confidence):
                continue
            tags.append(
                TagScore(
                    tag_name=criteria.tag,
                    confidence=evaluation.confidence,
                    evidence_count=evaluation.evidence_count,
                    last_updated=now,
                    category=criteria.category,
                )
            )
            logger.debug(f"Tag {criteria.tag} qualifies: {evaluation.reason}")

        return tags

    def apply_decay(self, tags: List[TagScore], now: Optional[int] = None) -> List[TagScore]:
        """
        Reduce confidence by the daily rate times days since last_updated.

        Decay is measured from base_confidence, so applying it repeatedly
        gives the same result as applying it once.

        Tags that fall below the floor or exceed the maximum age are dropped.
        """
        now = now if now is not None else int(time.time())
        rate = self._config["decay_rate_per_day"]
        floor = self._config["min_confidence"]
        max_age = self._config["max_age_seconds"]

        kept = []
        for tag in tags:
            age = max(0, tag.age(now))
            confidence = max(0, tag.base_confidence - (age * rate) // SECONDS_PER_DAY)
            if confidence < floor or age > max_age:
                logger.debug(f"Dropping decayed tag {tag.tag_name} (confidence {confidence})")
                continue
            kept.append(
                TagScore(
                    tag_name=tag.tag_name,
                    confidence=confidence,
                    evidence_count=tag.evidence_count,
                    last_updated=tag.last_updated,
                    category=tag.category,
                    base_confidence=tag.base_confidence,
                )
            )
        return kept

    def merge_tags(self, existing: List[TagScore], new: List[TagScore]) -> List[TagScore]:
        """New tags replace existing ones with lower confidence or less evidence."""
        merged: Dict[str, TagScore] = {tag.tag_name: tag for tag in existing}
        for tag in new:
            current = merged.get(tag.tag_name)
            if (
                current is None
                or tag.confidence > current.confidence
                or tag.evidence_count > current.evidence_count
            ):
                merged[tag.tag_name] = tag
        return list(merged.values())

    def enforce_limits(self, tags: List[TagScore]) -> List[TagScore]:
        """
        Apply the per-category caps, then the total cap.

        Lowest confidence is evicted first; among equal confidence, the
        least recently updated goes first.
        """
        def rank(tag: TagScore):
            return (-tag.confidence, -tag.last_updated)

        kept: List[TagScore] = []
        for category, limit in CATEGORY_LIMITS.items():
            in_category = sorted((t for t in tags if t.category == category), key=rank)
            if len(in_category) > limit:
                evicted = [t.tag_name for t in in_category[limit:]]
                logger.info(f"Evicting {category.value} tags over cap: {evicted}")
            kept.extend(in_category[:limit])

        kept.sort(key=rank)
        if len(kept) > MAX_TOTAL_TAGS:
            logger.info(f"Evicting {len(kept) - MAX_TOTAL_TAGS} tags over total cap")
        return kept[:MAX_TOTAL_TAGS]

    def category_of(self, tag_name: str) -> TagCategory:
        return self._categories.get(tag_name, TagCategory.BEHAVIOR)

    def filter_tags(
        self,
        tags: List[TagScore],
        category: Optional[TagCategory] = None,
        min_confidence: Optional[int] = None,
        max_age: Optional[int] = None,
        active_only: bool = False,
        now: Optional[int] = None,
    ) -> List[TagScore]:
        now = now if now is not None else int(time.time())
        filtered = list(tags)

        if category is not None:
            filtered = [t for t in filtered if t.category == category]
        if min_confidence is not None:
            filtered = [t for t in filtered if t.confidence >= min_confidence]
        if max_age is not None:
            filtered = [t for t in filtered if t.age(now) <= max_age]
        if active_only:
            filtered = [
                t
                for t in filtered
                if t.age(now) <= self._config["max_age_seconds"]
                and t.confidence >= self._config["min_confidence"]
            ]

        return filtered

    def categorize_tags(self, tags: List[TagScore]) -> TagQueryResult:
        result = TagQueryResult(tag_scores=list(tags))
        buckets = {
            TagCategory.SKILL: result.skill_tags,
            TagCategory.BEHAVIOR: result.behavior_tags,
            TagCategory.COMPLIANCE: result.compliance_tags,
        }
        for tag in tags:
            result.all_tags.append(tag.tag_name)
            buckets[tag.category].append(tag.tag_name)
        result.last_updated = max((t.last_updated for t in tags), default=0)
        return result

    @staticmethod
    def get_confidence_level(confidence: int) -> str:
        if confidence >= ConfidenceLevel.ABSOLUTE.value:
            return "Absolute"
        if confidence >= ConfidenceLevel.VERY_HIGH.value:
            return "Very High"
        if confidence >= ConfidenceLevel.HIGH.value:
            return "High"
        if confidence >= ConfidenceLevel.MEDIUM.value:
            return "Medium"
        if confidence >= ConfidenceLevel.LOW.value:
            return "Low"
        return "Very Low"

    @staticmethod
    def top_tags(tags: List[TagScore], count: int) -> List[TagScore]:
        return sorted(tags, key=lambda t: t.confidence, reverse=True)[:count]

    def refresh(
        self,
        existing: List[TagScore],
        metrics: "ReputationMetrics",
        score: Optional[int] = None,
        now: Optional[int] = None,
    ) -> List[TagScore]:
        """Decay existing tags, re-evaluate, merge and enforce caps."""
        now = now if now is not None else int(time.time())
        decayed = self.apply_decay(existing, now)
        candidates = self.calculate_tags(metrics, score=score, now=now)
        return self.enforce_limits(self.merge_tags(decayed, candidates))
