"""
GhostScore Multi-Source Aggregation.

Combines reputation scores reported by independent sources (payment
facilitators, code hosts, custom webhooks) into one weighted basis-point
score, and flags sources that disagree by more than 30%.

Source scores use the 0-1000 scale; weights and reliabilities are basis
points.
"""

import time
import logging
from typing import Optional, List, Dict
from dataclasses import dataclass, asdict

from ghostscore.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_SOURCE_NAME_LENGTH = 32
MAX_SOURCE_SCORE = 1000
MAX_BASIS_POINTS = 10000
MAX_SOURCES = 10
MAX_CONFLICT_FLAGS = 10
KEEP_CONFLICT_FLAGS = 5
CONFLICT_THRESHOLD = 300
DEFAULT_PRIMARY_SOURCE = "payai"


@dataclass
class SourceScore:
    """
    One source's view of an agent.

    Attributes:
        source_name: Source identifier, at most 32 characters.
        score: 0-1000.
        weight: Basis points.
        data_points: Observations behind the score.
        reliability: Basis points.
        last_updated: Unix timestamp.
    """

    source_name: str
    score: int
    weight: int
    data_points: int
    reliability: int
    last_updated: int

    def __post_init__(self):
        if not self.source_name or len(self.source_name) > MAX_SOURCE_NAME_LENGTH:
            raise ValidationError(
                f"Source name must be 1-{MAX_SOURCE_NAME_LENGTH} characters: {self.source_name!r}"
            )
        if not 0 <= self.score <= MAX_SOURCE_SCORE:
            raise ValidationError(f"Source score must be in [0, {MAX_SOURCE_SCORE}]")
        if not 0 <= self.weight <= MAX_BASIS_POINTS:
            raise ValidationError(f"Weight must be in [0, {MAX_BASIS_POINTS}]")
        if not 0 <= self.reliability <= MAX_BASIS_POINTS:
            raise ValidationError(f"Reliability must be in [0, {MAX_BASIS_POINTS}]")
        if self.data_points < 0:
            raise ValidationError("data_points must be non-negative")

    @property
    def weighted_contribution(self) -> int:
        """score x weight x reliability / 10000^2, on the 0-1000 scale."""
        return (self.score * self.weight * self.reliability) // 100_000_000

    @property
    def normalization_factor(self) -> int:
        return self.weight * self.reliability

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AggregationResult:
    weighted_score: int
    source_count: int
    conflict: bool
    aggregated_at: int


class SourceAggregator:
    """
    Holds the per-source scores for one agent.

    Example:
        >>> agg = SourceAggregator()
        >>> agg.update_source("payai", score=850, weight=6000, data_points=120, reliability=9500)
        >>> agg.update_source("github", score=700, weight=4000, data_points=30, reliability=8000)
        >>> agg.weighted_score()
        7960
    """

    def __init__(self, primary_source: str = DEFAULT_PRIMARY_SOURCE):
        self._sources: List[SourceScore] = []
        self.primary_source = primary_source
        self.conflict_flags: List[str] = []
        self.last_aggregation = 0

    @property
    def sources(self) -> List[SourceScore]:
        return list(self._sources)

    def get_source(self, source_name: str) -> Optional[SourceScore]:
        for source in self._sources:
            if source.source_name == source_name:
                return source
        return None

    def update_source(
        self,
        source_name: str,
        score: int,
        weight: int,
        data_points: int,
        reliability: int,
        timestamp: Optional[int] = None,
    ) -> SourceScore:
        """
        Add a source or replace its figures.

        Raises:
            ValidationError: On out-of-range values, or an eleventh source.
        """
        updated = SourceScore(
            source_name=source_name,
            score=score,
            weight=weight,
            data_points=data_points,
            reliability=reliability,
            last_updated=timestamp if timestamp is not None else int(time.time()),
        )

        for i, source in enumerate(self._sources):
            if source.source_name == source_name:
                self._sources[i] = updated
                return updated

        if len(self._sources) >= MAX_SOURCES:
            raise ValidationError(f"At most {MAX_SOURCES} reputation sources are tracked")
        self._sources.append(updated)
        logger.debug(f"Added reputation source {source_name}")
        return updated

    def remove_source(self, source_name: str) -> bool:
        before = len(self._sources)
        self._sources = [s for s in self._sources if s.source_name != source_name]
        return len(self._sources) != before

    def set_primary_source(self, source_name: str) -> None:
        if self.get_source(source_name) is None:
            raise ValidationError(f"Unknown reputation source: {source_name}")
        self.primary_source = source_name

    def primary_source_score(self) -> Optional[SourceScore]:
        return self.get_source(self.primary_source)

    def weighted_score(self) -> int:
        """
        Basis-point aggregate: sum(score*weight*reliability) / sum(weight*reliability),
        scaled from 0-1000 to 0-10000 and capped.
        """
        total_normalization = sum(s.normalization_factor for s in self._sources)
        if total_normalization == 0:
            return 0
        total = sum(s.score * s.normalization_factor for s in self._sources)
        return min((total * 10) // total_normalization, MAX_BASIS_POINTS)

    def detect_conflicts(self, now: Optional[int] = None) -> bool:
        """Flag a spread of more than CONFLICT_THRESHOLD between any two sources."""
        if len(self._sources) < 2:
            return False

        now = now if now is not None else int(time.time())
        scores = [s.score for s in self._sources]
        high, low = max(scores), min(scores)
        spread = high - low
        if spread <= CONFLICT_THRESHOLD:
            return False

        flag = f"Conflict detected at {now}: variance {spread} (max: {high}, min: {low})"
        logger.warning(flag)
        if len(self.conflict_flags) < MAX_CONFLICT_FLAGS:
            self.conflict_flags.append(flag)
        return True

    def prune_conflict_flags(self) -> None:
        if len(self.conflict_flags) > KEEP_CONFLICT_FLAGS:
            self.conflict_flags = self.conflict_flags[-KEEP_CONFLICT_FLAGS:]

    def aggregate(self, now: Optional[int] = None) -> AggregationResult:
        now = now if now is not None else int(time.time())
        conflict = self.detect_conflicts(now)
        self.last_aggregation = now
        return AggregationResult(
            weighted_score=self.weighted_score(),
            source_count=len(self._sources),
            conflict=conflict,
            aggregated_at=now,
        )

    def to_dict(self) -> Dict:
        return {
            "sources": [s.to_dict() for s in self._sources],
            "primary_source": self.primary_source,
            "conflict_flags": list(self.conflict_flags),
            "last_aggregation": self.last_aggregation,
        }
