"""
GhostScore Reputation Engine.

Maintains per-agent payment metrics, the rating-driven reputation score and
derived tags.

Scoring Algorithm (integer only, reproduces the ledger program exactly):
    rating_bp = rating * 2000
    new_score = (current * 9000 + rating_bp * 1000) // 10000, capped at 10000

The update is order-dependent, so every mutation of an agent's record runs
under that agent's lock, and batches are applied in ledger (slot) order.
"""

import copy
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Set, Iterable, Any
from dataclasses import dataclass, field, asdict

from ghostscore.errors import ValidationError
from ghostscore.metrics import GhostScoreMetrics, get_metrics
from ghostscore.models import PaymentEvent, RatingSubmission, validate_rating
from ghostscore.privacy import ReputationTier, get_reputation_tier
from ghostscore.tags import TagCategory, TagEngine, TagScore

logger = logging.getLogger(__name__)

MAX_SCORE = 10000
DEFAULT_SCORE = 5000
HISTORY_DAYS = 7


def apply_rating(current_score: int, rating: int) -> int:
    """
    Fold one rating into a score.

    Args:
        current_score: Score in basis points, 0-10000.
        rating: Integer stars, 1-5.

    Returns:
        New score in basis points.

    Raises:
        ValidationError: On an out-of-range rating or score.
    """
    validate_rating(rating)
    if isinstance(current_score, bool) or not isinstance(current_score, int):
        raise ValidationError("Score must be an integer")
    if current_score < 0 or current_score > MAX_SCORE:
        raise ValidationError(f"Score must be in [0, {MAX_SCORE}], got {current_score}")

    rating_bp = rating * 2000
    new_score = (current_score * 9000 + rating_bp * 1000) // 10000
    return min(new_score, MAX_SCORE)


@dataclass
class ReputationMetrics:
    """
    Accumulated payment and rating counters for one agent.

    Derived values are properties, recomputed on every read.
    """

    successful_payments: int = 0
    failed_payments: int = 0
    total_response_time: int = 0
    response_time_count: int = 0
    total_disputes: int = 0
    disputes_resolved: int = 0
    total_rating: int = 0
    total_ratings_count: int = 0
    payment_history_7d: List[int] = field(default_factory=lambda: [0] * HISTORY_DAYS)
    created_at: int = 0
    updated_at: int = 0

    @property
    def avg_response_time(self) -> int:
        """Milliseconds."""
        if self.response_time_count == 0:
            return 0
        return self.total_response_time // self.response_time_count

    @property
    def success_rate(self) -> int:
        """Basis points."""
        total = self.successful_payments + self.failed_payments
        if total == 0:
            return 0
        return (self.successful_payments * 10000) // total

    @property
    def avg_rating(self) -> int:
        """0-100 scale."""
        if self.total_ratings_count == 0:
            return 0
        return (self.total_rating * 100) // (self.total_ratings_count * 5)

    @property
    def dispute_resolution_rate(self) -> int:
        """Basis points; perfect when there were no disputes."""
        if self.total_disputes == 0:
            return 10000
        return (self.disputes_resolved * 10000) // self.total_disputes

    @property
    def volume_consistency_score(self) -> int:
        """Basis points; 10000 means identical daily volume across the week."""
        total = sum(self.payment_history_7d)
        if total == 0:
            return 0
        avg = total // HISTORY_DAYS
        if avg == 0:
            return 0
        variance = sum((abs(v - avg) ** 2) // avg for v in self.payment_history_7d)
        return 10000 - min(variance // HISTORY_DAYS, 10000)

    def update_payment_history(self, amount: int, timestamp: int) -> None:
        day_index = (timestamp // 86400) % HISTORY_DAYS
        self.payment_history_7d[day_index] += amount

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(
            avg_response_time=self.avg_response_time,
            success_rate=self.success_rate,
            avg_rating=self.avg_rating,
            dispute_resolution_rate=self.dispute_resolution_rate,
            volume_consistency_score=self.volume_consistency_score,
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ReputationMetrics":
        names = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class AgentRecord:
    """Stored state for one agent, including idempotency keys."""

    agent_id: str
    score: int = DEFAULT_SCORE
    metrics: ReputationMetrics = field(default_factory=ReputationMetrics)
    tags: List[TagScore] = field(default_factory=list)
    payment_signatures: Set[str] = field(default_factory=set)
    rating_signatures: Set[str] = field(default_factory=set)


@dataclass
class AgentReputation:
    """Read-only snapshot returned to callers."""

    agent_id: str
    score: int
    metrics: ReputationMetrics
    tags: List[TagScore]

    @property
    def tier(self) -> ReputationTier:
        return get_reputation_tier(self.score)

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "score": self.score,
            "tier": self.tier.value,
            "metrics": self.metrics.to_dict(),
            "tags": [t.to_dict() for t in self.tags],
        }


class ReputationStoreInterface(ABC):
    """Abstract interface for reputation storage."""

    @abstractmethod
    async def get(self, agent_id: str) -> Optional[AgentRecord]:
        """Get the stored record for an agent, or None."""
        pass

    @abstractmethod
    async def save(self, record: AgentRecord) -> None:
        pass

    @abstractmethod
    async def delete(self, agent_id: str) -> bool:
        pass

    @abstractmethod
    async def list_agents(self) -> List[str]:
        pass


class MemoryReputationStore(ReputationStoreInterface):
    """
    In-memory reputation store for testing and single-instance deployments.

    Records are copied in and out, so a failed update never leaves a
    half-applied record behind.
    """

    def __init__(self):
        self._records: Dict[str, AgentRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, agent_id: str) -> Optional[AgentRecord]:
        async with self._lock:
            record = self._records.get(agent_id)
            return copy.deepcopy(record) if record is not None else None

    async def save(self, record: AgentRecord) -> None:
        async with self._lock:
            self._records[record.agent_id] = copy.deepcopy(record)

    async def delete(self, agent_id: str) -> bool:
        async with self._lock:
            return self._records.pop(agent_id, None) is not None

    async def list_agents(self) -> List[str]:
        async with self._lock:
            return list(self._records)


class ReputationEngine:
    """
    High-level reputation management engine.

    Example:
        >>> engine = ReputationEngine()
        >>> await engine.ingest(events)
        >>> await engine.submit_rating(RatingSubmission("agent-1", 5, "5xSig..."))
        >>> state = await engine.get_state("agent-1")
        >>> print(f"Score: {state.score}, Tier: {state.tier.value}")
    """

    DEFAULT_CONFIG = {
        "initial_score": DEFAULT_SCORE,
        "manual_tag_categories": (TagCategory.SKILL, TagCategory.COMPLIANCE),
    }

    def __init__(
        self,
        store: Optional[ReputationStoreInterface] = None,
        tag_engine: Optional[TagEngine] = None,
        config: Optional[Dict] = None,
        metrics: Optional[GhostScoreMetrics] = None,
    ):
        """
        Initialize the reputation engine.

        Args:
            store: Storage backend for agent records.
            tag_engine: Tag evaluation engine.
            config: Custom configuration overrides.
            metrics: Metrics collector (global one if None).
        """
        self._store = store or MemoryReputationStore()
        self._tags = tag_engine or TagEngine()
        self._config = {**self.DEFAULT_CONFIG, **(config or {})}
        self._metrics = metrics or get_metrics()
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def tag_engine(self) -> TagEngine:
        return self._tags

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    def _new_record(self, agent_id: str, now: int) -> AgentRecord:
        return AgentRecord(
            agent_id=agent_id,
            score=self._config["initial_score"],
            metrics=ReputationMetrics(created_at=now, updated_at=now),
        )

    async def _load(self, agent_id: str, now: int) -> AgentRecord:
        record = await self._store.get(agent_id)
        return record if record is not None else self._new_record(agent_id, now)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def record_payment(self, event: PaymentEvent) -> bool:
        """
        Fold one payment into the merchant's metrics.

        Returns:
            False if the signature was already recorded.
        """
        if event.amount < 0:
            raise ValidationError(f"Negative amount on {event.signature}")
        if event.response_time_ms is not None and event.response_time_ms < 0:
            raise ValidationError(f"Negative response time on {event.signature}")

        agent_id = event.merchant
        async with self._lock_for(agent_id):
            record = await self._load(agent_id, event.timestamp)
            if event.signature in record.payment_signatures:
                logger.debug(f"Payment {event.signature} already recorded for {agent_id}")
                return False

            metrics = record.metrics
            if event.success:
                metrics.successful_payments += 1
                metrics.update_payment_history(event.amount, event.timestamp)
            else:
                metrics.failed_payments += 1

            if event.response_time_ms is not None:
                metrics.total_response_time += event.response_time_ms
                metrics.response_time_count += 1

            metrics.updated_at = max(metrics.updated_at, event.timestamp)
            record.payment_signatures.add(event.signature)
            await self._store.save(record)

        logger.debug(
            f"Recorded {'successful' if event.success else 'failed'} payment "
            f"{event.signature} for {agent_id}"
        )
        return True

    async def ingest(self, events: Iterable[PaymentEvent]) -> int:
        """
        Record a batch of payments in ledger order.

        Returns:
            Number of newly recorded payments.
        """
        ordered = sorted(events, key=lambda e: e.slot)
        recorded = 0
        for event in ordered:
            if await self.record_payment(event):
                recorded += 1
        if ordered:
            logger.info(f"Ingested {recorded}/{len(ordered)} payment events")
        return recorded

    # -------------------------------------------------------------------------
    # Ratings
    # -------------------------------------------------------------------------

    async def submit_rating(self, submission: RatingSubmission) -> int:
        """
        Apply one rating to the agent's score.

        Duplicate submissions for the same transaction are ignored.

        Returns:
            The agent's score after the rating.

        Raises:
            ValidationError: Before any state change, on an invalid rating.
        """
        validate_rating(submission.rating)
        agent_id = submission.agent_id
        if not agent_id:
            raise ValidationError("Rating requires an agent_id")

        async with self._lock_for(agent_id):
            record = await self._load(agent_id, int(time.time()))
            if submission.transaction_signature in record.rating_signatures:
                logger.debug(
                    f"Rating for {submission.transaction_signature} already applied to {agent_id}"
                )
                return record.score

            previous = record.score
            record.score = apply_rating(previous, submission.rating)
            record.metrics.total_rating += submission.rating
            record.metrics.total_ratings_count += 1
            record.metrics.updated_at = max(record.metrics.updated_at, int(time.time()))
            record.rating_signatures.add(submission.transaction_signature)
            await self._store.save(record)

        self._metrics.record_rating_applied()
        logger.debug(
            f"Rating {submission.rating} for {agent_id}: {previous} -> {record.score}"
        )
        return record.score

    async def apply_ratings(self, submissions: Iterable[RatingSubmission]) -> List[int]:
        """
        Apply ratings in ledger order.

        Submissions with a slot go first, ascending; those without keep their
        arrival order after them.
        """
        indexed = list(enumerate(submissions))
        for _, submission in indexed:
            validate_rating(submission.rating)

        ordered = sorted(
            indexed,
            key=lambda pair: (pair[1].slot is None, pair[1].slot or 0, pair[0]),
        )
        return [await self.submit_rating(submission) for _, submission in ordered]

    # -------------------------------------------------------------------------
    # Disputes
    # -------------------------------------------------------------------------

    async def record_dispute(self, agent_id: str, resolved: bool = False) -> ReputationMetrics:
        async with self._lock_for(agent_id):
            record = await self._load(agent_id, int(time.time()))
            record.metrics.total_disputes += 1
            if resolved:
                record.metrics.disputes_resolved += 1
            record.metrics.updated_at = int(time.time())
            await self._store.save(record)
            return copy.deepcopy(record.metrics)

    async def resolve_dispute(self, agent_id: str) -> ReputationMetrics:
        """Mark one open dispute as resolved in the agent's favor."""
        async with self._lock_for(agent_id):
            record = await self._load(agent_id, int(time.time()))
            if record.metrics.disputes_resolved >= record.metrics.total_disputes:
                raise ValidationError(f"No open disputes for {agent_id}")
            record.metrics.disputes_resolved += 1
            record.metrics.updated_at = int(time.time())
            await self._store.save(record)
            return copy.deepcopy(record.metrics)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def refresh_tags(self, agent_id: str, now: Optional[int] = None) -> List[TagScore]:
        """Decay, re-evaluate and cap the agent's tags."""
        now = now if now is not None else int(time.time())
        async with self._lock_for(agent_id):
            record = await self._load(agent_id, now)
            record.tags = self._tags.refresh(record.tags, record.metrics, score=record.score, now=now)
            await self._store.save(record)
            return list(record.tags)

    async def assign_tag(
        self,
        agent_id: str,
        tag_name: str,
        category: TagCategory,
        confidence: int,
        evidence_count: int = 0,
        now: Optional[int] = None,
    ) -> List[TagScore]:
        """
        Assign a Skill or Compliance tag from an external source.

        Raises:
            ValidationError: On a bad name or category, or a confidence
                below the assignment threshold.
        """
        if category not in self._config["manual_tag_categories"]:
            raise ValidationError(f"{category.value} tags cannot be assigned manually")

        threshold = self._tags.config["assign_threshold"]
        if isinstance(confidence, int) and confidence < threshold:
            raise ValidationError(
                f"Tag {tag_name} confidence {confidence} is below threshold {threshold}"
            )

        now = now if now is not None else int(time.time())
        tag = TagScore(
            tag_name=tag_name,
            confidence=confidence,
            evidence_count=evidence_count,
            last_updated=now,
            category=category,
        )

        async with self._lock_for(agent_id):
            record = await self._load(agent_id, now)
            record.tags = self._tags.enforce_limits(self._tags.merge_tags(record.tags, [tag]))
            await self._store.save(record)
            return list(record.tags)

    # -------------------------------------------------------------------------
    # Reads and admin
    # -------------------------------------------------------------------------

    async def get_state(self, agent_id: str) -> AgentReputation:
        record = await self._store.get(agent_id)
        if record is None:
            record = self._new_record(agent_id, 0)
        return AgentReputation(
            agent_id=agent_id,
            score=record.score,
            metrics=record.metrics,
            tags=list(record.tags),
        )

    async def get_score(self, agent_id: str) -> int:
        return (await self.get_state(agent_id)).score

    async def reset(self, agent_id: str) -> None:
        """Reset score, counters and tags (admin function). Idempotency keys are kept."""
        async with self._lock_for(agent_id):
            record = await self._load(agent_id, int(time.time()))
            fresh = self._new_record(agent_id, int(time.time()))
            fresh.payment_signatures = record.payment_signatures
            fresh.rating_signatures = record.rating_signatures
            await self._store.save(fresh)
        logger.info(f"Reset reputation for {agent_id}")

    async def export(self, agent_id: str) -> Dict[str, Any]:
        """Persisted layout for one agent."""
        return (await self.get_state(agent_id)).to_dict()
